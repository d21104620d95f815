"""SQLAlchemy table definitions for the extraction store.

Tables are defined with SQLAlchemy Core so the same statements run against
the local SQLite file and against PostgreSQL.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    false,
    text,
)
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    SQLite has no timezone support, so values read back are naive; they are
    re-attached to UTC here so every model sees aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


crowd_codes_metadata = MetaData()

raw_videos = Table(
    "raw_videos",
    crowd_codes_metadata,
    Column("video_id", String, primary_key=True),
    Column("channel_name", Text, nullable=False),
    Column("description", Text, nullable=False),
    Column("published_at", UTCDateTime, nullable=False),
    Column("source_type", String, nullable=False),
    Column("scraped_at", UTCDateTime, nullable=False),
    Column("parsed", Boolean, nullable=False, server_default=false()),
    Index("idx_raw_videos_scraped_at", "scraped_at"),
    Index("idx_raw_videos_parsed", "parsed"),
)

codes = Table(
    "codes",
    crowd_codes_metadata,
    Column("id", String, primary_key=True),
    Column("code", String, nullable=False),
    Column("brand_name", Text, nullable=False),
    Column("brand_slug", String, nullable=False),
    Column("source_type", String, nullable=False),
    Column("source_channel", Text),
    Column("source_video_id", String),
    Column("found_at", UTCDateTime, nullable=False),
    Column("confidence", Float, nullable=False),
    Index("idx_codes_brand_slug", "brand_slug"),
    Index("idx_codes_found_at", "found_at"),
)

brands = Table(
    "brands",
    crowd_codes_metadata,
    Column("slug", String, primary_key=True),
    Column("name", Text, nullable=False),
    Column("first_seen_at", UTCDateTime, nullable=False),
    Column("code_count", Integer, nullable=False, server_default=text("0")),
)

parsing_logs = Table(
    "parsing_logs",
    crowd_codes_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("video_id", String, nullable=False),
    Column("description", Text, nullable=False),
    Column("parsed_by", String, nullable=False),
    Column("suggested_regex", Text),
    Column("created_at", UTCDateTime, nullable=False),
    Index("idx_parsing_logs_created_at", "created_at"),
    Index("idx_parsing_logs_parsed_by", "parsed_by"),
)
