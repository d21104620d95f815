"""Type-safe query builders using SQLAlchemy Core.

Upserts use the dialect-specific ``insert().on_conflict_do_update`` so the
same builder serves SQLite and PostgreSQL; callers pass the dialect name of
the connection the statement will run on.
"""

from datetime import datetime

from sqlalchemy import Insert, Select, Update, case, desc, func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from crowd_codes.core.models import ParsedBy
from crowd_codes.db.tables import brands, codes, parsing_logs, raw_videos


def _dialect_insert(dialect_name: str, table):
    """Return the dialect's INSERT construct supporting ON CONFLICT."""
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    msg = f"Unsupported database dialect: {dialect_name}"
    raise ValueError(msg)


def build_upsert_raw_videos(dialect_name: str) -> Insert:
    """Build INSERT ... ON CONFLICT for raw videos (executemany-ready).

    Re-scraping refreshes the description and scrape time only, so an
    already-parsed video is never reset to unparsed.

    Args:
        dialect_name: SQL dialect of the target connection.

    Returns:
        Insert statement to execute with a list of row dicts.
    """
    stmt = _dialect_insert(dialect_name, raw_videos)
    return stmt.on_conflict_do_update(
        index_elements=[raw_videos.c.video_id],
        set_={
            "description": stmt.excluded.description,
            "scraped_at": stmt.excluded.scraped_at,
        },
    )


def build_unparsed_videos_select(limit: int | None = None) -> Select:
    """Build SELECT for videos not yet seen by the regex stage.

    Args:
        limit: Optional maximum number of rows.

    Returns:
        Select ordered by most recently scraped first.
    """
    query = (
        select(
            raw_videos.c.video_id,
            raw_videos.c.channel_name,
            raw_videos.c.description,
            raw_videos.c.published_at,
            raw_videos.c.source_type,
            raw_videos.c.scraped_at,
            raw_videos.c.parsed,
        )
        .where(raw_videos.c.parsed.is_(False))
        .order_by(desc(raw_videos.c.scraped_at), raw_videos.c.video_id)
    )
    if limit is not None:
        query = query.limit(limit)
    return query


def build_mark_parsed_update(video_id: str) -> Update:
    return (
        update(raw_videos)
        .where(raw_videos.c.video_id == video_id)
        .values(parsed=True)
    )


def build_code_exists_select(code_id: str) -> Select:
    return select(codes.c.id).where(codes.c.id == code_id).limit(1)


def build_upsert_code(
    dialect_name: str,
    *,
    code_id: str,
    code: str,
    brand_name: str,
    brand_slug: str,
    source_type: str,
    source_channel: str | None,
    source_video_id: str | None,
    found_at: datetime,
    confidence: float,
) -> Insert:
    """Build INSERT ... ON CONFLICT for one extracted code.

    On conflict the confidence keeps the maximum of the stored and incoming
    values; every other column takes the incoming value.

    Args:
        dialect_name: SQL dialect of the target connection.
        code_id: Code fingerprint.
        code: Normalized code text.
        brand_name: Brand display name.
        brand_slug: Brand slug.
        source_type: Source type (e.g., 'youtube').
        source_channel: Channel the code was found on.
        source_video_id: Video the code was found in.
        found_at: Extraction time.
        confidence: Extraction confidence in [0, 1].

    Returns:
        Insert statement with ON CONFLICT clause.
    """
    stmt = _dialect_insert(dialect_name, codes).values(
        id=code_id,
        code=code,
        brand_name=brand_name,
        brand_slug=brand_slug,
        source_type=source_type,
        source_channel=source_channel,
        source_video_id=source_video_id,
        found_at=found_at,
        confidence=confidence,
    )

    return stmt.on_conflict_do_update(
        index_elements=[codes.c.id],
        set_={
            "code": stmt.excluded.code,
            "brand_name": stmt.excluded.brand_name,
            "brand_slug": stmt.excluded.brand_slug,
            "source_type": stmt.excluded.source_type,
            "source_channel": stmt.excluded.source_channel,
            "source_video_id": stmt.excluded.source_video_id,
            "found_at": stmt.excluded.found_at,
            "confidence": case(
                (
                    stmt.excluded.confidence > codes.c.confidence,
                    stmt.excluded.confidence,
                ),
                else_=codes.c.confidence,
            ),
        },
    )


def build_upsert_brand(
    dialect_name: str, *, slug: str, name: str, first_seen_at: datetime
) -> Insert:
    """Build INSERT ... ON CONFLICT that counts one new code for a brand.

    The first write fixes the name and first-seen time; later writes only
    increment ``code_count``.
    """
    stmt = _dialect_insert(dialect_name, brands).values(
        slug=slug,
        name=name,
        first_seen_at=first_seen_at,
        code_count=1,
    )
    return stmt.on_conflict_do_update(
        index_elements=[brands.c.slug],
        set_={"code_count": brands.c.code_count + 1},
    )


def build_insert_parsing_log(
    *,
    video_id: str,
    description: str,
    parsed_by: ParsedBy,
    suggested_regex: str | None,
    created_at: datetime,
) -> Insert:
    return parsing_logs.insert().values(
        video_id=video_id,
        description=description,
        parsed_by=str(parsed_by),
        suggested_regex=suggested_regex,
        created_at=created_at,
    )


def build_pending_llm_videos_select(limit: int) -> Select:
    """Build SELECT for distinct videos whose latest regex attempt found none.

    Args:
        limit: Maximum number of videos (the remaining LLM budget).

    Returns:
        Select of (video_id, description, channel_name), newest log first.
    """
    pending = (
        select(
            parsing_logs.c.video_id,
            func.max(parsing_logs.c.created_at).label("latest_log_at"),
            func.max(parsing_logs.c.id).label("latest_log_id"),
        )
        .where(parsing_logs.c.parsed_by == str(ParsedBy.NONE))
        .group_by(parsing_logs.c.video_id)
        .subquery("pending")
    )

    return (
        select(
            raw_videos.c.video_id,
            raw_videos.c.description,
            raw_videos.c.channel_name,
        )
        .select_from(
            pending.join(
                raw_videos, raw_videos.c.video_id == pending.c.video_id
            )
        )
        .order_by(desc(pending.c.latest_log_at), desc(pending.c.latest_log_id))
        .limit(limit)
    )


def build_mark_llm_parsed_update(
    video_id: str, suggested_regex: str | None
) -> Update:
    """Build UPDATE moving a video's pending log rows to 'llm'."""
    return (
        update(parsing_logs)
        .where(
            parsing_logs.c.video_id == video_id,
            parsing_logs.c.parsed_by == str(ParsedBy.NONE),
        )
        .values(parsed_by=str(ParsedBy.LLM), suggested_regex=suggested_regex)
    )


def build_codes_for_export_select() -> Select:
    return select(
        codes.c.id,
        codes.c.code,
        codes.c.brand_name,
        codes.c.brand_slug,
        codes.c.source_type,
        codes.c.source_channel,
        codes.c.source_video_id,
        codes.c.found_at,
        codes.c.confidence,
    ).order_by(desc(codes.c.found_at), codes.c.id)


def build_count_brands_select() -> Select:
    return select(func.count()).select_from(brands)


def build_get_brand_select(slug: str) -> Select:
    return select(
        brands.c.slug,
        brands.c.name,
        brands.c.first_seen_at,
        brands.c.code_count,
    ).where(brands.c.slug == slug)


def build_parsing_logs_select(
    video_id: str | None = None, parsed_by: ParsedBy | None = None
) -> Select:
    """Build SELECT over parsing logs with optional filters.

    Args:
        video_id: Only rows for this video.
        parsed_by: Only rows in this state.

    Returns:
        Select ordered by insertion.
    """
    query = select(
        parsing_logs.c.id,
        parsing_logs.c.video_id,
        parsing_logs.c.description,
        parsing_logs.c.parsed_by,
        parsing_logs.c.suggested_regex,
        parsing_logs.c.created_at,
    )
    if video_id is not None:
        query = query.where(parsing_logs.c.video_id == video_id)
    if parsed_by is not None:
        query = query.where(parsing_logs.c.parsed_by == str(parsed_by))
    return query.order_by(parsing_logs.c.id)


def build_suggested_regexes_select() -> Select:
    """Build SELECT listing regexes suggested by the LLM, newest first."""
    return (
        select(
            parsing_logs.c.video_id,
            parsing_logs.c.suggested_regex,
            parsing_logs.c.created_at,
        )
        .where(
            parsing_logs.c.parsed_by == str(ParsedBy.LLM),
            parsing_logs.c.suggested_regex.isnot(None),
        )
        .order_by(desc(parsing_logs.c.created_at), desc(parsing_logs.c.id))
    )
