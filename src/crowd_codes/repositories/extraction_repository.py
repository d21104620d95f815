"""Repository for the codes, brands, raw videos and parsing logs tables."""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel
from sqlalchemy import Result
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection

from crowd_codes.clients.database_client import DatabaseClient
from crowd_codes.core.config import Settings
from crowd_codes.core.errors import StorageError
from crowd_codes.core.logger import get_logger
from crowd_codes.core.models import (
    Brand,
    ExportedCode,
    ExtractedCode,
    InternalVideo,
    ParsedBy,
    ParsingLogEntry,
    PendingVideo,
    RawVideo,
    SuggestedRegex,
    utc_now,
)
from crowd_codes.db.sql_query_builder import (
    build_code_exists_select,
    build_codes_for_export_select,
    build_count_brands_select,
    build_get_brand_select,
    build_insert_parsing_log,
    build_mark_llm_parsed_update,
    build_mark_parsed_update,
    build_parsing_logs_select,
    build_pending_llm_videos_select,
    build_suggested_regexes_select,
    build_unparsed_videos_select,
    build_upsert_brand,
    build_upsert_code,
    build_upsert_raw_videos,
)
from crowd_codes.db.tables import crowd_codes_metadata


logger = get_logger(__name__)

LOG_DESCRIPTION_MAX_LENGTH = 1000

BaseModelT = TypeVar("BaseModelT", bound=BaseModel)


def _to_models(
    model: type[BaseModelT], result: Result
) -> list[BaseModelT]:
    """Validate every result row into the given pydantic model."""
    return [model.model_validate(dict(row._mapping)) for row in result]


class ExtractionStore:
    """Repository for interacting with the extraction store.

    Statement helpers take the connection to run on so callers decide the
    transaction boundaries (one per regex batch, one per LLM video).
    """

    def __init__(
        self,
        settings: Settings,
        *,
        read_only: bool = False,
        create_if_missing: bool = False,
    ) -> None:
        """Initialize repository.

        Args:
            settings: Application settings.
            read_only: Open the store without write access (export).
            create_if_missing: Allow creating a new SQLite file (init-db).
        """
        self._client = DatabaseClient(
            settings,
            read_only=read_only,
            create_if_missing=create_if_missing,
        )
        self._connected = False

    async def connect(self) -> None:
        """Create the database engine."""
        logger.info("[DATABASE] Connecting to extraction store...")
        await self._client.connect()
        self._connected = True

    async def disconnect(self) -> None:
        """Dispose the database engine."""
        if self._connected:
            logger.info("[DATABASE] Disconnecting from extraction store...")
            await self._client.close()
            self._connected = False

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection, None]:
        """Run a block in one transaction, rolled back on error.

        Raises:
            StorageError: On connection-level database failures.
        """
        try:
            async with self._client.engine.begin() as conn:
                yield conn
        except OperationalError as error:
            msg = f"Database operation failed: {error}"
            raise StorageError(msg) from error

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[AsyncConnection, None]:
        """Acquire a connection for read-only work."""
        try:
            async with self._client.engine.connect() as conn:
                yield conn
        except OperationalError as error:
            msg = f"Database read failed: {error}"
            raise StorageError(msg) from error

    async def initialize_schema(self) -> None:
        """Create tables and indexes that do not exist yet."""
        async with self.transaction() as conn:
            await conn.run_sync(crowd_codes_metadata.create_all)

    async def upsert_raw_videos(
        self,
        conn: AsyncConnection,
        videos: Sequence[InternalVideo],
        scraped_at: datetime | None = None,
    ) -> int:
        """Insert or refresh scraped videos.

        Args:
            conn: Connection inside a transaction.
            videos: Normalized videos from the adapter.
            scraped_at: Scrape time (defaults to now).

        Returns:
            Number of videos written.
        """
        if not videos:
            return 0
        scraped_at = scraped_at or utc_now()
        rows = [
            {
                "video_id": video.video_id,
                "channel_name": video.channel_name,
                "description": video.description,
                "published_at": video.published_at,
                "source_type": video.source_type,
                "scraped_at": scraped_at,
                "parsed": False,
            }
            for video in videos
        ]
        await conn.execute(build_upsert_raw_videos(conn.dialect.name), rows)
        return len(rows)

    async def get_unparsed_videos(
        self, conn: AsyncConnection, limit: int | None = None
    ) -> list[RawVideo]:
        result = await conn.execute(build_unparsed_videos_select(limit))
        return _to_models(RawVideo, result)

    async def code_exists(self, conn: AsyncConnection, code_id: str) -> bool:
        result = await conn.execute(build_code_exists_select(code_id))
        return result.first() is not None

    async def upsert_code(
        self, conn: AsyncConnection, code: ExtractedCode
    ) -> None:
        """Insert a code, or merge it keeping the highest confidence."""
        await conn.execute(
            build_upsert_code(
                conn.dialect.name,
                code_id=code.id,
                code=code.code,
                brand_name=code.brand_name,
                brand_slug=code.brand_slug,
                source_type=code.source_type,
                source_channel=code.source_channel,
                source_video_id=code.source_video_id,
                found_at=code.found_at or utc_now(),
                confidence=code.confidence,
            )
        )

    async def upsert_brand(
        self,
        conn: AsyncConnection,
        slug: str,
        name: str,
        first_seen_at: datetime | None = None,
    ) -> None:
        """Create a brand with one code, or count one more code for it."""
        await conn.execute(
            build_upsert_brand(
                conn.dialect.name,
                slug=slug,
                name=name,
                first_seen_at=first_seen_at or utc_now(),
            )
        )

    async def insert_parsing_log(
        self,
        conn: AsyncConnection,
        video_id: str,
        description: str,
        parsed_by: ParsedBy,
        suggested_regex: str | None = None,
        created_at: datetime | None = None,
    ) -> None:
        """Append an audit row; the description is truncated."""
        await conn.execute(
            build_insert_parsing_log(
                video_id=video_id,
                description=(description or "")[:LOG_DESCRIPTION_MAX_LENGTH],
                parsed_by=parsed_by,
                suggested_regex=suggested_regex,
                created_at=created_at or utc_now(),
            )
        )

    async def mark_parsed(self, conn: AsyncConnection, video_id: str) -> None:
        await conn.execute(build_mark_parsed_update(video_id))

    async def get_pending_llm_videos(
        self, conn: AsyncConnection, limit: int
    ) -> list[PendingVideo]:
        """Fetch up to ``limit`` distinct videos awaiting the LLM fallback.

        Args:
            conn: Database connection.
            limit: Maximum number of videos; non-positive returns nothing.

        Returns:
            Pending videos, most recent regex attempt first.
        """
        if limit <= 0:
            return []
        result = await conn.execute(build_pending_llm_videos_select(limit))
        return _to_models(PendingVideo, result)

    async def mark_llm_parsed(
        self,
        conn: AsyncConnection,
        video_id: str,
        suggested_regex: str | None,
    ) -> int:
        """Move a video's pending log rows to 'llm'.

        Returns:
            Number of log rows updated.
        """
        result = await conn.execute(
            build_mark_llm_parsed_update(video_id, suggested_regex)
        )
        return result.rowcount

    async def get_codes_for_export(
        self, conn: AsyncConnection
    ) -> list[ExportedCode]:
        result = await conn.execute(build_codes_for_export_select())
        return _to_models(ExportedCode, result)

    async def count_brands(self, conn: AsyncConnection) -> int:
        result = await conn.execute(build_count_brands_select())
        return int(result.scalar_one())

    async def get_brand(
        self, conn: AsyncConnection, slug: str
    ) -> Brand | None:
        result = await conn.execute(build_get_brand_select(slug))
        row = result.first()
        if row is None:
            return None
        return Brand.model_validate(dict(row._mapping))

    async def get_parsing_logs(
        self,
        conn: AsyncConnection,
        video_id: str | None = None,
        parsed_by: ParsedBy | None = None,
    ) -> list[ParsingLogEntry]:
        result = await conn.execute(
            build_parsing_logs_select(video_id=video_id, parsed_by=parsed_by)
        )
        return _to_models(ParsingLogEntry, result)

    async def get_suggested_regexes(
        self, conn: AsyncConnection
    ) -> list[SuggestedRegex]:
        """List LLM-suggested regexes for curation into the pattern file."""
        result = await conn.execute(build_suggested_regexes_select())
        return _to_models(SuggestedRegex, result)
