"""Scrape stage: fetch recent videos and store them as raw videos."""

from dataclasses import dataclass
from datetime import timedelta

import httpx
from sqlalchemy.exc import SQLAlchemyError

from crowd_codes.clients.youtube_client import SearchOptions, YouTubeAdapter
from crowd_codes.core.config import Settings, get_settings
from crowd_codes.core.errors import CrowdCodesError
from crowd_codes.core.logger import get_logger, log_event
from crowd_codes.core.models import utc_now
from crowd_codes.core.quota import QuotaBudget
from crowd_codes.repositories.extraction_repository import ExtractionStore


logger = get_logger(__name__)


@dataclass
class ScrapeResult:
    """Outcome of the scrape command."""

    success: bool
    videos_found: int = 0
    videos_stored: int = 0
    quota_used: int = 0
    error_code: str | None = None
    error: str | None = None


async def run_scraper(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ScrapeResult:
    """Fetch videos published within the lookback window and store them.

    Quota truncation is not a failure: whatever was fetched is stored.

    Args:
        settings: Application settings (defaults to the cached settings).
        http_client: Optional HTTP client for the YouTube calls.

    Returns:
        Scrape outcome; errors are reported, not raised.
    """
    settings = settings or get_settings()
    if http_client is not None:
        return await _scrape(settings, http_client)
    async with httpx.AsyncClient(
        timeout=settings.request_timeout_seconds
    ) as client:
        return await _scrape(settings, client)


async def _scrape(
    settings: Settings, http_client: httpx.AsyncClient
) -> ScrapeResult:
    store: ExtractionStore | None = None
    adapter: YouTubeAdapter | None = None

    try:
        adapter = YouTubeAdapter(
            settings.youtube_api_key or "",
            budget=QuotaBudget(settings.youtube_daily_quota),
            client=http_client,
            timeout=settings.request_timeout_seconds,
        )
        store = ExtractionStore(settings)
        await store.connect()

        published_after = utc_now() - timedelta(
            hours=settings.scrape_lookback_hours
        )
        log_event(
            logger,
            "scrape_start",
            message="[SCRAPE] Scrape starting",
            keywords=settings.scrape_keywords,
            published_after=published_after.isoformat(),
            quota_limit=adapter.budget.ceiling,
        )

        videos = await adapter.fetch_videos(
            settings.scrape_keywords,
            SearchOptions(
                published_after=published_after,
                max_results=settings.scrape_max_results,
            ),
        )

        async with store.transaction() as conn:
            stored = await store.upsert_raw_videos(conn, videos)

        log_event(
            logger,
            "scrape_complete",
            message="[SCRAPE] Scrape complete",
            videos_found=len(videos),
            videos_stored=stored,
            quota_used=adapter.quota_used,
            quota_remaining=adapter.budget.remaining,
        )
        return ScrapeResult(
            success=True,
            videos_found=len(videos),
            videos_stored=stored,
            quota_used=adapter.quota_used,
        )

    except CrowdCodesError as error:
        logger.error(
            "[SCRAPE] Scrape failed: %s", error.message, extra=error.log_extra()
        )
        return ScrapeResult(
            success=False,
            quota_used=adapter.quota_used if adapter else 0,
            error_code=error.error_code,
            error=error.message,
        )
    except SQLAlchemyError as error:
        logger.error(
            "[SCRAPE] Failed to store videos: %s",
            error,
            extra={"error_code": "DB_ERROR"},
        )
        return ScrapeResult(
            success=False,
            quota_used=adapter.quota_used if adapter else 0,
            error_code="DB_ERROR",
            error=str(error),
        )
    finally:
        if store is not None:
            await store.disconnect()
