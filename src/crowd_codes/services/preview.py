"""Dry-run pipeline: scrape a small sample and parse it without a store."""

import asyncio
from datetime import timedelta

import httpx
from google import genai
from pydantic import BaseModel, Field

from crowd_codes.clients.youtube_client import SearchOptions, YouTubeAdapter
from crowd_codes.core.config import Settings, get_settings
from crowd_codes.core.logger import get_logger
from crowd_codes.core.models import ExtractedCode, utc_now
from crowd_codes.core.quota import QuotaBudget
from crowd_codes.services.pipeline import create_llm_parser
from crowd_codes.services.regex_parser import RegexParser


logger = get_logger(__name__)

DEFAULT_LIMIT = 10
DESCRIPTION_PREVIEW_LENGTH = 200


class PreviewCode(BaseModel):
    """A code as shown in the preview report, with its provenance."""

    id: str
    code: str
    brand_name: str
    brand_slug: str
    confidence: float
    pattern_id: str | None

    @classmethod
    def from_extracted(cls, code: ExtractedCode) -> "PreviewCode":
        return cls(
            id=code.id,
            code=code.code,
            brand_name=code.brand_name,
            brand_slug=code.brand_slug,
            confidence=code.confidence,
            pattern_id=code.pattern_id,
        )


class PreviewVideo(BaseModel):
    video_id: str
    channel: str
    description_preview: str
    regex_codes: list[PreviewCode] = Field(default_factory=list)
    llm_codes: list[PreviewCode] = Field(default_factory=list)


class PreviewStats(BaseModel):
    videos_fetched: int = 0
    regex_codes: int = 0
    llm_codes: int = 0
    regex_failed: int = 0
    quota_used: int = 0


class PreviewReport(BaseModel):
    """JSON report printed by the preview command."""

    limit: int
    skip_llm: bool
    videos: list[PreviewVideo] = Field(default_factory=list)
    regex_codes: list[PreviewCode] = Field(default_factory=list)
    llm_codes: list[PreviewCode] = Field(default_factory=list)
    stats: PreviewStats = Field(default_factory=PreviewStats)


def _preview_text(description: str) -> str:
    if len(description) <= DESCRIPTION_PREVIEW_LENGTH:
        return description
    return description[:DESCRIPTION_PREVIEW_LENGTH] + "..."


async def run_preview(
    settings: Settings | None = None,
    *,
    limit: int = DEFAULT_LIMIT,
    skip_llm: bool = False,
    http_client: httpx.AsyncClient | None = None,
    llm_client: genai.Client | None = None,
) -> PreviewReport:
    """Fetch a sample of videos and report what each parser would extract.

    Nothing is written to the store.

    Args:
        settings: Application settings (defaults to the cached settings).
        limit: Maximum number of videos to preview.
        skip_llm: Do not call the LLM for regex misses.
        http_client: Optional HTTP client for the YouTube calls.
        llm_client: Optional Gemini client for the LLM calls.

    Returns:
        The preview report.

    Raises:
        ConfigurationError: If the YouTube key or patterns are missing.
    """
    settings = settings or get_settings()
    if http_client is None:
        async with httpx.AsyncClient(
            timeout=settings.request_timeout_seconds
        ) as client:
            return await _preview(
                settings, limit, skip_llm, client, llm_client
            )
    return await _preview(
        settings, limit, skip_llm, http_client, llm_client
    )


async def _preview(
    settings: Settings,
    limit: int,
    skip_llm: bool,
    client: httpx.AsyncClient,
    llm_client: genai.Client | None,
) -> PreviewReport:
    report = PreviewReport(limit=limit, skip_llm=skip_llm)
    adapter = YouTubeAdapter(
        settings.youtube_api_key or "",
        budget=QuotaBudget(settings.youtube_daily_quota),
        client=client,
        timeout=settings.request_timeout_seconds,
    )
    regex_parser = RegexParser(
        settings.patterns_path, settings.brand_prefix_min_letters
    )

    logger.info("[PREVIEW] Fetching up to %d videos...", limit)
    published_after = utc_now() - timedelta(
        hours=settings.scrape_lookback_hours
    )
    fetched = await adapter.fetch_videos(
        settings.scrape_keywords,
        SearchOptions(
            published_after=published_after, max_results=min(limit, 50)
        ),
    )
    videos = fetched[:limit]
    report.stats.videos_fetched = len(videos)
    report.stats.quota_used = adapter.quota_used

    missed = []
    for video in videos:
        extraction = await regex_parser.extract(
            video.description, video.video_id
        )
        codes = extraction.codes
        entry = PreviewVideo(
            video_id=video.video_id,
            channel=video.channel_name,
            description_preview=_preview_text(video.description),
            regex_codes=[PreviewCode.from_extracted(code) for code in codes],
        )
        report.videos.append(entry)
        report.regex_codes.extend(entry.regex_codes)
        report.stats.regex_codes += len(codes)
        if not codes:
            report.stats.regex_failed += 1
            missed.append((entry, video))

    logger.info(
        "[PREVIEW] Regex: %d codes found, %d videos without codes",
        report.stats.regex_codes,
        report.stats.regex_failed,
    )

    llm_parser = None if skip_llm else create_llm_parser(settings, llm_client)
    if llm_parser is None:
        logger.info(
            "[PREVIEW] LLM fallback skipped (%s)",
            "--skip-llm flag" if skip_llm else "no GEMINI_API_KEY",
        )
        return report

    for index, (entry, video) in enumerate(missed):
        if index > 0 and settings.preview_llm_delay_seconds > 0:
            await asyncio.sleep(settings.preview_llm_delay_seconds)

        logger.info(
            "[PREVIEW] LLM parsing %d/%d: %s",
            index + 1,
            len(missed),
            video.video_id,
        )
        result = await llm_parser.extract(
            video.description, video.video_id
        )
        if result.quota_exhausted:
            break
        if result.success and result.codes:
            entry.llm_codes = [
                PreviewCode.from_extracted(code) for code in result.codes
            ]
            report.llm_codes.extend(entry.llm_codes)
            report.stats.llm_codes += len(result.codes)

    logger.info("[PREVIEW] LLM: %d additional codes", report.stats.llm_codes)
    return report
