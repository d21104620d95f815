"""Parse stage orchestration: regex pass, then quota-gated LLM fallback."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from google import genai
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from crowd_codes.core.config import Settings, get_settings
from crowd_codes.core.errors import ConfigurationError, CrowdCodesError
from crowd_codes.core.logger import (
    async_log_with_context,
    get_logger,
    log_event,
)
from crowd_codes.core.models import (
    UNKNOWN_CHANNEL,
    ExtractedCode,
    ParsedBy,
    utc_now,
)
from crowd_codes.core.quota import QuotaBudget
from crowd_codes.repositories.extraction_repository import ExtractionStore
from crowd_codes.services.extractor import CodeExtractor
from crowd_codes.services.llm_parser import LlmParser
from crowd_codes.services.regex_parser import RegexParser


logger = get_logger(__name__)


@dataclass
class RegexStageResult:
    """Counters for one regex pass over unparsed videos."""

    videos_processed: int = 0
    codes_extracted: int = 0
    failed_parses: int = 0
    errors: int = 0

    @property
    def success_rate(self) -> str:
        if self.videos_processed == 0:
            return "N/A"
        matched = self.videos_processed - self.failed_parses
        return f"{matched / self.videos_processed * 100:.1f}%"


@dataclass
class LlmStageResult:
    """Counters for one LLM fallback pass."""

    videos_processed: int = 0
    videos_failed: int = 0
    codes_extracted: int = 0
    suggested_regex: int = 0
    quota_exhausted: bool = False


@dataclass
class ParseResult:
    """Outcome of the parse command."""

    success: bool
    error_code: str | None = None
    error: str | None = None
    regex: RegexStageResult = field(default_factory=RegexStageResult)
    llm: LlmStageResult = field(default_factory=LlmStageResult)

    @property
    def total_codes(self) -> int:
        return self.regex.codes_extracted + self.llm.codes_extracted


async def save_extracted_codes(
    store: ExtractionStore,
    conn: AsyncConnection,
    codes: Sequence[ExtractedCode],
    *,
    video_id: str,
    channel_name: str | None,
    found_at: datetime,
) -> int:
    """Persist codes, counting each new code once under its brand.

    The existence check runs before the upsert so a re-extracted code
    never increments its brand's ``code_count`` twice.

    Args:
        store: Extraction store.
        conn: Connection inside the caller's transaction.
        codes: Codes from either parser.
        video_id: Source video id.
        channel_name: Source channel name.
        found_at: Extraction time recorded on the codes.

    Returns:
        Number of codes that were not stored before.
    """
    new_codes = 0
    for code in codes:
        record = code.model_copy(
            update={
                "source_video_id": video_id,
                "source_channel": channel_name or UNKNOWN_CHANNEL,
                "found_at": found_at,
            }
        )
        exists = await store.code_exists(conn, record.id)
        await store.upsert_code(conn, record)
        if not exists:
            await store.upsert_brand(
                conn, record.brand_slug, record.brand_name, found_at
            )
            new_codes += 1
    return new_codes


@async_log_with_context(operation="regex_stage")
async def run_regex_stage(
    store: ExtractionStore,
    parser: CodeExtractor,
    found_at: datetime | None = None,
) -> RegexStageResult:
    """Parse every unparsed video in one transaction.

    Each video runs inside a SAVEPOINT: a failure rolls back that video
    only and leaves it unparsed so the next run retries it.

    Args:
        store: Connected extraction store.
        parser: Extractor for the regex pass.
        found_at: Timestamp for this run (defaults to now).

    Returns:
        Stage counters.

    Raises:
        StorageError: On connection-level failures; the batch is rolled back.
    """
    found_at = found_at or utc_now()
    result = RegexStageResult()

    async with store.transaction() as conn:
        videos = await store.get_unparsed_videos(conn)
        if not videos:
            log_event(
                logger,
                "regex_parse_complete",
                message="[PARSE] No unparsed videos found",
                videos_processed=0,
                codes_extracted=0,
            )
            return result

        for video in videos:
            try:
                async with conn.begin_nested():
                    extraction = await parser.extract(
                        video.description, video.video_id
                    )
                    codes = extraction.codes
                    await save_extracted_codes(
                        store,
                        conn,
                        codes,
                        video_id=video.video_id,
                        channel_name=video.channel_name,
                        found_at=found_at,
                    )
                    if codes:
                        await store.insert_parsing_log(
                            conn,
                            video.video_id,
                            video.description,
                            ParsedBy.REGEX,
                            ",".join(code.pattern_id or "" for code in codes),
                            found_at,
                        )
                    else:
                        await store.insert_parsing_log(
                            conn,
                            video.video_id,
                            video.description,
                            ParsedBy.NONE,
                            None,
                            found_at,
                        )
                    await store.mark_parsed(conn, video.video_id)
            except OperationalError:
                raise
            except Exception as error:
                result.errors += 1
                logger.error(
                    "[PARSE] Failed to parse video %s: %s",
                    video.video_id,
                    error,
                    extra={
                        "error_code": "PARSE_ERROR",
                        "video_id": video.video_id,
                    },
                )
                continue

            result.videos_processed += 1
            result.codes_extracted += len(codes)
            if not codes:
                result.failed_parses += 1

    log_event(
        logger,
        "regex_parse_complete",
        message="[PARSE] Regex parse complete",
        videos_processed=result.videos_processed,
        codes_extracted=result.codes_extracted,
        failed_parses=result.failed_parses,
        errors=result.errors,
        success_rate=result.success_rate,
    )
    return result


@async_log_with_context(operation="llm_stage")
async def run_llm_stage(
    store: ExtractionStore,
    llm_parser: LlmParser,
    found_at: datetime | None = None,
) -> LlmStageResult:
    """Run the LLM fallback on videos the regex pass could not resolve.

    At most ``get_calls_remaining()`` videos are fetched. The network call
    happens outside any transaction; each success is written in its own
    transaction. Failed videos stay at ``none`` for a later run.

    Args:
        store: Connected extraction store.
        llm_parser: Gemini parser.
        found_at: Timestamp for this run (defaults to now).

    Returns:
        Stage counters.
    """
    found_at = found_at or utc_now()
    result = LlmStageResult()

    limit = llm_parser.get_calls_remaining()
    if limit == 0:
        result.quota_exhausted = True
        log_event(
            logger,
            "llm_fallback_skipped",
            message="[LLM] Fallback skipped",
            reason="quota_exhausted",
        )
        return result

    async with store.connection() as conn:
        videos = await store.get_pending_llm_videos(conn, limit)

    if not videos:
        return result

    log_event(
        logger,
        "llm_fallback_start",
        message="[LLM] Fallback starting",
        videos_to_process=len(videos),
        quota_remaining=llm_parser.get_calls_remaining(),
    )

    for video in videos:
        if llm_parser.is_quota_exhausted():
            break

        extraction = await llm_parser.extract(
            video.description, video.video_id
        )
        if not extraction.success:
            if extraction.quota_exhausted:
                break
            result.videos_failed += 1
            logger.warning(
                "[LLM] Fallback failed for video %s: %s",
                video.video_id,
                extraction.error or extraction.reason,
                extra={
                    "error_code": "LLM_PARSE_ERROR",
                    "video_id": video.video_id,
                    "reason": extraction.reason,
                },
            )
            continue

        try:
            async with store.transaction() as conn:
                await save_extracted_codes(
                    store,
                    conn,
                    extraction.codes,
                    video_id=video.video_id,
                    channel_name=video.channel_name,
                    found_at=found_at,
                )
                await store.mark_llm_parsed(
                    conn, video.video_id, extraction.suggested_regex
                )
        except (SQLAlchemyError, ValueError) as error:
            result.videos_failed += 1
            logger.error(
                "[LLM] Failed to store results for video %s: %s",
                video.video_id,
                error,
                extra={
                    "error_code": "LLM_PARSE_ERROR",
                    "video_id": video.video_id,
                },
            )
            continue

        result.videos_processed += 1
        result.codes_extracted += len(extraction.codes)
        if extraction.suggested_regex:
            result.suggested_regex += 1

    result.quota_exhausted = llm_parser.is_quota_exhausted()
    return result


def create_llm_parser(
    settings: Settings, client: genai.Client | None = None
) -> LlmParser | None:
    """Build the Gemini parser, or None when no API key is configured."""
    if not settings.gemini_api_key:
        return None
    return LlmParser(
        settings.gemini_api_key,
        budget=QuotaBudget(settings.llm_daily_quota),
        client=client,
        model=settings.gemini_model,
        timeout=settings.request_timeout_seconds,
        default_confidence=settings.llm_default_confidence,
    )


async def run_parser(
    settings: Settings | None = None,
    *,
    skip_llm: bool = False,
    llm_client: genai.Client | None = None,
) -> ParseResult:
    """Run the regex stage, then the LLM fallback when it is needed.

    Args:
        settings: Application settings (defaults to the cached settings).
        skip_llm: Never call the LLM.
        llm_client: Optional Gemini client for the LLM calls.

    Returns:
        Parse outcome; errors are reported, not raised.
    """
    settings = settings or get_settings()
    store: ExtractionStore | None = None

    try:
        parser = RegexParser(
            settings.patterns_path, settings.brand_prefix_min_letters
        )
        store = ExtractionStore(settings)
        await store.connect()

        log_event(
            logger,
            "parse_start",
            message="[PARSE] Parse starting",
            patterns_loaded=len(parser.patterns),
        )

        found_at = utc_now()
        regex_result = await run_regex_stage(store, parser, found_at)
        outcome = ParseResult(success=True, regex=regex_result)

        if not skip_llm and regex_result.failed_parses > 0:
            outcome.llm = await _run_llm_fallback(
                store, settings, llm_client, found_at
            )

        log_event(
            logger,
            "parse_complete",
            message="[PARSE] Parse complete",
            regex_videos=regex_result.videos_processed,
            regex_codes=regex_result.codes_extracted,
            llm_videos=outcome.llm.videos_processed,
            llm_codes=outcome.llm.codes_extracted,
            total_codes=outcome.total_codes,
        )
        return outcome

    except ConfigurationError as error:
        logger.error("[PARSE] %s", error.message, extra=error.log_extra())
        return ParseResult(
            success=False, error_code=error.error_code, error=error.message
        )
    except CrowdCodesError as error:
        logger.error("[PARSE] Parse failed: %s", error, extra=error.log_extra())
        return ParseResult(
            success=False, error_code=error.error_code, error=error.message
        )
    except SQLAlchemyError as error:
        logger.error(
            "[PARSE] Parse failed: %s", error, extra={"error_code": "DB_ERROR"}
        )
        return ParseResult(
            success=False, error_code="DB_ERROR", error=str(error)
        )
    finally:
        if store is not None:
            await store.disconnect()


async def _run_llm_fallback(
    store: ExtractionStore,
    settings: Settings,
    llm_client: genai.Client | None,
    found_at: datetime,
) -> LlmStageResult:
    if not settings.gemini_api_key:
        log_event(
            logger,
            "llm_fallback_skipped",
            message="[LLM] Fallback skipped",
            reason="GEMINI_API_KEY not set",
        )
        return LlmStageResult()

    llm_result = await run_llm_stage(
        store, create_llm_parser(settings, llm_client), found_at
    )

    log_event(
        logger,
        "llm_fallback_complete",
        message="[LLM] Fallback complete",
        videos_processed=llm_result.videos_processed,
        videos_failed=llm_result.videos_failed,
        codes_extracted=llm_result.codes_extracted,
        suggested_regex=llm_result.suggested_regex,
        quota_exhausted=llm_result.quota_exhausted,
    )
    return llm_result
