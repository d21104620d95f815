"""YouTube Data API v3 adapter returning normalized video models."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from crowd_codes.core.errors import (
    ConfigurationError,
    CrowdCodesError,
    QuotaExceededError,
    UpstreamAPIError,
    UpstreamTimeoutError,
)
from crowd_codes.core.logger import get_logger, log_event
from crowd_codes.core.models import (
    SOURCE_TYPE_YOUTUBE,
    UNKNOWN_CHANNEL,
    InternalVideo,
    utc_now,
)
from crowd_codes.core.quota import QuotaBudget


logger = get_logger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
SEARCH_QUOTA_COST = 100
VIDEO_DETAILS_QUOTA_COST = 1
DAILY_QUOTA_LIMIT = 5000
FETCH_TIMEOUT_SECONDS = 30.0


@dataclass
class SearchOptions:
    """Options for a keyword search."""

    published_after: datetime | None = None
    max_results: int = 50
    region_code: str = "FR"
    language: str = "fr"


@dataclass
class SearchResult:
    """Raw search response reduced to ids and items."""

    video_ids: list[str] = field(default_factory=list)
    items: list[dict[str, Any]] = field(default_factory=list)


def _format_rfc3339(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class YouTubeAdapter:
    """Adapter turning YouTube API responses into InternalVideo models."""

    def __init__(
        self,
        api_key: str,
        budget: QuotaBudget | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        base_url: str = YOUTUBE_API_BASE,
    ) -> None:
        """Initialize the adapter.

        Args:
            api_key: YouTube Data API v3 key.
            budget: Quota budget for this run (default 5000 units).
            client: Optional shared HTTP client (tests inject a mock).
            timeout: Per-request timeout in seconds.
            base_url: API base URL.

        Raises:
            ConfigurationError: If the API key is missing or blank.
        """
        if not api_key or not api_key.strip():
            raise ConfigurationError("YOUTUBE_API_KEY is required")
        self._api_key = api_key
        self._budget = budget or QuotaBudget(DAILY_QUOTA_LIMIT)
        self._client = client
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")

    @property
    def budget(self) -> QuotaBudget:
        return self._budget

    @property
    def quota_used(self) -> int:
        """Quota units consumed by this adapter instance."""
        return self._budget.used

    def _reserve(self, cost: int, operation: str) -> None:
        if not self._budget.try_reserve(cost):
            msg = f"Quota exceeded: cannot perform {operation}"
            raise QuotaExceededError(
                msg,
                used=self._budget.used,
                cost=cost,
                ceiling=self._budget.ceiling,
                details={"operation": operation},
            )

    async def _get_json(
        self, path: str, params: dict[str, str], operation: str
    ) -> dict[str, Any]:
        """Issue one time-bounded GET and decode the JSON body."""
        url = f"{self._base_url}/{path}"
        params = {**params, "key": self._api_key}
        try:
            if self._client is not None:
                response = await self._client.get(
                    url, params=params, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, params=params)
        except httpx.TimeoutException as error:
            msg = f"YouTube API {operation} timed out"
            raise UpstreamTimeoutError(
                msg, details={"operation": operation}
            ) from error

        if not response.is_success:
            try:
                upstream = response.json().get("error", {}).get("message")
            except (ValueError, AttributeError):
                upstream = None
            message = upstream or "Unknown error"
            raise UpstreamAPIError(
                f"YouTube API {operation} failed: "
                f"{response.status_code} - {message}",
                status_code=response.status_code,
                response_body=response.text,
                details={"operation": operation},
            )

        try:
            return response.json()
        except ValueError as error:
            msg = f"YouTube API {operation} returned invalid JSON"
            raise UpstreamAPIError(
                msg,
                status_code=response.status_code,
                response_body=response.text,
            ) from error

    @staticmethod
    def normalize_video_item(item: Any) -> InternalVideo | None:
        """Normalize a search or videos item.

        Args:
            item: A YouTube API item; search results carry ``id.videoId``,
                video details carry ``id`` as a string.

        Returns:
            Normalized video, or None when the item has no snippet or id.
        """
        if not isinstance(item, dict) or not item.get("snippet"):
            return None

        raw_id = item.get("id")
        video_id = raw_id.get("videoId") if isinstance(raw_id, dict) else raw_id
        if not video_id or not isinstance(video_id, str):
            return None

        snippet = item["snippet"]
        try:
            return InternalVideo(
                video_id=video_id,
                channel_name=snippet.get("channelTitle") or UNKNOWN_CHANNEL,
                description=snippet.get("description") or "",
                published_at=snippet.get("publishedAt") or utc_now(),
                source_type=SOURCE_TYPE_YOUTUBE,
            )
        except ValidationError:
            logger.warning(
                "[SCRAPE] Dropping video %s with malformed snippet",
                video_id,
                extra={"error_code": "NORMALIZE_ERROR", "video_id": video_id},
            )
            return None

    async def search_videos(
        self, keyword: str, options: SearchOptions | None = None
    ) -> SearchResult:
        """Search videos matching a keyword (100 quota units).

        Raises:
            QuotaExceededError: Before any request if the search would
                exceed the budget.
            UpstreamAPIError: On a non-success response.
            UpstreamTimeoutError: If the request times out.
        """
        options = options or SearchOptions()
        self._reserve(SEARCH_QUOTA_COST, "search")

        params = {
            "part": "snippet",
            "q": keyword,
            "type": "video",
            "regionCode": options.region_code,
            "relevanceLanguage": options.language,
            "maxResults": str(options.max_results),
        }
        if options.published_after is not None:
            params["publishedAfter"] = _format_rfc3339(options.published_after)

        data = await self._get_json("search", params, "search")
        items = [item for item in data.get("items") or [] if item]
        video_ids = [
            item["id"]["videoId"]
            for item in items
            if isinstance(item.get("id"), dict) and item["id"].get("videoId")
        ]
        return SearchResult(video_ids=video_ids, items=items)

    async def get_video_details(
        self, video_ids: Sequence[str]
    ) -> list[InternalVideo]:
        """Fetch full descriptions for a batch of ids (1 unit per id)."""
        if not video_ids:
            return []

        self._reserve(
            len(video_ids) * VIDEO_DETAILS_QUOTA_COST, "video details"
        )
        params = {"part": "snippet", "id": ",".join(video_ids)}
        data = await self._get_json("videos", params, "videos")

        videos = []
        for item in data.get("items") or []:
            video = self.normalize_video_item(item)
            if video is not None:
                videos.append(video)
        return videos

    async def fetch_videos(
        self,
        keywords: Sequence[str],
        options: SearchOptions | None = None,
    ) -> list[InternalVideo]:
        """Fetch videos for each keyword, deduplicated by video id.

        Stops early (without failing) once the budget cannot afford another
        search. A keyword whose search or details call fails is logged and
        skipped.

        Args:
            keywords: Keywords searched in order.
            options: Search options shared by all keywords.

        Returns:
            Unique videos in first-seen order.
        """
        all_videos: dict[str, InternalVideo] = {}

        for keyword in keywords:
            if not self._budget.can_afford(SEARCH_QUOTA_COST):
                log_event(
                    logger,
                    "quota_limit_reached",
                    message="[SCRAPE] Quota limit reached, stopping",
                    quota_used=self._budget.used,
                    limit=self._budget.ceiling,
                    skipped_keyword=keyword,
                )
                break

            try:
                search = await self.search_videos(keyword, options)
                if search.video_ids:
                    details = await self.get_video_details(search.video_ids)
                    for video in details:
                        all_videos.setdefault(video.video_id, video)
            except QuotaExceededError as error:
                log_event(
                    logger,
                    "quota_limit_reached",
                    message="[SCRAPE] Quota limit reached, stopping",
                    quota_used=self._budget.used,
                    limit=self._budget.ceiling,
                    skipped_keyword=keyword,
                    operation=error.details.get("operation"),
                )
                break
            except (CrowdCodesError, httpx.HTTPError) as error:
                logger.error(
                    "[SCRAPE] Error searching keyword '%s': %s",
                    keyword,
                    error,
                    extra={
                        "error_code": "SEARCH_ERROR",
                        "keyword": keyword,
                        "upstream_code": getattr(
                            error, "error_code", type(error).__name__
                        ),
                        "status_code": getattr(error, "status_code", None),
                    },
                )

        return list(all_videos.values())
