"""Tests for the YouTube adapter (HTTP mocked with httpx.MockTransport)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import httpx
import pytest

from crowd_codes.clients.youtube_client import (
    SearchOptions,
    YouTubeAdapter,
)
from crowd_codes.core.errors import (
    ConfigurationError,
    QuotaExceededError,
    UpstreamAPIError,
    UpstreamTimeoutError,
)
from crowd_codes.core.quota import QuotaBudget


def _search_item(video_id: str) -> dict:
    return {"id": {"kind": "youtube#video", "videoId": video_id}, "snippet": {}}


def _details_item(
    video_id: str, description: str = "", channel: str | None = "Chaine"
) -> dict:
    snippet = {
        "description": description,
        "publishedAt": "2024-05-01T10:00:00Z",
    }
    if channel is not None:
        snippet["channelTitle"] = channel
    return {"id": video_id, "snippet": snippet}


class _FakeYouTube:
    """Routes search/videos requests to canned responses."""

    def __init__(self, searches: dict[str, list[str]], details: dict) -> None:
        self._searches = searches
        self._details = details
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/search"):
            ids = self._searches.get(request.url.params["q"], [])
            return httpx.Response(
                200, json={"items": [_search_item(i) for i in ids]}
            )
        ids = request.url.params["id"].split(",")
        items = [self._details[i] for i in ids if i in self._details]
        return httpx.Response(200, json={"items": items})


def _adapter(handler, ceiling: int = 5000) -> YouTubeAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return YouTubeAdapter("key", budget=QuotaBudget(ceiling), client=client)


def test_blank_api_key_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="YOUTUBE_API_KEY"):
        YouTubeAdapter("  ")


@pytest.mark.asyncio
async def test_search_videos_sends_french_params_and_costs_100() -> None:
    fake = _FakeYouTube({"code promo": ["a", "b"]}, {})
    adapter = _adapter(fake)
    published_after = datetime(2024, 5, 1, tzinfo=UTC)

    result = await adapter.search_videos(
        "code promo", SearchOptions(published_after=published_after)
    )

    assert result.video_ids == ["a", "b"]
    assert adapter.quota_used == 100
    params = fake.requests[0].url.params
    assert params["part"] == "snippet"
    assert params["type"] == "video"
    assert params["regionCode"] == "FR"
    assert params["relevanceLanguage"] == "fr"
    assert params["maxResults"] == "50"
    assert params["publishedAfter"] == "2024-05-01T00:00:00Z"
    assert params["key"] == "key"


@pytest.mark.asyncio
async def test_get_video_details_costs_one_unit_per_id() -> None:
    fake = _FakeYouTube(
        {},
        {
            "a": _details_item("a", "Code: NIKE15"),
            "b": _details_item("b", channel=None),
        },
    )
    adapter = _adapter(fake)

    videos = await adapter.get_video_details(["a", "b", "missing"])

    assert adapter.quota_used == 3
    assert [video.video_id for video in videos] == ["a", "b"]
    assert videos[0].description == "Code: NIKE15"
    assert videos[0].published_at == datetime(2024, 5, 1, 10, tzinfo=UTC)
    assert videos[1].channel_name == "Unknown Channel"
    assert fake.requests[0].url.params["id"] == "a,b,missing"


@pytest.mark.asyncio
async def test_get_video_details_empty_input_is_free() -> None:
    fake = _FakeYouTube({}, {})
    adapter = _adapter(fake)

    assert await adapter.get_video_details([]) == []
    assert adapter.quota_used == 0
    assert fake.requests == []


def test_normalize_drops_items_without_snippet_or_id() -> None:
    assert YouTubeAdapter.normalize_video_item({"id": "a"}) is None
    assert YouTubeAdapter.normalize_video_item({"snippet": {"x": 1}}) is None
    assert YouTubeAdapter.normalize_video_item(None) is None

    video = YouTubeAdapter.normalize_video_item(
        {"id": {"videoId": "v1"}, "snippet": {"title": "t"}}
    )
    assert video is not None
    assert video.video_id == "v1"
    assert video.description == ""
    assert video.channel_name == "Unknown Channel"
    assert video.published_at.tzinfo is not None


@pytest.mark.asyncio
async def test_error_status_raises_upstream_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403, json={"error": {"message": "quotaExceeded"}}
        )

    adapter = _adapter(handler)

    with pytest.raises(UpstreamAPIError, match="403 - quotaExceeded") as info:
        await adapter.search_videos("code promo")

    assert info.value.status_code == 403


@pytest.mark.asyncio
async def test_error_without_message_uses_unknown_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops")

    adapter = _adapter(handler)

    with pytest.raises(UpstreamAPIError, match="500 - Unknown error"):
        await adapter.search_videos("code promo")


@pytest.mark.asyncio
async def test_timeout_raises_upstream_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    adapter = _adapter(handler)

    with pytest.raises(UpstreamTimeoutError):
        await adapter.search_videos("code promo")


@pytest.mark.asyncio
async def test_search_refused_before_request_when_over_budget() -> None:
    fake = _FakeYouTube({}, {})
    adapter = _adapter(fake, ceiling=99)

    with pytest.raises(QuotaExceededError):
        await adapter.search_videos("code promo")

    assert fake.requests == []
    assert adapter.quota_used == 0


@pytest.mark.asyncio
async def test_fetch_videos_deduplicates_first_occurrence_wins() -> None:
    fake = _FakeYouTube(
        {"code promo": ["a", "b"], "discount": ["b", "c"]},
        {
            "a": _details_item("a", "first a"),
            "b": _details_item("b", "first b"),
            "c": _details_item("c", "first c"),
        },
    )
    adapter = _adapter(fake)

    videos = await adapter.fetch_videos(["code promo", "discount"])

    assert [video.video_id for video in videos] == ["a", "b", "c"]
    assert adapter.quota_used == 100 + 2 + 100 + 2


@pytest.mark.asyncio
async def test_fetch_videos_stops_gracefully_at_quota(caplog) -> None:
    fake = _FakeYouTube(
        {"code promo": ["a", "b"], "réduction": ["c"]},
        {vid: _details_item(vid, f"desc {vid}") for vid in ("a", "b", "c")},
    )
    adapter = _adapter(fake, ceiling=250)

    with caplog.at_level(logging.INFO):
        videos = await adapter.fetch_videos(
            ["code promo", "réduction", "discount", "promo code"]
        )

    assert [video.video_id for video in videos] == ["a", "b", "c"]
    assert adapter.quota_used == 203
    searched = [
        request.url.params["q"]
        for request in fake.requests
        if request.url.path.endswith("/search")
    ]
    assert searched == ["code promo", "réduction"]
    stop = [r for r in caplog.records if r.__dict__.get("event")]
    assert stop[-1].event == "quota_limit_reached"
    assert stop[-1].skipped_keyword == "discount"
    assert stop[-1].quota_used == 203


@pytest.mark.asyncio
async def test_fetch_videos_skips_failing_keyword(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("q") == "broken":
            return httpx.Response(500, json={"error": {"message": "boom"}})
        if request.url.path.endswith("/search"):
            return httpx.Response(200, json={"items": [_search_item("ok")]})
        return httpx.Response(200, json={"items": [_details_item("ok")]})

    adapter = _adapter(handler)

    with caplog.at_level(logging.ERROR):
        videos = await adapter.fetch_videos(["broken", "code promo"])

    assert [video.video_id for video in videos] == ["ok"]
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert errors[0].error_code == "SEARCH_ERROR"
    assert errors[0].keyword == "broken"
