"""Data models for scraped videos."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field


SOURCE_TYPE_YOUTUBE = "youtube"
UNKNOWN_CHANNEL = "Unknown Channel"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class InternalVideo(BaseModel):
    """A video normalized from an external video source."""

    video_id: str = Field(description="External unique identifier")
    channel_name: str = Field(default=UNKNOWN_CHANNEL)
    description: str = Field(default="", description="Full description")
    published_at: datetime = Field(default_factory=utc_now)
    source_type: str = Field(default=SOURCE_TYPE_YOUTUBE)


class RawVideo(InternalVideo):
    """A scraped video as persisted in the raw_videos table."""

    scraped_at: datetime
    parsed: bool = False


class PendingVideo(BaseModel):
    """A video whose regex parse found nothing, queued for the LLM."""

    video_id: str
    description: str
    channel_name: str
