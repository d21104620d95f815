"""Data models for extracted promo codes, brands and parsing logs."""

import re
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from crowd_codes.core.models.video import SOURCE_TYPE_YOUTUBE


BRAND_HINT_CAPTURE_GROUP = "$1"
LLM_PATTERN_ID = "llm-extraction"


class ParsedBy(StrEnum):
    """Which stage produced a parsing log entry."""

    REGEX = "regex"
    LLM = "llm"
    NONE = "none"


class Pattern(BaseModel):
    """An externally configured extraction rule."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    regex: str
    confidence: float = Field(ge=0.0, le=1.0)
    brand_hint: str | None = None
    compiled: re.Pattern[str] = Field(exclude=True)

    @property
    def uses_capture_group_brand(self) -> bool:
        return self.brand_hint == BRAND_HINT_CAPTURE_GROUP


class ExtractedCode(BaseModel):
    """One promo code attributed to one brand, found in one video.

    Parsers fill the identity, code, brand and confidence fields; the
    pipeline completes the provenance fields before persisting.
    """

    id: str = Field(description="Fingerprint of code, brand slug, video id")
    code: str
    brand_name: str
    brand_slug: str
    confidence: float = Field(ge=0.0, le=1.0)
    pattern_id: str | None = Field(
        default=None,
        exclude=True,
        description="Pattern id or llm-extraction marker",
    )
    source_type: str = SOURCE_TYPE_YOUTUBE
    source_channel: str | None = None
    source_video_id: str | None = None
    found_at: datetime | None = None


class Brand(BaseModel):
    """Aggregate identity for a brand slug."""

    slug: str
    name: str
    first_seen_at: datetime
    code_count: int = 0


class ParsingLogEntry(BaseModel):
    """Audit record of one parse attempt, doubling as the LLM queue."""

    id: int
    video_id: str
    description: str
    parsed_by: ParsedBy
    suggested_regex: str | None = None
    created_at: datetime


class SuggestedRegex(BaseModel):
    """A regex proposed by the LLM, kept for manual curation."""

    video_id: str
    suggested_regex: str
    created_at: datetime
