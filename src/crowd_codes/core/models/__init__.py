"""Data models for Crowd Codes."""

from crowd_codes.core.models.export import (
    ExportedCode,
    ExportMeta,
    ExportSnapshot,
)
from crowd_codes.core.models.extraction import (
    BRAND_HINT_CAPTURE_GROUP,
    LLM_PATTERN_ID,
    Brand,
    ExtractedCode,
    ParsedBy,
    ParsingLogEntry,
    Pattern,
    SuggestedRegex,
)
from crowd_codes.core.models.video import (
    SOURCE_TYPE_YOUTUBE,
    UNKNOWN_CHANNEL,
    InternalVideo,
    PendingVideo,
    RawVideo,
    utc_now,
)


__all__ = [
    "BRAND_HINT_CAPTURE_GROUP",
    "LLM_PATTERN_ID",
    "SOURCE_TYPE_YOUTUBE",
    "UNKNOWN_CHANNEL",
    "Brand",
    "ExportMeta",
    "ExportSnapshot",
    "ExportedCode",
    "ExtractedCode",
    "InternalVideo",
    "ParsedBy",
    "ParsingLogEntry",
    "Pattern",
    "PendingVideo",
    "RawVideo",
    "SuggestedRegex",
    "utc_now",
]
