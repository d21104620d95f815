"""Common result envelope and capability shared by both parsers."""

from dataclasses import dataclass, field
from typing import Protocol

from crowd_codes.core.models import ExtractedCode


REASON_QUOTA_EXHAUSTED = "quota_exhausted"
REASON_EMPTY_DESCRIPTION = "empty_description"
REASON_TIMEOUT = "timeout"
REASON_API_ERROR = "api_error"
REASON_PARSE_ERROR = "parse_error"
REASON_ERROR = "error"


@dataclass
class ExtractionResult:
    """Outcome of one extraction attempt on one description."""

    success: bool
    codes: list[ExtractedCode] = field(default_factory=list)
    suggested_regex: str | None = None
    reasoning: str = ""
    reason: str | None = None
    error: str | None = None

    @classmethod
    def failure(
        cls, reason: str, error: str | None = None
    ) -> "ExtractionResult":
        """Build a failed result carrying a machine-readable reason."""
        return cls(success=False, reason=reason, error=error)

    @property
    def quota_exhausted(self) -> bool:
        return self.reason == REASON_QUOTA_EXHAUSTED


class CodeExtractor(Protocol):
    """Anything that turns a description into extracted codes."""

    async def extract(
        self, description: str | None, video_id: str
    ) -> ExtractionResult: ...
