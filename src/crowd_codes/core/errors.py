"""Exception hierarchy for the ingestion and extraction pipeline.

Every exception carries a machine-readable ``error_code`` and a ``details``
mapping so failures can be logged as structured records and mapped to
process exit codes by the entry point.
"""

from __future__ import annotations

from typing import Any


class CrowdCodesError(Exception):
    """Base exception for all pipeline errors."""

    default_code = "ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def log_extra(self) -> dict[str, Any]:
        """Return fields suitable for ``logging``'s ``extra`` argument."""
        return {"error_code": self.error_code, **self.details}


class ConfigurationError(CrowdCodesError):
    """Missing credential, missing store or malformed pattern file."""

    default_code = "CONFIG_ERROR"


class QuotaExceededError(CrowdCodesError):
    """A call was refused because it would exceed the daily quota."""

    default_code = "QUOTA_EXCEEDED"

    def __init__(
        self,
        message: str,
        *,
        used: int = 0,
        cost: int = 0,
        ceiling: int = 0,
        **kwargs: Any,
    ) -> None:
        self.used = used
        self.cost = cost
        self.ceiling = ceiling
        super().__init__(message, **kwargs)


class UpstreamAPIError(CrowdCodesError):
    """An external API answered with a non-success status."""

    default_code = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, **kwargs)


class UpstreamTimeoutError(CrowdCodesError):
    """An outbound request did not complete within its timeout."""

    default_code = "TIMEOUT"


class ResponseParseError(CrowdCodesError):
    """A response body or model output could not be decoded."""

    default_code = "PARSE_ERROR"


class StorageError(CrowdCodesError):
    """Unexpected persistence failure; aborts the current batch."""

    default_code = "DB_ERROR"
