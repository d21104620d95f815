"""Logfire-backed logging helpers for the Crowd Codes pipeline.

Logging is NOT configured at import time. Entry points call
`setup_logging()` once; library modules only call `get_logger(__name__)`.
Pipeline milestones and failures are emitted through `log_event()` so that
every record carries machine-readable attributes (event name, error code,
video id, keyword, ...) rather than prose alone.
"""

from __future__ import annotations

import logging
import os
import traceback
from collections.abc import Awaitable, Callable, Mapping, MutableMapping
from functools import wraps
from types import CodeType
from typing import Any, ParamSpec, TypeVar

import logfire
from pydantic import BaseModel, ConfigDict


__all__ = [
    "ENVIRONMENT",
    "Environment",
    "async_log_with_context",
    "get_logger",
    "log_event",
    "setup_logging",
]

P = ParamSpec("P")
R = TypeVar("R")

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "aiosqlite",
    "asyncio",
    "google_genai",
)


class _LoggingState:
    """Track whether logging has been configured (avoids global statement)."""

    configured: bool = False


_logging_state = _LoggingState()


class Environment(BaseModel):
    """Snapshot of runtime environment for logging configuration."""

    is_cloud_run: bool
    log_level: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str | None]) -> Environment:
        """Build an environment snapshot from os.environ.

        Cloud Run Jobs set ``CLOUD_RUN_JOB``; services set ``K_SERVICE``.
        """
        is_cloud_run = bool(
            environ.get("K_SERVICE") or environ.get("CLOUD_RUN_JOB")
        )
        return cls(
            is_cloud_run=is_cloud_run,
            log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        )


def setup_logging(environment: Environment | None = None) -> None:
    """Route stdlib logging through Logfire, console only by default.

    Safe to call multiple times; subsequent calls are no-ops.

    Args:
        environment: Optional environment configuration. If not provided,
            uses the module-level ENVIRONMENT singleton.
    """
    if _logging_state.configured:
        return

    if environment is None:
        environment = ENVIRONMENT

    os.environ.setdefault("LOGFIRE_SEND_TO_LOGFIRE", "false")
    os.environ.setdefault("LOGFIRE_CONSOLE", "true")
    # Cloud Logging captures stdout verbatim; ANSI colors garble it.
    logfire.configure(
        console=logfire.ConsoleOptions(
            colors="never" if environment.is_cloud_run else "auto"
        )
    )

    root_logger = logging.getLogger()

    has_logfire_handler = any(
        isinstance(h, logfire.LogfireLoggingHandler)
        for h in root_logger.handlers
    )
    if not has_logfire_handler:
        root_logger.addHandler(logfire.LogfireLoggingHandler())

    root_logger.setLevel(_resolve_log_level(environment.log_level))

    # API keys travel in request URLs and headers.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_state.configured = True


def log_event(
    logger: logging.Logger | logging.LoggerAdapter[logging.Logger],
    event: str,
    *,
    level: int = logging.INFO,
    message: str | None = None,
    **fields: Any,
) -> None:
    """Emit one structured record for a pipeline milestone or failure.

    Args:
        logger: Logger to emit on.
        event: Machine-readable event name (e.g., ``scrape_complete``).
        level: Logging level.
        message: Optional human-readable prefix; defaults to the event name.
        **fields: Structured attributes attached to the record.
    """
    text = message or event
    if fields:
        rendered = ", ".join(f"{key}=%s" for key in fields)
        logger.log(
            level,
            f"{text} ({rendered})",
            *fields.values(),
            extra={"event": event, **fields},
        )
    else:
        logger.log(level, text, extra={"event": event})


class _ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that keeps per-call ``extra`` next to its own context."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def _build_logger_adapter(
    func: Callable[..., Any], context: dict[str, Any]
) -> logging.LoggerAdapter[logging.Logger]:
    module_name = getattr(func, "__module__", "unknown")
    func_name = getattr(func, "__name__", "unknown")
    adapter_context = {
        "function": func_name,
        "context": context,
    }
    if "operation" in context:
        adapter_context["operation"] = context["operation"]
    return _ContextAdapter(logging.getLogger(module_name), adapter_context)


def _expects_logger_arg(func: Callable[..., Any]) -> bool:
    code_object = getattr(func, "__code__", None)
    if not isinstance(code_object, CodeType):
        return False
    names = code_object.co_varnames[
        : code_object.co_argcount + code_object.co_kwonlyargcount
    ]
    return "logger" in names


def _error_payload(
    func: Callable[..., Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    error: BaseException,
) -> dict[str, Any]:
    filtered_kwargs = {
        key: value for key, value in kwargs.items() if key != "logger"
    }
    func_name = getattr(func, "__name__", "unknown")
    return {
        "error": str(error),
        "error_type": type(error).__name__,
        "error_code": getattr(error, "error_code", "UNEXPECTED_ERROR"),
        "error_details": {
            "traceback": traceback.format_exc(),
            "args": str(args),
            "kwargs": str(filtered_kwargs),
            "function": func_name,
            "module": getattr(func, "__module__", "unknown"),
        },
    }


def async_log_with_context(
    **context: Any,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Inject shared logging context into a coroutine and trace its failures.

    A failure is recorded at DEBUG with the full structured payload and
    re-raised; the caller that handles it emits the single ERROR record.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        expects_logger = _expects_logger_arg(func)

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            logger_adapter = _build_logger_adapter(func, context)
            call_kwargs = dict(kwargs)
            if expects_logger:
                call_kwargs["logger"] = logger_adapter
            try:
                return await func(*args, **call_kwargs)
            except Exception as error:
                payload = _error_payload(func, args, call_kwargs, error)
                payload["error_details"]["operation"] = context.get(
                    "operation", "unknown"
                )
                func_name = getattr(func, "__name__", "unknown")
                logger_adapter.debug(
                    "Error in %s: %s", func_name, error, extra=payload
                )
                raise

        return wrapper

    return decorator


def _resolve_log_level(level_name: str) -> int:
    """Translate environment log level names into logging constants."""
    numeric_level = getattr(logging, level_name.upper(), None)
    if isinstance(numeric_level, int):
        return numeric_level
    return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return a standard logger for the given module name."""
    return logging.getLogger(name)


ENVIRONMENT: Environment = Environment.from_environ(os.environ)

logging.getLogger("crowd_codes").addHandler(logging.NullHandler())
