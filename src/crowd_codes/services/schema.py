"""Schema initialization for the extraction store."""

from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from crowd_codes.core.config import Settings, get_settings
from crowd_codes.core.errors import ConfigurationError, StorageError
from crowd_codes.core.logger import get_logger, log_event
from crowd_codes.db.tables import crowd_codes_metadata
from crowd_codes.repositories.extraction_repository import ExtractionStore


logger = get_logger(__name__)

_PERMISSION_MARKERS = ("unable to open database", "readonly database")


@dataclass
class InitResult:
    """Outcome of the init-db command."""

    success: bool
    tables: list[str] = field(default_factory=list)
    indexes: list[str] = field(default_factory=list)
    error_code: str | None = None
    error: str | None = None


def _is_permission_problem(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _PERMISSION_MARKERS)


async def initialize_database(settings: Settings | None = None) -> InitResult:
    """Create every table and index that does not exist yet.

    Safe to run repeatedly. For a SQLite store the parent directory is
    created first.

    Args:
        settings: Application settings (defaults to the cached settings).

    Returns:
        Init outcome; permission problems map to ``CONFIG_ERROR``, other
        failures to ``DB_ERROR``.
    """
    settings = settings or get_settings()
    store = ExtractionStore(settings, create_if_missing=True)

    try:
        await store.connect()
        await store.initialize_schema()
    except ConfigurationError as error:
        logger.error("[DATABASE] %s", error.message, extra=error.log_extra())
        return InitResult(
            success=False, error_code=error.error_code, error=error.message
        )
    except (StorageError, SQLAlchemyError) as error:
        error_code = (
            "CONFIG_ERROR" if _is_permission_problem(error) else "DB_ERROR"
        )
        logger.error(
            "[DATABASE] Schema initialization failed: %s",
            error,
            extra={"error_code": error_code},
        )
        return InitResult(
            success=False, error_code=error_code, error=str(error)
        )
    finally:
        await store.disconnect()

    tables = [table.name for table in crowd_codes_metadata.sorted_tables]
    indexes = sorted(
        index.name
        for table in crowd_codes_metadata.sorted_tables
        for index in table.indexes
    )
    log_event(
        logger,
        "db_init_complete",
        message="[DATABASE] Schema ready",
        tables=tables,
        indexes=indexes,
    )
    return InitResult(success=True, tables=tables, indexes=indexes)
