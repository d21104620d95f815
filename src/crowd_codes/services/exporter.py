"""Export stage: publish the stored codes as a read-only JSON snapshot."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from crowd_codes.core.config import Settings, get_settings
from crowd_codes.core.errors import ConfigurationError, StorageError
from crowd_codes.core.logger import get_logger, log_event
from crowd_codes.core.models import ExportMeta, ExportSnapshot, utc_now
from crowd_codes.repositories.extraction_repository import ExtractionStore


logger = get_logger(__name__)


@dataclass
class ExportResult:
    """Outcome of the export command."""

    success: bool
    total_codes: int = 0
    total_brands: int = 0
    output_path: Path | None = None
    error_code: str | None = None
    error: str | None = None


def write_snapshot(snapshot: ExportSnapshot, output_path: Path) -> None:
    """Write the snapshot to a temp file, then atomically replace the target.

    Raises:
        OSError: If the directory or file cannot be written.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=output_path.parent, prefix=f".{output_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(snapshot.model_dump_json(indent=2))
        os.replace(tmp_name, output_path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


async def run_export(
    settings: Settings | None = None,
    output_path: Path | str | None = None,
) -> ExportResult:
    """Export all codes, newest first, with snapshot metadata.

    The store is opened read-only and never modified.

    Args:
        settings: Application settings (defaults to the cached settings).
        output_path: Target file (defaults to ``export_output_path``).

    Returns:
        Export outcome; errors are reported, not raised.
    """
    settings = settings or get_settings()
    target = Path(output_path or settings.export_output_path)
    store = ExtractionStore(settings, read_only=True)

    try:
        await store.connect()
        async with store.connection() as conn:
            codes = await store.get_codes_for_export(conn)
            total_brands = await store.count_brands(conn)
    except ConfigurationError as error:
        logger.error("[EXPORT] %s", error.message, extra=error.log_extra())
        return ExportResult(
            success=False, error_code=error.error_code, error=error.message
        )
    except (StorageError, SQLAlchemyError) as error:
        logger.error(
            "[EXPORT] Failed to read store: %s",
            error,
            extra={"error_code": "DB_READ_ERROR"},
        )
        return ExportResult(
            success=False, error_code="DB_READ_ERROR", error=str(error)
        )
    finally:
        await store.disconnect()

    snapshot = ExportSnapshot(
        meta=ExportMeta(
            generated_at=utc_now(),
            total_codes=len(codes),
            total_brands=total_brands,
        ),
        codes=codes,
    )

    try:
        write_snapshot(snapshot, target)
    except OSError as error:
        logger.error(
            "[EXPORT] Failed to write %s: %s",
            target,
            error,
            extra={"error_code": "WRITE_ERROR", "output_path": str(target)},
        )
        return ExportResult(
            success=False, error_code="WRITE_ERROR", error=str(error)
        )

    log_event(
        logger,
        "export_complete",
        message="[EXPORT] Export complete",
        total_codes=len(codes),
        total_brands=total_brands,
        output_path=str(target),
    )
    return ExportResult(
        success=True,
        total_codes=len(codes),
        total_brands=total_brands,
        output_path=target,
    )
