"""Database layer with SQLAlchemy table definitions."""

from crowd_codes.db.tables import (
    brands,
    codes,
    crowd_codes_metadata,
    parsing_logs,
    raw_videos,
)


__all__ = [
    "brands",
    "codes",
    "crowd_codes_metadata",
    "parsing_logs",
    "raw_videos",
]
