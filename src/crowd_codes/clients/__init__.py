"""Clients for external services."""

from crowd_codes.clients.database_client import DatabaseClient
from crowd_codes.clients.youtube_client import YouTubeAdapter


__all__ = [
    "DatabaseClient",
    "YouTubeAdapter",
]
