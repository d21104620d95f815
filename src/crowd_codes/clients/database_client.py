"""Database client with SQLite, PostgreSQL and Cloud SQL support."""

from pathlib import Path
from urllib.parse import unquote, urlparse

from google.cloud.sql.connector import Connector, create_async_connector
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from crowd_codes.core.config import Settings
from crowd_codes.core.errors import ConfigurationError
from crowd_codes.core.logger import get_logger


logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def sqlite_database_path(settings: Settings) -> Path | None:
    """Return the SQLite file behind the configured URL, if any."""
    if settings.cloud_sql_instance_connection_name:
        return None
    url = make_url(settings.database_url_str)
    if url.get_backend_name() != "sqlite" or not url.database:
        return None
    return Path(url.database)


def _enable_explicit_sqlite_transactions(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work on SQLite.

    The sqlite3 driver otherwise opens transactions lazily on its own and
    breaks nested transactions.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class DatabaseClient:
    """Owns the async engine (and the Cloud SQL connector when used)."""

    def __init__(
        self,
        settings: Settings,
        *,
        read_only: bool = False,
        create_if_missing: bool = False,
    ) -> None:
        """Initialize with settings.

        Args:
            settings: Application settings.
            read_only: Open the store without write access.
            create_if_missing: Create the parent directory of a SQLite file
                instead of failing when the file does not exist yet.
        """
        self._settings = settings
        self._read_only = read_only
        self._create_if_missing = create_if_missing
        self._engine: AsyncEngine | None = None
        self._connector: Connector | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def connect(self) -> AsyncEngine:
        """Create the engine for the configured backend.

        Raises:
            ConfigurationError: If the SQLite store is missing (and may not
                be created) or its directory cannot be created.
        """
        if self._engine is not None:
            return self._engine

        if self._settings.cloud_sql_instance_connection_name:
            self._engine = await self._create_cloud_sql_engine()
        elif self._settings.uses_sqlite_file:
            self._engine = self._create_sqlite_engine()
        else:
            logger.info("[DATABASE] Using direct database connection")
            self._engine = create_async_engine(
                self._settings.database_url_str, pool_pre_ping=True
            )

        return self._engine

    def _create_sqlite_engine(self) -> AsyncEngine:
        path = sqlite_database_path(self._settings)
        url = self._settings.database_url_str

        if path is not None and not path.exists():
            if not self._create_if_missing:
                msg = f"Database not found at {path}. Run init-db first."
                raise ConfigurationError(msg, details={"db_path": str(path)})
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as error:
                msg = f"Cannot create database directory {path.parent}"
                raise ConfigurationError(
                    f"{msg}: {error}", details={"db_path": str(path)}
                ) from error

        if self._read_only and path is not None:
            url = f"sqlite+aiosqlite:///file:{path}?mode=ro&uri=true"

        logger.info(
            "[DATABASE] Using SQLite store at %s%s",
            path,
            " (read-only)" if self._read_only else "",
        )
        engine = create_async_engine(
            url, connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
        )
        _enable_explicit_sqlite_transactions(engine)
        return engine

    async def _create_cloud_sql_engine(self) -> AsyncEngine:
        instance = str(self._settings.cloud_sql_instance_connection_name)
        # Cloud SQL Connector requires individual credentials (no DSN support)
        parsed = urlparse(self._settings.database_url or "")
        user = parsed.username or ""
        password = unquote(parsed.password or "")
        db = parsed.path.lstrip("/") if parsed.path else ""

        logger.info(
            "[DATABASE] Using Cloud SQL Connector for instance %s", instance
        )
        connector = await create_async_connector()
        self._connector = connector

        async def _get_conn():
            return await connector.connect_async(
                instance, "asyncpg", user=user, password=password, db=db
            )

        return create_async_engine(
            "postgresql+asyncpg://", async_creator=_get_conn
        )

    async def close(self) -> None:
        """Dispose the engine and close the connector."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
        if self._connector is not None:
            await self._connector.close_async()
            self._connector = None
