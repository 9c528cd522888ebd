"""
Database Connection Manager for pgtester

Opens administrative PostgreSQL connections with fixed-interval retry, opens
connection pools against ephemeral databases, and issues the CREATE/DROP
DATABASE statements the test lifecycle needs.
"""

import asyncio
import asyncpg
import logging
from contextlib import asynccontextmanager
from typing import Optional, AsyncGenerator
from urllib.parse import urlparse, quote, unquote

from pgtester.config.config_manager import ConfigManager

logger = logging.getLogger(__name__)

# Statements executed on ephemeral pools are logged here
sql_logger = logging.getLogger("pgtester.sql")

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS = {
    'off': None,
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'info': logging.INFO,
    'debug': logging.DEBUG,
    'trace': TRACE,
}


class DatabaseConnectionError(Exception):
    """Raised when database connection operations fail."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


def derive_db_prefix(uri: str) -> Optional[str]:
    """Return the database named in the URI path, or None when it names none."""
    path = urlparse(uri).path.lstrip('/')
    if not path:
        return None
    return unquote(path.split('/', 1)[0]) or None


def build_dsn(uri: str, database: str) -> str:
    """Rebuild ``uri`` so that it points at ``database`` on the same server."""
    parsed = urlparse(uri)
    return parsed._replace(path='/' + quote(database, safe='')).geturl()


def quote_ident(name: str) -> str:
    """Quote an SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def resolve_log_level(level: Optional[str]) -> Optional[int]:
    """
    Map a textual statement log level to a logging level.

    ``off`` disables statement logging; empty or unknown values mean ``debug``.
    """
    if not level:
        return logging.DEBUG
    key = level.strip().lower()
    if key not in LOG_LEVELS:
        logger.debug(f"Unknown statement log level '{level}', using debug")
        return logging.DEBUG
    return LOG_LEVELS[key]


class DatabaseConnectionManager:
    """
    Manages PostgreSQL connections for the ephemeral database lifecycle.

    Features:
    - Administrative connections with fixed-interval retry
    - Connection pools bound to one ephemeral database each
    - Statement logging on those pools at a configurable level
    - Proper error handling with custom exceptions
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        level: Optional[str] = "debug"
    ):
        """
        Initialize DatabaseConnectionManager.

        Args:
            config_manager: Configuration manager for database settings
            level: Level at which statements run on ephemeral pools are logged
        """
        self.config = config_manager
        self.level = level
        self.sql_log_level = resolve_log_level(level)

        # Reconnection settings
        self.max_reconnect_attempts: int = config_manager.max_retries
        self.reconnect_interval: float = config_manager.retry_interval

        # Pool settings
        self.pool_min_size: int = 1
        self.pool_max_size: int = 10

    @property
    def database_prefix(self) -> Optional[str]:
        """Database named by the base URI; prefix for generated names."""
        return derive_db_prefix(self.config.database_url)

    def get_connection_string(self, database: Optional[str] = None) -> str:
        """
        Get the connection string for ``database``, or the base URI when None.
        """
        database_url = self.config.database_url
        if database is None:
            return database_url
        return build_dsn(database_url, database)

    async def connect(
        self,
        database: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> asyncpg.Connection:
        """
        Establish a single database connection.

        Args:
            database: Database to connect to, the base URI's when None
            timeout: Connection timeout in seconds

        Returns:
            Database connection

        Raises:
            DatabaseConnectionError: If connection fails
        """
        connection_string = self.get_connection_string(database)

        try:
            connection = await asyncpg.connect(
                connection_string,
                timeout=timeout or 60
            )
        except asyncpg.InvalidPasswordError as e:
            raise DatabaseConnectionError(f"Invalid password: {e}", last_error=e) from e
        except asyncpg.InvalidCatalogNameError as e:
            raise DatabaseConnectionError(f"Database does not exist: {e}", last_error=e) from e
        except asyncpg.PostgresConnectionError as e:
            raise DatabaseConnectionError(f"PostgreSQL connection error: {e}", last_error=e) from e
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(f"Connection timeout: {e}", last_error=e) from e
        except OSError as e:
            raise DatabaseConnectionError(f"Cannot connect to host: {e}", last_error=e) from e
        except Exception as e:
            raise DatabaseConnectionError(f"Unexpected connection error: {e}", last_error=e) from e

        self._attach_query_logger(connection)
        logger.debug(f"Database connection established to {database or self.database_prefix or 'default database'}")
        return connection

    async def connect_with_retry(self, database: Optional[str] = None) -> asyncpg.Connection:
        """
        Connect to database, retrying at a fixed interval.

        Only establishing the connection is retried. With the defaults that is
        30 attempts and 29 sleeps of 10s, so about 290s before giving up.

        Returns:
            Database connection

        Raises:
            DatabaseConnectionError: If max retries exceeded
        """
        last_exception: Optional[DatabaseConnectionError] = None

        for attempt in range(self.max_reconnect_attempts):
            try:
                return await self.connect(database)
            except DatabaseConnectionError as e:
                last_exception = e
                if attempt < self.max_reconnect_attempts - 1:
                    logger.warning(
                        f"Connection attempt {attempt + 1}/{self.max_reconnect_attempts} failed, "
                        f"retrying in {self.reconnect_interval}s: {e}"
                    )
                    await asyncio.sleep(self.reconnect_interval)
                else:
                    logger.error(f"Max reconnection attempts ({self.max_reconnect_attempts}) exceeded")

        raise DatabaseConnectionError(
            f"Max reconnection attempts ({self.max_reconnect_attempts}) exceeded. "
            f"Last error: {last_exception}",
            last_error=last_exception.last_error if last_exception else None
        ) from last_exception

    @asynccontextmanager
    async def admin_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """
        Administrative connection to the base database, closed on exit.

        Raises:
            DatabaseConnectionError: If max retries exceeded
        """
        connection = await self.connect_with_retry()
        try:
            yield connection
        finally:
            await connection.close()

    async def create_database(self, conn: asyncpg.Connection, name: str) -> None:
        """Create database ``name`` through an administrative connection."""
        await conn.execute(f"CREATE DATABASE {quote_ident(name)}")
        logger.info(f"Created database {name}")

    async def drop_database(self, conn: asyncpg.Connection, name: str) -> None:
        """Drop database ``name`` through an administrative connection."""
        await conn.execute(f"DROP DATABASE IF EXISTS {quote_ident(name)}")
        logger.info(f"Dropped database {name}")

    async def create_pool(self, database: str) -> asyncpg.Pool:
        """
        Open a connection pool against ``database``.

        Raises:
            DatabaseConnectionError: If the pool cannot be opened
        """
        try:
            pool = await asyncpg.create_pool(
                self.get_connection_string(database),
                min_size=self.pool_min_size,
                max_size=self.pool_max_size,
                init=self._init_connection
            )
        except Exception as e:
            raise DatabaseConnectionError(
                f"Failed to open pool for database {database}: {e}", last_error=e
            ) from e

        logger.debug(f"Opened connection pool for database {database}")
        return pool

    def _attach_query_logger(self, conn: asyncpg.Connection) -> None:
        if self.sql_log_level is not None:
            conn.add_query_logger(self._log_query)

    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        """Attach the statement logger to every pooled connection."""
        self._attach_query_logger(conn)

    def _log_query(self, record) -> None:
        if not sql_logger.isEnabledFor(self.sql_log_level):
            return
        message = f"{record.query.strip()} (elapsed={record.elapsed:.3f}s)"
        if record.exception is not None:
            message += f" failed: {record.exception}"
        sql_logger.log(self.sql_log_level, message)
