"""
Connection handling shared by every PostgreSQL storage client.

A client runs in one of two modes:
- API mode: connections are borrowed from the process-wide pool
  (api.utils.connection_pool) passed to the constructor
- CLI mode: each get_connection() opens and closes its own connection,
  configured from the DB_* settings

Either way a `with client.get_connection()` block is one transaction:
committed on success, rolled back on any exception. psycopg errors surface
as ConnectionError; every other exception (e.g. a ValueError raised by the
client itself) propagates unchanged.
"""

from contextlib import ExitStack, contextmanager
from typing import Any, Dict, Optional, Sequence, Tuple
from core.config import DatabaseSettings, get_database_settings
import psycopg
from psycopg import Connection
from utils.logger import get_database_logger

logger = get_database_logger()


def row_to_dict(columns: Sequence[str], row: Tuple) -> Dict[str, Any]:
    """Pair a result row with the column names it was selected with."""
    return dict(zip(columns, row))


def column_list(columns: Sequence[str], alias: Optional[str] = None) -> str:
    """Render a column sequence for a SELECT clause, optionally table-qualified."""
    if alias:
        return ", ".join(f"{alias}.{c}" for c in columns)
    return ", ".join(columns)


def connection_params(settings: DatabaseSettings) -> Dict[str, Any]:
    """
    psycopg.connect keyword arguments for the configured database.

    Raises:
        ValueError: If DB_HOST, DB_USER or DB_NAME is empty
    """
    for setting in ("HOST", "USER", "NAME"):
        if not getattr(settings, setting):
            raise ValueError(f"DB_{setting} is not configured")
    return {
        "host": settings.HOST,
        "user": settings.USER,
        "password": settings.PASSWORD.get_secret_value(),
        "dbname": settings.NAME,
        "port": settings.PORT or 5432,
    }


@contextmanager
def transaction(conn: Connection, owner: str):
    """Commit conn after the block, roll back if it raises."""
    try:
        yield conn
        conn.commit()
    except psycopg.Error as e:
        conn.rollback()
        logger.error(f"{owner}: database error, transaction rolled back: {e}")
        raise ConnectionError(f"Database error: {e}") from e
    except Exception:
        conn.rollback()
        raise


class BaseStorageClient:
    """
    Base class of the storage clients.

    Args:
        connection_pool: DatabaseConnectionPool for API mode; None for CLI mode

    Raises:
        ValueError: In CLI mode, if the database settings are incomplete
    """

    def __init__(self, connection_pool=None):
        self._connection_pool = connection_pool
        self._connection_params: Optional[Dict[str, Any]] = None

        if connection_pool is not None:
            logger.debug(f"{self.__class__.__name__} using the shared connection pool")
            return

        try:
            self._connection_params = connection_params(get_database_settings())
        except Exception as e:
            logger.error(f"Failed to initialize {self.__class__.__name__}: {e}")
            raise
        self.db_host = self._connection_params["host"]
        self.db_port = self._connection_params["port"]
        self.db_name = self._connection_params["dbname"]
        logger.debug(f"{self.__class__.__name__} connecting to {self.db_host}:{self.db_port}/{self.db_name}")

    @contextmanager
    def get_connection(self):
        """
        Yield a connection wrapped in a transaction.

        Raises:
            ConnectionError: If no connection can be made or a database error occurs

        Example:
            >>> with client.get_connection() as conn:
            ...     with conn.cursor() as cur:
            ...         cur.execute("SELECT 1")
        """
        owner = self.__class__.__name__
        if self._connection_pool is not None:
            with ExitStack() as stack:
                try:
                    conn = stack.enter_context(self._connection_pool.get_connection())
                except psycopg.Error as e:
                    logger.error(f"{owner}: no pooled connection available: {e}")
                    raise ConnectionError(f"Unable to get a database connection: {e}") from e
                with transaction(conn, owner):
                    yield conn
            return

        try:
            conn = psycopg.connect(**self._connection_params)
        except psycopg.OperationalError as e:
            logger.error(f"{owner}: cannot reach {self.db_host}:{self.db_port}: {e}")
            raise ConnectionError(f"Unable to connect to database: {e}") from e

        try:
            with transaction(conn, owner):
                yield conn
        finally:
            if not conn.closed:
                conn.close()
