"""
The API's database connection pool.

One psycopg_pool.ConnectionPool per process, opened in the lifespan and
handed to every storage client created for a request.
"""

from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool
from core.config import get_database_settings
from core.storage_base import connection_params
from typing import Optional
from utils.logger import get_database_logger

logger = get_database_logger()


class DatabaseConnectionPool:
    """
    Args:
        min_size: Connections kept open (API_POOL_MIN_SIZE)
        max_size: Upper bound on open connections (API_POOL_MAX_SIZE)
        timeout: Seconds a request waits for a connection before PoolTimeout

    Raises:
        ValueError: If the DB_* settings are incomplete
    """

    def __init__(self, min_size: int = 5, max_size: int = 20, timeout: float = 30.0):
        params = connection_params(get_database_settings())
        self.pool = ConnectionPool(
            conninfo=make_conninfo(**params),
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            open=True,
        )
        logger.info(
            f"Connection pool open on {params['host']}:{params['port']}/{params['dbname']} "
            f"({min_size}-{max_size} connections, {timeout}s timeout)"
        )

    def get_connection(self):
        return self.pool.connection()

    def close(self):
        self.pool.close()
        logger.info("Connection pool closed")

    def get_stats(self) -> dict:
        """
        Size, idle connections and queued requests, as reported on /health/.

        Returns {"error": ...} if the pool cannot report.
        """
        try:
            stats = self.pool.get_stats()
        except Exception as e:
            logger.error(f"Failed to get pool stats: {e}")
            return {"error": str(e)}
        return {key: stats.get(key, 0) for key in ("pool_size", "pool_available", "requests_waiting")}


_pool: Optional[DatabaseConnectionPool] = None


def get_connection_pool(min_conn: int = 5, max_conn: int = 20, timeout: float = 30.0) -> DatabaseConnectionPool:
    """Return the process-wide pool, opening it on first call."""
    global _pool
    if _pool is None:
        _pool = DatabaseConnectionPool(min_size=min_conn, max_size=max_conn, timeout=timeout)
    return _pool


def close_connection_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.close()
        _pool = None
