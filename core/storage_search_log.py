"""
Storage module for knowledge base search logging and analytics.

Every search (full-text or semantic) appends one row to search_logs. The
table uses a BIGSERIAL primary key and is append-only.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from core.schemas import PopularSearch
from core.storage_base import BaseStorageClient
from utils.logger import get_logger

logger = get_logger(__name__)

SEARCH_METHODS = ("fulltext", "semantic", "chat")


def _window_start(days: int) -> datetime:
    if days < 1:
        raise ValueError(f"days must be >= 1, got {days}")
    return datetime.now(timezone.utc) - timedelta(days=days)


class SearchLogClient(BaseStorageClient):
    """
    Storage client for search logging and search analytics.
    """

    def log_search(
        self,
        query: str,
        method: str,
        result_count: int,
        latency_ms: Optional[int] = None,
        user_id: Optional[UUID] = None,
    ) -> int:
        """
        Log a single search.

        Args:
            query: The raw search text
            method: 'fulltext', 'semantic' or 'chat'
            result_count: Number of results returned
            latency_ms: Search latency in milliseconds
            user_id: Searching user, if known

        Returns:
            The auto-generated log ID (BIGSERIAL)

        Raises:
            ValueError: If query is empty or method is unknown
            ConnectionError: If database operation fails
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")
        if method not in SEARCH_METHODS:
            raise ValueError(f"method must be one of {SEARCH_METHODS}, got '{method}'")

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO search_logs (query, method, result_count, latency_ms, user_id)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING id
                        """,
                        (query.strip(), method, result_count, latency_ms, user_id),
                    )
                    result = cur.fetchone()
                    if not result:
                        raise ConnectionError("Failed to retrieve log ID after insert")
                    logger.debug(
                        f"Search logged: '{query[:50]}' ({method}, {result_count} results, {latency_ms}ms)"
                    )
                    return result[0]

        except Exception as e:
            logger.error(f"Failed to log search: {str(e)}")
            raise

    def get_popular_queries(self, days: int = 30, limit: int = 10) -> List[PopularSearch]:
        """
        Most frequent queries in the window, normalised to lowercase.
        """
        start = _window_start(days)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT LOWER(TRIM(query)) AS normalized,
                           COUNT(*) AS search_count,
                           AVG(result_count) AS avg_results,
                           MAX(created_at) AS last_searched_at
                    FROM search_logs
                    WHERE created_at >= %s
                    GROUP BY normalized
                    ORDER BY search_count DESC, last_searched_at DESC
                    LIMIT %s
                    """,
                    (start, limit),
                )
                return [
                    PopularSearch(
                        query=row[0],
                        search_count=row[1],
                        avg_result_count=float(row[2]) if row[2] is not None else 0.0,
                        last_searched_at=row[3],
                    )
                    for row in cur.fetchall()
                ]

    def get_zero_result_queries(self, days: int = 30, limit: int = 10) -> List[PopularSearch]:
        """Queries that returned nothing, most frequent first."""
        start = _window_start(days)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT LOWER(TRIM(query)) AS normalized,
                           COUNT(*) AS search_count,
                           MAX(created_at) AS last_searched_at
                    FROM search_logs
                    WHERE created_at >= %s AND result_count = 0
                    GROUP BY normalized
                    ORDER BY search_count DESC, last_searched_at DESC
                    LIMIT %s
                    """,
                    (start, limit),
                )
                return [
                    PopularSearch(
                        query=row[0],
                        search_count=row[1],
                        avg_result_count=0.0,
                        last_searched_at=row[2],
                    )
                    for row in cur.fetchall()
                ]

    def get_method_counts(self, days: int = 30) -> Dict[str, int]:
        start = _window_start(days)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT method, COUNT(*) FROM search_logs
                    WHERE created_at >= %s GROUP BY method
                    """,
                    (start,),
                )
                return {row[0]: row[1] for row in cur.fetchall()}

    def get_average_latency(self, days: int = 30) -> Optional[float]:
        start = _window_start(days)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT AVG(latency_ms) FROM search_logs
                    WHERE created_at >= %s AND latency_ms IS NOT NULL
                    """,
                    (start,),
                )
                row = cur.fetchone()
        return round(float(row[0]), 2) if row and row[0] is not None else None

    def get_search_analytics(self, days: int = 30, limit: int = 10) -> Dict[str, Any]:
        """Everything the search analytics endpoint reports, for one window."""
        method_counts = self.get_method_counts(days)
        analytics = {
            "days": days,
            "total_searches": sum(method_counts.values()),
            "by_method": method_counts,
            "avg_latency_ms": self.get_average_latency(days),
            "popular_queries": self.get_popular_queries(days, limit),
            "zero_result_queries": self.get_zero_result_queries(days, limit),
        }
        logger.info(
            f"Search analytics ({days}d): {analytics['total_searches']} searches"
        )
        return analytics
