"""
Vector storage module for knowledge base embeddings in PostgreSQL with pgvector.

Embeddings live in the `embeddings` table. Similarity search goes through the
`match_embeddings` SQL function, which ranks rows by cosine similarity
(1 - cosine distance) and filters them by a threshold.
"""

from typing import List, Optional, Set
from uuid import UUID

from core.schemas import EmbeddingDocument, SearchResult
from core.storage_base import BaseStorageClient
from utils.logger import get_logger, PerformanceLogger

logger = get_logger(__name__)


class EmbeddingStorage(BaseStorageClient):
    """
    Storage client for the embeddings table.

    Validates every vector against the configured dimension before it is
    written or used as a query.
    """

    def __init__(self, embedding_dim: int = 1536, connection_pool=None):
        """
        Initialize embedding storage.

        Args:
            embedding_dim: Expected dimension of embeddings (1536 for text-embedding-3-small)
            connection_pool: Optional DatabaseConnectionPool instance for API mode
        """
        super().__init__(connection_pool=connection_pool)
        if embedding_dim <= 0:
            raise ValueError("embedding_dim must be a positive integer")
        self.embedding_dim = embedding_dim

    def _check_dimension(self, vector: List[float], label: str) -> None:
        if len(vector) != self.embedding_dim:
            raise ValueError(
                f"{label} dimension mismatch: expected {self.embedding_dim}, got {len(vector)}"
            )

    def insert_document(self, document: EmbeddingDocument, embedding: List[float]) -> int:
        """
        Insert a document and its embedding.

        Args:
            document: Title, content and optional url/article link
            embedding: Embedding vector of the document content

        Returns:
            The id of the new embeddings row

        Raises:
            ValueError: If the embedding dimension is wrong
            ConnectionError: If database operation fails
        """
        self._check_dimension(embedding, "Embedding")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO embeddings (title, content, url, article_id, embedding)
                    VALUES (%s, %s, %s, %s, %s::vector)
                    RETURNING id
                    """,
                    (
                        document.title,
                        document.content,
                        document.url,
                        document.article_id,
                        str(embedding),
                    ),
                )
                row = cur.fetchone()
                if not row:
                    raise ConnectionError("Failed to retrieve embedding ID after insert")
                logger.debug(f"Inserted embedding {row[0]} for '{document.title[:50]}'")
                return row[0]

    def replace_article_document(
        self, document: EmbeddingDocument, embedding: List[float]
    ) -> int:
        """
        Store the embedding of an article, replacing any previous one.

        Delete and insert run in one transaction so the article never ends
        up with two rows or none.

        Returns:
            The id of the new embeddings row
        """
        if document.article_id is None:
            raise ValueError("article_id is required to replace an article embedding")
        self._check_dimension(embedding, "Embedding")

        with PerformanceLogger(logger, f"Replace embedding for article {document.article_id}"):
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "DELETE FROM embeddings WHERE article_id = %s",
                        (document.article_id,),
                    )
                    cur.execute(
                        """
                        INSERT INTO embeddings (title, content, url, article_id, embedding)
                        VALUES (%s, %s, %s, %s, %s::vector)
                        RETURNING id
                        """,
                        (
                            document.title,
                            document.content,
                            document.url,
                            document.article_id,
                            str(embedding),
                        ),
                    )
                    row = cur.fetchone()
                    if not row:
                        raise ConnectionError("Failed to retrieve embedding ID after insert")
                    return row[0]

    def match_embeddings(
        self, query_embedding: List[float], match_threshold: float, match_count: int
    ) -> List[SearchResult]:
        """
        Run the match_embeddings similarity function.

        Args:
            query_embedding: Query vector
            match_threshold: Minimum cosine similarity (0.0 to 1.0)
            match_count: Maximum number of rows

        Returns:
            SearchResult rows ordered by descending similarity

        Raises:
            ValueError: If the query vector dimension is wrong
            ConnectionError: If database operation fails
        """
        self._check_dimension(query_embedding, "Query vector")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, title, content, url, article_id, similarity
                    FROM match_embeddings(%s::vector, %s, %s)
                    """,
                    (str(query_embedding), match_threshold, match_count),
                )
                rows = cur.fetchall()

        results = [
            SearchResult(
                id=row[0],
                title=row[1],
                content=row[2],
                url=row[3],
                article_id=row[4],
                similarity=float(row[5]),
            )
            for row in rows
        ]
        logger.debug(f"match_embeddings returned {len(results)} rows")
        return results

    def delete_by_article_id(self, article_id: UUID) -> int:
        """
        Delete the embeddings of an article.

        Returns:
            Number of rows deleted
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM embeddings WHERE article_id = %s", (article_id,))
                deleted = cur.rowcount
        logger.info(f"Deleted {deleted} embeddings for article {article_id}")
        return deleted

    def get_indexed_article_ids(self) -> Set[UUID]:
        """Return the ids of articles that already have an embedding."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT DISTINCT article_id FROM embeddings WHERE article_id IS NOT NULL")
                return {row[0] for row in cur.fetchall()}

    def get_count(self) -> int:
        """Return the total number of stored embeddings."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM embeddings")
                return cur.fetchone()[0]

    def get_by_id(self, embedding_id: int) -> Optional[SearchResult]:
        """Fetch one stored document (similarity is reported as 1.0)."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, title, content, url, article_id FROM embeddings WHERE id = %s",
                    (embedding_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return SearchResult(
            id=row[0], title=row[1], content=row[2], url=row[3], article_id=row[4], similarity=1.0
        )
