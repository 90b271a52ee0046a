"""
Semantic search over the knowledge base.

EmbeddingsService ties the embedding model to the vector store:
- generate_embedding: embed arbitrary text
- search_similar_content: embed a query and run the match_embeddings function
- add_document: embed and store a free-standing document
- index_article / reindex_articles / remove_article: keep article embeddings
  in step with the knowledge base
"""

import time
from typing import Dict, List, Optional
from uuid import UUID

from core.config import get_helpdesk_settings
from core.embedding import EmbeddingGenerator
from core.schemas import Article, ArticleStatus, EmbeddingDocument, SearchResult
from core.storage_embedding import EmbeddingStorage
from utils.logger import get_logger, PerformanceLogger

logger = get_logger(__name__)


def article_embedding_text(article: Article) -> str:
    """Text embedded for an article: title, excerpt and body separated by blank lines."""
    parts = [article.title, article.excerpt or "", article.content]
    return "\n\n".join(parts)


class EmbeddingsService:
    """
    Embedding generation and vector similarity search for the helpdesk.

    Example:
        >>> service = EmbeddingsService(EmbeddingGenerator(), EmbeddingStorage())
        >>> results = service.search_similar_content("reset my password")
    """

    def __init__(
        self,
        embedding_generator: EmbeddingGenerator,
        embedding_storage: EmbeddingStorage,
        article_client=None,
    ):
        self.embedding_generator = embedding_generator
        self.embedding_storage = embedding_storage
        self.article_client = article_client
        self.settings = get_helpdesk_settings()

        if embedding_generator.expected_dim != embedding_storage.embedding_dim:
            raise ValueError(
                f"Embedding model dimension ({embedding_generator.expected_dim}) does not match "
                f"storage dimension ({embedding_storage.embedding_dim})"
            )

    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate an embedding for text.

        Raises:
            ValueError: If text is empty or too long
            RuntimeError: If the embedding API fails
        """
        return self.embedding_generator.generate_embedding(text)

    def search_similar_content(
        self,
        query: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """
        Find stored documents semantically similar to a query.

        Args:
            query: Natural language query
            threshold: Minimum cosine similarity (default HELPDESK_SEARCH_MATCH_THRESHOLD, 0.5)
            limit: Maximum number of results (default HELPDESK_SEARCH_MATCH_COUNT, 5)

        Returns:
            Results ordered by descending similarity, possibly empty

        Raises:
            ValueError: If the query is empty or threshold/limit are out of range
            RuntimeError: If the embedding API fails
            ConnectionError: If the similarity query fails
        """
        if threshold is None:
            threshold = self.settings.SEARCH_MATCH_THRESHOLD
        if limit is None:
            limit = self.settings.SEARCH_MATCH_COUNT

        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1, got {threshold}")
        if not 1 <= limit <= 100:
            raise ValueError(f"limit must be between 1 and 100, got {limit}")

        query = query.strip()
        logger.info(
            f"Semantic search: query='{query[:50]}', threshold={threshold}, limit={limit}"
        )

        with PerformanceLogger(logger, "Semantic search"):
            query_embedding = self.generate_embedding(query)
            results = self.embedding_storage.match_embeddings(
                query_embedding, match_threshold=threshold, match_count=limit
            )

        logger.info(f"Semantic search returned {len(results)} results")
        return results

    def add_document(
        self,
        title: str,
        content: str,
        url: Optional[str] = None,
        article_id: Optional[UUID] = None,
    ) -> int:
        """
        Embed a document's content and store it for semantic search.

        Returns:
            The id of the stored embeddings row

        Raises:
            ValueError: If title or content is empty
            RuntimeError: If the embedding API fails
            ConnectionError: If the insert fails
        """
        if not title or not title.strip():
            raise ValueError("title cannot be empty")
        if not content or not content.strip():
            raise ValueError("content cannot be empty")

        document = EmbeddingDocument(title=title, content=content, url=url, article_id=article_id)
        embedding = self.generate_embedding(content)
        embedding_id = self.embedding_storage.insert_document(document, embedding)
        logger.info(f"Added document '{title[:50]}' as embedding {embedding_id}")
        return embedding_id

    def article_url(self, article: Article) -> str:
        prefix = self.settings.ARTICLE_URL_PREFIX.rstrip("/")
        return f"{prefix}/{article.slug}"

    def index_article(self, article: Article) -> int:
        """
        Embed an article and replace its previous embedding.

        Returns:
            The id of the stored embeddings row
        """
        document = EmbeddingDocument(
            title=article.title,
            content=article.content,
            url=self.article_url(article),
            article_id=article.id,
        )
        embedding = self.generate_embedding(article_embedding_text(article))
        embedding_id = self.embedding_storage.replace_article_document(document, embedding)
        logger.info(f"Indexed article {article.id} ('{article.title[:50]}')")
        return embedding_id

    def remove_article(self, article_id: UUID) -> int:
        """Drop an article's embeddings. Returns the number of rows removed."""
        return self.embedding_storage.delete_by_article_id(article_id)

    def reindex_articles(self, only_missing: bool = True) -> Dict[str, int]:
        """
        Index every published article.

        Args:
            only_missing: Skip articles that already have an embedding

        Returns:
            Counts of indexed, skipped and failed articles
        """
        if self.article_client is None:
            raise ValueError("An article client is required to reindex articles")

        stats = {"indexed": 0, "skipped": 0, "failed": 0}
        articles = self.article_client.list_all_articles(status=ArticleStatus.PUBLISHED)
        existing = self.embedding_storage.get_indexed_article_ids() if only_missing else set()

        logger.info(f"Indexing {len(articles)} published articles (only_missing={only_missing})")

        attempted = 0
        for article in articles:
            if article.id in existing:
                logger.debug(f"Skipping {article.title} - embedding already exists")
                stats["skipped"] += 1
                continue

            # Space out API calls, failed ones included, to stay under rate limits
            if attempted and self.settings.EMBED_DELAY_SECONDS > 0:
                time.sleep(self.settings.EMBED_DELAY_SECONDS)
            attempted += 1

            try:
                self.index_article(article)
                stats["indexed"] += 1
            except Exception as e:
                logger.error(f"Failed to index article {article.id} ({article.title}): {e}")
                stats["failed"] += 1

        logger.info(
            f"Indexing complete: {stats['indexed']} indexed, "
            f"{stats['skipped']} skipped, {stats['failed']} failed"
        )
        return stats

    def get_stats(self) -> Dict[str, object]:
        return {
            "num_embeddings": self.embedding_storage.get_count(),
            "embedding_dimension": self.embedding_storage.embedding_dim,
            "model": self.embedding_generator.model,
        }
