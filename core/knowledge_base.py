"""
Knowledge base article lifecycle: publish, archive, edit and revert.

Published articles are mirrored into the embeddings table so they can be
found by semantic search. Indexing is best-effort: a failed embedding call
never blocks an editorial change, and `python main.py embed` picks up
articles that are missing an embedding.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from core.schemas import Article, ArticleStatus
from utils.logger import get_logger

logger = get_logger(__name__)


class KnowledgeBaseService:
    def __init__(self, article_client, embeddings_service=None, audit_client=None):
        self.article_client = article_client
        self.embeddings_service = embeddings_service
        self.audit_client = audit_client

    def _audit(self, action: str, article_id: UUID, actor_id: Optional[UUID], changes: Dict[str, Any]) -> None:
        if not self.audit_client:
            return
        try:
            self.audit_client.log(
                action=action,
                entity_type="article",
                entity_id=article_id,
                actor_id=actor_id,
                changes=changes,
            )
        except Exception as e:
            logger.error(f"Audit log '{action}' failed for article {article_id}: {e}")

    def _index(self, article: Article) -> bool:
        if self.embeddings_service is None:
            return False
        try:
            self.embeddings_service.index_article(article)
            return True
        except (ValueError, RuntimeError, ConnectionError) as e:
            logger.error(f"Failed to index article {article.id}: {e}")
            return False

    def create_article(self, actor_id: Optional[UUID] = None, **fields) -> Article:
        article = self.article_client.create_article(author_id=actor_id, **fields)
        if article.status == ArticleStatus.PUBLISHED:
            self._index(article)
        self._audit("article.create", article.id, actor_id, {"title": article.title, "status": article.status.value})
        return article

    def update_article(
        self,
        article_id: UUID,
        updates: Dict[str, Any],
        actor_id: Optional[UUID] = None,
        changes: Optional[str] = None,
    ) -> Article:
        """Update an article; published articles are re-indexed when their text changes."""
        article = self.article_client.update_article(article_id, updates, editor_id=actor_id, changes=changes)
        if article.status == ArticleStatus.PUBLISHED and {"title", "content", "excerpt"} & set(updates):
            self._index(article)
        self._audit("article.update", article_id, actor_id, dict(updates))
        return article

    def publish_article(self, article_id: UUID, actor_id: Optional[UUID] = None) -> Article:
        article = self.article_client.set_status(article_id, ArticleStatus.PUBLISHED)
        indexed = self._index(article)
        logger.info(f"Published article {article_id} (indexed={indexed})")
        self._audit("article.publish", article_id, actor_id, {"indexed": indexed})
        return article

    def archive_article(self, article_id: UUID, actor_id: Optional[UUID] = None) -> Article:
        article = self.article_client.set_status(article_id, ArticleStatus.ARCHIVED)
        removed = 0
        if self.embeddings_service is not None:
            try:
                removed = self.embeddings_service.remove_article(article_id)
            except ConnectionError as e:
                logger.error(f"Failed to remove embedding of archived article {article_id}: {e}")
        logger.info(f"Archived article {article_id} ({removed} embeddings removed)")
        self._audit("article.archive", article_id, actor_id, {"embeddings_removed": removed})
        return article

    def revert_to_version(self, article_id: UUID, version: int, actor_id: Optional[UUID] = None) -> Article:
        article = self.article_client.revert_to_version(article_id, version, editor_id=actor_id)
        if article.status == ArticleStatus.PUBLISHED:
            self._index(article)
        self._audit("article.revert", article_id, actor_id, {"version": version})
        return article
