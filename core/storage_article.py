"""
Storage client for knowledge base articles.

Covers article CRUD with version history, publishing state, full-text search
(weighted title/excerpt/content tsvector ranked with ts_rank), related and
popular articles, view tracking and reader feedback.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import psycopg

from core.schemas import (
    Article,
    ArticleFeedback,
    ArticleSearchHit,
    ArticleStatus,
    ArticleVersion,
)
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger, PerformanceLogger
from utils.text import slugify

logger = get_logger(__name__)

ARTICLE_COLUMNS = (
    "id",
    "title",
    "slug",
    "content",
    "excerpt",
    "status",
    "category_id",
    "tags",
    "author_id",
    "current_version",
    "view_count",
    "helpful_count",
    "not_helpful_count",
    "created_at",
    "updated_at",
    "published_at",
)

VERSION_COLUMNS = (
    "id",
    "article_id",
    "version",
    "title",
    "content",
    "changes",
    "created_by",
    "created_at",
)

FEEDBACK_COLUMNS = ("id", "article_id", "user_id", "is_helpful", "comment", "created_at")

# Public sort keys mapped to columns
SEARCH_SORT_COLUMNS = {
    "title": "title",
    "created_at": "created_at",
    "updated_at": "updated_at",
    "views": "view_count",
}

UPDATABLE_FIELDS = {"title", "content", "excerpt", "category_id", "tags", "slug"}


def _to_article(row: Tuple) -> Article:
    data = row_to_dict(ARTICLE_COLUMNS, row)
    data["tags"] = data["tags"] or []
    return Article(**data)


class ArticleClient(BaseStorageClient):
    """
    Storage client for the articles, article_versions and article_feedback tables.
    """

    def list_articles(
        self,
        page: int = 1,
        page_size: int = 10,
        category_id: Optional[UUID] = None,
        status: Optional[ArticleStatus] = None,
        tags: Optional[List[str]] = None,
        author_id: Optional[UUID] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> Tuple[List[Article], int]:
        """
        List articles newest first with optional filters.

        Tag filtering requires the article to carry every given tag.

        Returns:
            Tuple of (articles on the requested page, total matching count)
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= page_size <= 100:
            raise ValueError("page_size must be between 1 and 100")

        conditions: List[str] = []
        params: List[Any] = []
        if category_id:
            conditions.append("category_id = %s")
            params.append(category_id)
        if status:
            conditions.append("status = %s")
            params.append(ArticleStatus(status).value)
        if tags:
            conditions.append("tags @> %s")
            params.append(list(tags))
        if author_id:
            conditions.append("author_id = %s")
            params.append(author_id)
        if created_from:
            conditions.append("created_at >= %s")
            params.append(created_from)
        if created_to:
            conditions.append("created_at <= %s")
            params.append(created_to)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        offset = (page - 1) * page_size

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM articles {where}", params)  # type: ignore
                total = cur.fetchone()[0]
                cur.execute(
                    f"""
                    SELECT {column_list(ARTICLE_COLUMNS)}
                    FROM articles {where}
                    ORDER BY created_at DESC
                    LIMIT %s OFFSET %s
                    """,  # type: ignore
                    params + [page_size, offset],
                )
                articles = [_to_article(row) for row in cur.fetchall()]

        logger.debug(f"Listed {len(articles)} of {total} articles (page {page})")
        return articles, total

    def list_all_articles(self, status: Optional[ArticleStatus] = None) -> List[Article]:
        """Return every article, optionally restricted to one status."""
        query = f"SELECT {column_list(ARTICLE_COLUMNS)} FROM articles"
        params: List[Any] = []
        if status:
            query += " WHERE status = %s"
            params.append(ArticleStatus(status).value)
        query += " ORDER BY created_at"

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)  # type: ignore
                return [_to_article(row) for row in cur.fetchall()]

    def get_article(self, article_id: UUID) -> Optional[Article]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(ARTICLE_COLUMNS)} FROM articles WHERE id = %s",  # type: ignore
                    (article_id,),
                )
                row = cur.fetchone()
        return _to_article(row) if row else None

    def get_article_by_slug(self, slug: str) -> Optional[Article]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(ARTICLE_COLUMNS)} FROM articles WHERE slug = %s",  # type: ignore
                    (slug,),
                )
                row = cur.fetchone()
        return _to_article(row) if row else None

    def create_article(
        self,
        title: str,
        content: str,
        author_id: Optional[UUID] = None,
        excerpt: Optional[str] = None,
        category_id: Optional[UUID] = None,
        tags: Optional[List[str]] = None,
        slug: Optional[str] = None,
        status: ArticleStatus = ArticleStatus.DRAFT,
    ) -> Article:
        """
        Create an article and its first version.

        The slug defaults to one derived from the title.

        Raises:
            ValueError: If title/content are empty or the slug is already taken
            ConnectionError: If database operation fails
        """
        if not title or not title.strip():
            raise ValueError("title cannot be empty")
        if not content or not content.strip():
            raise ValueError("content cannot be empty")

        slug = slugify(slug or title)
        status = ArticleStatus(status)

        logger.info(f"Creating article '{title[:50]}' (slug={slug}, status={status.value})")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO articles
                        (title, slug, content, excerpt, status, category_id, tags, author_id,
                         published_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s,
                                CASE WHEN %s = 'published' THEN NOW() END)
                        RETURNING {column_list(ARTICLE_COLUMNS)}
                        """,  # type: ignore
                        (
                            title.strip(),
                            slug,
                            content,
                            excerpt,
                            status.value,
                            category_id,
                            list(tags or []),
                            author_id,
                            status.value,
                        ),
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"Article slug '{slug}' already exists") from e

                article = _to_article(cur.fetchone())
                cur.execute(
                    """
                    INSERT INTO article_versions (article_id, version, title, content, changes, created_by)
                    VALUES (%s, 1, %s, %s, %s, %s)
                    """,
                    (article.id, article.title, article.content, "Initial version", author_id),
                )

        logger.info(f"Created article {article.id}")
        return article

    def update_article(
        self,
        article_id: UUID,
        updates: Dict[str, Any],
        editor_id: Optional[UUID] = None,
        changes: Optional[str] = None,
    ) -> Article:
        """
        Update article fields.

        A change to the title or content bumps current_version and stores a
        new article_versions row in the same transaction.

        Raises:
            ValueError: If the article does not exist, a field is not
                updatable, or the new slug is taken
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        updates = dict(updates)
        if "slug" in updates and updates["slug"] is not None:
            updates["slug"] = slugify(updates["slug"])
        for field in ("title", "content"):
            if field in updates and (updates[field] is None or not str(updates[field]).strip()):
                raise ValueError(f"{field} cannot be empty")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(ARTICLE_COLUMNS)} FROM articles WHERE id = %s FOR UPDATE",  # type: ignore
                    (article_id,),
                )
                row = cur.fetchone()
                if not row:
                    raise ValueError(f"Article {article_id} not found")
                current = _to_article(row)

                content_changed = (
                    updates.get("title", current.title) != current.title
                    or updates.get("content", current.content) != current.content
                )
                new_version = current.current_version + 1 if content_changed else current.current_version

                assignments = [f"{field} = %s" for field in updates]
                params: List[Any] = list(updates.values())
                assignments += ["current_version = %s", "updated_at = NOW()"]
                params += [new_version, article_id]

                try:
                    cur.execute(
                        f"""
                        UPDATE articles SET {', '.join(assignments)}
                        WHERE id = %s
                        RETURNING {column_list(ARTICLE_COLUMNS)}
                        """,  # type: ignore
                        params,
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"Article slug '{updates.get('slug')}' already exists") from e
                article = _to_article(cur.fetchone())

                if content_changed:
                    cur.execute(
                        """
                        INSERT INTO article_versions (article_id, version, title, content, changes, created_by)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        (article.id, new_version, article.title, article.content, changes, editor_id),
                    )
                    logger.info(f"Article {article_id} updated to version {new_version}")

        return article

    def set_status(self, article_id: UUID, status: ArticleStatus) -> Article:
        """
        Move an article to draft, published or archived.

        published_at is set the first time an article is published.
        """
        status = ArticleStatus(status)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE articles
                    SET status = %s,
                        published_at = CASE
                            WHEN %s = 'published' THEN COALESCE(published_at, NOW())
                            ELSE published_at
                        END,
                        updated_at = NOW()
                    WHERE id = %s
                    RETURNING {column_list(ARTICLE_COLUMNS)}
                    """,  # type: ignore
                    (status.value, status.value, article_id),
                )
                row = cur.fetchone()
        if not row:
            raise ValueError(f"Article {article_id} not found")
        logger.info(f"Article {article_id} is now {status.value}")
        return _to_article(row)

    def list_versions(self, article_id: UUID) -> List[ArticleVersion]:
        """Return an article's versions, newest first."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(VERSION_COLUMNS)}
                    FROM article_versions WHERE article_id = %s
                    ORDER BY version DESC
                    """,  # type: ignore
                    (article_id,),
                )
                return [ArticleVersion(**row_to_dict(VERSION_COLUMNS, r)) for r in cur.fetchall()]

    def get_version(self, article_id: UUID, version: int) -> Optional[ArticleVersion]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(VERSION_COLUMNS)}
                    FROM article_versions WHERE article_id = %s AND version = %s
                    """,  # type: ignore
                    (article_id, version),
                )
                row = cur.fetchone()
        return ArticleVersion(**row_to_dict(VERSION_COLUMNS, row)) if row else None

    def revert_to_version(
        self, article_id: UUID, version: int, editor_id: Optional[UUID] = None
    ) -> Article:
        """
        Restore the title and content of an earlier version.

        The revert is itself recorded as a new version.
        """
        target = self.get_version(article_id, version)
        if not target:
            raise ValueError(f"Version {version} of article {article_id} not found")
        return self.update_article(
            article_id,
            {"title": target.title, "content": target.content},
            editor_id=editor_id,
            changes=f"Reverted to version {version}",
        )

    def search_articles(
        self,
        query: Optional[str] = None,
        category_id: Optional[UUID] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "relevance",
        sort_order: str = "desc",
        status: ArticleStatus = ArticleStatus.PUBLISHED,
    ) -> Tuple[List[ArticleSearchHit], int]:
        """
        Full-text search over articles.

        Uses websearch_to_tsquery against the weighted search_vector column.
        Relevance ordering uses ts_rank and falls back to most recently
        updated when there is no query.

        Returns:
            Tuple of (hits on the requested page, total matching count)
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= limit <= 100:
            raise ValueError("limit must be between 1 and 100")
        if sort_by != "relevance" and sort_by not in SEARCH_SORT_COLUMNS:
            raise ValueError(
                f"sort_by must be one of {['relevance'] + sorted(SEARCH_SORT_COLUMNS)}, got '{sort_by}'"
            )
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got '{sort_order}'")

        query = (query or "").strip()
        conditions = ["status = %s"]
        where_params: List[Any] = [ArticleStatus(status).value]
        if query:
            conditions.append("search_vector @@ websearch_to_tsquery('english', %s)")
            where_params.append(query)
        if category_id:
            conditions.append("category_id = %s")
            where_params.append(category_id)
        where = " AND ".join(conditions)

        if query:
            rank_expr = "ts_rank(search_vector, websearch_to_tsquery('english', %s))"
            rank_params: List[Any] = [query]
        else:
            rank_expr = "0.0"
            rank_params = []

        if sort_by == "relevance":
            order = "rank DESC, updated_at DESC" if query else "updated_at DESC"
        else:
            order = f"{SEARCH_SORT_COLUMNS[sort_by]} {sort_order.upper()}"

        offset = (page - 1) * limit

        with PerformanceLogger(logger, f"Full-text search '{query[:50]}'"):
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(f"SELECT COUNT(*) FROM articles WHERE {where}", where_params)  # type: ignore
                    total = cur.fetchone()[0]
                    cur.execute(
                        f"""
                        SELECT {column_list(ARTICLE_COLUMNS)}, {rank_expr} AS rank
                        FROM articles
                        WHERE {where}
                        ORDER BY {order}
                        LIMIT %s OFFSET %s
                        """,  # type: ignore
                        rank_params + where_params + [limit, offset],
                    )
                    rows = cur.fetchall()

        hits = [
            ArticleSearchHit(article=_to_article(row[:-1]), rank=float(row[-1] or 0.0))
            for row in rows
        ]
        logger.info(f"Full-text search '{query[:50]}' matched {total} articles")
        return hits, total

    def get_related_articles(self, article_id: UUID, limit: int = 5) -> List[Article]:
        """
        Published articles sharing the category or at least one tag.

        Ranked by number of shared tags, then by views.
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(ARTICLE_COLUMNS, alias='a')}
                    FROM articles a
                    JOIN articles src ON src.id = %s
                    WHERE a.id <> src.id
                      AND a.status = 'published'
                      AND (a.category_id = src.category_id OR a.tags && src.tags)
                    ORDER BY cardinality(ARRAY(
                                SELECT unnest(a.tags) INTERSECT SELECT unnest(src.tags)
                             )) DESC,
                             a.view_count DESC
                    LIMIT %s
                    """,  # type: ignore
                    (article_id, limit),
                )
                return [_to_article(row) for row in cur.fetchall()]

    def track_view(self, article_id: UUID) -> int:
        """Increment and return the article's view count."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE articles SET view_count = view_count + 1 WHERE id = %s RETURNING view_count",
                    (article_id,),
                )
                row = cur.fetchone()
        if not row:
            raise ValueError(f"Article {article_id} not found")
        return row[0]

    def get_popular_articles(self, limit: int = 10) -> List[Article]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(ARTICLE_COLUMNS)}
                    FROM articles WHERE status = 'published'
                    ORDER BY view_count DESC, updated_at DESC
                    LIMIT %s
                    """,  # type: ignore
                    (limit,),
                )
                return [_to_article(row) for row in cur.fetchall()]

    def submit_feedback(
        self,
        article_id: UUID,
        is_helpful: bool,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
    ) -> ArticleFeedback:
        """
        Record reader feedback and bump the matching counter atomically.

        Raises:
            ValueError: If the article does not exist
        """
        counter = "helpful_count" if is_helpful else "not_helpful_count"
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE articles SET {counter} = {counter} + 1 WHERE id = %s RETURNING id",  # type: ignore
                    (article_id,),
                )
                if not cur.fetchone():
                    raise ValueError(f"Article {article_id} not found")
                cur.execute(
                    f"""
                    INSERT INTO article_feedback (article_id, user_id, is_helpful, comment)
                    VALUES (%s, %s, %s, %s)
                    RETURNING {column_list(FEEDBACK_COLUMNS)}
                    """,  # type: ignore
                    (article_id, user_id, is_helpful, comment),
                )
                feedback = ArticleFeedback(**row_to_dict(FEEDBACK_COLUMNS, cur.fetchone()))

        logger.info(
            f"Feedback recorded for article {article_id}: {'helpful' if is_helpful else 'not helpful'}"
        )
        return feedback

    def list_feedback(self, article_id: UUID, limit: int = 50) -> List[ArticleFeedback]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(FEEDBACK_COLUMNS)} FROM article_feedback
                    WHERE article_id = %s ORDER BY created_at DESC LIMIT %s
                    """,  # type: ignore
                    (article_id, limit),
                )
                return [ArticleFeedback(**row_to_dict(FEEDBACK_COLUMNS, r)) for r in cur.fetchall()]
