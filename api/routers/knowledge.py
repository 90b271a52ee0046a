"""
Knowledge base endpoints: articles, categories and search.

Agents with VIEW_KNOWLEDGE_BASE see every article; customers with
VIEW_PUBLIC_ARTICLES only see published ones. Every search is logged to
search_logs on a best-effort basis.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Annotated, List, Literal, Optional
from datetime import datetime
from uuid import UUID
import time

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_article_client,
    get_category_client,
    get_embeddings_service,
    get_knowledge_base,
    get_permission_checker,
    get_search_log_client,
)
from api.models.requests import (
    ArticleCreateRequest,
    ArticleFeedbackRequest,
    ArticleUpdateRequest,
    CategoryCreateRequest,
    CategoryUpdateRequest,
    SemanticSearchRequest,
)
from api.models.responses import (
    ArticleListResponse,
    KnowledgeSearchResponse,
    PaginationInfo,
    RankedArticle,
    SemanticSearchResponse,
    ViewCountResponse,
)
from api.utils.errors import raise_http_error
from core.embeddings_service import EmbeddingsService
from core.knowledge_base import KnowledgeBaseService
from core.permissions import Permission, PermissionChecker
from core.schemas import Article, ArticleFeedback, ArticleStatus, ArticleVersion, Category, User
from core.storage_article import ArticleClient
from core.storage_category import CategoryClient
from core.storage_search_log import SearchLogClient
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

KnowledgeReader = Annotated[
    User,
    Depends(require_permission(Permission.VIEW_KNOWLEDGE_BASE, Permission.VIEW_PUBLIC_ARTICLES)),
]
KnowledgeManager = Annotated[User, Depends(require_permission(Permission.MANAGE_KNOWLEDGE_BASE))]


def _sees_unpublished(user: User, checker: PermissionChecker) -> bool:
    return checker.has_permission(user.id, Permission.VIEW_KNOWLEDGE_BASE)


def _visible_article(
    article_id: UUID, user: User, article_client: ArticleClient, checker: PermissionChecker, action: str
) -> Article:
    """The article, or 404 when it is missing or unpublished and the user only sees published ones."""
    try:
        article = article_client.get_article(article_id)
        visible = article is not None and (
            article.status == ArticleStatus.PUBLISHED or _sees_unpublished(user, checker)
        )
    except Exception as e:
        raise_http_error(e, action)

    if not visible:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Article {article_id} not found")
    return article


def _log_search(
    search_log_client: SearchLogClient,
    query: Optional[str],
    method: str,
    result_count: int,
    latency_ms: int,
    user: User,
) -> None:
    if not query:
        return
    try:
        search_log_client.log_search(
            query=query,
            method=method,
            result_count=result_count,
            latency_ms=latency_ms,
            user_id=user.id,
        )
    except Exception as e:
        logger.error(f"Search logging failed: {e}")


# Search


@router.get(
    "/search",
    response_model=KnowledgeSearchResponse,
    summary="Full-Text Article Search",
    description="Full-text search over published articles with relevance ranking and pagination.",
)
def search_articles(
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    search_log_client: Annotated[SearchLogClient, Depends(get_search_log_client)],
    q: Annotated[Optional[str], Query(max_length=1000, description="Search terms")] = None,
    category_id: Optional[UUID] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    sort_by: Literal["relevance", "title", "created_at", "updated_at", "views"] = "relevance",
    sort_order: Literal["asc", "desc"] = "desc",
) -> KnowledgeSearchResponse:
    """
    Search published articles.

    **Ranking:**
    - `relevance`: `ts_rank` over the weighted title/excerpt/content vector,
      matched with `websearch_to_tsquery('english', q)`. Without `q` the
      results are the most recently updated articles.
    - `title`, `created_at`, `updated_at`, `views`: plain column ordering

    **Response:**
    - `articles`: matching articles with `rank` and `current_version`
    - `pagination`: `{page, limit, total, total_pages}`
    """
    start_time = time.time()
    query = q.strip() if q and q.strip() else None

    logger.info(
        f"Knowledge search: q='{(query or '')[:50]}', category={category_id}, "
        f"page={page}, limit={limit}, sort={sort_by} {sort_order}"
    )

    try:
        hits, total = article_client.search_articles(
            query=query,
            category_id=category_id,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except Exception as e:
        raise_http_error(e, "search articles")

    latency_ms = int((time.time() - start_time) * 1000)
    _log_search(search_log_client, query, "fulltext", total, latency_ms, user)

    logger.info(f"Knowledge search completed: {total} matches, {latency_ms}ms latency")

    return KnowledgeSearchResponse(
        query=query,
        articles=[RankedArticle(**hit.article.model_dump(), rank=hit.rank) for hit in hits],
        pagination=PaginationInfo.build(page, limit, total),
        latency_ms=latency_ms,
    )


@router.post(
    "/search/semantic",
    response_model=SemanticSearchResponse,
    summary="Semantic Article Search",
    description="Vector similarity search over indexed articles using embeddings.",
)
def search_semantic(
    request: SemanticSearchRequest,
    user: KnowledgeReader,
    embeddings_service: Annotated[EmbeddingsService, Depends(get_embeddings_service)],
    search_log_client: Annotated[SearchLogClient, Depends(get_search_log_client)],
) -> SemanticSearchResponse:
    """
    Embed the query and return documents above the similarity threshold.

    **Request:**
    - `query`: natural language query (1-1000 chars)
    - `threshold`: minimum cosine similarity 0..1 (default 0.5)
    - `limit`: maximum results 1..100 (default 5)

    **Errors:**
    - `502`: embedding API failure
    - `503`: database unavailable
    """
    start_time = time.time()

    try:
        results = embeddings_service.search_similar_content(
            request.query, threshold=request.threshold, limit=request.limit
        )
    except Exception as e:
        raise_http_error(e, "run semantic search")

    latency_ms = int((time.time() - start_time) * 1000)
    _log_search(search_log_client, request.query, "semantic", len(results), latency_ms, user)

    return SemanticSearchResponse(
        query=request.query,
        results=results,
        total_results=len(results),
        latency_ms=latency_ms,
    )


# Articles


@router.get(
    "/articles",
    response_model=ArticleListResponse,
    summary="List Articles",
)
def list_articles(
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 10,
    category_id: Optional[UUID] = None,
    article_status: Annotated[Optional[ArticleStatus], Query(alias="status")] = None,
    tags: Annotated[Optional[List[str]], Query(description="Article must carry every tag")] = None,
    author_id: Optional[UUID] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
) -> ArticleListResponse:
    """List articles newest first. Customers only ever see published articles."""
    try:
        if not _sees_unpublished(user, checker):
            article_status = ArticleStatus.PUBLISHED
        articles, total = article_client.list_articles(
            page=page,
            page_size=page_size,
            category_id=category_id,
            status=article_status,
            tags=tags,
            author_id=author_id,
            created_from=created_from,
            created_to=created_to,
        )
    except Exception as e:
        raise_http_error(e, "list articles")

    return ArticleListResponse(articles=articles, pagination=PaginationInfo.build(page, page_size, total))


@router.post(
    "/articles",
    response_model=Article,
    status_code=status.HTTP_201_CREATED,
    summary="Create Article",
)
def create_article(
    request: ArticleCreateRequest,
    user: KnowledgeManager,
    knowledge_base: Annotated[KnowledgeBaseService, Depends(get_knowledge_base)],
) -> Article:
    """
    Create an article and its first version. The slug is generated from the
    title when omitted; a taken slug returns 409.
    """
    try:
        return knowledge_base.create_article(
            actor_id=user.id,
            title=request.title,
            content=request.content,
            excerpt=request.excerpt,
            category_id=request.category_id,
            tags=request.tags,
            slug=request.slug,
            status=request.status,
        )
    except Exception as e:
        raise_http_error(e, "create article")


@router.get("/articles/popular", response_model=List[Article], summary="Popular Articles")
def popular_articles(
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> List[Article]:
    try:
        return article_client.get_popular_articles(limit=limit)
    except Exception as e:
        raise_http_error(e, "load popular articles")


@router.get("/articles/slug/{slug}", response_model=Article, summary="Get Article by Slug")
def get_article_by_slug(
    slug: str,
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
) -> Article:
    try:
        article = article_client.get_article_by_slug(slug)
        visible = article is not None and (
            article.status == ArticleStatus.PUBLISHED or _sees_unpublished(user, checker)
        )
    except Exception as e:
        raise_http_error(e, "load article")

    if not visible:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Article '{slug}' not found")
    return article


@router.get("/articles/{article_id}", response_model=Article, summary="Get Article")
def get_article(
    article_id: UUID,
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
) -> Article:
    return _visible_article(article_id, user, article_client, checker, "load article")


@router.patch("/articles/{article_id}", response_model=Article, summary="Update Article")
def update_article(
    article_id: UUID,
    request: ArticleUpdateRequest,
    user: KnowledgeManager,
    knowledge_base: Annotated[KnowledgeBaseService, Depends(get_knowledge_base)],
) -> Article:
    """
    Update article fields. Changing the title or content creates a new
    version; `changes` is stored as that version's summary.
    """
    updates = request.to_updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        return knowledge_base.update_article(article_id, updates, actor_id=user.id, changes=request.changes)
    except Exception as e:
        raise_http_error(e, "update article")


@router.post("/articles/{article_id}/publish", response_model=Article, summary="Publish Article")
def publish_article(
    article_id: UUID,
    user: KnowledgeManager,
    knowledge_base: Annotated[KnowledgeBaseService, Depends(get_knowledge_base)],
) -> Article:
    """Publish an article and index it for semantic search."""
    try:
        return knowledge_base.publish_article(article_id, actor_id=user.id)
    except Exception as e:
        raise_http_error(e, "publish article")


@router.post("/articles/{article_id}/archive", response_model=Article, summary="Archive Article")
def archive_article(
    article_id: UUID,
    user: KnowledgeManager,
    knowledge_base: Annotated[KnowledgeBaseService, Depends(get_knowledge_base)],
) -> Article:
    """Archive an article and drop its embedding."""
    try:
        return knowledge_base.archive_article(article_id, actor_id=user.id)
    except Exception as e:
        raise_http_error(e, "archive article")


@router.get(
    "/articles/{article_id}/versions",
    response_model=List[ArticleVersion],
    summary="List Article Versions",
)
def list_versions(
    article_id: UUID,
    user: KnowledgeManager,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
) -> List[ArticleVersion]:
    try:
        return article_client.list_versions(article_id)
    except Exception as e:
        raise_http_error(e, "list article versions")


@router.post(
    "/articles/{article_id}/versions/{version}/revert",
    response_model=Article,
    summary="Revert Article",
)
def revert_article(
    article_id: UUID,
    version: int,
    user: KnowledgeManager,
    knowledge_base: Annotated[KnowledgeBaseService, Depends(get_knowledge_base)],
) -> Article:
    """Copy an earlier version's title and content back; recorded as a new version."""
    try:
        return knowledge_base.revert_to_version(article_id, version, actor_id=user.id)
    except Exception as e:
        raise_http_error(e, "revert article")


@router.get(
    "/articles/{article_id}/related",
    response_model=List[Article],
    summary="Related Articles",
)
def related_articles(
    article_id: UUID,
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    limit: Annotated[int, Query(ge=1, le=20)] = 5,
) -> List[Article]:
    """Published articles sharing the category or a tag, most shared tags first."""
    try:
        return article_client.get_related_articles(article_id, limit=limit)
    except Exception as e:
        raise_http_error(e, "load related articles")


@router.post(
    "/articles/{article_id}/view",
    response_model=ViewCountResponse,
    summary="Track Article View",
)
def track_view(
    article_id: UUID,
    user: KnowledgeReader,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
) -> ViewCountResponse:
    _visible_article(article_id, user, article_client, checker, "track article view")
    try:
        view_count = article_client.track_view(article_id)
    except Exception as e:
        raise_http_error(e, "track article view")
    return ViewCountResponse(article_id=article_id, view_count=view_count)


@router.post(
    "/articles/{article_id}/feedback",
    response_model=ArticleFeedback,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Article Feedback",
)
def submit_feedback(
    article_id: UUID,
    request: ArticleFeedbackRequest,
    user: Annotated[
        User, Depends(require_permission(Permission.RATE_ARTICLES, Permission.VIEW_KNOWLEDGE_BASE))
    ],
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
) -> ArticleFeedback:
    _visible_article(article_id, user, article_client, checker, "submit feedback")
    try:
        return article_client.submit_feedback(
            article_id, request.is_helpful, user_id=user.id, comment=request.comment
        )
    except Exception as e:
        raise_http_error(e, "submit feedback")


@router.get(
    "/articles/{article_id}/feedback",
    response_model=List[ArticleFeedback],
    summary="List Article Feedback",
)
def list_feedback(
    article_id: UUID,
    user: KnowledgeManager,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> List[ArticleFeedback]:
    try:
        return article_client.list_feedback(article_id, limit=limit)
    except Exception as e:
        raise_http_error(e, "list feedback")


# Categories


@router.get("/categories", response_model=List[Category], summary="Category Tree")
def category_tree(
    user: KnowledgeReader,
    category_client: Annotated[CategoryClient, Depends(get_category_client)],
) -> List[Category]:
    """Root categories with nested `children`, ordered by sort_order then name."""
    try:
        return category_client.get_category_tree()
    except Exception as e:
        raise_http_error(e, "load categories")


@router.post(
    "/categories",
    response_model=Category,
    status_code=status.HTTP_201_CREATED,
    summary="Create Category",
)
def create_category(
    request: CategoryCreateRequest,
    user: KnowledgeManager,
    category_client: Annotated[CategoryClient, Depends(get_category_client)],
) -> Category:
    try:
        return category_client.create_category(
            name=request.name,
            description=request.description,
            parent_id=request.parent_id,
            sort_order=request.sort_order,
            slug=request.slug,
        )
    except Exception as e:
        raise_http_error(e, "create category")


@router.get("/categories/{category_id}", response_model=Category, summary="Get Category")
def get_category(
    category_id: UUID,
    user: KnowledgeReader,
    category_client: Annotated[CategoryClient, Depends(get_category_client)],
) -> Category:
    try:
        category = category_client.get_category(category_id)
    except Exception as e:
        raise_http_error(e, "load category")
    if category is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Category {category_id} not found")
    return category


@router.patch("/categories/{category_id}", response_model=Category, summary="Update Category")
def update_category(
    category_id: UUID,
    request: CategoryUpdateRequest,
    user: KnowledgeManager,
    category_client: Annotated[CategoryClient, Depends(get_category_client)],
) -> Category:
    """Update a category. Moving it under itself or a descendant returns 400."""
    updates = request.to_updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        return category_client.update_category(category_id, updates)
    except Exception as e:
        raise_http_error(e, "update category")


@router.delete(
    "/categories/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Category",
)
def delete_category(
    category_id: UUID,
    user: KnowledgeManager,
    category_client: Annotated[CategoryClient, Depends(get_category_client)],
) -> None:
    """Delete a leaf category; its articles keep existing uncategorised."""
    try:
        category_client.delete_category(category_id)
    except Exception as e:
        raise_http_error(e, "delete category")
