"""
Dependency injection for FastAPI endpoints.

Provides reusable dependencies for:
- API key authentication
- The acting user (X-User-ID header) and permission checks
- Storage clients bound to the shared connection pool
- Services assembled from those clients (tickets, workflow, SLA)
- Shared embeddings and AI support services from app.state
"""

from fastapi import Depends, Header, HTTPException, status, Request
from typing import Annotated, Optional
from uuid import UUID

from core.config import get_api_settings
from core.ai_support import AISupportService, RouterAgent
from core.embeddings_service import EmbeddingsService
from core.knowledge_base import KnowledgeBaseService
from core.notifications import Notifier
from core.permissions import Permission, PermissionCache, PermissionChecker
from core.schemas import User
from core.sla import SLATracker
from core.status_workflow import StatusWorkflow
from core.storage_article import ArticleClient
from core.storage_audit import AuditLogClient
from core.storage_category import CategoryClient
from core.storage_notification import NotificationClient
from core.storage_search_log import SearchLogClient
from core.storage_sla import SLAStateClient
from core.storage_team import TeamClient
from core.storage_ticket import TicketClient
from core.storage_user import RolePermissionClient, UserClient
from core.ticket_service import TicketService
from utils.logger import get_logger

logger = get_logger(__name__)


async def verify_api_key(
    x_api_key: Annotated[
        str, Header(description="API authentication key", alias="X-API-Key")
    ],
) -> str:
    """
    Verify the X-API-Key header.

    API_API_KEY is the primary key; API_ALLOWED_API_KEYS adds more as a
    comma-separated list.

    Raises:
        HTTPException: 401 if the key is not accepted
        HTTPException: 500 if no keys are configured
    """
    try:
        settings = get_api_settings()
    except Exception as e:
        logger.error(f"Failed to load API settings: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API configuration error",
        )

    valid_keys = set()
    if settings.API_KEY:
        valid_keys.add(settings.API_KEY.get_secret_value())
    if settings.ALLOWED_API_KEYS:
        valid_keys.update(k.strip() for k in settings.ALLOWED_API_KEYS.split(",") if k.strip())

    if not valid_keys:
        logger.error("No API keys configured (API_API_KEY is empty)")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API authentication not properly configured",
        )

    if x_api_key not in valid_keys:
        # Never log the full key
        logger.warning(f"Invalid API key attempt: {x_api_key[:8]}*** (length: {len(x_api_key)})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return x_api_key


def get_connection_pool(request: Request):
    try:
        return request.app.state.connection_pool
    except AttributeError:
        logger.error("Connection pool not found in app.state (not initialized)")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Connection pool not initialized",
        )


ConnectionPoolDep = Annotated[object, Depends(get_connection_pool)]


# Storage clients: one per request, sharing the pool


def get_article_client(pool: ConnectionPoolDep) -> ArticleClient:
    return ArticleClient(connection_pool=pool)


def get_category_client(pool: ConnectionPoolDep) -> CategoryClient:
    return CategoryClient(connection_pool=pool)


def get_ticket_client(pool: ConnectionPoolDep) -> TicketClient:
    return TicketClient(connection_pool=pool)


def get_user_client(pool: ConnectionPoolDep) -> UserClient:
    return UserClient(connection_pool=pool)


def get_role_permission_client(pool: ConnectionPoolDep) -> RolePermissionClient:
    return RolePermissionClient(connection_pool=pool)


def get_team_client(pool: ConnectionPoolDep) -> TeamClient:
    return TeamClient(connection_pool=pool)


def get_audit_client(pool: ConnectionPoolDep) -> AuditLogClient:
    return AuditLogClient(connection_pool=pool)


def get_search_log_client(pool: ConnectionPoolDep) -> SearchLogClient:
    return SearchLogClient(connection_pool=pool)


def get_notification_client(pool: ConnectionPoolDep) -> NotificationClient:
    return NotificationClient(connection_pool=pool)


def get_sla_state_client(pool: ConnectionPoolDep) -> SLAStateClient:
    return SLAStateClient(connection_pool=pool)


# Shared services from app.state


def get_embeddings_service(request: Request) -> EmbeddingsService:
    """
    The EmbeddingsService created at startup.

    Raises:
        HTTPException: 500 if it was never initialized
    """
    try:
        return request.app.state.embeddings_service
    except AttributeError:
        logger.error("Embeddings service not found in app.state (not initialized)")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Embeddings service not initialized",
        )


def get_ai_support(request: Request) -> AISupportService:
    """
    The AI support service, or 503 when chat failed to initialize at startup.
    """
    ai_support = getattr(request.app.state, "ai_support", None)
    if ai_support is None:
        logger.warning("AI support requested but chat services are unavailable")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI support is not available",
        )
    return ai_support


def get_router_agent(request: Request) -> RouterAgent:
    router_agent = getattr(request.app.state, "router_agent", None)
    if router_agent is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI support is not available",
        )
    return router_agent


def get_permission_cache(request: Request) -> PermissionCache:
    cache = getattr(request.app.state, "permission_cache", None)
    if cache is None:
        # First request without a lifespan (tests, scripts)
        cache = PermissionCache()
        request.app.state.permission_cache = cache
    return cache


def get_permission_checker(
    user_client: Annotated[UserClient, Depends(get_user_client)],
    role_client: Annotated[RolePermissionClient, Depends(get_role_permission_client)],
    cache: Annotated[PermissionCache, Depends(get_permission_cache)],
) -> PermissionChecker:
    return PermissionChecker(user_client, role_client, cache)


# Composed services


def get_notifier(
    notification_client: Annotated[NotificationClient, Depends(get_notification_client)],
    ticket_client: Annotated[TicketClient, Depends(get_ticket_client)],
    team_client: Annotated[TeamClient, Depends(get_team_client)],
    user_client: Annotated[UserClient, Depends(get_user_client)],
) -> Notifier:
    return Notifier(notification_client, ticket_client, team_client, user_client)


def get_sla_tracker(
    state_client: Annotated[SLAStateClient, Depends(get_sla_state_client)],
) -> SLATracker:
    return SLATracker(state_client)


def get_workflow(
    ticket_client: Annotated[TicketClient, Depends(get_ticket_client)],
    sla_tracker: Annotated[SLATracker, Depends(get_sla_tracker)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    audit_client: Annotated[AuditLogClient, Depends(get_audit_client)],
) -> StatusWorkflow:
    return StatusWorkflow(ticket_client, sla_tracker, notifier, audit_client)


def get_ticket_service(
    ticket_client: Annotated[TicketClient, Depends(get_ticket_client)],
    sla_tracker: Annotated[SLATracker, Depends(get_sla_tracker)],
    workflow: Annotated[StatusWorkflow, Depends(get_workflow)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    team_client: Annotated[TeamClient, Depends(get_team_client)],
    audit_client: Annotated[AuditLogClient, Depends(get_audit_client)],
) -> TicketService:
    return TicketService(ticket_client, sla_tracker, workflow, notifier, team_client, audit_client)


def get_knowledge_base(
    request: Request,
    article_client: Annotated[ArticleClient, Depends(get_article_client)],
    audit_client: Annotated[AuditLogClient, Depends(get_audit_client)],
) -> KnowledgeBaseService:
    # Without an embeddings service articles are still editable, just not indexed
    embeddings_service = getattr(request.app.state, "embeddings_service", None)
    return KnowledgeBaseService(article_client, embeddings_service, audit_client)


# Acting user


def get_current_user(
    user_client: Annotated[UserClient, Depends(get_user_client)],
    x_user_id: Annotated[
        Optional[str], Header(description="Acting user id", alias="X-User-ID")
    ] = None,
) -> User:
    """
    Resolve the acting user from the X-User-ID header.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID
        HTTPException: 404 if the user does not exist or is inactive
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID must be a UUID",
        )

    try:
        user = user_client.get_user(user_id)
    except ConnectionError as e:
        logger.error(f"Failed to load acting user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database temporarily unavailable",
        )

    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found",
        )
    return user


def require_permission(*permissions: Permission):
    """
    Dependency factory: the acting user must hold at least one of permissions.

    Example:
        >>> @router.get("/tickets")
        >>> def list_tickets(user: Annotated[User, Depends(require_permission(Permission.VIEW_TICKETS))]):
        >>>     ...
    """

    def dependency(
        user: Annotated[User, Depends(get_current_user)],
        checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
    ) -> User:
        try:
            allowed = checker.has_any_permission(user.id, permissions)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ConnectionError as e:
            logger.error(f"Permission lookup failed for user {user.id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Database temporarily unavailable",
            )

        if not allowed:
            names = ", ".join(p.value for p in permissions)
            logger.warning(f"User {user.id} ({user.role}) denied: requires one of {names}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {names}",
            )
        return user

    return dependency
