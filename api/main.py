"""
FastAPI application for the helpdesk backend.

Provides REST API endpoints for:
- Knowledge base articles, categories, full-text and semantic search
- Tickets with status workflow, SLA tracking and notifications
- AI support chat
- Users, roles, teams, audit logs and analytics
- Health checks

Architecture:
- Lifespan management for resource initialization/cleanup
- Connection pooling for concurrent requests
- Shared embeddings and chat services (initialized once at startup)
- Header-based API key authentication, acting user via X-User-ID

Run with:
    uvicorn api.main:app --reload  # Development
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --workers 4  # Production
"""

from contextlib import asynccontextmanager
import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from api.routers import (
    admin,
    ai_support,
    health,
    knowledge,
    notifications,
    roles,
    teams,
    tickets,
    users,
)
from api.utils.connection_pool import get_connection_pool, close_connection_pool
from core.ai_support import AISupportService, ChatCompletionClient, RouterAgent
from core.config import get_api_settings, get_chat_settings, get_helpdesk_settings
from core.embedding import EmbeddingGenerator
from core.embeddings_service import EmbeddingsService
from core.permissions import PermissionCache
from core.storage_article import ArticleClient
from core.storage_embedding import EmbeddingStorage
from utils.logger import get_logger, get_api_logger, configure_third_party_loggers

logger = get_logger(__name__)
access_logger = get_api_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    - Database connection pool
    - Embedding generator and EmbeddingsService
    - Chat services (optional: AI support returns 503 without them)
    - Shared permission cache

    Shutdown:
    - Close the connection pool
    """
    logger.info("=" * 80)
    logger.info("Starting helpdesk API...")
    logger.info("=" * 80)

    try:
        configure_third_party_loggers()
        settings = get_api_settings()
        helpdesk_settings = get_helpdesk_settings()
        logger.info(
            f"API Configuration: host={settings.HOST}, port={settings.PORT}, "
            f"workers={settings.WORKERS}, log_level={settings.LOG_LEVEL}"
        )

        logger.info(
            f"Initializing connection pool: min={settings.POOL_MIN_SIZE}, "
            f"max={settings.POOL_MAX_SIZE}, timeout={settings.POOL_TIMEOUT}s"
        )
        connection_pool = get_connection_pool(
            min_conn=settings.POOL_MIN_SIZE,
            max_conn=settings.POOL_MAX_SIZE,
            timeout=settings.POOL_TIMEOUT,
        )
        app.state.connection_pool = connection_pool
        logger.info("✓ Connection pool initialized")

        logger.info("Initializing embeddings service...")
        embedding_generator = EmbeddingGenerator()
        embedding_storage = EmbeddingStorage(
            embedding_dim=embedding_generator.expected_dim, connection_pool=connection_pool
        )
        article_client = ArticleClient(connection_pool=connection_pool)
        embeddings_service = EmbeddingsService(embedding_generator, embedding_storage, article_client)
        app.state.embeddings_service = embeddings_service
        stats = embeddings_service.get_stats()
        logger.info(
            f"✓ Embeddings ready: {stats.get('num_embeddings', 0)} embeddings, "
            f"dim={stats.get('embedding_dimension')}, model={stats.get('model')}"
        )

        logger.info("Initializing AI support...")
        try:
            chat_client = ChatCompletionClient()
            app.state.router_agent = RouterAgent(
                ChatCompletionClient(model=get_chat_settings().ROUTER_MODEL)
            )
            app.state.ai_support = AISupportService(embeddings_service, article_client, chat_client)
            logger.info("✓ AI support initialized")
        except Exception as e:
            logger.error(f"Failed to initialize AI support: {e}", exc_info=True)
            app.state.router_agent = None
            app.state.ai_support = None
            logger.warning("⚠ AI support unavailable - /api/v1/ai-support/chat will return 503")

        app.state.permission_cache = PermissionCache(
            ttl_seconds=helpdesk_settings.PERMISSION_CACHE_SECONDS
        )
        logger.info(f"✓ Permission cache ready (ttl={helpdesk_settings.PERMISSION_CACHE_SECONDS}s)")

        logger.info("=" * 80)
        logger.info("Helpdesk API startup complete!")
        logger.info(f"API Documentation: http://localhost:{settings.PORT}/docs")
        logger.info(f"Health Check: http://localhost:{settings.PORT}/health/")
        logger.info("=" * 80)

        yield

    except Exception as e:
        logger.error(f"Failed to initialize application: {e}", exc_info=True)
        raise

    finally:
        logger.info("=" * 80)
        logger.info("Shutting down helpdesk API...")
        logger.info("=" * 80)

        try:
            if hasattr(app.state, "connection_pool"):
                logger.info("Closing connection pool...")
                close_connection_pool()
                logger.info("✓ Connection pool closed")

            logger.info("Helpdesk API shutdown complete")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)


def create_app(use_lifespan: bool = True) -> FastAPI:
    """
    Build the application. Tests pass use_lifespan=False and populate
    app.state / dependency_overrides themselves.
    """
    app = FastAPI(
        title="Helpdesk API",
        description=(
            "Customer support backend: tickets with SLA tracking, a knowledge base "
            "with full-text and semantic search, and AI-assisted support chat.\n\n"
            "**Authentication**: every `/api/v1` endpoint requires `X-API-Key: your-api-key`; "
            "the acting user is identified by `X-User-ID`."
        ),
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(knowledge.router, prefix="/api/v1/knowledge", tags=["Knowledge Base"])
    app.include_router(tickets.router, prefix="/api/v1/tickets", tags=["Tickets"])
    app.include_router(ai_support.router, prefix="/api/v1/ai-support", tags=["AI Support"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])
    app.include_router(roles.router, prefix="/api/v1/roles", tags=["Roles"])
    app.include_router(teams.router, prefix="/api/v1/teams", tags=["Teams"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])
    app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])

    @app.get("/", include_in_schema=False)
    def root():
        """Redirect root to API documentation."""
        return RedirectResponse(url="/docs")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.1f}"
        if not request.url.path.startswith("/health"):
            access_logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
            )
        return response

    origins = [o.strip() for o in get_api_settings().CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=bool(origins) and "*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


app = create_app()


if __name__ == "__main__":
    # Development only; production runs the uvicorn command
    import uvicorn

    settings = get_api_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )
