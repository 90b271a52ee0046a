"""
Health endpoints for monitoring and orchestration. No authentication.

/health/       per-component status (database, embeddings, chat)
/health/ready  readiness probe: 200 once startup finished, 503 before
"""

from fastapi import APIRouter, Request, Response, status as http_status
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Tuple

from api.models.responses import HealthResponse
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()

SEVERITY = ["healthy", "degraded", "unhealthy"]

ComponentCheck = Tuple[str, Dict[str, Any]]


def worst(statuses: List[str]) -> str:
    return max(statuses, key=SEVERITY.index, default="healthy")


def check_database(state) -> ComponentCheck:
    pool = getattr(state, "connection_pool", None)
    if pool is None:
        return "unhealthy", {"error": "Connection pool not initialized"}

    stats = pool.get_stats()
    if "error" in stats:
        return "unhealthy", stats
    if stats.get("pool_size", 0) == 0:
        return "unhealthy", stats
    # Exhausted pool: requests queue but still succeed
    if stats.get("pool_available", 0) == 0:
        return "degraded", stats
    return "healthy", stats


def check_embeddings(state) -> ComponentCheck:
    service = getattr(state, "embeddings_service", None)
    if service is None:
        return "unhealthy", {"error": "Embeddings service not initialized"}
    stats = service.get_stats()
    return "healthy", {
        "num_embeddings": stats.get("num_embeddings", 0),
        "embedding_dimension": stats.get("embedding_dimension"),
        "model": stats.get("model"),
    }


def check_chat(state) -> ComponentCheck:
    ai_support = getattr(state, "ai_support", None)
    if ai_support is None:
        return "degraded", {"error": "AI support unavailable"}
    return "healthy", {"model": ai_support.chat_client.model}


COMPONENTS: Dict[str, Callable[[Any], ComponentCheck]] = {
    "database": check_database,
    "embeddings": check_embeddings,
    "chat": check_chat,
}


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health Check",
    description="Component status. No authentication required (for monitoring systems).",
)
def health_check(request: Request) -> HealthResponse:
    """
    **Overall status** is the worst component status:
    - `healthy`: everything operational
    - `degraded`: chat unavailable or the pool exhausted; tickets and the
      knowledge base still work
    - `unhealthy`: database or embeddings unavailable
    """
    checks: Dict[str, Dict[str, Any]] = {}
    for name, check in COMPONENTS.items():
        try:
            component_status, details = check(request.app.state)
        except Exception as e:
            logger.error(f"Health check of {name} failed: {e}")
            component_status, details = "unhealthy", {"error": str(e)}
        checks[name] = {"status": component_status, **details}

    overall_status = worst([c["status"] for c in checks.values()])
    if overall_status != "healthy":
        summary = ", ".join(f"{name}={check['status']}" for name, check in checks.items())
        logger.warning(f"Health check: {overall_status} ({summary})")

    return HealthResponse(status=overall_status, timestamp=datetime.now(timezone.utc), checks=checks)


@router.get(
    "/ready",
    summary="Readiness Check",
    status_code=http_status.HTTP_200_OK,
    responses={503: {"description": "Startup has not finished"}},
)
def readiness_check(request: Request, response: Response):
    """Ready once the pool and the embeddings service exist; chat is optional."""
    missing = [
        name for name in ("connection_pool", "embeddings_service") if not hasattr(request.app.state, name)
    ]
    if missing:
        logger.error(f"Readiness check failed: {', '.join(missing)} not initialized")
        response.status_code = http_status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "missing": missing}
    return {"status": "ready"}
