"""
Admin endpoints: audit logs, search analytics and the SLA check run.
"""

from fastapi import APIRouter, Depends, Query
from typing import Annotated, List, Optional
from datetime import datetime
from uuid import UUID

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_audit_client,
    get_search_log_client,
    get_ticket_service,
)
from api.models.responses import SearchAnalyticsResponse, SLACheckResponse
from api.utils.errors import raise_http_error
from core.permissions import Permission
from core.schemas import AuditLog, User
from core.storage_audit import AuditLogClient
from core.storage_search_log import SearchLogClient
from core.ticket_service import TicketService
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get(
    "/audit-logs",
    response_model=List[AuditLog],
    summary="Audit Logs",
    description="Filtered audit trail, newest first.",
)
def list_audit_logs(
    actor: Annotated[User, Depends(require_permission(Permission.VIEW_SETTINGS))],
    audit_client: Annotated[AuditLogClient, Depends(get_audit_client)],
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_id: Optional[UUID] = None,
    action: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> List[AuditLog]:
    """
    **Filters:**
    - `entity_type` / `entity_id`: e.g. `ticket` and a ticket id
    - `actor_id`: who performed the action
    - `action`: e.g. `ticket.status_change`, `role.assign`
    - `start_time` / `end_time`: creation window
    """
    try:
        return audit_client.list_logs(
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            action=action,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        raise_http_error(e, "list audit logs")


@router.get(
    "/search-analytics",
    response_model=SearchAnalyticsResponse,
    summary="Search Analytics",
    description="Popular and zero-result queries, method counts and average latency over a day window.",
)
def search_analytics(
    actor: Annotated[User, Depends(require_permission(Permission.VIEW_ANALYTICS))],
    search_log_client: Annotated[SearchLogClient, Depends(get_search_log_client)],
    days: Annotated[int, Query(ge=1, le=365)] = 30,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> SearchAnalyticsResponse:
    """
    Queries are normalised (lowercase, trimmed) before grouping, so
    "Reset Password" and "reset password " count as one.
    """
    try:
        return SearchAnalyticsResponse(**search_log_client.get_search_analytics(days=days, limit=limit))
    except Exception as e:
        raise_http_error(e, "compute search analytics")


@router.post(
    "/sla-check",
    response_model=SLACheckResponse,
    summary="Run SLA Checks",
    description="Evaluate SLAs of active tickets, record breaches, run escalations and status automations.",
)
def run_sla_check(
    actor: Annotated[User, Depends(require_permission(Permission.MANAGE_TICKETS))],
    ticket_service: Annotated[TicketService, Depends(get_ticket_service)],
) -> SLACheckResponse:
    """
    Same job as `python main.py sla-check`, for schedulers that prefer HTTP.
    Failures on individual tickets are counted in `errors`.
    """
    logger.info(f"SLA check run requested by {actor.id}")
    try:
        return SLACheckResponse(**ticket_service.run_sla_checks())
    except Exception as e:
        raise_http_error(e, "run SLA checks")
