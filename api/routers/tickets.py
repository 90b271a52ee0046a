"""
Ticket endpoints: CRUD, status workflow, comments, assignment, followers,
linked problems, SLA status and statistics.

Agents (VIEW_TICKETS) work on every ticket; customers (VIEW_OWN_TICKETS)
only see and comment on their own, and never see internal comments.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Annotated, List, Literal, Optional
from datetime import datetime, timedelta, timezone
from uuid import UUID

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_permission_checker,
    get_sla_tracker,
    get_ticket_client,
    get_ticket_service,
    get_workflow,
)
from api.models.requests import (
    AssignRequest,
    CommentCreateRequest,
    FollowerRequest,
    LinkProblemRequest,
    StatusChangeRequest,
    TicketCreateRequest,
    TicketUpdateRequest,
)
from api.models.responses import (
    AvailableTransition,
    PaginationInfo,
    TicketListResponse,
    TicketSLAResponse,
    TicketStatsResponse,
)
from api.utils.errors import raise_http_error
from core.permissions import Permission, PermissionChecker
from core.schemas import (
    AssignmentHistoryEntry,
    LinkedProblem,
    StatusHistoryEntry,
    Ticket,
    TicketComment,
    TicketPriority,
    TicketStatus,
    User,
)
from core.sla import SLATracker, utcnow
from core.status_workflow import StatusWorkflow
from core.storage_ticket import TicketClient
from core.ticket_service import TicketService
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

TicketViewer = Annotated[
    User, Depends(require_permission(Permission.VIEW_TICKETS, Permission.VIEW_OWN_TICKETS))
]
TicketAgent = Annotated[User, Depends(require_permission(Permission.VIEW_TICKETS))]
TicketEditor = Annotated[User, Depends(require_permission(Permission.EDIT_TICKETS))]
Checker = Annotated[PermissionChecker, Depends(get_permission_checker)]
Tickets = Annotated[TicketClient, Depends(get_ticket_client)]
Service = Annotated[TicketService, Depends(get_ticket_service)]


def _sees_all(user: User, checker: PermissionChecker) -> bool:
    return checker.has_permission(user.id, Permission.VIEW_TICKETS)


def _visible_ticket(ticket_client: TicketClient, ticket_id: UUID, user: User, checker: PermissionChecker) -> Ticket:
    """Load a ticket the user may see; other customers' tickets look missing."""
    try:
        ticket = ticket_client.get_ticket(ticket_id)
        visible = ticket is not None and (ticket.customer_id == user.id or _sees_all(user, checker))
    except Exception as e:
        raise_http_error(e, "load ticket")
    if not visible:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Ticket {ticket_id} not found")
    return ticket


@router.get("", response_model=TicketListResponse, summary="List Tickets")
def list_tickets(
    user: TicketViewer,
    ticket_client: Tickets,
    checker: Checker,
    ticket_status: Annotated[Optional[List[TicketStatus]], Query(alias="status")] = None,
    priority: Annotated[Optional[List[TicketPriority]], Query()] = None,
    search: Annotated[Optional[str], Query(max_length=200, description="Title contains (case-insensitive)")] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    assignee_id: Optional[UUID] = None,
    customer_id: Optional[UUID] = None,
    team_id: Optional[UUID] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    sort_by: Literal["created_at", "updated_at", "priority", "status", "title"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
) -> TicketListResponse:
    """
    List tickets with filters and pagination.

    `status` and `priority` may be repeated. Customers only get their own
    tickets whatever `customer_id` says.
    """
    try:
        if not _sees_all(user, checker):
            customer_id = user.id
        tickets, total = ticket_client.list_tickets(
            statuses=ticket_status,
            priorities=priority,
            search=search,
            created_from=created_from,
            created_to=created_to,
            assignee_id=assignee_id,
            customer_id=customer_id,
            team_id=team_id,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except Exception as e:
        raise_http_error(e, "list tickets")

    return TicketListResponse(tickets=tickets, pagination=PaginationInfo.build(page, page_size, total))


@router.post("", response_model=Ticket, status_code=status.HTTP_201_CREATED, summary="Create Ticket")
def create_ticket(
    request: TicketCreateRequest,
    user: Annotated[
        User, Depends(require_permission(Permission.CREATE_TICKETS, Permission.CREATE_OWN_TICKETS))
    ],
    checker: Checker,
    service: Service,
) -> Ticket:
    """
    Create a ticket in status `open` and start its SLA clock.

    Agents may open tickets on behalf of a customer via `customer_id`;
    customers always open tickets for themselves and cannot set the
    assignee or team.
    """
    try:
        on_behalf = checker.has_permission(user.id, Permission.CREATE_TICKETS)
        return service.create_ticket(
            title=request.title,
            description=request.description,
            customer_id=(request.customer_id or user.id) if on_behalf else user.id,
            priority=request.priority,
            type=request.type,
            source=request.source,
            actor_id=user.id,
            assignee_id=request.assignee_id if on_behalf else None,
            team_id=request.team_id if on_behalf else None,
            tags=request.tags,
            due_date=request.due_date,
            metadata=request.metadata,
        )
    except Exception as e:
        raise_http_error(e, "create ticket")


@router.get("/stats", response_model=TicketStatsResponse, summary="Ticket Statistics")
def ticket_stats(
    user: Annotated[User, Depends(require_permission(Permission.VIEW_ANALYTICS))],
    ticket_client: Tickets,
    start: Annotated[Optional[datetime], Query(alias="from")] = None,
    end: Annotated[Optional[datetime], Query(alias="to")] = None,
) -> TicketStatsResponse:
    """
    Aggregates for tickets created in `[from, to]` (default: the last 30 days):
    counts by status and priority, resolution hours, SLA breaches, the daily
    volume trend and per-agent metrics.
    """
    end = end or utcnow()
    start = start or end - timedelta(days=30)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    try:
        return TicketStatsResponse(**ticket_client.get_ticket_stats(start, end))
    except Exception as e:
        raise_http_error(e, "compute ticket statistics")


@router.get("/{ticket_id}", response_model=Ticket, summary="Get Ticket")
def get_ticket(ticket_id: UUID, user: TicketViewer, ticket_client: Tickets, checker: Checker) -> Ticket:
    return _visible_ticket(ticket_client, ticket_id, user, checker)


@router.patch("/{ticket_id}", response_model=Ticket, summary="Update Ticket")
def update_ticket(
    ticket_id: UUID,
    request: TicketUpdateRequest,
    user: TicketEditor,
    service: Service,
) -> Ticket:
    """
    Update ticket fields. Status has its own endpoint. Changing the priority
    of an active ticket restarts its SLA under the new priority's config.
    """
    updates = request.to_updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        return service.update_ticket(ticket_id, updates, actor_id=user.id)
    except Exception as e:
        raise_http_error(e, "update ticket")


@router.post("/{ticket_id}/status", response_model=Ticket, summary="Change Ticket Status")
def change_status(
    ticket_id: UUID,
    request: StatusChangeRequest,
    user: TicketEditor,
    service: Service,
) -> Ticket:
    """
    Move a ticket along the status workflow.

    **Default workflow:**
    - `open -> in_progress`: requires an assignee
    - `in_progress -> waiting`: pauses the SLA
    - `waiting -> in_progress`: resumes the SLA
    - `in_progress -> resolved`: requires `resolution`, stops the SLA
    - `resolved -> closed`: after 7 days resolved

    A transition that is not allowed returns 400 with the reason.
    """
    try:
        return service.change_status(
            ticket_id,
            request.status,
            actor_id=user.id,
            role=user.role,
            reason=request.reason,
            resolution=request.resolution,
        )
    except Exception as e:
        raise_http_error(e, "change ticket status")


@router.get(
    "/{ticket_id}/transitions",
    response_model=List[AvailableTransition],
    summary="Available Transitions",
)
def available_transitions(
    ticket_id: UUID,
    user: TicketAgent,
    ticket_client: Tickets,
    checker: Checker,
    workflow: Annotated[StatusWorkflow, Depends(get_workflow)],
) -> List[AvailableTransition]:
    """Transitions out of the ticket's current status, with whether each would pass now."""
    ticket = _visible_ticket(ticket_client, ticket_id, user, checker)
    now = utcnow()
    transitions = []
    for rule in workflow.get_available_transitions(ticket.status, user.role):
        valid, message = workflow.validate_transition(ticket, rule.to_status, user.role, now)
        transitions.append(
            AvailableTransition(
                to_status=rule.to_status,
                allowed_roles=rule.allowed_roles,
                valid=valid,
                message=message,
            )
        )
    return transitions


@router.get(
    "/{ticket_id}/history",
    response_model=List[StatusHistoryEntry],
    summary="Status History",
)
def status_history(
    ticket_id: UUID, user: TicketViewer, ticket_client: Tickets, checker: Checker
) -> List[StatusHistoryEntry]:
    _visible_ticket(ticket_client, ticket_id, user, checker)
    try:
        return ticket_client.get_status_history(ticket_id)
    except Exception as e:
        raise_http_error(e, "load status history")


# Comments


@router.get("/{ticket_id}/comments", response_model=List[TicketComment], summary="List Comments")
def list_comments(
    ticket_id: UUID,
    user: TicketViewer,
    ticket_client: Tickets,
    checker: Checker,
    service: Service,
) -> List[TicketComment]:
    _visible_ticket(ticket_client, ticket_id, user, checker)
    try:
        return service.list_comments(ticket_id, viewer_role=user.role)
    except Exception as e:
        raise_http_error(e, "list comments")


@router.post(
    "/{ticket_id}/comments",
    response_model=TicketComment,
    status_code=status.HTTP_201_CREATED,
    summary="Add Comment",
)
def add_comment(
    ticket_id: UUID,
    request: CommentCreateRequest,
    user: Annotated[
        User, Depends(require_permission(Permission.EDIT_TICKETS, Permission.COMMENT_OWN_TICKETS))
    ],
    ticket_client: Tickets,
    checker: Checker,
    service: Service,
) -> TicketComment:
    """
    Add a comment. The first public reply from an agent records the ticket's
    first response. Customers cannot post internal comments.
    """
    _visible_ticket(ticket_client, ticket_id, user, checker)
    try:
        return service.add_comment(
            ticket_id,
            author_id=user.id,
            author_role=user.role,
            content=request.content,
            is_internal=request.is_internal,
        )
    except Exception as e:
        raise_http_error(e, "add comment")


# Assignment


@router.post("/{ticket_id}/assign", response_model=Ticket, summary="Assign Ticket")
def assign_ticket(
    ticket_id: UUID,
    request: AssignRequest,
    user: Annotated[User, Depends(require_permission(Permission.ASSIGN_TICKETS))],
    service: Service,
) -> Ticket:
    try:
        return service.assign_ticket(ticket_id, request.assignee_id, actor_id=user.id)
    except Exception as e:
        raise_http_error(e, "assign ticket")


@router.get(
    "/{ticket_id}/assignment-history",
    response_model=List[AssignmentHistoryEntry],
    summary="Assignment History",
)
def assignment_history(ticket_id: UUID, user: TicketAgent, ticket_client: Tickets) -> List[AssignmentHistoryEntry]:
    try:
        return ticket_client.get_assignment_history(ticket_id)
    except Exception as e:
        raise_http_error(e, "load assignment history")


# Followers


@router.get("/{ticket_id}/followers", response_model=List[UUID], summary="List Followers")
def list_followers(ticket_id: UUID, user: TicketAgent, ticket_client: Tickets) -> List[UUID]:
    try:
        return ticket_client.list_followers(ticket_id)
    except Exception as e:
        raise_http_error(e, "list followers")


@router.post("/{ticket_id}/followers", status_code=status.HTTP_204_NO_CONTENT, summary="Follow Ticket")
def follow_ticket(
    ticket_id: UUID, request: FollowerRequest, user: TicketAgent, ticket_client: Tickets
) -> None:
    try:
        ticket_client.add_follower(ticket_id, request.user_id or user.id)
    except Exception as e:
        raise_http_error(e, "follow ticket")


@router.delete(
    "/{ticket_id}/followers/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unfollow Ticket",
)
def unfollow_ticket(ticket_id: UUID, user_id: UUID, user: TicketAgent, ticket_client: Tickets) -> None:
    try:
        removed = ticket_client.remove_follower(ticket_id, user_id)
    except Exception as e:
        raise_http_error(e, "unfollow ticket")
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} does not follow ticket {ticket_id}",
        )


# Linked problems


@router.get(
    "/{ticket_id}/linked-problems",
    response_model=List[LinkedProblem],
    summary="List Linked Problems",
)
def list_linked_problems(ticket_id: UUID, user: TicketAgent, ticket_client: Tickets) -> List[LinkedProblem]:
    try:
        return ticket_client.list_linked_problems(ticket_id)
    except Exception as e:
        raise_http_error(e, "list linked problems")


@router.post(
    "/{ticket_id}/linked-problems",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Link Problem",
)
def link_problem(
    ticket_id: UUID, request: LinkProblemRequest, user: TicketEditor, ticket_client: Tickets
) -> None:
    """Link another ticket. Self-links return 400, duplicates 409."""
    try:
        ticket_client.link_problem(ticket_id, request.related_ticket_id, request.relationship_type)
    except Exception as e:
        raise_http_error(e, "link problem")


@router.delete(
    "/{ticket_id}/linked-problems/{related_ticket_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Unlink Problem",
)
def unlink_problem(
    ticket_id: UUID, related_ticket_id: UUID, user: TicketEditor, ticket_client: Tickets
) -> None:
    try:
        removed = ticket_client.unlink_problem(ticket_id, related_ticket_id)
    except Exception as e:
        raise_http_error(e, "unlink problem")
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tickets {ticket_id} and {related_ticket_id} are not linked",
        )


# SLA


@router.get("/{ticket_id}/sla", response_model=TicketSLAResponse, summary="Ticket SLA Status")
def ticket_sla(
    ticket_id: UUID,
    user: TicketAgent,
    ticket_client: Tickets,
    checker: Checker,
    sla_tracker: Annotated[SLATracker, Depends(get_sla_tracker)],
) -> TicketSLAResponse:
    """The ticket's SLA clock, its config and a live evaluation."""
    _visible_ticket(ticket_client, ticket_id, user, checker)
    try:
        state = sla_tracker.state_client.get_state(ticket_id)
    except Exception as e:
        raise_http_error(e, "load SLA state")

    if state is None:
        return TicketSLAResponse(ticket_id=ticket_id)
    policy = sla_tracker.policy
    return TicketSLAResponse(
        ticket_id=ticket_id,
        state=state,
        config=policy.get_config(state.config_id),
        evaluation=policy.evaluate(state),
    )
