"""
Team endpoints: CRUD, members, schedule and metrics.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from typing import Annotated, Any, Dict, List
from uuid import UUID

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_audit_client,
    get_team_client,
)
from api.models.requests import (
    TeamCreateRequest,
    TeamMemberRequest,
    TeamMemberUpdateRequest,
    TeamScheduleRequest,
    TeamUpdateRequest,
)
from api.models.responses import TeamMetricsResponse
from api.utils.audit import audit
from api.utils.errors import raise_http_error
from core.permissions import Permission
from core.schemas import Team, TeamMember, User
from core.storage_audit import AuditLogClient
from core.storage_team import TeamClient
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

TeamViewer = Annotated[User, Depends(require_permission(Permission.VIEW_TEAMS))]
TeamManager = Annotated[User, Depends(require_permission(Permission.MANAGE_TEAMS))]
MemberManager = Annotated[
    User, Depends(require_permission(Permission.MANAGE_TEAM_MEMBERS, Permission.MANAGE_TEAMS))
]
Teams = Annotated[TeamClient, Depends(get_team_client)]
AuditClient = Annotated[AuditLogClient, Depends(get_audit_client)]


@router.get("", response_model=List[Team], summary="List Teams")
def list_teams(actor: TeamViewer, team_client: Teams) -> List[Team]:
    try:
        return team_client.list_teams()
    except Exception as e:
        raise_http_error(e, "list teams")


@router.post("", response_model=Team, status_code=status.HTTP_201_CREATED, summary="Create Team")
def create_team(
    request: TeamCreateRequest, actor: TeamManager, team_client: Teams, audit_client: AuditClient
) -> Team:
    """Create a team. Team names are unique (409 on duplicates)."""
    try:
        team = team_client.create_team(request.name, request.description, request.schedule)
    except Exception as e:
        raise_http_error(e, "create team")
    audit(audit_client, "team.create", "team", team.id, actor.id, {"name": team.name})
    return team


@router.get("/{team_id}", response_model=Team, summary="Get Team")
def get_team(team_id: UUID, actor: TeamViewer, team_client: Teams) -> Team:
    try:
        team = team_client.get_team(team_id)
    except Exception as e:
        raise_http_error(e, "load team")
    if team is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Team {team_id} not found")
    return team


@router.patch("/{team_id}", response_model=Team, summary="Update Team")
def update_team(
    team_id: UUID,
    request: TeamUpdateRequest,
    actor: TeamManager,
    team_client: Teams,
    audit_client: AuditClient,
) -> Team:
    updates = request.to_updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        team = team_client.update_team(team_id, updates)
    except Exception as e:
        raise_http_error(e, "update team")
    audit(audit_client, "team.update", "team", team_id, actor.id, updates)
    return team


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Team")
def delete_team(team_id: UUID, actor: TeamManager, team_client: Teams, audit_client: AuditClient) -> None:
    """Delete a team; its tickets stay, without a team."""
    try:
        team_client.delete_team(team_id)
    except Exception as e:
        raise_http_error(e, "delete team")
    audit(audit_client, "team.delete", "team", team_id, actor.id)


# Members


@router.get("/{team_id}/members", response_model=List[TeamMember], summary="List Members")
def list_members(team_id: UUID, actor: TeamViewer, team_client: Teams) -> List[TeamMember]:
    try:
        return team_client.list_members(team_id)
    except Exception as e:
        raise_http_error(e, "list team members")


@router.post(
    "/{team_id}/members",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Add Member",
)
def add_member(
    team_id: UUID,
    request: TeamMemberRequest,
    actor: MemberManager,
    team_client: Teams,
    audit_client: AuditClient,
) -> None:
    try:
        team_client.add_member(team_id, request.user_id, role=request.role, skills=request.skills)
    except Exception as e:
        raise_http_error(e, "add team member")
    audit(
        audit_client,
        "team.add_member",
        "team",
        team_id,
        actor.id,
        {"user_id": request.user_id, "role": request.role},
    )


@router.patch(
    "/{team_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Update Member",
)
def update_member(
    team_id: UUID,
    user_id: UUID,
    request: TeamMemberUpdateRequest,
    actor: MemberManager,
    team_client: Teams,
) -> None:
    """Change a member's team role or skills."""
    try:
        team_client.update_member(team_id, user_id, role=request.role, skills=request.skills)
    except Exception as e:
        raise_http_error(e, "update team member")


@router.delete(
    "/{team_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove Member",
)
def remove_member(
    team_id: UUID,
    user_id: UUID,
    actor: MemberManager,
    team_client: Teams,
    audit_client: AuditClient,
) -> None:
    try:
        team_client.remove_member(team_id, user_id)
    except Exception as e:
        raise_http_error(e, "remove team member")
    audit(audit_client, "team.remove_member", "team", team_id, actor.id, {"user_id": user_id})


# Schedule and metrics


@router.get("/{team_id}/schedule", response_model=Dict[str, Any], summary="Get Schedule")
def get_schedule(team_id: UUID, actor: TeamViewer, team_client: Teams) -> Dict[str, Any]:
    try:
        return team_client.get_schedule(team_id)
    except Exception as e:
        raise_http_error(e, "load team schedule")


@router.put("/{team_id}/schedule", response_model=Dict[str, Any], summary="Set Schedule")
def set_schedule(
    team_id: UUID,
    request: TeamScheduleRequest,
    actor: Annotated[
        User, Depends(require_permission(Permission.MANAGE_TEAM_SCHEDULE, Permission.MANAGE_TEAMS))
    ],
    team_client: Teams,
) -> Dict[str, Any]:
    try:
        return team_client.set_schedule(team_id, request.schedule)
    except Exception as e:
        raise_http_error(e, "set team schedule")


@router.get("/{team_id}/metrics", response_model=TeamMetricsResponse, summary="Team Metrics")
def team_metrics(
    team_id: UUID,
    actor: Annotated[User, Depends(require_permission(Permission.VIEW_TEAM_METRICS, Permission.VIEW_ANALYTICS))],
    team_client: Teams,
) -> TeamMetricsResponse:
    """Open and resolved ticket counts, average resolution hours and member count."""
    try:
        return TeamMetricsResponse(**team_client.get_team_metrics(team_id))
    except Exception as e:
        raise_http_error(e, "compute team metrics")
