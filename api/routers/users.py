"""
User endpoints: create, list, get, update and effective permissions.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Annotated, List, Optional
from uuid import UUID

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_audit_client,
    get_current_user,
    get_permission_checker,
    get_user_client,
)
from api.models.requests import UserCreateRequest, UserUpdateRequest
from api.models.responses import EffectivePermissionsResponse
from api.utils.audit import audit
from api.utils.errors import raise_http_error
from core.permissions import Permission, PermissionChecker, Role
from core.schemas import User
from core.storage_audit import AuditLogClient
from core.storage_user import UserClient
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

UserViewer = Annotated[User, Depends(require_permission(Permission.VIEW_USERS))]
UserManager = Annotated[User, Depends(require_permission(Permission.MANAGE_USERS))]
Users = Annotated[UserClient, Depends(get_user_client)]
Checker = Annotated[PermissionChecker, Depends(get_permission_checker)]


@router.get("", response_model=List[User], summary="List Users")
def list_users(
    actor: UserViewer,
    user_client: Users,
    role: Optional[Role] = None,
    active_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> List[User]:
    try:
        return user_client.list_users(role=role, active_only=active_only, limit=limit, offset=offset)
    except Exception as e:
        raise_http_error(e, "list users")


@router.post("", response_model=User, status_code=status.HTTP_201_CREATED, summary="Create User")
def create_user(
    request: UserCreateRequest,
    actor: UserManager,
    user_client: Users,
    audit_client: Annotated[AuditLogClient, Depends(get_audit_client)],
) -> User:
    """Create a user. A registered email returns 409; unknown permissions 400."""
    try:
        user = user_client.create_user(
            email=request.email,
            name=request.name,
            role=request.role,
            custom_permissions=request.custom_permissions,
        )
    except Exception as e:
        raise_http_error(e, "create user")

    audit(audit_client, "user.create", "user", user.id, actor.id, {"email": user.email, "role": user.role})
    return user


@router.get("/me", response_model=User, summary="Current User")
def me(user: Annotated[User, Depends(get_current_user)]) -> User:
    return user


@router.get("/{user_id}", response_model=User, summary="Get User")
def get_user(
    user_id: UUID,
    actor: Annotated[User, Depends(get_current_user)],
    user_client: Users,
    checker: Checker,
) -> User:
    """Users may always read themselves; others need VIEW_USERS."""
    try:
        if actor.id != user_id and not checker.has_permission(actor.id, Permission.VIEW_USERS):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: VIEW_USERS")
        user = user_client.get_user(user_id)
    except Exception as e:
        raise_http_error(e, "load user")
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")
    return user


@router.patch("/{user_id}", response_model=User, summary="Update User")
def update_user(
    user_id: UUID,
    request: UserUpdateRequest,
    actor: UserManager,
    user_client: Users,
    checker: Checker,
    audit_client: Annotated[AuditLogClient, Depends(get_audit_client)],
) -> User:
    """Update name, email or the active flag. Deactivated users lose API access at once."""
    updates = request.to_updates()
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        user = user_client.update_user(user_id, updates)
    except Exception as e:
        raise_http_error(e, "update user")

    if "is_active" in updates:
        checker.cache.invalidate(user_id)
    audit(audit_client, "user.update", "user", user_id, actor.id, updates)
    return user


@router.get(
    "/{user_id}/permissions",
    response_model=EffectivePermissionsResponse,
    summary="Effective Permissions",
)
def user_permissions(
    user_id: UUID,
    actor: Annotated[User, Depends(get_current_user)],
    user_client: Users,
    checker: Checker,
) -> EffectivePermissionsResponse:
    """Role permissions (with inherited roles) plus the user's custom permissions."""
    try:
        if actor.id != user_id and not checker.has_permission(actor.id, Permission.VIEW_USERS):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: VIEW_USERS")
        user = actor if actor.id == user_id else user_client.get_user(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")
        permissions = checker.get_user_permissions(user_id)
    except Exception as e:
        raise_http_error(e, "load permissions")

    return EffectivePermissionsResponse(
        user_id=user_id,
        role=user.role,
        permissions=sorted(p.value for p in permissions),
    )
