"""
Role endpoints: list roles with permissions, replace a role's permissions,
assign a role to a user.

Permission changes invalidate the shared permission cache so they apply on
the next request.
"""

from fastapi import APIRouter, Depends
from typing import Annotated, List
from uuid import UUID

from api.dependencies import (
    verify_api_key,
    require_permission,
    get_audit_client,
    get_permission_checker,
    get_role_permission_client,
    get_user_client,
)
from api.models.requests import RoleAssignRequest, RolePermissionsRequest
from api.models.responses import RoleResponse
from api.utils.audit import audit
from api.utils.errors import raise_http_error
from core.permissions import DEFAULT_ROLE_PERMISSIONS, ROLE_LABELS, Permission, PermissionChecker, Role
from core.schemas import User
from core.storage_audit import AuditLogClient
from core.storage_user import RolePermissionClient, UserClient
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])

RoleManager = Annotated[User, Depends(require_permission(Permission.MANAGE_ROLES))]
Checker = Annotated[PermissionChecker, Depends(get_permission_checker)]
AuditClient = Annotated[AuditLogClient, Depends(get_audit_client)]


@router.get("", response_model=List[RoleResponse], summary="List Roles")
def list_roles(
    actor: Annotated[User, Depends(require_permission(Permission.VIEW_ROLES))],
    role_client: Annotated[RolePermissionClient, Depends(get_role_permission_client)],
) -> List[RoleResponse]:
    """
    Every role with its own permissions: stored overrides when present,
    otherwise the built-in defaults. Inherited permissions are not listed.
    """
    try:
        stored = role_client.list_all()
    except Exception as e:
        raise_http_error(e, "list roles")

    return [
        RoleResponse(
            role=role.value,
            label=ROLE_LABELS[role],
            permissions=stored.get(role.value) or [p.value for p in DEFAULT_ROLE_PERMISSIONS[role]],
            is_default=role.value not in stored,
        )
        for role in Role
    ]


@router.put("/{role}/permissions", response_model=RoleResponse, summary="Set Role Permissions")
def set_role_permissions(
    role: Role,
    request: RolePermissionsRequest,
    actor: RoleManager,
    role_client: Annotated[RolePermissionClient, Depends(get_role_permission_client)],
    checker: Checker,
    audit_client: AuditClient,
) -> RoleResponse:
    """Replace a role's permissions. Unknown permission names return 400."""
    try:
        before = role_client.get_role_permissions(role.value)
        permissions = role_client.set_role_permissions(role, request.permissions)
    except Exception as e:
        raise_http_error(e, "set role permissions")

    # Every user of the role (and of roles inheriting it) is affected
    checker.cache.invalidate()
    audit(
        audit_client,
        "role.update_permissions",
        "role",
        role.value,
        actor.id,
        {"before": before, "after": permissions},
    )
    logger.info(f"Role {role.value} now has {len(permissions)} permissions (by {actor.id})")

    return RoleResponse(role=role.value, label=ROLE_LABELS[role], permissions=permissions, is_default=False)


@router.put("/users/{user_id}", response_model=User, summary="Assign Role")
def assign_role(
    user_id: UUID,
    request: RoleAssignRequest,
    actor: RoleManager,
    user_client: Annotated[UserClient, Depends(get_user_client)],
    checker: Checker,
    audit_client: AuditClient,
) -> User:
    """Give a user a role, optionally replacing their custom permissions."""
    try:
        before = user_client.get_user(user_id)
        if before is None:
            raise ValueError(f"User {user_id} not found")
        user = user_client.set_role(user_id, request.role, request.custom_permissions)
    except Exception as e:
        raise_http_error(e, "assign role")

    checker.cache.invalidate(user_id)
    audit(
        audit_client,
        "role.assign",
        "user",
        user_id,
        actor.id,
        {
            "from": before.role,
            "to": user.role,
            "custom_permissions": user.custom_permissions,
        },
    )
    return user
