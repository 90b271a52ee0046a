"""
Roles, permissions and the effective-permission check.

Effective permissions of a user are the permissions of their role (the
role_permissions rows, or DEFAULT_ROLE_PERMISSIONS when the role has none),
plus everything inherited from lower roles in ROLE_HIERARCHY, plus the user's
own custom_permissions.
"""

import time
from enum import Enum
from threading import Lock
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from utils.logger import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    AGENT = "agent"
    CUSTOMER = "customer"


ROLE_LABELS = {
    Role.ADMIN: "Administrator",
    Role.SUPERVISOR: "Team Supervisor",
    Role.AGENT: "Support Agent",
    Role.CUSTOMER: "Customer",
}

AGENT_ROLES = (Role.ADMIN, Role.SUPERVISOR, Role.AGENT)


def is_agent_role(role: "Role | str") -> bool:
    return Role(role) in AGENT_ROLES


class Permission(str, Enum):
    # Users and roles
    VIEW_USERS = "VIEW_USERS"
    MANAGE_USERS = "MANAGE_USERS"
    VIEW_ROLES = "VIEW_ROLES"
    MANAGE_ROLES = "MANAGE_ROLES"

    # Teams
    VIEW_TEAMS = "VIEW_TEAMS"
    MANAGE_TEAMS = "MANAGE_TEAMS"
    MANAGE_TEAM_MEMBERS = "MANAGE_TEAM_MEMBERS"
    MANAGE_TEAM_SCHEDULE = "MANAGE_TEAM_SCHEDULE"
    VIEW_TEAM_METRICS = "VIEW_TEAM_METRICS"

    # Tickets
    VIEW_TICKETS = "VIEW_TICKETS"
    MANAGE_TICKETS = "MANAGE_TICKETS"
    ASSIGN_TICKETS = "ASSIGN_TICKETS"
    CREATE_TICKETS = "CREATE_TICKETS"
    EDIT_TICKETS = "EDIT_TICKETS"

    # Knowledge base
    VIEW_KNOWLEDGE_BASE = "VIEW_KNOWLEDGE_BASE"
    MANAGE_KNOWLEDGE_BASE = "MANAGE_KNOWLEDGE_BASE"

    # Customer portal
    VIEW_PORTAL = "VIEW_PORTAL"
    MANAGE_PORTAL = "MANAGE_PORTAL"

    # Settings
    VIEW_SETTINGS = "VIEW_SETTINGS"
    MANAGE_SETTINGS = "MANAGE_SETTINGS"

    # Analytics
    VIEW_ANALYTICS = "VIEW_ANALYTICS"
    MANAGE_ANALYTICS = "MANAGE_ANALYTICS"
    EXPORT_REPORTS = "EXPORT_REPORTS"

    # Customer self-service
    VIEW_OWN_TICKETS = "VIEW_OWN_TICKETS"
    CREATE_OWN_TICKETS = "CREATE_OWN_TICKETS"
    COMMENT_OWN_TICKETS = "COMMENT_OWN_TICKETS"
    VIEW_PUBLIC_ARTICLES = "VIEW_PUBLIC_ARTICLES"
    RATE_ARTICLES = "RATE_ARTICLES"
    MANAGE_OWN_PROFILE = "MANAGE_OWN_PROFILE"


DEFAULT_ROLE_PERMISSIONS: Dict[Role, List[Permission]] = {
    Role.ADMIN: list(Permission),
    Role.SUPERVISOR: [
        Permission.VIEW_ROLES,
        Permission.VIEW_TICKETS,
        Permission.CREATE_TICKETS,
        Permission.EDIT_TICKETS,
        Permission.ASSIGN_TICKETS,
        Permission.VIEW_TEAMS,
        Permission.MANAGE_TEAM_SCHEDULE,
        Permission.VIEW_USERS,
        Permission.VIEW_ANALYTICS,
        Permission.EXPORT_REPORTS,
    ],
    Role.AGENT: [
        Permission.VIEW_TICKETS,
        Permission.CREATE_TICKETS,
        Permission.EDIT_TICKETS,
        Permission.VIEW_TEAMS,
        Permission.VIEW_ANALYTICS,
    ],
    Role.CUSTOMER: [
        Permission.VIEW_OWN_TICKETS,
        Permission.CREATE_OWN_TICKETS,
        Permission.COMMENT_OWN_TICKETS,
        Permission.VIEW_PUBLIC_ARTICLES,
        Permission.RATE_ARTICLES,
        Permission.MANAGE_OWN_PROFILE,
    ],
}

# Each role inherits the permissions of the roles listed for it
ROLE_HIERARCHY: Dict[Role, List[Role]] = {
    Role.ADMIN: [Role.SUPERVISOR, Role.AGENT],
    Role.SUPERVISOR: [Role.AGENT],
    Role.AGENT: [],
    Role.CUSTOMER: [],
}


def parse_permissions(names: Iterable[str]) -> List[Permission]:
    """
    Convert permission names to Permission members.

    Raises:
        ValueError: If any name is not a known permission
    """
    parsed = []
    unknown = []
    for name in names:
        try:
            parsed.append(Permission(name))
        except ValueError:
            unknown.append(name)
    if unknown:
        raise ValueError(f"Unknown permissions: {sorted(unknown)}")
    return parsed


def parse_known(names: Iterable[str]) -> List[Permission]:
    """Like parse_permissions, but stored names that are no longer defined are skipped."""
    known = []
    for name in names:
        try:
            known.append(Permission(name))
        except ValueError:
            logger.warning(f"Ignoring unknown stored permission '{name}'")
    return known


class PermissionCache:
    """
    Per-user cache of effective permissions with a fixed time-to-live.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[UUID, Tuple[float, FrozenSet[Permission]]] = {}
        self._lock = Lock()

    def get(self, user_id: UUID) -> Optional[FrozenSet[Permission]]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            stored_at, permissions = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[user_id]
                return None
            return permissions

    def set(self, user_id: UUID, permissions: FrozenSet[Permission]) -> None:
        with self._lock:
            self._entries[user_id] = (self._clock(), permissions)

    def invalidate(self, user_id: Optional[UUID] = None) -> None:
        """Drop one user's entry, or everything when user_id is None."""
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)


class PermissionChecker:
    """
    Resolve and check effective permissions.

    Args:
        user_client: UserClient used to load the user (role, custom permissions)
        role_client: RolePermissionClient used to load role_permissions rows
        cache: PermissionCache shared across requests
    """

    def __init__(self, user_client, role_client, cache: Optional[PermissionCache] = None):
        self.user_client = user_client
        self.role_client = role_client
        self.cache = cache or PermissionCache()

    def role_permissions(self, role: Role) -> Set[Permission]:
        """Permissions of a role including those inherited through ROLE_HIERARCHY."""
        permissions: Set[Permission] = set()
        for current in [role] + ROLE_HIERARCHY.get(role, []):
            stored = self.role_client.get_role_permissions(current.value)
            if stored:
                permissions.update(parse_known(stored))
            else:
                permissions.update(DEFAULT_ROLE_PERMISSIONS[current])
        return permissions

    def get_user_permissions(self, user_id: UUID) -> FrozenSet[Permission]:
        """
        Effective permissions of a user.

        Raises:
            ValueError: If the user does not exist or is inactive
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        user = self.user_client.get_user(user_id)
        if user is None or not user.is_active:
            raise ValueError(f"User {user_id} not found")

        permissions = self.role_permissions(Role(user.role))
        permissions.update(parse_known(user.custom_permissions))

        effective = frozenset(permissions)
        self.cache.set(user_id, effective)
        logger.debug(f"Resolved {len(effective)} permissions for user {user_id} ({user.role})")
        return effective

    def has_permission(self, user_id: UUID, permission: Permission) -> bool:
        return permission in self.get_user_permissions(user_id)

    def has_any_permission(self, user_id: UUID, permissions: Iterable[Permission]) -> bool:
        effective = self.get_user_permissions(user_id)
        return any(p in effective for p in permissions)
