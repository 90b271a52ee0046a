"""
Storage clients for users and role permission overrides.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

import psycopg

from core.permissions import Role, parse_permissions
from core.schemas import User
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger

logger = get_logger(__name__)

USER_COLUMNS = ("id", "email", "name", "role", "custom_permissions", "is_active", "created_at", "updated_at")


def _to_user(row) -> User:
    data = row_to_dict(USER_COLUMNS, row)
    data["custom_permissions"] = data["custom_permissions"] or []
    return User(**data)


class UserClient(BaseStorageClient):
    """Storage client for the users table."""

    def create_user(
        self,
        email: str,
        name: str,
        role: Role = Role.CUSTOMER,
        custom_permissions: Optional[List[str]] = None,
    ) -> User:
        """
        Create a user.

        Raises:
            ValueError: If email or name is empty, the role or a permission is
                unknown, or the email is already registered
        """
        if not email or "@" not in email:
            raise ValueError("A valid email is required")
        if not name or not name.strip():
            raise ValueError("name cannot be empty")
        role = Role(role)
        permissions = [p.value for p in parse_permissions(custom_permissions or [])]
        email = email.strip().lower()

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO users (email, name, role, custom_permissions)
                        VALUES (%s, %s, %s, %s)
                        RETURNING {column_list(USER_COLUMNS)}
                        """,  # type: ignore
                        (email, name.strip(), role.value, permissions),
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"User with email {email} already exists") from e
                user = _to_user(cur.fetchone())

        logger.info(f"Created user {user.id} ({user.role})")
        return user

    def get_user(self, user_id: UUID) -> Optional[User]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(USER_COLUMNS)} FROM users WHERE id = %s",  # type: ignore
                    (user_id,),
                )
                row = cur.fetchone()
        return _to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(USER_COLUMNS)} FROM users WHERE email = %s",  # type: ignore
                    (email.strip().lower(),),
                )
                row = cur.fetchone()
        return _to_user(row) if row else None

    def list_users(
        self,
        role: Optional[Role] = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[User]:
        query = f"SELECT {column_list(USER_COLUMNS)} FROM users WHERE TRUE"
        params: List[Any] = []
        if role:
            query += " AND role = %s"
            params.append(Role(role).value)
        if active_only:
            query += " AND is_active"
        query += " ORDER BY name LIMIT %s OFFSET %s"
        params += [limit, offset]

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)  # type: ignore
                return [_to_user(r) for r in cur.fetchall()]

    def list_supervisors(self, team_id: Optional[UUID] = None) -> List[UUID]:
        """
        Active supervisors of a team, or every active supervisor when
        team_id is None.
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                if team_id:
                    cur.execute(
                        """
                        SELECT u.id FROM users u
                        JOIN team_members m ON m.user_id = u.id
                        WHERE m.team_id = %s AND u.role = 'supervisor' AND u.is_active
                        """,
                        (team_id,),
                    )
                else:
                    cur.execute("SELECT id FROM users WHERE role = 'supervisor' AND is_active")
                return [row[0] for row in cur.fetchall()]

    def update_user(self, user_id: UUID, updates: Dict[str, Any]) -> User:
        """Update name, email or is_active."""
        allowed = {"name", "email", "is_active"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not updates:
            raise ValueError("No fields to update")
        updates = dict(updates)
        if "email" in updates:
            updates["email"] = updates["email"].strip().lower()

        assignments = ", ".join(f"{field} = %s" for field in updates)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        UPDATE users SET {assignments}, updated_at = NOW()
                        WHERE id = %s
                        RETURNING {column_list(USER_COLUMNS)}
                        """,  # type: ignore
                        list(updates.values()) + [user_id],
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"User with email {updates.get('email')} already exists") from e
                row = cur.fetchone()
        if not row:
            raise ValueError(f"User {user_id} not found")
        return _to_user(row)

    def set_role(
        self, user_id: UUID, role: Role, custom_permissions: Optional[List[str]] = None
    ) -> User:
        """
        Assign a role. custom_permissions replaces the user's extra
        permissions when given and is left unchanged when None.
        """
        role = Role(role)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                if custom_permissions is None:
                    cur.execute(
                        f"""
                        UPDATE users SET role = %s, updated_at = NOW() WHERE id = %s
                        RETURNING {column_list(USER_COLUMNS)}
                        """,  # type: ignore
                        (role.value, user_id),
                    )
                else:
                    permissions = [p.value for p in parse_permissions(custom_permissions)]
                    cur.execute(
                        f"""
                        UPDATE users SET role = %s, custom_permissions = %s, updated_at = NOW()
                        WHERE id = %s
                        RETURNING {column_list(USER_COLUMNS)}
                        """,  # type: ignore
                        (role.value, permissions, user_id),
                    )
                row = cur.fetchone()
        if not row:
            raise ValueError(f"User {user_id} not found")
        logger.info(f"User {user_id} now has role {role.value}")
        return _to_user(row)


class RolePermissionClient(BaseStorageClient):
    """Storage client for the role_permissions table."""

    def get_role_permissions(self, role: str) -> List[str]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT permission FROM role_permissions WHERE role = %s ORDER BY permission",
                    (role,),
                )
                return [row[0] for row in cur.fetchall()]

    def list_all(self) -> Dict[str, List[str]]:
        """Stored overrides keyed by role. Roles without rows are absent."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT role, permission FROM role_permissions ORDER BY role, permission")
                result: Dict[str, List[str]] = {}
                for role, permission in cur.fetchall():
                    result.setdefault(role, []).append(permission)
                return result

    def set_role_permissions(self, role: Role, permissions: List[str]) -> List[str]:
        """
        Replace the stored permissions of a role.

        Raises:
            ValueError: If the role or any permission is unknown
        """
        role = Role(role)
        values = sorted({p.value for p in parse_permissions(permissions)})

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM role_permissions WHERE role = %s", (role.value,))
                for permission in values:
                    cur.execute(
                        "INSERT INTO role_permissions (role, permission) VALUES (%s, %s)",
                        (role.value, permission),
                    )

        logger.info(f"Role {role.value} now has {len(values)} stored permissions")
        return values
