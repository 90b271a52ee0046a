"""
Storage client for support teams, their members, schedules and metrics.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

import psycopg
from psycopg.types.json import Json

from core.schemas import Team, TeamMember
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger

logger = get_logger(__name__)

TEAM_COLUMNS = ("id", "name", "description", "schedule", "created_at", "updated_at")
MEMBER_COLUMNS = ("team_id", "user_id", "role", "skills", "joined_at", "name", "email")


def _to_team(row) -> Team:
    data = row_to_dict(TEAM_COLUMNS, row)
    data["schedule"] = data["schedule"] or {}
    return Team(**data)


class TeamClient(BaseStorageClient):
    """Storage client for the teams and team_members tables."""

    def list_teams(self) -> List[Team]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {column_list(TEAM_COLUMNS)} FROM teams ORDER BY name")  # type: ignore
                return [_to_team(r) for r in cur.fetchall()]

    def get_team(self, team_id: UUID) -> Optional[Team]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(TEAM_COLUMNS)} FROM teams WHERE id = %s",  # type: ignore
                    (team_id,),
                )
                row = cur.fetchone()
        return _to_team(row) if row else None

    def get_team_by_name(self, name: str) -> Optional[Team]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(TEAM_COLUMNS)} FROM teams WHERE name = %s",  # type: ignore
                    (name,),
                )
                row = cur.fetchone()
        return _to_team(row) if row else None

    def create_team(
        self,
        name: str,
        description: Optional[str] = None,
        schedule: Optional[Dict[str, Any]] = None,
    ) -> Team:
        if not name or not name.strip():
            raise ValueError("name cannot be empty")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO teams (name, description, schedule)
                        VALUES (%s, %s, %s)
                        RETURNING {column_list(TEAM_COLUMNS)}
                        """,  # type: ignore
                        (name.strip(), description, Json(schedule or {})),
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"Team '{name}' already exists") from e
                team = _to_team(cur.fetchone())
        logger.info(f"Created team '{team.name}' ({team.id})")
        return team

    def update_team(self, team_id: UUID, updates: Dict[str, Any]) -> Team:
        allowed = {"name", "description"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not updates:
            raise ValueError("No fields to update")
        if "name" in updates and (not updates["name"] or not updates["name"].strip()):
            raise ValueError("name cannot be empty")

        assignments = ", ".join(f"{field} = %s" for field in updates)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        UPDATE teams SET {assignments}, updated_at = NOW()
                        WHERE id = %s
                        RETURNING {column_list(TEAM_COLUMNS)}
                        """,  # type: ignore
                        list(updates.values()) + [team_id],
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"Team '{updates.get('name')}' already exists") from e
                row = cur.fetchone()
        if not row:
            raise ValueError(f"Team {team_id} not found")
        return _to_team(row)

    def delete_team(self, team_id: UUID) -> None:
        """Delete a team. Its tickets keep existing without a team."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE tickets SET team_id = NULL WHERE team_id = %s", (team_id,))
                cur.execute("DELETE FROM teams WHERE id = %s", (team_id,))
                if cur.rowcount == 0:
                    raise ValueError(f"Team {team_id} not found")
        logger.info(f"Deleted team {team_id}")

    # Members

    def add_member(
        self,
        team_id: UUID,
        user_id: UUID,
        role: str = "member",
        skills: Optional[List[str]] = None,
    ) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        INSERT INTO team_members (team_id, user_id, role, skills)
                        VALUES (%s, %s, %s, %s)
                        """,
                        (team_id, user_id, role, list(skills or [])),
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"User {user_id} is already a member of team {team_id}") from e
                except psycopg.errors.ForeignKeyViolation as e:
                    raise ValueError(f"Team {team_id} or user {user_id} not found") from e
        logger.info(f"Added user {user_id} to team {team_id} as {role}")

    def update_member(
        self,
        team_id: UUID,
        user_id: UUID,
        role: Optional[str] = None,
        skills: Optional[List[str]] = None,
    ) -> None:
        if role is None and skills is None:
            raise ValueError("No fields to update")
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE team_members
                    SET role = COALESCE(%s, role), skills = COALESCE(%s, skills)
                    WHERE team_id = %s AND user_id = %s
                    """,
                    (role, list(skills) if skills is not None else None, team_id, user_id),
                )
                if cur.rowcount == 0:
                    raise ValueError(f"User {user_id} is not a member of team {team_id}")

    def remove_member(self, team_id: UUID, user_id: UUID) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM team_members WHERE team_id = %s AND user_id = %s",
                    (team_id, user_id),
                )
                if cur.rowcount == 0:
                    raise ValueError(f"User {user_id} is not a member of team {team_id}")

    def list_members(self, team_id: UUID) -> List[TeamMember]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT m.team_id, m.user_id, m.role, m.skills, m.joined_at, u.name, u.email
                    FROM team_members m
                    JOIN users u ON u.id = m.user_id
                    WHERE m.team_id = %s
                    ORDER BY u.name
                    """,
                    (team_id,),
                )
                members = []
                for row in cur.fetchall():
                    data = row_to_dict(MEMBER_COLUMNS, row)
                    data["skills"] = data["skills"] or []
                    members.append(TeamMember(**data))
                return members

    def get_member_ids(self, team_id: UUID) -> List[UUID]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT user_id FROM team_members WHERE team_id = %s", (team_id,))
                return [row[0] for row in cur.fetchall()]

    # Schedule and metrics

    def get_schedule(self, team_id: UUID) -> Dict[str, Any]:
        team = self.get_team(team_id)
        if team is None:
            raise ValueError(f"Team {team_id} not found")
        return team.schedule

    def set_schedule(self, team_id: UUID, schedule: Dict[str, Any]) -> Dict[str, Any]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE teams SET schedule = %s, updated_at = NOW() WHERE id = %s RETURNING schedule",
                    (Json(schedule), team_id),
                )
                row = cur.fetchone()
        if not row:
            raise ValueError(f"Team {team_id} not found")
        return row[0] or {}

    def get_team_metrics(self, team_id: UUID) -> Dict[str, Any]:
        """Open/resolved counts and average resolution hours of the team's tickets."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM teams WHERE id = %s", (team_id,))
                if not cur.fetchone():
                    raise ValueError(f"Team {team_id} not found")
                cur.execute(
                    """
                    SELECT
                        COUNT(*) FILTER (WHERE status NOT IN ('resolved', 'closed')),
                        COUNT(*) FILTER (WHERE status IN ('resolved', 'closed')),
                        AVG(EXTRACT(EPOCH FROM (resolved_at - created_at)) / 3600)
                            FILTER (WHERE resolved_at IS NOT NULL),
                        (SELECT COUNT(*) FROM team_members WHERE team_id = %s)
                    FROM tickets
                    WHERE team_id = %s
                    """,
                    (team_id, team_id),
                )
                row = cur.fetchone()

        return {
            "team_id": str(team_id),
            "open_tickets": row[0],
            "resolved_tickets": row[1],
            "avg_resolution_hours": round(float(row[2]), 2) if row[2] is not None else None,
            "member_count": row[3],
        }
