"""
Storage module for support tickets.

Covers the tickets table and its satellites: comments, status and assignment
history, followers and linked problems. Status changes are only written
through change_status(), which keeps the ticket row and its status history in
one transaction; the transition rules themselves live in core.status_workflow.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import psycopg
from psycopg.types.json import Json

from core.schemas import (
    AssignmentHistoryEntry,
    LinkedProblem,
    StatusHistoryEntry,
    Ticket,
    TicketComment,
    TicketPriority,
    TicketSource,
    TicketStatus,
    TicketType,
)
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger, PerformanceLogger

logger = get_logger(__name__)

TICKET_COLUMNS = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "type",
    "source",
    "customer_id",
    "assignee_id",
    "team_id",
    "tags",
    "resolution",
    "due_date",
    "metadata",
    "created_at",
    "updated_at",
    "status_changed_at",
    "first_response_at",
    "resolved_at",
)

COMMENT_COLUMNS = ("id", "ticket_id", "author_id", "content", "is_internal", "created_at")

STATUS_HISTORY_COLUMNS = (
    "id",
    "ticket_id",
    "from_status",
    "to_status",
    "changed_by",
    "reason",
    "automation_triggered",
    "created_at",
)

ASSIGNMENT_HISTORY_COLUMNS = (
    "id",
    "ticket_id",
    "from_assignee_id",
    "to_assignee_id",
    "changed_by",
    "created_at",
)

SORTABLE_FIELDS = {"created_at", "updated_at", "priority", "status", "title"}

UPDATABLE_FIELDS = {
    "title",
    "description",
    "priority",
    "type",
    "tags",
    "resolution",
    "due_date",
    "team_id",
    "metadata",
}

# Priority sorts by severity, not alphabetically
PRIORITY_SORT_EXPR = (
    "CASE priority WHEN 'low' THEN 0 WHEN 'medium' THEN 1 "
    "WHEN 'high' THEN 2 WHEN 'urgent' THEN 3 END"
)


def _to_ticket(row: Tuple) -> Ticket:
    data = row_to_dict(TICKET_COLUMNS, row)
    data["tags"] = data["tags"] or []
    data["metadata"] = data["metadata"] or {}
    return Ticket(**data)


def _enum_values(values: Optional[Sequence[Any]], enum_cls) -> List[str]:
    return [enum_cls(v).value for v in values or []]


def _update_values(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Validate editable ticket fields and adapt them for the UPDATE."""
    if "status" in updates:
        raise ValueError("Status changes must go through the status workflow")
    unknown = set(updates) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

    values: Dict[str, Any] = {}
    for field, value in updates.items():
        if field == "priority":
            value = TicketPriority(value).value
        elif field == "type":
            value = TicketType(value).value
        elif field == "metadata":
            value = Json(value or {})
        elif field == "tags":
            value = list(value or [])
        elif field in ("title", "description") and (value is None or not str(value).strip()):
            raise ValueError(f"{field} cannot be empty")
        values[field] = value
    return values


class TicketClient(BaseStorageClient):
    """
    Storage client for tickets and their history tables.
    """

    def list_tickets(
        self,
        statuses: Optional[Sequence[TicketStatus]] = None,
        priorities: Optional[Sequence[TicketPriority]] = None,
        search: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        assignee_id: Optional[UUID] = None,
        customer_id: Optional[UUID] = None,
        team_id: Optional[UUID] = None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Ticket], int]:
        """
        List tickets with filters, sorting and pagination.

        Args:
            statuses: Only tickets in one of these statuses
            priorities: Only tickets with one of these priorities
            search: Case-insensitive substring of the title
            created_from: Created at or after
            created_to: Created at or before
            assignee_id: Assigned agent
            customer_id: Requesting customer
            team_id: Owning team
            page: 1-indexed page
            page_size: Rows per page (1 to 100)
            sort_by: One of created_at, updated_at, priority, status, title
            sort_order: asc or desc

        Returns:
            Tuple of (tickets on the page, total matching count)

        Raises:
            ValueError: If pagination or sort arguments are invalid
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= page_size <= 100:
            raise ValueError("page_size must be between 1 and 100")
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"sort_by must be one of {sorted(SORTABLE_FIELDS)}, got '{sort_by}'")
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got '{sort_order}'")

        conditions: List[str] = []
        params: List[Any] = []
        if statuses:
            conditions.append("status = ANY(%s)")
            params.append(_enum_values(statuses, TicketStatus))
        if priorities:
            conditions.append("priority = ANY(%s)")
            params.append(_enum_values(priorities, TicketPriority))
        if search and search.strip():
            conditions.append("title ILIKE %s")
            params.append(f"%{search.strip()}%")
        if created_from:
            conditions.append("created_at >= %s")
            params.append(created_from)
        if created_to:
            conditions.append("created_at <= %s")
            params.append(created_to)
        if assignee_id:
            conditions.append("assignee_id = %s")
            params.append(assignee_id)
        if customer_id:
            conditions.append("customer_id = %s")
            params.append(customer_id)
        if team_id:
            conditions.append("team_id = %s")
            params.append(team_id)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        sort_expr = PRIORITY_SORT_EXPR if sort_by == "priority" else sort_by
        offset = (page - 1) * page_size

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT COUNT(*) FROM tickets {where}", params)  # type: ignore
                total = cur.fetchone()[0]
                cur.execute(
                    f"""
                    SELECT {column_list(TICKET_COLUMNS)}
                    FROM tickets {where}
                    ORDER BY {sort_expr} {sort_order.upper()}, id
                    LIMIT %s OFFSET %s
                    """,  # type: ignore
                    params + [page_size, offset],
                )
                tickets = [_to_ticket(row) for row in cur.fetchall()]

        logger.debug(f"Listed {len(tickets)} of {total} tickets (page {page})")
        return tickets, total

    def list_tickets_by_status(self, statuses: Sequence[TicketStatus]) -> List[Ticket]:
        """Every ticket in one of the given statuses, oldest first."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(TICKET_COLUMNS)} FROM tickets
                    WHERE status = ANY(%s) ORDER BY created_at
                    """,  # type: ignore
                    (_enum_values(statuses, TicketStatus),),
                )
                return [_to_ticket(row) for row in cur.fetchall()]

    def get_ticket(self, ticket_id: UUID) -> Optional[Ticket]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(TICKET_COLUMNS)} FROM tickets WHERE id = %s",  # type: ignore
                    (ticket_id,),
                )
                row = cur.fetchone()
        return _to_ticket(row) if row else None

    def create_ticket(
        self,
        title: str,
        description: str,
        customer_id: UUID,
        priority: TicketPriority = TicketPriority.MEDIUM,
        type: TicketType = TicketType.QUESTION,
        source: TicketSource = TicketSource.WEB,
        assignee_id: Optional[UUID] = None,
        team_id: Optional[UUID] = None,
        tags: Optional[List[str]] = None,
        due_date: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Ticket:
        """
        Insert a new ticket in status open.

        Raises:
            ValueError: If title or description is empty
            ConnectionError: If database operation fails
        """
        if not title or not title.strip():
            raise ValueError("title cannot be empty")
        if not description or not description.strip():
            raise ValueError("description cannot be empty")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO tickets
                    (title, description, status, priority, type, source, customer_id,
                     assignee_id, team_id, tags, due_date, metadata)
                    VALUES (%s, %s, 'open', %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {column_list(TICKET_COLUMNS)}
                    """,  # type: ignore
                    (
                        title.strip(),
                        description,
                        TicketPriority(priority).value,
                        TicketType(type).value,
                        TicketSource(source).value,
                        customer_id,
                        assignee_id,
                        team_id,
                        list(tags or []),
                        due_date,
                        Json(metadata or {}),
                    ),
                )
                ticket = _to_ticket(cur.fetchone())

                cur.execute(
                    """
                    INSERT INTO ticket_status_history (ticket_id, from_status, to_status, changed_by, reason)
                    VALUES (%s, NULL, 'open', %s, 'Ticket created')
                    """,
                    (ticket.id, customer_id),
                )

        logger.info(f"Created ticket {ticket.id} ({ticket.priority.value}): {ticket.title[:50]}")
        return ticket

    def update_ticket(self, ticket_id: UUID, updates: Dict[str, Any]) -> Ticket:
        """
        Update editable ticket fields.

        Raises:
            ValueError: If the ticket is missing, a field is not editable, or
                the update tries to change the status
        """
        if not updates:
            raise ValueError("No fields to update")
        values = _update_values(updates)

        assignments = ", ".join(f"{field} = %s" for field in values)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE tickets SET {assignments}, updated_at = NOW()
                    WHERE id = %s
                    RETURNING {column_list(TICKET_COLUMNS)}
                    """,  # type: ignore
                    list(values.values()) + [ticket_id],
                )
                row = cur.fetchone()
        if not row:
            raise ValueError(f"Ticket {ticket_id} not found")
        logger.info(f"Updated ticket {ticket_id}: {sorted(values)}")
        return _to_ticket(row)

    def change_status(
        self,
        ticket_id: UUID,
        from_status: TicketStatus,
        to_status: TicketStatus,
        changed_by: Optional[UUID] = None,
        reason: Optional[str] = None,
        automation_triggered: bool = False,
        field_updates: Optional[Dict[str, Any]] = None,
    ) -> Ticket:
        """
        Move a ticket from one status to another and record the history row.

        The update only applies while the ticket is still in from_status, so
        two concurrent transitions cannot both succeed. field_updates (e.g. a
        resolution) are written by the same UPDATE.

        Raises:
            ValueError: If the ticket is missing or no longer in from_status,
                or a field in field_updates is not editable
        """
        from_status = TicketStatus(from_status)
        to_status = TicketStatus(to_status)
        values = _update_values(field_updates or {})
        assignments = "".join(f"{field} = %s, " for field in values)

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE tickets
                    SET {assignments}status = %s,
                        status_changed_at = NOW(),
                        updated_at = NOW(),
                        resolved_at = CASE WHEN %s = 'resolved' THEN NOW() ELSE resolved_at END
                    WHERE id = %s AND status = %s
                    RETURNING {column_list(TICKET_COLUMNS)}
                    """,  # type: ignore
                    list(values.values()) + [to_status.value, to_status.value, ticket_id, from_status.value],
                )
                row = cur.fetchone()
                if not row:
                    cur.execute("SELECT status FROM tickets WHERE id = %s", (ticket_id,))
                    current = cur.fetchone()
                    if not current:
                        raise ValueError(f"Ticket {ticket_id} not found")
                    raise ValueError(
                        f"Ticket {ticket_id} is {current[0]}, expected {from_status.value}"
                    )

                cur.execute(
                    """
                    INSERT INTO ticket_status_history
                    (ticket_id, from_status, to_status, changed_by, reason, automation_triggered)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        ticket_id,
                        from_status.value,
                        to_status.value,
                        changed_by,
                        reason,
                        automation_triggered,
                    ),
                )

        logger.info(
            f"Ticket {ticket_id}: {from_status.value} -> {to_status.value}"
            f"{' (automation)' if automation_triggered else ''}"
        )
        return _to_ticket(row)

    def get_status_history(self, ticket_id: UUID) -> List[StatusHistoryEntry]:
        """Status changes of a ticket, newest first."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(STATUS_HISTORY_COLUMNS)}
                    FROM ticket_status_history WHERE ticket_id = %s
                    ORDER BY created_at DESC, id DESC
                    """,  # type: ignore
                    (ticket_id,),
                )
                return [
                    StatusHistoryEntry(**row_to_dict(STATUS_HISTORY_COLUMNS, r))
                    for r in cur.fetchall()
                ]

    def record_first_response(self, ticket_id: UUID) -> bool:
        """
        Set first_response_at if it is not set yet.

        Returns:
            True if this call recorded the first response
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE tickets SET first_response_at = NOW()
                    WHERE id = %s AND first_response_at IS NULL
                    RETURNING id
                    """,
                    (ticket_id,),
                )
                return cur.fetchone() is not None

    # Comments

    def add_comment(
        self, ticket_id: UUID, author_id: UUID, content: str, is_internal: bool = False
    ) -> TicketComment:
        if not content or not content.strip():
            raise ValueError("content cannot be empty")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO ticket_comments (ticket_id, author_id, content, is_internal)
                        VALUES (%s, %s, %s, %s)
                        RETURNING {column_list(COMMENT_COLUMNS)}
                        """,  # type: ignore
                        (ticket_id, author_id, content, is_internal),
                    )
                except psycopg.errors.ForeignKeyViolation as e:
                    raise ValueError(f"Ticket {ticket_id} not found") from e
                comment = TicketComment(**row_to_dict(COMMENT_COLUMNS, cur.fetchone()))
                cur.execute("UPDATE tickets SET updated_at = NOW() WHERE id = %s", (ticket_id,))

        logger.debug(f"Comment {comment.id} added to ticket {ticket_id} (internal={is_internal})")
        return comment

    def list_comments(self, ticket_id: UUID, include_internal: bool = True) -> List[TicketComment]:
        query = f"SELECT {column_list(COMMENT_COLUMNS)} FROM ticket_comments WHERE ticket_id = %s"
        if not include_internal:
            query += " AND is_internal = FALSE"
        query += " ORDER BY created_at"

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (ticket_id,))  # type: ignore
                return [TicketComment(**row_to_dict(COMMENT_COLUMNS, r)) for r in cur.fetchall()]

    # Assignment

    def assign(
        self, ticket_id: UUID, assignee_id: Optional[UUID], changed_by: Optional[UUID] = None
    ) -> Tuple[Ticket, Optional[UUID]]:
        """
        Set the ticket assignee and record assignment history.

        Returns:
            Tuple of (updated ticket, previous assignee id)
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT assignee_id FROM tickets WHERE id = %s FOR UPDATE", (ticket_id,)
                )
                current = cur.fetchone()
                if not current:
                    raise ValueError(f"Ticket {ticket_id} not found")
                previous = current[0]

                cur.execute(
                    f"""
                    UPDATE tickets SET assignee_id = %s, updated_at = NOW()
                    WHERE id = %s
                    RETURNING {column_list(TICKET_COLUMNS)}
                    """,  # type: ignore
                    (assignee_id, ticket_id),
                )
                ticket = _to_ticket(cur.fetchone())
                cur.execute(
                    """
                    INSERT INTO ticket_assignment_history
                    (ticket_id, from_assignee_id, to_assignee_id, changed_by)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (ticket_id, previous, assignee_id, changed_by),
                )

        logger.info(f"Ticket {ticket_id} assigned: {previous} -> {assignee_id}")
        return ticket, previous

    def get_assignment_history(self, ticket_id: UUID) -> List[AssignmentHistoryEntry]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(ASSIGNMENT_HISTORY_COLUMNS)}
                    FROM ticket_assignment_history WHERE ticket_id = %s
                    ORDER BY created_at DESC
                    """,  # type: ignore
                    (ticket_id,),
                )
                return [
                    AssignmentHistoryEntry(**row_to_dict(ASSIGNMENT_HISTORY_COLUMNS, r))
                    for r in cur.fetchall()
                ]

    # Followers

    def add_follower(self, ticket_id: UUID, user_id: UUID) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        INSERT INTO ticket_followers (ticket_id, user_id) VALUES (%s, %s)
                        ON CONFLICT (ticket_id, user_id) DO NOTHING
                        """,
                        (ticket_id, user_id),
                    )
                except psycopg.errors.ForeignKeyViolation as e:
                    raise ValueError(f"Ticket {ticket_id} or user {user_id} not found") from e

    def remove_follower(self, ticket_id: UUID, user_id: UUID) -> bool:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM ticket_followers WHERE ticket_id = %s AND user_id = %s",
                    (ticket_id, user_id),
                )
                return cur.rowcount > 0

    def list_followers(self, ticket_id: UUID) -> List[UUID]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT user_id FROM ticket_followers WHERE ticket_id = %s ORDER BY created_at",
                    (ticket_id,),
                )
                return [row[0] for row in cur.fetchall()]

    # Linked problems

    def link_problem(
        self, ticket_id: UUID, related_ticket_id: UUID, relationship_type: str = "related"
    ) -> None:
        """
        Link two tickets.

        Raises:
            ValueError: If the ticket is linked to itself, either ticket is
                missing, or the link already exists
        """
        if ticket_id == related_ticket_id:
            raise ValueError("A ticket cannot be linked to itself")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        INSERT INTO ticket_relationships (ticket_id, related_ticket_id, relationship_type)
                        VALUES (%s, %s, %s)
                        """,
                        (ticket_id, related_ticket_id, relationship_type),
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(
                        f"Ticket {related_ticket_id} is already linked to {ticket_id}"
                    ) from e
                except psycopg.errors.ForeignKeyViolation as e:
                    raise ValueError(f"Ticket {related_ticket_id} not found") from e
        logger.info(f"Linked ticket {related_ticket_id} to {ticket_id} ({relationship_type})")

    def unlink_problem(self, ticket_id: UUID, related_ticket_id: UUID) -> bool:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM ticket_relationships
                    WHERE ticket_id = %s AND related_ticket_id = %s
                    """,
                    (ticket_id, related_ticket_id),
                )
                return cur.rowcount > 0

    def list_linked_problems(self, ticket_id: UUID) -> List[LinkedProblem]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT r.related_ticket_id, r.relationship_type, t.title, t.status,
                           t.priority, t.created_at, t.updated_at
                    FROM ticket_relationships r
                    JOIN tickets t ON t.id = r.related_ticket_id
                    WHERE r.ticket_id = %s
                    ORDER BY r.created_at DESC
                    """,
                    (ticket_id,),
                )
                columns = (
                    "related_ticket_id",
                    "relationship_type",
                    "title",
                    "status",
                    "priority",
                    "created_at",
                    "updated_at",
                )
                return [LinkedProblem(**row_to_dict(columns, r)) for r in cur.fetchall()]

    # Statistics

    def get_ticket_stats(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """
        Aggregate ticket statistics for tickets created in [start, end].

        Returns:
            Dictionary with total, by_status, by_priority, resolution_hours,
            sla_breaches, volume_trend and agents
        """
        if start > end:
            raise ValueError("start must be before end")

        window = (start, end)
        stats: Dict[str, Any] = {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
        }

        with PerformanceLogger(logger, "Ticket statistics"):
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT status, COUNT(*) FROM tickets
                        WHERE created_at BETWEEN %s AND %s GROUP BY status
                        """,
                        window,
                    )
                    stats["by_status"] = {row[0]: row[1] for row in cur.fetchall()}
                    stats["total"] = sum(stats["by_status"].values())

                    cur.execute(
                        """
                        SELECT priority, COUNT(*) FROM tickets
                        WHERE created_at BETWEEN %s AND %s GROUP BY priority
                        """,
                        window,
                    )
                    stats["by_priority"] = {row[0]: row[1] for row in cur.fetchall()}

                    cur.execute(
                        """
                        WITH first_resolved AS (
                            SELECT ticket_id, MIN(created_at) AS resolved_at
                            FROM ticket_status_history
                            WHERE to_status = 'resolved'
                            GROUP BY ticket_id
                        )
                        SELECT t.priority,
                               AVG(EXTRACT(EPOCH FROM (fr.resolved_at - t.created_at)) / 3600),
                               MIN(EXTRACT(EPOCH FROM (fr.resolved_at - t.created_at)) / 3600),
                               MAX(EXTRACT(EPOCH FROM (fr.resolved_at - t.created_at)) / 3600),
                               COUNT(*)
                        FROM tickets t
                        JOIN first_resolved fr ON fr.ticket_id = t.id
                        WHERE t.created_at BETWEEN %s AND %s
                        GROUP BY t.priority
                        """,
                        window,
                    )
                    stats["resolution_hours"] = {
                        row[0]: {
                            "avg": round(float(row[1]), 2),
                            "min": round(float(row[2]), 2),
                            "max": round(float(row[3]), 2),
                            "count": row[4],
                        }
                        for row in cur.fetchall()
                    }

                    cur.execute(
                        """
                        SELECT t.priority, COUNT(*)
                        FROM sla_states s
                        JOIN tickets t ON t.id = s.ticket_id
                        WHERE (s.response_breached OR s.resolution_breached)
                          AND t.created_at BETWEEN %s AND %s
                        GROUP BY t.priority
                        """,
                        window,
                    )
                    stats["sla_breaches"] = {row[0]: row[1] for row in cur.fetchall()}

                    cur.execute(
                        """
                        SELECT day, SUM(created), SUM(resolved)
                        FROM (
                            SELECT created_at::date AS day, 1 AS created, 0 AS resolved
                            FROM tickets WHERE created_at BETWEEN %s AND %s
                            UNION ALL
                            SELECT created_at::date, 0, 1
                            FROM ticket_status_history
                            WHERE to_status = 'resolved' AND created_at BETWEEN %s AND %s
                        ) v
                        GROUP BY day ORDER BY day
                        """,
                        window + window,
                    )
                    stats["volume_trend"] = [
                        {"date": row[0].isoformat(), "created": int(row[1]), "resolved": int(row[2])}
                        for row in cur.fetchall()
                    ]

                    cur.execute(
                        """
                        SELECT u.id, u.name,
                               COUNT(t.id),
                               COUNT(t.id) FILTER (WHERE t.status IN ('resolved', 'closed')),
                               AVG(EXTRACT(EPOCH FROM (t.resolved_at - t.created_at)) / 3600)
                                   FILTER (WHERE t.resolved_at IS NOT NULL),
                               COUNT(s.ticket_id) FILTER (
                                   WHERE s.response_breached OR s.resolution_breached
                               )
                        FROM tickets t
                        JOIN users u ON u.id = t.assignee_id
                        LEFT JOIN sla_states s ON s.ticket_id = t.id
                        WHERE t.created_at BETWEEN %s AND %s
                        GROUP BY u.id, u.name
                        ORDER BY 4 DESC, 3 DESC
                        """,
                        window,
                    )
                    stats["agents"] = [
                        {
                            "agent_id": str(row[0]),
                            "name": row[1],
                            "assigned": row[2],
                            "resolved": row[3],
                            "avg_resolution_hours": round(float(row[4]), 2) if row[4] is not None else None,
                            "sla_breaches": row[5],
                        }
                        for row in cur.fetchall()
                    ]

        logger.info(f"Ticket stats for {start.date()} to {end.date()}: {stats['total']} tickets")
        return stats
