"""
Storage module for the append-only audit log.

audit_logs uses a BIGSERIAL primary key and is never updated.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from psycopg.types.json import Json
from pydantic_core import to_jsonable_python

from core.schemas import AuditLog
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger

logger = get_logger(__name__)

AUDIT_COLUMNS = ("id", "actor_id", "action", "entity_type", "entity_id", "changes", "created_at")


class AuditLogClient(BaseStorageClient):
    """Storage client for the audit_logs table."""

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        actor_id: Optional[UUID] = None,
        changes: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Append an audit entry.

        Args:
            action: What happened, e.g. 'ticket.create' or 'role.assign'
            entity_type: Kind of entity, e.g. 'ticket'
            entity_id: Identifier of the entity (stored as text)
            actor_id: User who performed the action
            changes: JSON-serialisable details

        Returns:
            The new audit log id
        """
        if not action or not entity_type:
            raise ValueError("action and entity_type are required")

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO audit_logs (actor_id, action, entity_type, entity_id, changes)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        actor_id,
                        action,
                        entity_type,
                        str(entity_id) if entity_id is not None else None,
                        Json(to_jsonable_python(changes or {})),
                    ),
                )
                log_id = cur.fetchone()[0]
        logger.debug(f"Audit {log_id}: {action} {entity_type}/{entity_id} by {actor_id}")
        return log_id

    def list_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        action: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AuditLog]:
        """Filtered audit entries, newest first."""
        query = f"SELECT {column_list(AUDIT_COLUMNS)} FROM audit_logs WHERE TRUE"
        params: List[Any] = []

        if entity_type:
            query += " AND entity_type = %s"
            params.append(entity_type)
        if entity_id:
            query += " AND entity_id = %s"
            params.append(str(entity_id))
        if actor_id:
            query += " AND actor_id = %s"
            params.append(actor_id)
        if action:
            query += " AND action = %s"
            params.append(action)
        if start_time:
            query += " AND created_at >= %s"
            params.append(start_time)
        if end_time:
            query += " AND created_at <= %s"
            params.append(end_time)

        query += " ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s"
        params += [limit, offset]

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, tuple(params))  # type: ignore
                logs = []
                for row in cur.fetchall():
                    data = row_to_dict(AUDIT_COLUMNS, row)
                    data["changes"] = data["changes"] or {}
                    logs.append(AuditLog(**data))
                return logs
