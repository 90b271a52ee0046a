"""
Storage client for per-ticket SLA state (sla_states table).
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from core.schemas import SLAState
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger

logger = get_logger(__name__)

SLA_STATE_COLUMNS = (
    "ticket_id",
    "config_id",
    "started_at",
    "paused_at",
    "total_paused_minutes",
    "responded_at",
    "response_breached",
    "resolution_breached",
    "breached_at",
    "last_escalation_threshold",
    "last_escalation_at",
    "stopped_at",
)

# Columns written back by save_state
MUTABLE_COLUMNS = SLA_STATE_COLUMNS[1:]


class SLAStateClient(BaseStorageClient):
    """One row per ticket; starting again replaces the previous clock."""

    def start(self, ticket_id: UUID, config_id: str, started_at: Optional[datetime] = None) -> SLAState:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO sla_states (ticket_id, config_id, started_at)
                    VALUES (%s, %s, COALESCE(%s, NOW()))
                    ON CONFLICT (ticket_id) DO UPDATE SET
                        config_id = EXCLUDED.config_id,
                        started_at = EXCLUDED.started_at,
                        paused_at = NULL,
                        total_paused_minutes = 0,
                        responded_at = NULL,
                        response_breached = FALSE,
                        resolution_breached = FALSE,
                        breached_at = NULL,
                        last_escalation_threshold = 0,
                        last_escalation_at = NULL,
                        stopped_at = NULL
                    RETURNING {column_list(SLA_STATE_COLUMNS)}
                    """,  # type: ignore
                    (ticket_id, config_id, started_at),
                )
                state = SLAState(**row_to_dict(SLA_STATE_COLUMNS, cur.fetchone()))
        logger.debug(f"SLA started for ticket {ticket_id} ({config_id})")
        return state

    def get_state(self, ticket_id: UUID) -> Optional[SLAState]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(SLA_STATE_COLUMNS)} FROM sla_states WHERE ticket_id = %s",  # type: ignore
                    (ticket_id,),
                )
                row = cur.fetchone()
        return SLAState(**row_to_dict(SLA_STATE_COLUMNS, row)) if row else None

    def save_state(self, state: SLAState) -> SLAState:
        """Write every mutable field of the state back."""
        data = state.model_dump()
        assignments = ", ".join(f"{column} = %s" for column in MUTABLE_COLUMNS)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE sla_states SET {assignments} WHERE ticket_id = %s",  # type: ignore
                    [data[column] for column in MUTABLE_COLUMNS] + [state.ticket_id],
                )
                if cur.rowcount == 0:
                    raise ValueError(f"SLA state for ticket {state.ticket_id} not found")
        return state

    def list_running(self) -> List[SLAState]:
        """States that have not been stopped."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {column_list(SLA_STATE_COLUMNS)} FROM sla_states
                    WHERE stopped_at IS NULL ORDER BY started_at
                    """  # type: ignore
                )
                return [SLAState(**row_to_dict(SLA_STATE_COLUMNS, r)) for r in cur.fetchall()]
