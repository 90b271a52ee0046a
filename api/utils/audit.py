"""Best-effort audit logging for admin endpoints."""

from typing import Any, Dict, Optional
from uuid import UUID

from core.storage_audit import AuditLogClient
from utils.logger import get_logger

logger = get_logger(__name__)


def audit(
    audit_client: AuditLogClient,
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_id: Optional[UUID],
    changes: Optional[Dict[str, Any]] = None,
) -> None:
    """Write an audit entry; failures are logged and never fail the request."""
    try:
        audit_client.log(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            changes=changes,
        )
    except Exception as e:
        logger.error(f"Audit log '{action}' failed for {entity_type} {entity_id}: {e}")
