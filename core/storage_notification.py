"""
Storage client for in-app notifications.
"""

from typing import Iterable, List, Optional
from uuid import UUID

from core.schemas import Notification
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger

logger = get_logger(__name__)

NOTIFICATION_COLUMNS = ("id", "recipient_id", "ticket_id", "kind", "message", "read_at", "created_at")


class NotificationClient(BaseStorageClient):
    """Storage client for the notifications table."""

    def create_notifications(
        self,
        recipient_ids: Iterable[UUID],
        kind: str,
        message: str,
        ticket_id: Optional[UUID] = None,
    ) -> int:
        """
        Insert one notification per distinct recipient.

        Returns:
            Number of notifications created
        """
        recipients = list(dict.fromkeys(r for r in recipient_ids if r is not None))
        if not recipients:
            return 0

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO notifications (recipient_id, ticket_id, kind, message)
                    VALUES (%s, %s, %s, %s)
                    """,
                    [(recipient, ticket_id, kind, message) for recipient in recipients],
                )
        logger.debug(f"Created {len(recipients)} '{kind}' notifications for ticket {ticket_id}")
        return len(recipients)

    def list_notifications(
        self, recipient_id: UUID, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        query = f"SELECT {column_list(NOTIFICATION_COLUMNS)} FROM notifications WHERE recipient_id = %s"
        if unread_only:
            query += " AND read_at IS NULL"
        query += " ORDER BY created_at DESC, id DESC LIMIT %s"

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (recipient_id, limit))  # type: ignore
                return [Notification(**row_to_dict(NOTIFICATION_COLUMNS, r)) for r in cur.fetchall()]

    def mark_read(self, notification_id: int, recipient_id: UUID) -> Notification:
        """
        Mark a notification as read. Already-read notifications keep their
        original read_at.

        Raises:
            ValueError: If the notification does not exist for this recipient
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE notifications SET read_at = COALESCE(read_at, NOW())
                    WHERE id = %s AND recipient_id = %s
                    RETURNING {column_list(NOTIFICATION_COLUMNS)}
                    """,  # type: ignore
                    (notification_id, recipient_id),
                )
                row = cur.fetchone()
        if not row:
            raise ValueError(f"Notification {notification_id} not found")
        return Notification(**row_to_dict(NOTIFICATION_COLUMNS, row))
