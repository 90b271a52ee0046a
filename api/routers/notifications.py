"""
Notification endpoints for the acting user.
"""

from fastapi import APIRouter, Depends, Query
from typing import Annotated, List

from api.dependencies import verify_api_key, get_current_user, get_notification_client
from api.utils.errors import raise_http_error
from core.schemas import Notification, User
from core.storage_notification import NotificationClient
from utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("", response_model=List[Notification], summary="List Notifications")
def list_notifications(
    user: Annotated[User, Depends(get_current_user)],
    notification_client: Annotated[NotificationClient, Depends(get_notification_client)],
    unread_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> List[Notification]:
    """The acting user's notifications, newest first."""
    try:
        return notification_client.list_notifications(user.id, unread_only=unread_only, limit=limit)
    except Exception as e:
        raise_http_error(e, "list notifications")


@router.post("/{notification_id}/read", response_model=Notification, summary="Mark Notification Read")
def mark_read(
    notification_id: int,
    user: Annotated[User, Depends(get_current_user)],
    notification_client: Annotated[NotificationClient, Depends(get_notification_client)],
) -> Notification:
    """Mark one of the acting user's notifications as read (404 for anyone else's)."""
    try:
        return notification_client.mark_read(notification_id, user.id)
    except Exception as e:
        raise_http_error(e, "mark notification read")
