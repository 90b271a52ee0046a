"""
Translate service exceptions into HTTP errors.

    ValueError       -> 400 (404 when the message says "not found",
                        409 when it says "already")
    ConnectionError  -> 503
    RuntimeError     -> 502
    anything else    -> 500
"""

from fastapi import HTTPException, status
from typing import NoReturn

from utils.logger import get_logger

logger = get_logger(__name__)


def http_error_for(e: Exception, action: str) -> HTTPException:
    if isinstance(e, HTTPException):
        return e

    if isinstance(e, ValueError):
        error_msg = str(e)
        lowered = error_msg.lower()
        if "not found" in lowered:
            logger.info(f"{action}: {error_msg}")
            return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_msg)
        if "already" in lowered:
            logger.info(f"{action}: {error_msg}")
            return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error_msg)
        logger.warning(f"Validation error during {action}: {error_msg}")
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_msg)

    if isinstance(e, ConnectionError):
        logger.error(f"Database error during {action}: {e}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database temporarily unavailable",
        )

    if isinstance(e, RuntimeError):
        logger.error(f"Upstream error during {action}: {e}")
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


def raise_http_error(e: Exception, action: str) -> NoReturn:
    """
    Re-raise e as the matching HTTPException.

    Example:
        >>> try:
        ...     ticket = ticket_client.update_ticket(ticket_id, updates)
        ... except Exception as e:
        ...     raise_http_error(e, "update ticket")
    """
    if isinstance(e, HTTPException):
        raise e
    raise http_error_for(e, action) from e
