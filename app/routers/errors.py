import logging

from fastapi import HTTPException

from app.errors import (
    InvalidInput,
    MessagingError,
    NotAuthorized,
    NotFound,
    TransientIO,
)

logger = logging.getLogger(__name__)

# Same answer whether the conversation is missing or just not the caller's
NOT_AVAILABLE = "Conversation not available"


def to_http_exception(
    error: MessagingError, not_found_detail: str = NOT_AVAILABLE
) -> HTTPException:
    """Map a domain error to the HTTP response the caller should see."""
    if isinstance(error, (NotAuthorized, NotFound)):
        return HTTPException(status_code=404, detail=not_found_detail)
    if isinstance(error, InvalidInput):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, TransientIO):
        logger.warning("Transient failure: %s", error.message)
        return HTTPException(status_code=503, detail="Temporarily unavailable, retry")
    logger.error("Unhandled messaging error: %r", error)
    return HTTPException(status_code=500, detail="Internal server error")
