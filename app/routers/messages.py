import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user_id
from app.errors import MessagingError
from app.models.api.messages import PollResponse, UnreadCountResponse
from app.routers.errors import to_http_exception
from app.services.poll_service import PollService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/poll", response_model=PollResponse)
async def poll_updates(
    since: Optional[datetime] = Query(
        None, description="server_time returned by the previous poll"
    ),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PollResponse:
    """Conversations that received messages since the given server time."""
    try:
        service = PollService(db)
        return await service.get_updates(user_id, since)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Poll failed for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    """Number of conversations with at least one unread message."""
    try:
        service = PollService(db)
        count = await service.unread_conversation_count(user_id)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Unread count failed for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")
    return UnreadCountResponse(count=count)
