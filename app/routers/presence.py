import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user_id
from app.errors import MessagingError
from app.models.api.messages import PresenceBatchResponse, PresenceStatus
from app.routers.errors import to_http_exception
from app.services.presence_service import PresenceService

logger = logging.getLogger(__name__)

router = APIRouter()


def parse_user_ids(raw: str) -> List[int]:
    """Parse a comma separated id list such as ``1,2,3``."""
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="user_ids must be integers")


@router.post("/heartbeat", response_model=PresenceStatus)
async def heartbeat(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PresenceStatus:
    """Mark the caller as active now."""
    try:
        service = PresenceService(db)
        return await service.heartbeat(user_id)
    except MessagingError as e:
        raise to_http_exception(e, not_found_detail="User not found")
    except Exception:
        logger.exception("Heartbeat failed for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/status", response_model=PresenceBatchResponse)
async def presence_status(
    user_ids: str = Query("", description="Comma separated user ids"),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PresenceBatchResponse:
    """Online status for a batch of users, fetched in one lookup."""
    ids = parse_user_ids(user_ids)
    try:
        service = PresenceService(db)
        statuses = await service.get_presence_batch(set(ids))
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Presence lookup failed")
        raise HTTPException(status_code=500, detail="Internal server error")
    return PresenceBatchResponse(statuses=statuses)
