import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import USER_SEARCH_LIMIT
from app.database import get_db
from app.dependencies import get_current_user_id
from app.errors import MessagingError
from app.models.api.participants import UserSummary
from app.routers.errors import to_http_exception
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/search", response_model=List[UserSummary])
async def search_users(
    q: str = Query("", description="Name or email fragment"),
    limit: int = Query(USER_SEARCH_LIMIT, description="Maximum users to return"),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[UserSummary]:
    """Find users to start a conversation with. The caller is never listed."""
    try:
        service = UserService(db)
        return await service.search_users(q, viewer_id=user_id, limit=limit)
    except MessagingError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("User search failed")
        raise HTTPException(status_code=500, detail="Internal server error")
