"""Request-scoped dependencies shared by the routers."""

from typing import Optional

from fastapi import Header, HTTPException


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> int:
    """Resolve the caller from the ``X-User-Id`` header set by the auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    if user_id < 1:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return user_id
