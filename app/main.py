import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import APP_ADDR, APP_PORT, COMMIT_HASH, ENV, LOG_LEVEL
from app.database import close_db, get_db, init_db
from app.routers.conversations import router as conversations_router
from app.routers.messages import router as messages_router
from app.routers.presence import router as presence_router
from app.routers.users import router as users_router

logging.basicConfig(
    level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown."""
    # Startup
    await init_db()
    logger.info("Conversation service started (env=%s)", ENV)
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title="Conversation Service",
    description="Conversations, messages, read state and presence",
    version=COMMIT_HASH or "dev",
    lifespan=lifespan,
)

# Include routers
app.include_router(
    conversations_router, prefix="/api/conversations", tags=["conversations"]
)
app.include_router(messages_router, prefix="/api/messages", tags=["messages"])
app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(presence_router, prefix="/api/presence", tags=["presence"])


@app.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Optional[str]]:
    """Health check endpoint with database connectivity."""
    try:
        # Test database connection
        result = await db.execute(text("SELECT 1"))
        db_status = "connected" if result.scalar() == 1 else "error"
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_status = "disconnected"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "environment": ENV,
        "version": COMMIT_HASH,
    }


# If run directly, start the server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=APP_ADDR, port=APP_PORT)
