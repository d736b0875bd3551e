import logging
from datetime import timedelta
from typing import Dict, Iterable, Set

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import PRESENCE_BATCH_LIMIT, PRESENCE_ONLINE_THRESHOLD_SECONDS
from app.errors import InvalidInput, NotFound, storage_errors
from app.models.api.conversations import ConversationResponse
from app.models.api.messages import PresenceStatus
from app.repositories.user_repository import UserRepository
from app.utils.timestamps import as_utc, utcnow

logger = logging.getLogger(__name__)


def collect_presence_ids(
    conversations: Iterable[ConversationResponse], viewer_id: int
) -> Set[int]:
    """Distinct other-participant ids across all 1:1 conversations.

    Callers pass the result to a single get_presence_batch call instead of
    looking users up row by row.
    """
    ids = set()
    for conversation in conversations:
        if conversation.is_group:
            continue
        ids.update(
            p.user_id for p in conversation.participants if p.user_id != viewer_id
        )
    return ids


class PresenceService:
    """Best-effort online status derived from client heartbeats."""

    def __init__(
        self,
        db: AsyncSession,
        online_threshold_seconds: int = PRESENCE_ONLINE_THRESHOLD_SECONDS,
    ):
        self.db = db
        self.user_repo = UserRepository(db)
        self.online_threshold = timedelta(seconds=online_threshold_seconds)

    async def get_presence_batch(
        self, user_ids: Iterable[int]
    ) -> Dict[int, PresenceStatus]:
        """Look up presence for many users with one query.

        Unknown ids are reported offline rather than rejected.
        """
        ids = set(user_ids)
        if len(ids) > PRESENCE_BATCH_LIMIT:
            raise InvalidInput(
                f"At most {PRESENCE_BATCH_LIMIT} user ids per presence request"
            )
        if not ids:
            return {}

        with storage_errors():
            users = await self.user_repo.get_many(ids)

        now = utcnow()
        statuses = {}
        for user_id in ids:
            user = users.get(user_id)
            last_seen = as_utc(user.last_active_at) if user else None
            statuses[user_id] = PresenceStatus(
                is_online=last_seen is not None
                and now - last_seen < self.online_threshold,
                last_seen_at=last_seen,
            )
        return statuses

    async def heartbeat(self, user_id: int) -> PresenceStatus:
        """Record that the user's client is alive right now."""
        now = utcnow()
        try:
            with storage_errors():
                touched = await self.user_repo.touch_last_active(user_id, now)
                if not touched:
                    raise NotFound("User not found")
                await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.debug("Heartbeat from user %s", user_id)
        return PresenceStatus(is_online=True, last_seen_at=now)
