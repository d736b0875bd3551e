from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import storage_errors
from app.models.api.messages import ConversationUpdate, PollResponse
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.participant_repository import ParticipantRepository
from app.utils.timestamps import as_utc, utcnow


class PollService:
    """Server side of the update feed: which conversations moved since X."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversation_repo = ConversationRepository(db)
        self.participant_repo = ParticipantRepository(db)

    async def get_updates(
        self, user_id: int, since: Optional[datetime] = None
    ) -> PollResponse:
        """
        Conversations with a message newer than ``since``.

        ``server_time`` is taken before querying; clients pass it back as the
        next ``since`` so a message committed mid-request is reported again
        rather than lost.
        """
        server_time = utcnow()
        with storage_errors():
            conversations = await self.conversation_repo.list_for_user(
                user_id, updated_after=as_utc(since)
            )

        updates = [
            ConversationUpdate(
                conversation_id=c.id,
                new_message_count=c.unread_count,
                last_message=c.last_message,
            )
            for c in conversations
            if c.last_message is not None
        ]
        return PollResponse(conversations=updates, server_time=server_time)

    async def unread_conversation_count(self, user_id: int) -> int:
        with storage_errors():
            return await self.participant_repo.count_unread_conversations(user_id)
