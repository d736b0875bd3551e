from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.api.participants import ParticipantResponse
from app.models.db.participant_model import ParticipantModel
from app.repositories.base_repository import BaseRepository
from app.utils.timestamps import utcnow


class ParticipantRepository(BaseRepository[ParticipantModel, ParticipantResponse]):
    """Repository for participant (membership and read state) operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ParticipantModel)

    async def get(
        self, conversation_id: int, user_id: int
    ) -> Optional[ParticipantModel]:
        """Get the membership row for one user in one conversation."""
        query = (
            select(self.model_class)
            .where(
                self.model_class.conversation_id == conversation_id,
                self.model_class.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_conversation(
        self, conversation_id: int
    ) -> List[ParticipantResponse]:
        """Get all participants for a conversation."""
        query = (
            select(self.model_class)
            .where(self.model_class.conversation_id == conversation_id)
            .order_by(self.model_class.joined_at, self.model_class.user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return [self._to_pydantic(p) for p in result.scalars().all()]

    async def user_ids(self, conversation_id: int) -> List[int]:
        """Member user ids of a conversation."""
        query = select(self.model_class.user_id).where(
            self.model_class.conversation_id == conversation_id
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count(self, conversation_id: int) -> int:
        query = select(func.count()).where(
            self.model_class.conversation_id == conversation_id
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    async def add_many(
        self,
        conversation_id: int,
        user_ids: Iterable[int],
        last_read_message_id: int = 0,
        joined_at: Optional[datetime] = None,
    ) -> List[int]:
        """Add participants that are not members yet; returns the added ids."""
        existing = set(await self.user_ids(conversation_id))
        added = [uid for uid in dict.fromkeys(user_ids) if uid not in existing]
        for user_id in added:
            self.db.add(
                ParticipantModel(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    unread_count=0,
                    last_read_message_id=last_read_message_id,
                    joined_at=joined_at or utcnow(),
                )
            )
        if added:
            await self.db.flush()
        return added

    async def increment_unread(self, conversation_id: int, sender_id: int) -> None:
        """Bump unread_count for everyone in the conversation except the sender."""
        await self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.conversation_id == conversation_id,
                self.model_class.user_id != sender_id,
            )
            .values(unread_count=self.model_class.unread_count + 1)
            .execution_options(synchronize_session=False)
        )

    async def set_read_cursor(
        self, conversation_id: int, user_id: int, message_id: int
    ) -> int:
        """Move a read cursor and clear unread; returns rows touched."""
        result = await self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.conversation_id == conversation_id,
                self.model_class.user_id == user_id,
            )
            .values(last_read_message_id=message_id, unread_count=0)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def count_unread_conversations(self, user_id: int) -> int:
        query = select(func.count()).where(
            self.model_class.user_id == user_id,
            self.model_class.unread_count > 0,
        )
        result = await self.db.execute(query)
        return int(result.scalar_one())

    def _to_pydantic(self, db_model: Any) -> ParticipantResponse:
        """Convert SQLAlchemy ParticipantModel to Pydantic ParticipantResponse."""
        return ParticipantResponse(
            user_id=db_model.user_id,
            display_name=db_model.user.resolved_display_name,
            email=db_model.user.email,
            avatar_url=db_model.user.avatar_url,
            joined_at=db_model.joined_at,
        )
