from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import and_, case, false, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from app.models.api.conversations import ConversationResponse, LastMessage
from app.models.db.conversation_model import ConversationModel
from app.models.db.participant_model import ParticipantModel
from app.repositories.base_repository import BaseRepository
from app.utils.timestamps import as_utc


def direct_key_for(user_a: int, user_b: int) -> str:
    """Order-independent key identifying a 1:1 pair."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


class ConversationRepository(BaseRepository[ConversationModel, ConversationResponse]):
    """Repository for conversation operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ConversationModel)

    async def get_model(self, id: int) -> Optional[ConversationModel]:
        """Get a conversation with participants (and their users) loaded."""
        query = (
            select(self.model_class)
            .where(self.model_class.id == id)
            .options(
                selectinload(self.model_class.participants).joinedload(
                    ParticipantModel.user
                )
            )
            .execution_options(populate_existing=True)
        )  # type: ignore
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def lock(self, id: int) -> Optional[ConversationModel]:
        """Load a conversation row under a write lock.

        Appends and read marks both take this lock, which serializes message
        id allocation and cursor moves per conversation.
        """
        query = (
            select(self.model_class)
            .where(self.model_class.id == id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_direct(self, user_a: int, user_b: int) -> Optional[int]:
        """Find the non-group conversation whose members are exactly {a, b}.

        Exact-set match: a group that merely contains both users never
        qualifies, and neither does a non-group row with a third member.
        """
        pair = [user_a, user_b]
        query = (
            select(self.model_class.id)
            .join(
                ParticipantModel,
                ParticipantModel.conversation_id == self.model_class.id,
            )
            .where(self.model_class.is_group == false())
            .group_by(self.model_class.id)
            .having(
                and_(
                    func.count() == 2,
                    func.sum(
                        case((ParticipantModel.user_id.in_(pair), 1), else_=0)
                    )
                    == 2,
                )
            )
            .order_by(self.model_class.id)
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_for_viewer(
        self, id: int, viewer_id: int
    ) -> Optional[ConversationResponse]:
        """Conversation as seen by one participant; None when not a member."""
        db_model = await self.get_model(id)
        if db_model is None:
            return None
        membership = next(
            (p for p in db_model.participants if p.user_id == viewer_id), None
        )
        if membership is None:
            return None
        return self._to_pydantic(db_model, unread_count=membership.unread_count)

    async def list_for_user(
        self, user_id: int, updated_after: Optional[datetime] = None
    ) -> List[ConversationResponse]:
        """Conversations a user belongs to, newest activity first.

        Each row comes with the caller's own membership row, which carries the
        unread count, so the list needs no per-conversation follow-up queries.
        """
        query = (
            select(self.model_class, ParticipantModel)
            .join(
                ParticipantModel,
                and_(
                    ParticipantModel.conversation_id == self.model_class.id,
                    ParticipantModel.user_id == user_id,
                ),
            )
            .options(
                selectinload(self.model_class.participants).joinedload(
                    ParticipantModel.user
                )
            )
            .order_by(self.model_class.updated_at.desc(), self.model_class.id.desc())
            .execution_options(populate_existing=True)
        )
        if updated_after is not None:
            query = query.where(self.model_class.updated_at > updated_after)
        result = await self.db.execute(query)
        return [
            self._to_pydantic(conversation, unread_count=membership.unread_count)
            for conversation, membership in result.all()
        ]

    def _to_pydantic(
        self, db_model: Any, unread_count: int = 0
    ) -> ConversationResponse:
        """Convert SQLAlchemy ConversationModel to Pydantic ConversationResponse."""
        participants = sorted(
            db_model.participants, key=lambda p: (as_utc(p.joined_at), p.user_id)
        )
        last_message = None
        if db_model.last_message_id is not None:
            last_message = LastMessage(
                id=db_model.last_message_id,
                sender_id=db_model.last_message_sender_id,
                sender_name=db_model.last_message_sender_name or "Unknown",
                content=db_model.last_message_preview or "",
                created_at=db_model.last_message_at,
            )

        return ConversationResponse(
            id=db_model.id,
            title=db_model.title,
            is_group=bool(db_model.is_group),
            created_at=db_model.created_at,
            updated_at=db_model.updated_at,
            participants=[
                {
                    "user_id": p.user_id,
                    "display_name": p.user.resolved_display_name,
                    "email": p.user.email,
                    "avatar_url": p.user.avatar_url,
                    "joined_at": p.joined_at,
                }
                for p in participants
            ],
            last_message=last_message,
            unread_count=unread_count,
        )
