from typing import Any, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.api.messages import MessageResponse, MessageSender
from app.models.db.message_model import MessageModel
from app.repositories.base_repository import BaseRepository


class MessageRepository(BaseRepository[MessageModel, MessageResponse]):
    """Repository for message operations.

    Reads are keyed by (conversation_id, id). Cursor boundaries are always
    exclusive so that backward paging and forward polling never overlap.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(db, MessageModel)

    async def get(
        self, conversation_id: int, message_id: int
    ) -> Optional[MessageModel]:
        query = (
            select(self.model_class)
            .where(
                self.model_class.conversation_id == conversation_id,
                self.model_class.id == message_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_response(
        self, conversation_id: int, message_id: int
    ) -> Optional[MessageResponse]:
        db_model = await self.get(conversation_id, message_id)
        return self._to_pydantic(db_model) if db_model else None

    async def get_page_before(
        self, conversation_id: int, limit: int, before_id: Optional[int] = None
    ) -> Tuple[List[MessageResponse], bool]:
        """Newest ``limit`` messages below ``before_id``, returned oldest first.

        The second element tells whether an even older message exists.
        """
        query = select(self.model_class).where(
            self.model_class.conversation_id == conversation_id
        )
        if before_id is not None:
            query = query.where(self.model_class.id < before_id)
        query = (
            query.order_by(self.model_class.id.desc())
            .limit(limit + 1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        rows = list(result.scalars().all())
        has_more = len(rows) > limit
        rows = rows[:limit]
        rows.reverse()
        return [self._to_pydantic(row) for row in rows], has_more

    async def get_page_after(
        self, conversation_id: int, after_id: int, limit: int
    ) -> Tuple[List[MessageResponse], bool]:
        """Oldest ``limit`` messages above ``after_id``, oldest first.

        The second element tells whether newer messages remain past this page.
        """
        query = (
            select(self.model_class)
            .where(
                self.model_class.conversation_id == conversation_id,
                self.model_class.id > after_id,
            )
            .order_by(self.model_class.id.asc())
            .limit(limit + 1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        rows = list(result.scalars().all())
        return [self._to_pydantic(row) for row in rows[:limit]], len(rows) > limit

    def _to_pydantic(self, db_model: Any) -> MessageResponse:
        """Convert SQLAlchemy MessageModel to Pydantic MessageResponse.

        Deleted messages keep id, sender and timestamps; the body is withheld.
        """
        return MessageResponse(
            id=db_model.id,
            conversation_id=db_model.conversation_id,
            sender=MessageSender(
                id=db_model.sender_id,
                display_name=db_model.sender.resolved_display_name,
                avatar_url=db_model.sender.avatar_url,
            ),
            content="" if db_model.is_deleted else db_model.content,
            content_format=db_model.content_format,
            created_at=db_model.created_at,
            edited_at=db_model.edited_at,
            is_deleted=bool(db_model.is_deleted),
        )
