from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.api.participants import UserSummary
from app.models.db.user_model import UserModel
from app.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository[UserModel, UserSummary]):
    """Repository for the local user directory projection."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, UserModel)

    async def get_many(self, user_ids: Iterable[int]) -> Dict[int, UserModel]:
        """Fetch users by id in one query, keyed by id."""
        ids = set(user_ids)
        if not ids:
            return {}
        query = (
            select(self.model_class)
            .where(self.model_class.id.in_(ids))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return {user.id: user for user in result.scalars().all()}

    async def missing_ids(self, user_ids: Iterable[int]) -> List[int]:
        """Return the ids that the directory does not know about."""
        ids = set(user_ids)
        found = await self.get_many(ids)
        return sorted(ids - set(found))

    async def search(
        self, query_text: str, limit: int, exclude_user_id: Optional[int] = None
    ) -> List[UserSummary]:
        """Case-insensitive match on name and email."""
        pattern = f"%{query_text.lower()}%"
        query = select(self.model_class).where(
            or_(
                self.model_class.display_name.ilike(pattern),
                self.model_class.first_name.ilike(pattern),
                self.model_class.last_name.ilike(pattern),
                self.model_class.email.ilike(pattern),
            )
        )
        if exclude_user_id is not None:
            query = query.where(self.model_class.id != exclude_user_id)
        query = query.order_by(self.model_class.id).limit(limit)
        result = await self.db.execute(query)
        return [self._to_pydantic(user) for user in result.scalars().all()]

    async def touch_last_active(self, user_id: int, at: datetime) -> bool:
        """Stamp presence; returns False when the user is unknown."""
        result = await self.db.execute(
            update(self.model_class)
            .where(self.model_class.id == user_id)
            .values(last_active_at=at)
        )
        return bool(result.rowcount)

    def _to_pydantic(self, db_model: Any) -> UserSummary:
        """Convert SQLAlchemy UserModel to Pydantic UserSummary."""
        return UserSummary(
            id=db_model.id,
            display_name=db_model.resolved_display_name,
            email=db_model.email,
            avatar_url=db_model.avatar_url,
        )
