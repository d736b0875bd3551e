from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import USER_SEARCH_LIMIT
from app.errors import InvalidInput, storage_errors
from app.models.api.participants import UserSummary
from app.repositories.user_repository import UserRepository

MAX_SEARCH_LIMIT = 50


class UserService:
    """Candidate lookup for starting conversations and adding participants."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_repo = UserRepository(db)

    async def search_users(
        self, query: str, viewer_id: int, limit: int = USER_SEARCH_LIMIT
    ) -> List[UserSummary]:
        """Match users by name or email, never returning the viewer."""
        if limit < 1 or limit > MAX_SEARCH_LIMIT:
            raise InvalidInput(f"Limit must be between 1 and {MAX_SEARCH_LIMIT}")
        query = query.strip()
        if not query:
            return []
        with storage_errors():
            return await self.user_repo.search(
                query, limit=limit, exclude_user_id=viewer_id
            )
