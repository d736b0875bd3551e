from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import Base

ModelType = TypeVar("ModelType", bound=Base)
PydanticType = TypeVar("PydanticType", bound=BaseModel)


class BaseRepository(Generic[ModelType, PydanticType]):
    """Generic base repository with common operations.

    Repositories only flush; the calling service owns the transaction and
    decides when to commit, so multi-row writes stay atomic.
    """

    def __init__(self, db: AsyncSession, model_class: Any):
        self.db = db
        self.model_class = model_class

    async def add(self, db_model: ModelType) -> ModelType:
        """Stage a new row and flush it so generated keys are populated."""
        self.db.add(db_model)
        await self.db.flush()
        return db_model

    def _to_pydantic(self, db_model: ModelType) -> PydanticType:
        """Convert SQLAlchemy model to Pydantic model.

        This should be overridden in subclasses for specific conversion logic.
        """
        raise NotImplementedError
