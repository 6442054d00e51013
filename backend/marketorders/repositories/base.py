"""
Base repository with common data access operations.
Implements the Repository pattern for data access abstraction.
"""
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from marketorders.core.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository providing common database operations.

    Subclasses should set the `model` class attribute to the SQLAlchemy model.
    Repositories never commit; the caller owns the transaction.
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, id: UUID) -> ModelType | None:
        """Get a single record by its primary key."""
        return await self.session.get(self.model, id)

    async def add(self, db_obj: ModelType) -> ModelType:
        """Stage a new record and flush it so generated keys are available."""
        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

