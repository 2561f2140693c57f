from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.utils.logging import get_logger

ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Reads and inserts shared by the repositories.

    Lifecycle writes are conditional updates in the concrete repositories.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        self.session = session
        self.model = model
        self.logger = LOGGER

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        """Load a row fresh from the database.

        Conditional updates bypass the identity map, so a cached instance
        may be stale; ``populate_existing`` overwrites it.
        """
        query = (
            select(self.model)
            .where(self.model.id == id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {self.model.__name__} {id}: {e}", exc_info=True)
            raise
        return result.scalar_one_or_none()

    async def create(self, **values) -> ModelType:
        instance = self.model(**values)
        self.session.add(instance)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error creating {self.model.__name__}: {e}", exc_info=True)
            raise
        await self.session.refresh(instance)
        return instance
