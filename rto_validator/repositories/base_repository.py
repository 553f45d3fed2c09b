from typing import Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.utils.logging import get_logger

ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Shared lookups and inserts for one mapped table.

    Repositories only flush. The service that owns the unit of work decides
    when to commit.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        self.session = session
        self.model = model
        self.logger = LOGGER

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        """Load a row by primary key.

        Args:
            id: Primary key

        Returns:
            The row, or None when it does not exist
        """
        try:
            result = await self.session.execute(select(self.model).where(self.model.id == id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load {self.model.__name__} {id}: {e}", exc_info=True)
            raise

    async def create(self, **values) -> ModelType:
        """Add a row and flush so its defaults and id are populated."""
        instance = self.model(**values)
        self.session.add(instance)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to insert {self.model.__name__}: {e}", exc_info=True)
            raise
        return instance
