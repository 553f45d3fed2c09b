import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import TriggerLogEntry
from rto_validator.repositories.base_repository import BaseRepository
from rto_validator.schemas.validation import TriggerSource


class TriggerLogRepository(BaseRepository[TriggerLogEntry]):
    """Append-only log of validation trigger attempts."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TriggerLogEntry)

    async def append(
        self,
        session_id: uuid.UUID,
        source: TriggerSource,
        succeeded: bool,
        error: Optional[str] = None,
    ) -> TriggerLogEntry:
        return await self.create(
            session_id=session_id,
            source=source.value,
            succeeded=succeeded,
            error=error,
        )

    async def list_by_session(self, session_id: uuid.UUID) -> List[TriggerLogEntry]:
        query = (
            select(TriggerLogEntry)
            .where(TriggerLogEntry.session_id == session_id)
            .order_by(TriggerLogEntry.triggered_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
