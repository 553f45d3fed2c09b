import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import ValidationSession
from rto_validator.repositories.base_repository import BaseRepository
from rto_validator.schemas.validation import SessionStatus


class SessionRepository(BaseRepository[ValidationSession]):
    """Repository for validation sessions."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ValidationSession)

    async def create_session(
        self,
        org_code: str,
        unit_code: str,
        namespace: str,
        source_session_id: Optional[uuid.UUID] = None,
    ) -> ValidationSession:
        return await self.create(
            org_code=org_code,
            unit_code=unit_code,
            namespace=namespace,
            status=SessionStatus.PENDING.value,
            source_session_id=source_session_id,
        )

    async def get_for_update(self, session_id: uuid.UUID) -> Optional[ValidationSession]:
        """Load a session row locked for the rest of the transaction.

        The lock is a no-op on SQLite, where writers are already serialized.
        """
        query = (
            select(ValidationSession)
            .where(ValidationSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def refresh(self, session_id: uuid.UUID) -> Optional[ValidationSession]:
        """Re-read a session, bypassing the identity map."""
        query = (
            select(ValidationSession)
            .where(ValidationSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        session_id: uuid.UUID,
        expected: SessionStatus,
        new: SessionStatus,
    ) -> bool:
        """Atomically move a session from ``expected`` to ``new``.

        Returns:
            True when this call performed the transition, False when the
            session was not in ``expected`` state
        """
        stmt = (
            update(ValidationSession)
            .where(
                ValidationSession.id == session_id,
                ValidationSession.status == expected.value,
            )
            .values(status=new.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_requirement_total(self, session_id: uuid.UUID, total: int) -> None:
        stmt = (
            update(ValidationSession)
            .where(ValidationSession.id == session_id)
            .values(requirement_total=total, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
