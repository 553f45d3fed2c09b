import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import OutboxEvent
from rto_validator.repositories.base_repository import BaseRepository

VALIDATION_REQUESTED = "validation.requested"
INDEXING_SUBMITTED = "indexing.submitted"


class OutboxRepository(BaseRepository[OutboxEvent]):
    """Transactional outbox for events that start background work."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, OutboxEvent)

    async def add_event(
        self,
        session_id: uuid.UUID,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> OutboxEvent:
        return await self.create(
            session_id=session_id,
            event_type=event_type,
            payload=payload or {},
            status="pending",
            attempts=0,
        )

    async def claim_pending(self, limit: int) -> List[OutboxEvent]:
        """Lock a batch of pending events, oldest first.

        Concurrent dispatchers skip rows another one already holds.
        """
        query = (
            select(OutboxEvent)
            .where(OutboxEvent.status == "pending")
            .order_by(OutboxEvent.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def mark_published(self, event: OutboxEvent) -> None:
        event.status = "published"
        event.attempts += 1
        event.last_error = None
        event.published_at = datetime.now(timezone.utc)
        await self.session.flush()

    async def record_failure(self, event: OutboxEvent, error: str, max_attempts: int) -> None:
        """Count a failed publish; give up on the event after ``max_attempts``."""
        event.attempts += 1
        event.last_error = error
        if event.attempts >= max_attempts:
            event.status = "failed"
        await self.session.flush()

    async def list_by_session(self, session_id: uuid.UUID) -> List[OutboxEvent]:
        query = (
            select(OutboxEvent)
            .where(OutboxEvent.session_id == session_id)
            .order_by(OutboxEvent.created_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
