"""Publishes outbox events written alongside session state changes."""

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rto_validator.repositories.outbox_repository import OutboxRepository
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

# (session_id, event_type, payload) -> None; raises on failure
Publisher = Callable[[uuid.UUID, str, Dict[str, Any]], Awaitable[None]]


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Publisher,
        batch_size: int = 20,
        max_attempts: int = 5,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.batch_size = batch_size
        self.max_attempts = max_attempts

    async def dispatch_once(self) -> int:
        """Publish one batch of pending events.

        Returns:
            Number of events published
        """
        published = 0
        async with self.session_factory() as db:
            repo = OutboxRepository(db)
            events = await repo.claim_pending(self.batch_size)
            for event in events:
                try:
                    await self.publisher(event.session_id, event.event_type, dict(event.payload or {}))
                except Exception as e:
                    LOGGER.warning(
                        f"Publishing outbox event {event.id} ({event.event_type}) failed: {e}",
                        extra={"attempts": event.attempts + 1},
                    )
                    await repo.record_failure(event, str(e), self.max_attempts)
                    continue
                await repo.mark_published(event)
                published += 1
            await db.commit()

        if published:
            LOGGER.info(f"Published {published} outbox event(s)")
        return published

    async def run_forever(
        self,
        poll_interval: float = 2.0,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Dispatch in a loop until ``stop_event`` is set or the task is cancelled."""
        stop_event = stop_event or asyncio.Event()
        LOGGER.info("Outbox dispatcher started")
        while not stop_event.is_set():
            try:
                await self.dispatch_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.error(f"Outbox dispatch cycle failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass
        LOGGER.info("Outbox dispatcher stopped")
