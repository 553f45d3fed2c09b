"""Decides when a session's documents are ready and triggers validation.

Three sources feed the same check: indexer callbacks (``auto``), an
operator request (``manual``) and the bounded poll fallback (``poll``).
The transition into background validation is a compare-and-set on the
session status, so only one caller ever wins it. The winner writes a
``validation.requested`` outbox event in the same transaction.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.core.exceptions import (
    DocumentIndexingFailedError,
    IndexingTimeoutError,
    RetryExhaustedError,
    SessionNotFoundError,
)
from rto_validator.core.retry import RetryPolicy, retry_async
from rto_validator.repositories.outbox_repository import VALIDATION_REQUESTED, OutboxRepository
from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.repositories.trigger_log_repository import TriggerLogRepository
from rto_validator.schemas.validation import IndexingStatus, SessionStatus, TriggerSource
from rto_validator.services.document_registry import DocumentRegistry
from rto_validator.services.result_store import ResultStore
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

ALREADY_TRIGGERED = "session already past document_processing"
NOT_READY = "documents are still being indexed"


@dataclass
class TriggerResult:
    triggered: bool
    ready: bool
    status: SessionStatus
    message: Optional[str] = None


class _NotReadyYet(Exception):
    pass


class IndexingCompletionDetector:
    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[DocumentRegistry] = None,
        poll_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.registry = registry or DocumentRegistry(session)
        if self.registry.detector is None:
            self.registry.detector = self
        self.poll_policy = poll_policy or RetryPolicy(
            max_attempts=100, base_delay=3.0, multiplier=1.0, max_delay=None
        )
        self._sleep = sleep
        self.sessions = SessionRepository(session)
        self.trigger_log = TriggerLogRepository(session)
        self.outbox = OutboxRepository(session)
        self.results = ResultStore(session)

    async def check_and_trigger(self, session_id: uuid.UUID, source: TriggerSource) -> TriggerResult:
        """Evaluate readiness and, if ready, start background validation."""
        validation_session = await self.sessions.refresh(session_id)
        if validation_session is None:
            raise SessionNotFoundError(f"Validation session {session_id} not found")

        documents = await self.registry.list_documents(session_id)
        failed = [d for d in documents if IndexingStatus(d.indexing_status).is_failure]

        if failed:
            first = failed[0]
            message = (
                f"{DocumentIndexingFailedError.category}: "
                f"{first.display_name or first.storage_ref}: {first.indexing_error or first.indexing_status}"
            )
            if await self.results.fail_session(session_id, message):
                await self.trigger_log.append(session_id, source, succeeded=False, error=message)
            elif source == TriggerSource.MANUAL:
                await self.trigger_log.append(session_id, source, succeeded=False, error=message)
            await self.session.commit()
            return await self._result(session_id, triggered=False, ready=False, message=message)

        ready = bool(documents) and all(
            d.indexing_status == IndexingStatus.COMPLETED.value for d in documents
        )
        if not ready:
            if source == TriggerSource.MANUAL:
                await self.trigger_log.append(session_id, source, succeeded=False, error=NOT_READY)
                await self.session.commit()
            return await self._result(session_id, triggered=False, ready=False, message=NOT_READY)

        won = await self.sessions.compare_and_set_status(
            session_id, SessionStatus.DOCUMENT_PROCESSING, SessionStatus.VALIDATING_IN_BACKGROUND
        )
        if won:
            await self.outbox.add_event(
                session_id,
                VALIDATION_REQUESTED,
                {"session_id": str(session_id), "source": source.value},
            )
            await self.trigger_log.append(session_id, source, succeeded=True)
            await self.session.commit()
            LOGGER.info(
                f"Validation triggered for session {session_id}",
                extra={"source": source.value},
            )
            return await self._result(session_id, triggered=True, ready=True)

        await self.trigger_log.append(session_id, source, succeeded=False, error=ALREADY_TRIGGERED)
        await self.session.commit()
        LOGGER.debug(f"Trigger for session {session_id} lost the race", extra={"source": source.value})
        return await self._result(session_id, triggered=False, ready=True, message=ALREADY_TRIGGERED)

    async def trigger_manually(self, session_id: uuid.UUID) -> TriggerResult:
        return await self.check_and_trigger(session_id, TriggerSource.MANUAL)

    async def poll_until_ready(self, session_id: uuid.UUID) -> TriggerResult:
        """Poll the indexer until the session is ready, failed, or out of attempts.

        Exhausting the attempts marks unfinished documents as timed out and
        fails the session.
        """
        async def attempt() -> TriggerResult:
            await self.registry.refresh_indexing_status(session_id)
            result = await self.check_and_trigger(session_id, TriggerSource.POLL)
            if not result.ready and result.status in (
                SessionStatus.PENDING, SessionStatus.DOCUMENT_PROCESSING
            ):
                raise _NotReadyYet()
            return result

        try:
            outcome = await retry_async(
                attempt,
                self.poll_policy,
                is_retryable=lambda e: isinstance(e, _NotReadyYet),
                sleep=self._sleep,
                operation_name=f"indexing poll for session {session_id}",
            )
            return outcome.value
        except RetryExhaustedError as e:
            LOGGER.warning(f"Indexing poll for session {session_id} gave up after {e.attempts} attempts")
            return await self._time_out(session_id)

    async def _time_out(self, session_id: uuid.UUID) -> TriggerResult:
        for document in await self.registry.list_documents(session_id):
            if not IndexingStatus(document.indexing_status).is_terminal:
                await self.registry.on_indexing_status_changed(
                    document.id,
                    IndexingStatus.TIMEOUT,
                    "indexing did not finish in time",
                    trigger_detection=False,
                )
        message = IndexingTimeoutError.category
        await self.results.fail_session(session_id, message)
        await self.trigger_log.append(session_id, TriggerSource.POLL, succeeded=False, error=message)
        await self.session.commit()
        return await self._result(session_id, triggered=False, ready=False, message=message)

    async def _result(
        self, session_id: uuid.UUID, triggered: bool, ready: bool, message: Optional[str] = None
    ) -> TriggerResult:
        validation_session = await self.sessions.refresh(session_id)
        return TriggerResult(
            triggered=triggered,
            ready=ready,
            status=SessionStatus(validation_session.status),
            message=message,
        )
