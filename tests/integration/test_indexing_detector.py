"""Integration tests for document indexing tracking and trigger detection."""

import asyncio
import uuid

import pytest
from unittest.mock import AsyncMock

from rto_validator.core.exceptions import APIClientError, SessionStateError
from rto_validator.core.retry import RetryPolicy
from rto_validator.repositories.outbox_repository import (
    INDEXING_SUBMITTED,
    VALIDATION_REQUESTED,
    OutboxRepository,
)
from rto_validator.repositories.trigger_log_repository import TriggerLogRepository
from rto_validator.schemas.validation import (
    IndexingOperationStatus,
    IndexingStatus,
    SessionStatus,
    TriggerSource,
)
from rto_validator.services.document_registry import DocumentRegistry
from rto_validator.services.indexing_detector import (
    ALREADY_TRIGGERED,
    NOT_READY,
    IndexingCompletionDetector,
)
from rto_validator.services.result_store import ResultStore
from rto_validator.services.session_service import SessionService


async def start_with_documents(session_factory, count=3, indexer=None):
    async with session_factory() as db:
        service = SessionService(db, indexer=indexer)
        validation_session = await service.start_session("RTO1", "BSBWHS211")
        documents = [
            await service.add_document(validation_session.id, f"/uploads/doc-{i}.pdf", f"doc-{i}.pdf")
            for i in range(count)
        ]
    return validation_session.id, [d.id for d in documents]


async def report(session_factory, document_id, status, error=None, trigger_detection=True):
    async with session_factory() as db:
        return await IndexingCompletionDetector(db).registry.on_indexing_status_changed(
            document_id, status, error, trigger_detection=trigger_detection
        )


async def session_status(session_factory, session_id):
    async with session_factory() as db:
        return await ResultStore(db).get_session_status(session_id)


async def trigger_log(session_factory, session_id):
    async with session_factory() as db:
        return await TriggerLogRepository(db).list_by_session(session_id)


async def outbox_events(session_factory, session_id, event_type=None):
    async with session_factory() as db:
        events = await OutboxRepository(db).list_by_session(session_id)
    return [e for e in events if event_type is None or e.event_type == event_type]


class TestRegistration:
    @pytest.mark.asyncio
    async def test_first_document_moves_session_to_processing(self, session_factory):
        async with session_factory() as db:
            service = SessionService(db)
            validation_session = await service.start_session("RTO1", "BSBWHS211")
            assert validation_session.status == SessionStatus.PENDING.value
            assert validation_session.namespace.startswith("rto1-bsbwhs211-")

            document = await service.add_document(validation_session.id, "/uploads/a.pdf")

        assert document.indexing_status == IndexingStatus.PENDING.value
        status = await session_status(session_factory, validation_session.id)
        assert status.status == SessionStatus.DOCUMENT_PROCESSING

    @pytest.mark.asyncio
    async def test_documents_rejected_once_validation_started(self, session_factory):
        session_id, (document_id,) = await start_with_documents(session_factory, count=1)
        await report(session_factory, document_id, IndexingStatus.COMPLETED)

        async with session_factory() as db:
            with pytest.raises(SessionStateError):
                await DocumentRegistry(db).register_document(session_id, "/uploads/late.pdf")

    @pytest.mark.asyncio
    async def test_submission_records_operation_and_outbox_event(self, session_factory, make_indexer):
        indexer = make_indexer()
        session_id, document_ids = await start_with_documents(session_factory, count=2, indexer=indexer)

        async with session_factory() as db:
            documents = await DocumentRegistry(db).list_documents(session_id)

        assert [d.indexing_status for d in documents] == [IndexingStatus.PROCESSING.value] * 2
        assert sorted(d.indexing_operation_id for d in documents) == ["operations/op-1", "operations/op-2"]
        assert all(namespace.startswith("rto1-bsbwhs211-") for _, namespace in indexer.submitted)
        assert len(await outbox_events(session_factory, session_id, INDEXING_SUBMITTED)) == 2

    @pytest.mark.asyncio
    async def test_rejected_submission_fails_document_and_session(self, session_factory, make_indexer):
        class RejectingIndexer(make_indexer):
            async def submit_for_indexing(self, storage_ref, namespace, display_name=None):
                raise APIClientError("unsupported file type", status_code=400)

        session_id, _ = await start_with_documents(session_factory, count=1, indexer=RejectingIndexer())

        async with session_factory() as db:
            (document,) = await DocumentRegistry(db).list_documents(session_id)
        status = await session_status(session_factory, session_id)

        assert document.indexing_status == IndexingStatus.FAILED.value
        assert status.status == SessionStatus.FAILED
        assert "unsupported file type" in status.last_error


class TestAutoTrigger:
    @pytest.mark.asyncio
    async def test_last_completion_triggers_validation_once(self, session_factory):
        session_id, document_ids = await start_with_documents(session_factory)

        for document_id in document_ids[:-1]:
            await report(session_factory, document_id, IndexingStatus.COMPLETED)
            assert (await session_status(session_factory, session_id)).status == SessionStatus.DOCUMENT_PROCESSING

        await report(session_factory, document_ids[-1], IndexingStatus.COMPLETED)

        assert (await session_status(session_factory, session_id)).status == SessionStatus.VALIDATING_IN_BACKGROUND
        events = await outbox_events(session_factory, session_id, VALIDATION_REQUESTED)
        assert len(events) == 1
        assert events[0].payload == {"session_id": str(session_id), "source": "auto"}
        entries = await trigger_log(session_factory, session_id)
        assert [(e.source, e.succeeded) for e in entries] == [(TriggerSource.AUTO.value, True)]

    @pytest.mark.asyncio
    async def test_one_failed_document_fails_the_session(self, session_factory):
        session_id, document_ids = await start_with_documents(session_factory)

        await report(session_factory, document_ids[0], IndexingStatus.COMPLETED)
        await report(session_factory, document_ids[1], IndexingStatus.FAILED, "corrupt pdf")
        await report(session_factory, document_ids[2], IndexingStatus.COMPLETED)

        status = await session_status(session_factory, session_id)
        assert status.status == SessionStatus.FAILED
        assert status.last_error == "document indexing failed: doc-1.pdf: corrupt pdf"
        assert await outbox_events(session_factory, session_id, VALIDATION_REQUESTED) == []
        entries = await trigger_log(session_factory, session_id)
        assert len(entries) == 1
        assert entries[0].succeeded is False
        assert entries[0].error.startswith("document indexing failed")

    @pytest.mark.asyncio
    async def test_registry_without_detector_only_records_status(self, session_factory):
        session_id, (document_id,) = await start_with_documents(session_factory, count=1)

        async with session_factory() as db:
            registry = DocumentRegistry(db)
            assert await registry.on_indexing_status_changed(document_id, IndexingStatus.COMPLETED) is True
            assert await registry.is_session_ready(session_id) is True

        assert (await session_status(session_factory, session_id)).status == SessionStatus.DOCUMENT_PROCESSING
        assert await outbox_events(session_factory, session_id, VALIDATION_REQUESTED) == []

        async with session_factory() as db:
            detector = IndexingCompletionDetector(db)
            assert detector.registry.detector is detector

    @pytest.mark.asyncio
    async def test_terminal_status_is_never_overwritten(self, session_factory):
        session_id, (first, second) = await start_with_documents(session_factory, count=2)

        assert await report(session_factory, first, IndexingStatus.COMPLETED) is True
        assert await report(session_factory, first, IndexingStatus.PROCESSING) is False
        assert await report(session_factory, first, IndexingStatus.FAILED, "late failure") is False
        assert await report(session_factory, first, IndexingStatus.COMPLETED) is False

        async with session_factory() as db:
            documents = await DocumentRegistry(db).list_documents(session_id)
        by_id = {d.id: d for d in documents}
        assert by_id[first].indexing_status == IndexingStatus.COMPLETED.value
        assert by_id[first].indexing_error is None
        assert by_id[second].indexing_status == IndexingStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_readiness_does_not_regress_after_trigger(self, session_factory):
        session_id, (document_id,) = await start_with_documents(session_factory, count=1)
        await report(session_factory, document_id, IndexingStatus.COMPLETED)

        await report(session_factory, document_id, IndexingStatus.PROCESSING)

        async with session_factory() as db:
            assert await DocumentRegistry(db).is_session_ready(session_id) is True
            result = await SessionService(db).check_readiness(session_id)
        assert result.ready is True
        assert result.triggered is False
        assert result.message == ALREADY_TRIGGERED
        assert result.status == SessionStatus.VALIDATING_IN_BACKGROUND


class TestManualTrigger:
    @pytest.mark.asyncio
    async def test_manual_trigger_before_ready_is_logged(self, session_factory):
        session_id, document_ids = await start_with_documents(session_factory, count=2)
        await report(session_factory, document_ids[0], IndexingStatus.COMPLETED)

        async with session_factory() as db:
            result = await SessionService(db).trigger_validation(session_id)

        assert result.triggered is False
        assert result.ready is False
        assert result.message == NOT_READY
        assert result.status == SessionStatus.DOCUMENT_PROCESSING
        entries = await trigger_log(session_factory, session_id)
        assert [(e.source, e.succeeded, e.error) for e in entries] == [
            (TriggerSource.MANUAL.value, False, NOT_READY)
        ]

    @pytest.mark.asyncio
    async def test_manual_trigger_after_auto_trigger_is_a_no_op(self, session_factory):
        session_id, (document_id,) = await start_with_documents(session_factory, count=1)
        await report(session_factory, document_id, IndexingStatus.COMPLETED)

        async with session_factory() as db:
            result = await SessionService(db).trigger_validation(session_id)

        assert result.triggered is False
        assert len(await outbox_events(session_factory, session_id, VALIDATION_REQUESTED)) == 1
        entries = await trigger_log(session_factory, session_id)
        assert [(e.source, e.succeeded) for e in entries] == [
            (TriggerSource.AUTO.value, True),
            (TriggerSource.MANUAL.value, False),
        ]

    @pytest.mark.asyncio
    async def test_concurrent_triggers_start_validation_at_most_once(self, session_factory):
        session_id, document_ids = await start_with_documents(session_factory)
        for document_id in document_ids:
            await report(session_factory, document_id, IndexingStatus.COMPLETED, trigger_detection=False)

        sources = [TriggerSource.AUTO, TriggerSource.MANUAL, TriggerSource.POLL, TriggerSource.AUTO, TriggerSource.MANUAL]

        async def attempt(source):
            async with session_factory() as db:
                return await IndexingCompletionDetector(db).check_and_trigger(session_id, source)

        results = await asyncio.gather(*(attempt(source) for source in sources))

        assert sum(r.triggered for r in results) == 1
        assert all(r.status == SessionStatus.VALIDATING_IN_BACKGROUND for r in results)
        assert len(await outbox_events(session_factory, session_id, VALIDATION_REQUESTED)) == 1
        entries = await trigger_log(session_factory, session_id)
        assert len(entries) == len(sources)
        assert sum(e.succeeded for e in entries) == 1
        assert {e.error for e in entries if not e.succeeded} == {ALREADY_TRIGGERED}


class TestPollFallback:
    @pytest.mark.asyncio
    async def test_poll_triggers_once_indexer_reports_completion(self, session_factory, make_indexer):
        indexer = make_indexer([
            IndexingOperationStatus(status=IndexingStatus.PROCESSING),
            IndexingOperationStatus(status=IndexingStatus.COMPLETED),
        ])
        session_id, _ = await start_with_documents(session_factory, count=1, indexer=indexer)
        sleep = AsyncMock()

        async with session_factory() as db:
            detector = IndexingCompletionDetector(
                db,
                registry=DocumentRegistry(db, indexer=indexer),
                poll_policy=RetryPolicy(max_attempts=5, base_delay=3.0, multiplier=1.0, max_delay=None),
                sleep=sleep,
            )
            result = await detector.poll_until_ready(session_id)

        assert result.triggered is True
        assert result.status == SessionStatus.VALIDATING_IN_BACKGROUND
        assert [c.args[0] for c in sleep.await_args_list] == [3.0]
        entries = await trigger_log(session_factory, session_id)
        assert [(e.source, e.succeeded) for e in entries] == [(TriggerSource.POLL.value, True)]

    @pytest.mark.asyncio
    async def test_poll_gives_up_and_times_out_documents(self, session_factory, make_indexer):
        indexer = make_indexer()
        session_id, _ = await start_with_documents(session_factory, count=2, indexer=indexer)
        sleep = AsyncMock()

        async with session_factory() as db:
            detector = IndexingCompletionDetector(
                db,
                registry=DocumentRegistry(db, indexer=indexer),
                poll_policy=RetryPolicy(max_attempts=3, base_delay=3.0, multiplier=1.0, max_delay=None),
                sleep=sleep,
            )
            result = await detector.poll_until_ready(session_id)

        assert result.triggered is False
        assert result.status == SessionStatus.FAILED
        assert result.message == "document indexing timed out"
        assert sleep.await_count == 2
        assert indexer.status_calls == 6

        async with session_factory() as db:
            documents = await DocumentRegistry(db).list_documents(session_id)
        assert {d.indexing_status for d in documents} == {IndexingStatus.TIMEOUT.value}
        status = await session_status(session_factory, session_id)
        assert status.last_error == "document indexing timed out"
        entries = await trigger_log(session_factory, session_id)
        assert [(e.source, e.succeeded) for e in entries] == [(TriggerSource.POLL.value, False)]

    @pytest.mark.asyncio
    async def test_poll_stops_when_session_already_failed(self, session_factory, make_indexer):
        indexer = make_indexer([IndexingOperationStatus(status=IndexingStatus.FAILED, error="quota")])
        session_id, _ = await start_with_documents(session_factory, count=1, indexer=indexer)
        sleep = AsyncMock()

        async with session_factory() as db:
            detector = IndexingCompletionDetector(
                db,
                registry=DocumentRegistry(db, indexer=indexer),
                poll_policy=RetryPolicy(max_attempts=5, base_delay=3.0, multiplier=1.0, max_delay=None),
                sleep=sleep,
            )
            result = await detector.poll_until_ready(session_id)

        assert result.status == SessionStatus.FAILED
        assert "quota" in result.message
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_session_is_reported(self, session_factory):
        from rto_validator.core.exceptions import SessionNotFoundError

        async with session_factory() as db:
            with pytest.raises(SessionNotFoundError):
                await IndexingCompletionDetector(db).check_and_trigger(uuid.uuid4(), TriggerSource.MANUAL)
