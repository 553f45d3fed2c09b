"""Integration tests for the outbox dispatcher and the Temporal publisher."""

import uuid

import pytest
from unittest.mock import AsyncMock

from temporalio.exceptions import WorkflowAlreadyStartedError

from rto_validator.core.temporal_client import TemporalPublisher
from rto_validator.repositories.outbox_repository import (
    INDEXING_SUBMITTED,
    VALIDATION_REQUESTED,
    OutboxRepository,
)
from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.services.outbox_dispatcher import OutboxDispatcher


async def session_with_event(session_factory, event_type=VALIDATION_REQUESTED):
    async with session_factory() as db:
        validation_session = await SessionRepository(db).create_session("RTO1", "BSBWHS211", "rto1-ns")
        await OutboxRepository(db).add_event(
            validation_session.id, event_type, {"session_id": str(validation_session.id)}
        )
        await db.commit()
    return validation_session.id


async def events_for(session_factory, session_id):
    async with session_factory() as db:
        return await OutboxRepository(db).list_by_session(session_id)


class TestOutboxDispatcher:
    @pytest.mark.asyncio
    async def test_publishes_pending_events_once(self, session_factory):
        session_id = await session_with_event(session_factory)
        publisher = AsyncMock()
        dispatcher = OutboxDispatcher(session_factory, publisher)

        assert await dispatcher.dispatch_once() == 1
        assert await dispatcher.dispatch_once() == 0

        publisher.assert_awaited_once_with(
            session_id, VALIDATION_REQUESTED, {"session_id": str(session_id)}
        )
        (event,) = await events_for(session_factory, session_id)
        assert event.status == "published"
        assert event.attempts == 1
        assert event.published_at is not None

    @pytest.mark.asyncio
    async def test_failed_publish_is_retried_then_abandoned(self, session_factory):
        session_id = await session_with_event(session_factory)
        publisher = AsyncMock(side_effect=RuntimeError("temporal unavailable"))
        dispatcher = OutboxDispatcher(session_factory, publisher, max_attempts=2)

        assert await dispatcher.dispatch_once() == 0
        (event,) = await events_for(session_factory, session_id)
        assert event.status == "pending"
        assert event.attempts == 1
        assert event.last_error == "temporal unavailable"

        assert await dispatcher.dispatch_once() == 0
        (event,) = await events_for(session_factory, session_id)
        assert event.status == "failed"
        assert event.attempts == 2

        await dispatcher.dispatch_once()
        assert publisher.await_count == 2

    @pytest.mark.asyncio
    async def test_one_bad_event_does_not_block_the_batch(self, session_factory):
        first = await session_with_event(session_factory)
        second = await session_with_event(session_factory, INDEXING_SUBMITTED)

        async def publisher(session_id, event_type, payload):
            if session_id == first:
                raise RuntimeError("boom")

        published = await OutboxDispatcher(session_factory, publisher).dispatch_once()

        assert published == 1
        assert (await events_for(session_factory, second))[0].status == "published"
        assert (await events_for(session_factory, first))[0].status == "pending"


class TestTemporalPublisher:
    @pytest.mark.asyncio
    async def test_validation_request_starts_session_workflow(self):
        client = AsyncMock()
        session_id = uuid.uuid4()

        await TemporalPublisher(client=client, task_queue="validation-queue")(
            session_id, VALIDATION_REQUESTED, {}
        )

        client.start_workflow.assert_awaited_once_with(
            "ValidateSessionWorkflow",
            str(session_id),
            id=f"validate-session-{session_id}",
            task_queue="validation-queue",
        )

    @pytest.mark.asyncio
    async def test_indexing_submission_starts_readiness_poll(self):
        client = AsyncMock()
        session_id = uuid.uuid4()

        await TemporalPublisher(client=client, task_queue="validation-queue")(
            session_id, INDEXING_SUBMITTED, {}
        )

        args, kwargs = client.start_workflow.await_args
        assert args[0] == "WaitForIndexingWorkflow"
        assert kwargs["id"] == f"wait-indexing-{session_id}"

    @pytest.mark.asyncio
    async def test_running_workflow_counts_as_published(self):
        session_id = uuid.uuid4()
        client = AsyncMock()
        client.start_workflow.side_effect = WorkflowAlreadyStartedError(
            f"validate-session-{session_id}", "ValidateSessionWorkflow"
        )

        await TemporalPublisher(client=client)(session_id, VALIDATION_REQUESTED, {})

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_an_error(self):
        with pytest.raises(ValueError):
            await TemporalPublisher(client=AsyncMock())(uuid.uuid4(), "session.deleted", {})
