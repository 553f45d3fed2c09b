"""Temporal client connection and the outbox publisher that starts workflows."""

import uuid
from typing import Any, Dict, Optional

from temporalio.client import Client as TemporalClient
from temporalio.exceptions import WorkflowAlreadyStartedError

from rto_validator.core.config import settings
from rto_validator.repositories.outbox_repository import INDEXING_SUBMITTED, VALIDATION_REQUESTED
from rto_validator.temporal.core.constants import (
    validate_session_workflow_id,
    wait_for_indexing_workflow_id,
)
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

# event type -> (workflow name, workflow id builder)
EVENT_WORKFLOWS = {
    VALIDATION_REQUESTED: ("ValidateSessionWorkflow", validate_session_workflow_id),
    INDEXING_SUBMITTED: ("WaitForIndexingWorkflow", wait_for_indexing_workflow_id),
}


class TemporalClientManager:
    """Lazily creates a Temporal client and keeps it around for reuse."""

    _client: Optional[TemporalClient] = None

    async def get_client(self) -> TemporalClient:
        if self._client is None:
            self._client = await TemporalClient.connect(
                settings.temporal.address,
                namespace=settings.temporal.namespace,
            )
        return self._client

    def reset(self) -> None:
        self._client = None


_temporal_manager = TemporalClientManager()


async def get_temporal_client() -> TemporalClient:
    return await _temporal_manager.get_client()


def close_temporal_client() -> None:
    _temporal_manager.reset()


class TemporalPublisher:
    """Starts the workflow that handles an outbox event.

    A workflow that is already running for the session counts as published.
    """

    def __init__(self, client: Optional[TemporalClient] = None, task_queue: Optional[str] = None):
        self._client = client
        self.task_queue = task_queue or settings.temporal.task_queue

    async def __call__(self, session_id: uuid.UUID, event_type: str, payload: Dict[str, Any]) -> None:
        if event_type not in EVENT_WORKFLOWS:
            raise ValueError(f"No workflow handles outbox event type {event_type!r}")

        workflow_name, workflow_id_for = EVENT_WORKFLOWS[event_type]
        workflow_id = workflow_id_for(str(session_id))
        client = self._client or await get_temporal_client()

        try:
            await client.start_workflow(
                workflow_name,
                str(session_id),
                id=workflow_id,
                task_queue=self.task_queue,
            )
            LOGGER.info(f"Started {workflow_name} as {workflow_id}")
        except WorkflowAlreadyStartedError:
            LOGGER.info(f"{workflow_name} {workflow_id} already running")
