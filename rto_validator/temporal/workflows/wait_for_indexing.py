"""Poll fallback for sessions whose indexer callbacks never arrive."""

from datetime import timedelta
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

from rto_validator.temporal.core.constants import (
    ACTIVITY_HEARTBEAT_TIMEOUT_SECONDS,
    NON_RETRYABLE_ERROR_TYPES,
    POLL_READINESS_ACTIVITY_TIMEOUT_SECONDS,
)
from rto_validator.temporal.core.workflow_registry import WorkflowRegistry, WorkflowType


@WorkflowRegistry.register(category=WorkflowType.INDEXING)
@workflow.defn
class WaitForIndexingWorkflow:
    def __init__(self):
        self._status = "initialized"
        self._result: Optional[dict] = None

    @workflow.query
    def get_status(self) -> dict:
        return {"status": self._status, "result": self._result}

    @workflow.run
    async def run(self, session_id: str) -> dict:
        self._status = "polling"

        self._result = await workflow.execute_activity(
            "poll_session_readiness",
            session_id,
            start_to_close_timeout=timedelta(seconds=POLL_READINESS_ACTIVITY_TIMEOUT_SECONDS),
            heartbeat_timeout=timedelta(seconds=ACTIVITY_HEARTBEAT_TIMEOUT_SECONDS),
            retry_policy=RetryPolicy(
                maximum_attempts=2,
                non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
            ),
        )

        self._status = "completed"
        return {"status": self._status, "session_id": session_id, "result": self._result}
