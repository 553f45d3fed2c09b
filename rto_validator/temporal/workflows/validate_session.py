"""Workflow running background validation for one session."""

from datetime import timedelta
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

from rto_validator.temporal.core.constants import (
    FAIL_SESSION_ACTIVITY_TIMEOUT_SECONDS,
    NON_RETRYABLE_ERROR_TYPES,
    VALIDATE_SESSION_ACTIVITY_TIMEOUT_SECONDS,
)
from rto_validator.temporal.core.workflow_registry import WorkflowRegistry, WorkflowType


@WorkflowRegistry.register(category=WorkflowType.VALIDATION)
@workflow.defn
class ValidateSessionWorkflow:
    """Validates all requirements of a session once its documents are indexed.

    The workflow id is derived from the session id, so a duplicate start for
    the same session is rejected by Temporal.
    """

    def __init__(self):
        self._status = "initialized"
        self._session_id: Optional[str] = None
        self._summary: Optional[dict] = None

    @workflow.query
    def get_status(self) -> dict:
        return {
            "status": self._status,
            "session_id": self._session_id,
            "summary": self._summary,
        }

    @workflow.run
    async def run(self, session_id: str) -> dict:
        self._session_id = session_id
        self._status = "validating"

        try:
            self._summary = await workflow.execute_activity(
                "run_session_validation",
                session_id,
                start_to_close_timeout=timedelta(seconds=VALIDATE_SESSION_ACTIVITY_TIMEOUT_SECONDS),
                retry_policy=RetryPolicy(
                    initial_interval=timedelta(seconds=5),
                    backoff_coefficient=2.0,
                    maximum_attempts=3,
                    non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
                ),
            )
        except ActivityError as e:
            # Out of attempts: the session must not stay in validating_in_background
            workflow.logger.error(f"Validation of session {session_id} gave up: {e.cause or e}")
            await workflow.execute_activity(
                "fail_session_validation",
                session_id,
                start_to_close_timeout=timedelta(seconds=FAIL_SESSION_ACTIVITY_TIMEOUT_SECONDS),
                retry_policy=RetryPolicy(maximum_attempts=10, maximum_interval=timedelta(minutes=1)),
            )
            self._status = "failed"
            return {"status": self._status, "session_id": session_id, "error": str(e.cause or e)}

        self._status = "completed"
        return {"status": self._status, "session_id": session_id, "summary": self._summary}
