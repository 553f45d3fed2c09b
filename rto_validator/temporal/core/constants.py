"""Shared constants for Temporal workflows."""

DEFAULT_TASK_QUEUE = "validation-queue"

VALIDATE_SESSION_ACTIVITY_TIMEOUT_SECONDS = 7200  # 2 hours
POLL_READINESS_ACTIVITY_TIMEOUT_SECONDS = 3600   # 1 hour
ACTIVITY_HEARTBEAT_TIMEOUT_SECONDS = 120
FAIL_SESSION_ACTIVITY_TIMEOUT_SECONDS = 60

# Raised by activities for conditions another attempt cannot fix
NON_RETRYABLE_ERROR_TYPES = [
    "NoRequirementsError",
    "SessionStateError",
    "SessionNotFoundError",
    "ConfigurationError",
]


def validate_session_workflow_id(session_id: str) -> str:
    return f"validate-session-{session_id}"


def wait_for_indexing_workflow_id(session_id: str) -> str:
    return f"wait-indexing-{session_id}"
