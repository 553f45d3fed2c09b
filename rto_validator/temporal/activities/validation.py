import asyncio
from uuid import UUID

from temporalio import activity

from rto_validator.core.database import async_session_maker
from rto_validator.services.document_registry import DocumentRegistry
from rto_validator.services.factory import build_indexer, build_orchestrator, build_poll_policy
from rto_validator.services.indexing_detector import IndexingCompletionDetector
from rto_validator.services.result_store import VALIDATION_INCOMPLETE, ResultStore
from rto_validator.temporal.core.activity_registry import ActivityRegistry
from rto_validator.utils.logging import get_logger

logger = get_logger(__name__)


async def _heartbeat_sleep(seconds: float) -> None:
    activity.heartbeat()
    await asyncio.sleep(seconds)


@ActivityRegistry.register("validation", "run_session_validation")
@activity.defn(name="run_session_validation")
async def run_session_validation(session_id: str) -> dict:
    """Temporal activity validating every outstanding requirement of a session."""
    try:
        orchestrator = build_orchestrator()
        summary = await orchestrator.run_validation(UUID(session_id))
        return summary.model_dump(mode="json")
    except Exception as e:
        logger.error(f"Validation activity failed for session {session_id}: {e}", exc_info=True)
        raise


@ActivityRegistry.register("validation", "fail_session_validation")
@activity.defn(name="fail_session_validation")
async def fail_session_validation(session_id: str) -> bool:
    """Temporal activity marking a session failed once validation gave up."""
    async with async_session_maker() as session:
        failed = await ResultStore(session).fail_session(UUID(session_id), VALIDATION_INCOMPLETE)
        await session.commit()
    if failed:
        logger.warning(f"Session {session_id} failed after validation attempts ran out")
    return failed


@ActivityRegistry.register("indexing", "poll_session_readiness")
@activity.defn(name="poll_session_readiness")
async def poll_session_readiness(session_id: str) -> dict:
    """Temporal activity running the bounded indexing poll for a session."""
    try:
        async with async_session_maker() as session:
            registry = DocumentRegistry(session, indexer=build_indexer())
            detector = IndexingCompletionDetector(
                session,
                registry=registry,
                poll_policy=build_poll_policy(),
                sleep=_heartbeat_sleep,
            )
            result = await detector.poll_until_ready(UUID(session_id))
            return {
                "triggered": result.triggered,
                "ready": result.ready,
                "status": result.status.value,
                "message": result.message,
            }
    except Exception as e:
        logger.error(f"Readiness poll activity failed for session {session_id}: {e}", exc_info=True)
        raise
