"""Result store and session status aggregation.

Every outcome write runs in one transaction with the rollup that follows
it, holding the session row lock, so the session counters always agree
with the stored outcomes.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.core.exceptions import RequirementNotFoundError, SessionNotFoundError
from rto_validator.database.models import RequirementOutcome, ValidationSession
from rto_validator.repositories.outcome_repository import OutcomeRepository
from rto_validator.repositories.requirement_repository import RequirementRepository
from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.schemas.validation import (
    RequirementInput,
    RequirementOutcomeData,
    SessionStatus,
    SessionStatusView,
    SmartQuestion,
)
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FINAL_STATUSES = (SessionStatus.COMPLETED.value, SessionStatus.FAILED.value)

VALIDATION_INCOMPLETE = "validation could not be completed"


def unvalidated_summary(count: int) -> str:
    return f"{count} requirement(s) could not be validated"


class ResultStore:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.sessions = SessionRepository(session)
        self.outcomes = OutcomeRepository(session)
        self.requirements = RequirementRepository(session)

    async def upsert_outcome(
        self,
        session_id: uuid.UUID,
        namespace: str,
        requirement: RequirementInput,
        outcome: RequirementOutcomeData,
    ) -> RequirementOutcome:
        """Store an outcome under its requirement key and refresh the rollup.

        Writing the same key twice leaves one row holding the latest values.
        Commits the transaction.
        """
        validation_session = await self.sessions.get_for_update(session_id)
        if validation_session is None:
            raise SessionNotFoundError(f"Validation session {session_id} not found")

        stored = await self.outcomes.upsert({
            "session_id": session_id,
            "category": requirement.category.value,
            "requirement_number": requirement.number,
            "namespace": namespace,
            "requirement_text": requirement.text,
            "status": outcome.status.value,
            "reasoning": outcome.reasoning,
            "mapped_content": outcome.mapped_content,
            "unmapped_content": outcome.unmapped_content,
            "citations": [c.model_dump() for c in outcome.citations],
            "smart_questions": [q.model_dump() for q in outcome.smart_questions],
            "confidence": outcome.confidence,
            "validation_error": outcome.validation_error,
            "parse_tier": outcome.parse_tier.value,
            "retry_count": outcome.retry_count,
        })

        await self._apply_rollup(validation_session)
        await self.session.commit()

        LOGGER.debug(
            f"Stored {requirement.category.value} {requirement.number} as {outcome.status.value}",
            extra={"session_id": str(session_id)},
        )
        return stored

    async def recompute_rollup(self, session_id: uuid.UUID) -> ValidationSession:
        """Recount outcomes for a session and commit the new counters."""
        validation_session = await self.sessions.get_for_update(session_id)
        if validation_session is None:
            raise SessionNotFoundError(f"Validation session {session_id} not found")
        await self._apply_rollup(validation_session)
        await self.session.commit()
        return validation_session

    async def _apply_rollup(self, validation_session: ValidationSession) -> None:
        total = await self.requirements.count_for_unit(validation_session.unit_code)
        completed = min(await self.outcomes.count_completed(validation_session.id), total)
        errors = await self.outcomes.count_errors(validation_session.id)

        validation_session.requirement_total = total
        validation_session.completed_count = completed
        validation_session.progress = completed / total if total else 0.0
        validation_session.failed_requirement_count = errors

        if total > 0 and completed == total:
            if validation_session.status != SessionStatus.COMPLETED.value:
                LOGGER.info(
                    f"Validation session {validation_session.id} completed "
                    f"({completed}/{total}, {errors} unvalidated)"
                )
            validation_session.status = SessionStatus.COMPLETED.value
            validation_session.last_error = unvalidated_summary(errors) if errors else None

        validation_session.updated_at = datetime.now(timezone.utc)
        await self.session.flush()

    async def fail_session(self, session_id: uuid.UUID, error: str) -> bool:
        """Move a session to failed unless it already finished.

        The caller commits.

        Returns:
            True if the session was failed by this call
        """
        stmt = (
            update(ValidationSession)
            .where(
                ValidationSession.id == session_id,
                ValidationSession.status.notin_(_FINAL_STATUSES),
            )
            .values(
                status=SessionStatus.FAILED.value,
                last_error=error,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        failed = result.rowcount == 1
        if failed:
            LOGGER.warning(f"Validation session {session_id} failed: {error}")
        return failed

    async def get_session_status(self, session_id: uuid.UUID) -> SessionStatusView:
        validation_session = await self.sessions.refresh(session_id)
        if validation_session is None:
            raise SessionNotFoundError(f"Validation session {session_id} not found")
        return SessionStatusView(
            session_id=validation_session.id,
            status=SessionStatus(validation_session.status),
            completed=validation_session.completed_count,
            total=validation_session.requirement_total,
            progress=validation_session.progress,
            last_error=validation_session.last_error,
            failed_requirement_count=validation_session.failed_requirement_count,
        )

    async def list_outcomes(self, session_id: uuid.UUID) -> List[RequirementOutcome]:
        return await self.outcomes.list_by_session(session_id)

    async def get_outcome(
        self, session_id: uuid.UUID, namespace: str, requirement: RequirementInput
    ) -> Optional[RequirementOutcome]:
        return await self.outcomes.get_by_key(
            session_id, requirement.category, requirement.number, namespace
        )

    async def replace_smart_questions(
        self,
        session_id: uuid.UUID,
        namespace: str,
        requirement: RequirementInput,
        questions: List[SmartQuestion],
    ) -> RequirementOutcome:
        """Swap the smart questions of a stored outcome. Commits.

        Status, reasoning and the session rollup are not touched.
        """
        outcome = await self.get_outcome(session_id, namespace, requirement)
        if outcome is None:
            raise RequirementNotFoundError(
                f"No outcome stored for {requirement.category.value} {requirement.number}"
            )
        await self.outcomes.set_smart_questions(outcome, [q.model_dump() for q in questions])
        await self.session.commit()
        return outcome
