"""Validation orchestrator: validates every requirement of a ready session."""

import asyncio
import uuid
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rto_validator.core.exceptions import (
    AppError,
    APIClientError,
    NoRequirementsError,
    RequirementNotFoundError,
    RetryExhaustedError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from rto_validator.database.models import RequirementOutcome, ValidationSession
from rto_validator.repositories.outcome_repository import OutcomeRepository
from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.schemas.validation import (
    OutcomeStatus,
    ParseTier,
    RequirementCategory,
    RequirementInput,
    RequirementOutcomeData,
    SessionStatus,
    SmartQuestion,
    ValidationContext,
    ValidationRunSummary,
)
from rto_validator.services.document_registry import DocumentRegistry
from rto_validator.services.requirement_catalog import RequirementCatalog
from rto_validator.services.response_parser import ResponseParser
from rto_validator.services.result_store import ResultStore
from rto_validator.services.validation_client import ValidationClient
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

_REVALIDATION_STATUSES = (
    SessionStatus.VALIDATING_IN_BACKGROUND.value,
    SessionStatus.COMPLETED.value,
)


def failed_outcome(error: Exception, retry_count: int = 0) -> RequirementOutcomeData:
    """Outcome recorded when a requirement could not be validated at all."""
    reason = error.last_error if isinstance(error, RetryExhaustedError) else error
    return RequirementOutcomeData(
        status=OutcomeStatus.NOT_MET,
        reasoning=f"Validation could not be completed: {reason}",
        validation_error=True,
        parse_tier=ParseTier.FAILED,
        retry_count=retry_count,
    )


class ValidationOrchestrator:
    """Runs per-requirement validation for a session with bounded concurrency.

    Each requirement task uses its own database session, so outcomes are
    committed as they arrive and a rerun skips requirements that already
    have one.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: ValidationClient,
        document_refs: Sequence[str] = (),
        parser: Optional[ResponseParser] = None,
        max_concurrency: int = 5,
        generate_smart_questions: bool = True,
        validation_temperature: float = 0.2,
        question_temperature: float = 0.7,
    ):
        self.session_factory = session_factory
        self.client = client
        self.document_refs = list(document_refs)
        self.parser = parser or ResponseParser()
        self.max_concurrency = max(1, max_concurrency)
        self.generate_smart_questions = generate_smart_questions
        self.validation_temperature = validation_temperature
        self.question_temperature = question_temperature

    def build_context(self, validation_session: ValidationSession) -> ValidationContext:
        return ValidationContext(
            session_id=validation_session.id,
            unit_code=validation_session.unit_code,
            namespace=validation_session.namespace,
            document_refs=self.document_refs,
            validation_temperature=self.validation_temperature,
            question_temperature=self.question_temperature,
        )

    async def run_validation(self, session_id: uuid.UUID) -> ValidationRunSummary:
        """Validate all of a session's outstanding requirements.

        Raises:
            SessionNotFoundError: Unknown session
            SessionStateError: Session is not validating in background or not ready
            NoRequirementsError: The unit has no requirements (session is failed)
        """
        async with self.session_factory() as db:
            validation_session = await SessionRepository(db).get_by_id(session_id)
            if validation_session is None:
                raise SessionNotFoundError(f"Validation session {session_id} not found")
            if validation_session.status != SessionStatus.VALIDATING_IN_BACKGROUND.value:
                raise SessionStateError(
                    f"Session {session_id} is {validation_session.status}, expected "
                    f"{SessionStatus.VALIDATING_IN_BACKGROUND.value}"
                )
            if not await DocumentRegistry(db).is_session_ready(session_id):
                raise SessionStateError(f"Documents of session {session_id} are not all indexed")

            requirements = await RequirementCatalog(db).requirements_for_unit(validation_session.unit_code)
            if not requirements:
                await ResultStore(db).fail_session(session_id, NoRequirementsError.category)
                await db.commit()
                raise NoRequirementsError(
                    f"No requirements found for unit {validation_session.unit_code}"
                )

            await SessionRepository(db).set_requirement_total(session_id, len(requirements))
            await db.commit()

            done = await OutcomeRepository(db).existing_keys(session_id)
            context = self.build_context(validation_session)

        pending = [r for r in requirements if (r.category.value, r.number) not in done]
        LOGGER.info(
            f"Validating {len(pending)} of {len(requirements)} requirement(s) for session {session_id}",
            extra={"unit_code": context.unit_code, "concurrency": self.max_concurrency},
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(self._run_one(context, requirement, semaphore) for requirement in pending),
            return_exceptions=True,
        )

        unexpected: List[BaseException] = []
        errored = 0
        for requirement, result in zip(pending, results):
            if isinstance(result, BaseException):
                unexpected.append(result)
                LOGGER.error(
                    f"Requirement {requirement.category.value} {requirement.number} crashed: {result}",
                    exc_info=result,
                )
            elif result.validation_error:
                errored += 1

        async with self.session_factory() as db:
            final = await ResultStore(db).recompute_rollup(session_id)
            status = SessionStatus(final.status)

        if unexpected:
            raise unexpected[0]

        LOGGER.info(
            f"Validation run for session {session_id} finished with status {status.value}",
            extra={"validated": len(pending), "errored": errored},
        )
        return ValidationRunSummary(
            session_id=session_id,
            total=len(requirements),
            validated=len(pending),
            skipped=len(requirements) - len(pending),
            errored=errored,
            status=status,
        )

    async def revalidate_requirement(
        self,
        session_id: uuid.UUID,
        category: RequirementCategory,
        number: str,
    ) -> RequirementOutcome:
        """Re-run validation for one requirement and overwrite its outcome."""
        context, requirement = await self._load_requirement(session_id, category, number)

        outcome = await self._validate(context, requirement)

        async with self.session_factory() as db:
            stored = await ResultStore(db).upsert_outcome(session_id, context.namespace, requirement, outcome)
        LOGGER.info(
            f"Re-validated {category.value} {number} for session {session_id}: {outcome.status.value}"
        )
        return stored

    async def regenerate_smart_questions(
        self,
        session_id: uuid.UUID,
        category: RequirementCategory,
        number: str,
        user_context: Optional[str] = None,
    ) -> RequirementOutcome:
        """Replace the smart question of one stored outcome, steered by reviewer feedback.

        The verdict is left as it is; only ``smart_questions`` changes.

        Raises:
            RequirementNotFoundError: Unknown requirement or no stored outcome yet
            ValidationError: The requirement is met, so it takes no question
            APIClientError: The model gave no usable question
        """
        context, requirement = await self._load_requirement(session_id, category, number)

        async with self.session_factory() as db:
            stored = await ResultStore(db).get_outcome(session_id, context.namespace, requirement)
            if stored is None:
                raise RequirementNotFoundError(
                    f"Requirement {category.value} {number} has no outcome to generate questions for"
                )
            current = RequirementOutcomeData(
                status=OutcomeStatus(stored.status),
                reasoning=stored.reasoning,
                mapped_content=stored.mapped_content,
                unmapped_content=stored.unmapped_content,
                smart_questions=[SmartQuestion(**q) for q in stored.smart_questions or []],
            )
        if current.status == OutcomeStatus.MET:
            raise ValidationError(f"Requirement {category.value} {number} is met and takes no smart question")

        questions = await self.client.generate_smart_questions(
            context, requirement, current, user_context=user_context or ""
        )
        if not questions:
            raise APIClientError(
                f"The model returned no usable smart question for {category.value} {number}"
            )

        async with self.session_factory() as db:
            updated = await ResultStore(db).replace_smart_questions(
                session_id, context.namespace, requirement, questions
            )
        LOGGER.info(f"Regenerated smart question for {category.value} {number} in session {session_id}")
        return updated

    async def _load_requirement(
        self,
        session_id: uuid.UUID,
        category: RequirementCategory,
        number: str,
    ) -> Tuple[ValidationContext, RequirementInput]:
        async with self.session_factory() as db:
            validation_session = await SessionRepository(db).get_by_id(session_id)
            if validation_session is None:
                raise SessionNotFoundError(f"Validation session {session_id} not found")
            if validation_session.status not in _REVALIDATION_STATUSES:
                raise SessionStateError(
                    f"Session {session_id} is {validation_session.status}; "
                    "outcomes can only be changed once validation has started"
                )
            requirement = await RequirementCatalog(db).get_requirement(
                validation_session.unit_code, category, number
            )
            if requirement is None:
                raise RequirementNotFoundError(
                    f"Requirement {category.value} {number} not found for unit {validation_session.unit_code}"
                )
            return self.build_context(validation_session), requirement

    async def _run_one(
        self,
        context: ValidationContext,
        requirement: RequirementInput,
        semaphore: asyncio.Semaphore,
    ) -> RequirementOutcomeData:
        async with semaphore:
            outcome = await self._validate(context, requirement)
            async with self.session_factory() as db:
                await ResultStore(db).upsert_outcome(
                    context.session_id, context.namespace, requirement, outcome
                )
            return outcome

    async def _validate(
        self, context: ValidationContext, requirement: RequirementInput
    ) -> RequirementOutcomeData:
        try:
            response = await self.client.validate(context, requirement)
        except RetryExhaustedError as e:
            LOGGER.warning(
                f"Retries exhausted for {requirement.category.value} {requirement.number}: {e.last_error}"
            )
            return failed_outcome(e, retry_count=e.attempts - 1)
        except APIClientError as e:
            LOGGER.warning(
                f"Provider rejected {requirement.category.value} {requirement.number}: {e}"
            )
            return failed_outcome(e)

        outcome = self.parser.parse(response.text, response.grounding_metadata, requirement)
        outcome = outcome.model_copy(update={"retry_count": response.attempts - 1})

        if (
            self.generate_smart_questions
            and outcome.status != OutcomeStatus.MET
            and not outcome.smart_questions
            and not outcome.validation_error
        ):
            try:
                questions = await self.client.generate_smart_questions(context, requirement, outcome)
            except AppError as e:
                LOGGER.warning(
                    f"Smart question generation failed for {requirement.category.value} "
                    f"{requirement.number}: {e}"
                )
                questions = []
            if questions:
                outcome = outcome.model_copy(update={"smart_questions": questions})

        return outcome
