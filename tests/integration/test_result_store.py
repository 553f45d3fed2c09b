"""Integration tests for outcome storage and the session rollup."""

import pytest
import pytest_asyncio

from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.schemas.validation import (
    OutcomeStatus,
    ParseTier,
    RequirementCategory,
    RequirementInput,
    RequirementOutcomeData,
    SessionStatus,
)
from rto_validator.services.result_store import ResultStore


def requirement(number: str) -> RequirementInput:
    return RequirementInput(
        category=RequirementCategory.KNOWLEDGE_EVIDENCE,
        number=number,
        text=f"Knowledge of workplace hazard {number}",
    )


@pytest_asyncio.fixture
async def validating_session(session_factory, seed_requirements):
    await seed_requirements(count=2)
    async with session_factory() as db:
        validation_session = await SessionRepository(db).create_session("RTO1", "BSBWHS211", "rto1-ns")
        validation_session.status = SessionStatus.VALIDATING_IN_BACKGROUND.value
        await db.commit()
    return validation_session.id


class TestResultStore:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent_per_requirement(self, session_factory, validating_session):
        async with session_factory() as db:
            store = ResultStore(db)
            await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("1"),
                RequirementOutcomeData(status=OutcomeStatus.NOT_MET, reasoning="first pass"),
            )
            stored = await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("1"),
                RequirementOutcomeData(status=OutcomeStatus.MET, reasoning="second pass"),
            )

            outcomes = await store.list_outcomes(validating_session)
            status = await store.get_session_status(validating_session)

        assert len(outcomes) == 1
        assert stored.status == OutcomeStatus.MET.value
        assert stored.reasoning == "second pass"
        assert status.completed == 1
        assert status.total == 2
        assert status.progress == pytest.approx(0.5)
        assert status.status == SessionStatus.VALIDATING_IN_BACKGROUND

    @pytest.mark.asyncio
    async def test_last_outcome_completes_session(self, session_factory, validating_session):
        async with session_factory() as db:
            store = ResultStore(db)
            for number in ("1", "2"):
                await store.upsert_outcome(
                    validating_session, "rto1-ns", requirement(number),
                    RequirementOutcomeData(status=OutcomeStatus.MET),
                )
            status = await store.get_session_status(validating_session)

        assert status.status == SessionStatus.COMPLETED
        assert status.completed == status.total == 2
        assert status.progress == 1.0
        assert status.last_error is None
        assert status.failed_requirement_count == 0

    @pytest.mark.asyncio
    async def test_errored_outcomes_are_summarized(self, session_factory, validating_session):
        async with session_factory() as db:
            store = ResultStore(db)
            await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("1"),
                RequirementOutcomeData(status=OutcomeStatus.MET),
            )
            await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("2"),
                RequirementOutcomeData(
                    status=OutcomeStatus.NOT_MET,
                    validation_error=True,
                    parse_tier=ParseTier.UNPARSEABLE,
                ),
            )
            status = await store.get_session_status(validating_session)

        assert status.status == SessionStatus.COMPLETED
        assert status.failed_requirement_count == 1
        assert status.last_error == "1 requirement(s) could not be validated"

    @pytest.mark.asyncio
    async def test_fixing_an_errored_outcome_clears_the_summary(self, session_factory, validating_session):
        async with session_factory() as db:
            store = ResultStore(db)
            await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("1"),
                RequirementOutcomeData(status=OutcomeStatus.MET),
            )
            await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("2"),
                RequirementOutcomeData(status=OutcomeStatus.NOT_MET, validation_error=True),
            )
            await store.upsert_outcome(
                validating_session, "rto1-ns", requirement("2"),
                RequirementOutcomeData(status=OutcomeStatus.PARTIALLY_MET),
            )
            status = await store.get_session_status(validating_session)

        assert status.status == SessionStatus.COMPLETED
        assert status.failed_requirement_count == 0
        assert status.last_error is None

    @pytest.mark.asyncio
    async def test_outcome_payload_round_trips_through_storage(self, session_factory, validating_session):
        outcome = RequirementOutcomeData.model_validate({
            "status": "partially_met",
            "reasoning": "Only spills are covered",
            "citations": [{"document_name": "workbook.pdf", "page_numbers": [4]}],
            "smart_questions": [{"question": "List two controls.", "benchmark_answer": "Barriers, PPE."}],
            "confidence": 0.7,
            "parse_tier": "fenced",
            "retry_count": 1,
        })

        async with session_factory() as db:
            await ResultStore(db).upsert_outcome(validating_session, "rto1-ns", requirement("1"), outcome)

        async with session_factory() as db:
            stored = await ResultStore(db).get_outcome(validating_session, "rto1-ns", requirement("1"))

        assert stored.requirement_text == "Knowledge of workplace hazard 1"
        assert stored.citations == [{"document_name": "workbook.pdf", "page_numbers": [4], "snippet": None}]
        assert stored.smart_questions == [{"question": "List two controls.", "benchmark_answer": "Barriers, PPE."}]
        assert stored.parse_tier == "fenced"
        assert stored.retry_count == 1

    @pytest.mark.asyncio
    async def test_fail_session_never_overrides_completion(self, session_factory, validating_session):
        async with session_factory() as db:
            store = ResultStore(db)
            for number in ("1", "2"):
                await store.upsert_outcome(
                    validating_session, "rto1-ns", requirement(number),
                    RequirementOutcomeData(status=OutcomeStatus.MET),
                )
            assert await store.fail_session(validating_session, "too late") is False
            await db.commit()
            status = await store.get_session_status(validating_session)

        assert status.status == SessionStatus.COMPLETED
        assert status.last_error is None
