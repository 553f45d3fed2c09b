"""Integration tests for session start-up and re-triggering."""

import re
import uuid

import pytest
from pydantic import ValidationError as SchemaValidationError
from unittest.mock import AsyncMock

from rto_validator.core.exceptions import SessionStateError, ValidationError
from rto_validator.core.retry import RetryPolicy
from rto_validator.schemas.validation import IndexingStatus, SessionStatus, ValidationContext
from rto_validator.services.orchestrator import ValidationOrchestrator
from rto_validator.services.result_store import ResultStore
from rto_validator.services.session_service import SessionService
from rto_validator.services.validation_client import ValidationClient

NOT_MET = '{"status": "Not Met", "reasoning": "No task covers this"}'


async def finished_session(session_factory, provider, indexer=None, refs=("/uploads/a.pdf", "/uploads/b.pdf")):
    """A session whose documents indexed and whose validation ran to completion."""
    async with session_factory() as db:
        service = SessionService(db, indexer=indexer)
        validation_session = await service.start_session("RTO1", "BSBWHS211")
        documents = [
            await service.add_document(validation_session.id, ref, ref.rsplit("/", 1)[-1])
            for ref in refs
        ]
        for document in documents:
            await service.report_indexing_status(document.id, IndexingStatus.COMPLETED)

    await make_orchestrator(session_factory, provider).run_validation(validation_session.id)
    return validation_session


def make_orchestrator(session_factory, provider):
    client = ValidationClient(provider, retry_policy=RetryPolicy(max_attempts=1), sleep=AsyncMock())
    return ValidationOrchestrator(
        session_factory, client, document_refs=["fileSearchStores/rto-docs"], generate_smart_questions=False
    )


class TestStartSession:
    @pytest.mark.asyncio
    async def test_org_code_cannot_break_out_of_the_metadata_filter(self, session_factory):
        async with session_factory() as db:
            validation_session = await SessionService(db).start_session(
                'acme" OR namespace!="x', "BSBWHS211"
            )

        assert re.fullmatch(r"acme-or-namespace-x-bsbwhs211-[0-9a-f]{12}", validation_session.namespace)
        context = ValidationContext(
            session_id=validation_session.id,
            unit_code="BSBWHS211",
            namespace=validation_session.namespace,
        )
        assert context.metadata_filter == f'namespace="{validation_session.namespace}"'
        assert context.metadata_filter.count('"') == 2

    @pytest.mark.asyncio
    async def test_namespaces_are_unique_per_session(self, session_factory):
        async with session_factory() as db:
            service = SessionService(db)
            first = await service.start_session("RTO1", "BSBWHS211")
            second = await service.start_session("RTO1", "BSBWHS211")

        assert first.namespace != second.namespace

    @pytest.mark.asyncio
    async def test_blank_org_code_is_rejected(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(ValidationError):
                await SessionService(db).start_session("   ", "BSBWHS211")

    def test_context_rejects_a_quoted_namespace(self):
        with pytest.raises(SchemaValidationError):
            ValidationContext(session_id=uuid.uuid4(), unit_code="BSBWHS211", namespace='rto1" OR "1')


class TestRetriggerSession:
    @pytest.mark.asyncio
    async def test_reuses_source_documents_under_a_new_namespace(
        self, session_factory, seed_requirements, make_provider, make_indexer
    ):
        await seed_requirements(count=2)
        indexer = make_indexer()
        source = await finished_session(session_factory, make_provider(), indexer=indexer)

        async with session_factory() as db:
            service = SessionService(db, indexer=indexer)
            retriggered = await service.retrigger_session(source.id)
            documents = await service.list_documents(retriggered.id)

        assert retriggered.id != source.id
        assert retriggered.source_session_id == source.id
        assert retriggered.namespace != source.namespace
        assert retriggered.status == SessionStatus.DOCUMENT_PROCESSING.value
        assert sorted((d.storage_ref, d.display_name) for d in documents) == [
            ("/uploads/a.pdf", "a.pdf"),
            ("/uploads/b.pdf", "b.pdf"),
        ]
        assert all(d.indexing_status == IndexingStatus.PROCESSING.value for d in documents)
        assert sorted(indexer.submitted[-2:]) == [
            ("/uploads/a.pdf", retriggered.namespace),
            ("/uploads/b.pdf", retriggered.namespace),
        ]

    @pytest.mark.asyncio
    async def test_new_document_set_is_validated_without_touching_the_source(
        self, session_factory, seed_requirements, make_provider
    ):
        await seed_requirements(count=2)
        source = await finished_session(session_factory, make_provider())

        async with session_factory() as db:
            service = SessionService(db)
            retriggered = await service.retrigger_session(source.id, storage_refs=[" /uploads/v2.pdf "])
            (document,) = await service.list_documents(retriggered.id)
            await service.report_indexing_status(document.id, IndexingStatus.COMPLETED)

        assert document.storage_ref == "/uploads/v2.pdf"

        provider = make_provider(default=NOT_MET)
        await make_orchestrator(session_factory, provider).run_validation(retriggered.id)

        async with session_factory() as db:
            store = ResultStore(db)
            source_outcomes = await store.list_outcomes(source.id)
            new_outcomes = await store.list_outcomes(retriggered.id)
            new_status = await store.get_session_status(retriggered.id)

        assert [o.status for o in source_outcomes] == ["met", "met"]
        assert [o.status for o in new_outcomes] == ["not_met", "not_met"]
        assert new_status.status == SessionStatus.COMPLETED
        assert all(c["metadata_filter"] == f'namespace="{retriggered.namespace}"' for c in provider.calls)

    @pytest.mark.asyncio
    async def test_unfinished_source_is_rejected(self, session_factory):
        async with session_factory() as db:
            service = SessionService(db)
            validation_session = await service.start_session("RTO1", "BSBWHS211")
            await service.add_document(validation_session.id, "/uploads/a.pdf")

            with pytest.raises(SessionStateError):
                await service.retrigger_session(validation_session.id)

    @pytest.mark.asyncio
    async def test_blank_document_set_is_rejected(self, session_factory, seed_requirements, make_provider):
        await seed_requirements(count=1)
        source = await finished_session(session_factory, make_provider())

        async with session_factory() as db:
            with pytest.raises(ValidationError):
                await SessionService(db).retrigger_session(source.id, storage_refs=["  "])
