"""Session lifecycle operations exposed to the API."""

import re
import uuid
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.core.exceptions import (
    ConfigurationError,
    DocumentNotFoundError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from rto_validator.core.indexer_client import IndexerClient
from rto_validator.database.models import Document, RequirementOutcome, TriggerLogEntry, ValidationSession
from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.repositories.trigger_log_repository import TriggerLogRepository
from rto_validator.schemas.validation import (
    IndexingStatus,
    RequirementCategory,
    SessionStatus,
    SessionStatusView,
    TriggerSource,
)
from rto_validator.services.document_registry import DocumentRegistry
from rto_validator.services.indexing_detector import IndexingCompletionDetector, TriggerResult
from rto_validator.services.orchestrator import ValidationOrchestrator
from rto_validator.services.result_store import ResultStore
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

_NAMESPACE_UNSAFE = re.compile(r"[^a-z0-9]+")

_FINISHED = (SessionStatus.COMPLETED.value, SessionStatus.FAILED.value)


def _namespace_part(value: str) -> str:
    return _NAMESPACE_UNSAFE.sub("-", value.lower()).strip("-") or "x"


def make_namespace(org_code: str, unit_code: str) -> str:
    """Per-session token that scopes document retrieval to this session.

    Only ``[a-z0-9-]`` survives, so the token can be quoted into a File
    Search metadata filter as is.
    """
    return f"{_namespace_part(org_code)}-{_namespace_part(unit_code)}-{uuid.uuid4().hex[:12]}"


class SessionService:
    """Facade over the pipeline components for one request."""

    def __init__(
        self,
        session: AsyncSession,
        indexer: Optional[IndexerClient] = None,
        orchestrator: Optional[ValidationOrchestrator] = None,
    ):
        self.session = session
        self.orchestrator = orchestrator
        self.sessions = SessionRepository(session)
        self.registry = DocumentRegistry(session, indexer=indexer)
        self.detector = IndexingCompletionDetector(session, registry=self.registry)
        self.results = ResultStore(session)
        self.trigger_log = TriggerLogRepository(session)

    async def start_session(self, org_code: str, unit_code: str) -> ValidationSession:
        if not org_code or not org_code.strip():
            raise ValidationError("org_code is required")
        if not unit_code or not unit_code.strip():
            raise ValidationError("unit_code is required")

        org_code, unit_code = org_code.strip(), unit_code.strip()
        validation_session = await self.sessions.create_session(
            org_code, unit_code, make_namespace(org_code, unit_code)
        )
        await self.session.commit()
        LOGGER.info(
            f"Started validation session {validation_session.id}",
            extra={"org_code": org_code, "unit_code": unit_code},
        )
        return validation_session

    async def retrigger_session(
        self,
        source_session_id: uuid.UUID,
        storage_refs: Optional[List[str]] = None,
    ) -> ValidationSession:
        """Start a fresh session for the same unit from a finished one.

        The new session gets its own namespace, so its documents are indexed
        again and never mix with the source's. Without ``storage_refs`` the
        source's documents are reused; with them, the new document set
        replaces the old one.

        Raises:
            SessionNotFoundError: Unknown source session
            SessionStateError: The source session has not finished yet
            ValidationError: There are no documents to validate
        """
        source = await self._require_session(source_session_id)
        if source.status not in _FINISHED:
            raise SessionStateError(
                f"Session {source_session_id} is {source.status} and can only be re-triggered once finished"
            )

        if storage_refs is None:
            documents = [
                (d.storage_ref, d.display_name)
                for d in await self.registry.list_documents(source_session_id)
            ]
        else:
            documents = [(ref.strip(), None) for ref in storage_refs if ref and ref.strip()]
        if not documents:
            raise ValidationError("A re-triggered session needs at least one document")

        validation_session = await self.sessions.create_session(
            source.org_code,
            source.unit_code,
            make_namespace(source.org_code, source.unit_code),
            source_session_id=source.id,
        )
        await self.session.commit()

        for storage_ref, display_name in documents:
            await self.add_document(validation_session.id, storage_ref, display_name)

        LOGGER.info(
            f"Re-triggered session {source_session_id} as {validation_session.id}",
            extra={"documents": len(documents), "reused": storage_refs is None},
        )
        return await self.sessions.refresh(validation_session.id)

    async def get_session_status(self, session_id: uuid.UUID) -> SessionStatusView:
        return await self.results.get_session_status(session_id)

    async def add_document(
        self,
        session_id: uuid.UUID,
        storage_ref: str,
        display_name: Optional[str] = None,
        submit: bool = True,
    ) -> Document:
        """Register a document and, when an indexer is configured, submit it."""
        document = await self.registry.register_document(session_id, storage_ref, display_name)
        if submit and self.registry.indexer is not None:
            document = await self.registry.submit_document(document.id)
        return document

    async def list_documents(self, session_id: uuid.UUID) -> List[Document]:
        await self._require_session(session_id)
        return await self.registry.list_documents(session_id)

    async def report_indexing_status(
        self,
        document_id: uuid.UUID,
        status: IndexingStatus,
        error: Optional[str] = None,
    ) -> Document:
        await self.registry.on_indexing_status_changed(document_id, status, error)
        document = await self.registry.documents.get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        await self.session.refresh(document)
        return document

    async def check_readiness(self, session_id: uuid.UUID) -> TriggerResult:
        """One poll-mode check: refresh from the indexer if possible, then evaluate."""
        await self._require_session(session_id)
        if self.registry.indexer is not None:
            await self.registry.refresh_indexing_status(session_id)
        return await self.detector.check_and_trigger(session_id, TriggerSource.POLL)

    async def trigger_validation(self, session_id: uuid.UUID) -> TriggerResult:
        return await self.detector.trigger_manually(session_id)

    async def re_validate_requirement(
        self,
        session_id: uuid.UUID,
        category: RequirementCategory,
        number: str,
    ) -> RequirementOutcome:
        if self.orchestrator is None:
            raise ConfigurationError("Re-validation requires a configured AI provider")
        return await self.orchestrator.revalidate_requirement(session_id, category, number)

    async def regenerate_smart_questions(
        self,
        session_id: uuid.UUID,
        category: RequirementCategory,
        number: str,
        user_context: Optional[str] = None,
    ) -> RequirementOutcome:
        if self.orchestrator is None:
            raise ConfigurationError("Smart question generation requires a configured AI provider")
        return await self.orchestrator.regenerate_smart_questions(session_id, category, number, user_context)

    async def list_outcomes(self, session_id: uuid.UUID) -> List[RequirementOutcome]:
        await self._require_session(session_id)
        return await self.results.list_outcomes(session_id)

    async def list_trigger_log(self, session_id: uuid.UUID) -> List[TriggerLogEntry]:
        await self._require_session(session_id)
        return await self.trigger_log.list_by_session(session_id)

    async def _require_session(self, session_id: uuid.UUID) -> ValidationSession:
        validation_session = await self.sessions.get_by_id(session_id)
        if validation_session is None:
            raise SessionNotFoundError(f"Validation session {session_id} not found")
        return validation_session
