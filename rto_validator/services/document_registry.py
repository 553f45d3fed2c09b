"""Document registry: tracks a session's documents and their indexing state."""

import uuid
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.core.exceptions import (
    APIClientError,
    ConfigurationError,
    DocumentNotFoundError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from rto_validator.core.indexer_client import IndexerClient
from rto_validator.database.models import Document
from rto_validator.repositories.document_repository import DocumentRepository
from rto_validator.repositories.outbox_repository import INDEXING_SUBMITTED, OutboxRepository
from rto_validator.repositories.session_repository import SessionRepository
from rto_validator.schemas.validation import IndexingStatus, SessionStatus, TriggerSource
from rto_validator.utils.logging import get_logger

if TYPE_CHECKING:
    from rto_validator.services.indexing_detector import IndexingCompletionDetector

LOGGER = get_logger(__name__)

_OPEN_FOR_DOCUMENTS = (SessionStatus.PENDING.value, SessionStatus.DOCUMENT_PROCESSING.value)


class DocumentRegistry:
    """Tracks a session's documents.

    Terminal status updates are handed to ``detector`` for completion
    detection. An ``IndexingCompletionDetector`` built around a registry
    without one binds itself here; a registry with no detector only records
    status changes.
    """

    def __init__(
        self,
        session: AsyncSession,
        indexer: Optional[IndexerClient] = None,
        detector: Optional["IndexingCompletionDetector"] = None,
    ):
        self.session = session
        self.indexer = indexer
        self.detector = detector
        self.sessions = SessionRepository(session)
        self.documents = DocumentRepository(session)
        self.outbox = OutboxRepository(session)

    async def register_document(
        self,
        session_id: uuid.UUID,
        storage_ref: str,
        display_name: Optional[str] = None,
    ) -> Document:
        """Record a stored document for a session.

        The first document moves the session into document processing.

        Raises:
            SessionNotFoundError: Unknown session
            SessionStateError: The session no longer accepts documents
        """
        if not storage_ref or not storage_ref.strip():
            raise ValidationError("storage_ref is required")

        validation_session = await self.sessions.get_by_id(session_id)
        if validation_session is None:
            raise SessionNotFoundError(f"Validation session {session_id} not found")
        if validation_session.status not in _OPEN_FOR_DOCUMENTS:
            raise SessionStateError(
                f"Session {session_id} is {validation_session.status} and no longer accepts documents"
            )

        document = await self.documents.create_document(session_id, storage_ref, display_name)
        await self.sessions.compare_and_set_status(
            session_id, SessionStatus.PENDING, SessionStatus.DOCUMENT_PROCESSING
        )
        await self.session.commit()

        LOGGER.info(
            f"Registered document {document.id} for session {session_id}",
            extra={"storage_ref": storage_ref},
        )
        return document

    async def submit_document(self, document_id: uuid.UUID) -> Document:
        """Hand a registered document to the indexer.

        A submission the indexer rejects marks the document failed, which
        fails the session through the usual detection path.
        """
        if self.indexer is None:
            raise ConfigurationError("No indexer configured")

        document = await self.documents.get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        validation_session = await self.sessions.get_by_id(document.session_id)

        try:
            operation_id = await self.indexer.submit_for_indexing(
                document.storage_ref, validation_session.namespace, document.display_name
            )
        except APIClientError as e:
            LOGGER.error(f"Indexing submission failed for document {document_id}: {e}")
            await self.on_indexing_status_changed(document_id, IndexingStatus.FAILED, str(e))
            return await self._reload(document_id)

        await self.documents.set_operation_id(document_id, operation_id)
        await self.outbox.add_event(
            document.session_id,
            INDEXING_SUBMITTED,
            {"session_id": str(document.session_id), "document_id": str(document_id)},
        )
        await self.session.commit()
        return await self._reload(document_id)

    async def on_indexing_status_changed(
        self,
        document_id: uuid.UUID,
        new_status: IndexingStatus,
        error: Optional[str] = None,
        trigger_detection: bool = True,
    ) -> bool:
        """Apply an indexer status update.

        Idempotent, and terminal statuses are never overwritten. Reaching a
        terminal status runs completion detection for the session.

        Returns:
            True if the document's status changed
        """
        document = await self.documents.get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        changed = await self.documents.update_status_if_not_terminal(document_id, new_status, error)
        await self.session.commit()

        if not changed:
            LOGGER.debug(f"Ignored indexing update {new_status.value} for document {document_id}")
            return False

        LOGGER.info(f"Document {document_id} indexing status -> {new_status.value}")
        if trigger_detection and new_status.is_terminal and self.detector is not None:
            await self.detector.check_and_trigger(document.session_id, TriggerSource.AUTO)
        return True

    async def list_documents(self, session_id: uuid.UUID) -> List[Document]:
        return await self.documents.list_by_session(session_id)

    async def is_session_ready(self, session_id: uuid.UUID) -> bool:
        """True iff the session has documents and every one finished indexing."""
        documents = await self.documents.list_by_session(session_id)
        return bool(documents) and all(
            d.indexing_status == IndexingStatus.COMPLETED.value for d in documents
        )

    async def refresh_indexing_status(self, session_id: uuid.UUID) -> List[Document]:
        """Ask the indexer about every unfinished document and apply the answers."""
        if self.indexer is None:
            raise ConfigurationError("No indexer configured")

        for document in await self.documents.list_by_session(session_id):
            status = IndexingStatus(document.indexing_status)
            if status.is_terminal or not document.indexing_operation_id:
                continue
            try:
                result = await self.indexer.get_operation_status(document.indexing_operation_id)
            except APIClientError as e:
                if not e.retryable:
                    raise
                LOGGER.warning(f"Indexer status check for document {document.id} failed: {e}")
                continue
            await self.on_indexing_status_changed(
                document.id, result.status, result.error, trigger_detection=False
            )

        return await self.documents.list_by_session(session_id)

    async def _reload(self, document_id: uuid.UUID) -> Document:
        document = await self.documents.get_by_id(document_id)
        await self.session.refresh(document)
        return document
