import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rto_validator.database.models import Document
from rto_validator.repositories.base_repository import BaseRepository
from rto_validator.schemas.validation import TERMINAL_INDEXING_STATUSES, IndexingStatus


class DocumentRepository(BaseRepository[Document]):
    """Repository for session documents and their indexing state."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Document)

    async def create_document(
        self,
        session_id: uuid.UUID,
        storage_ref: str,
        display_name: Optional[str] = None,
    ) -> Document:
        return await self.create(
            session_id=session_id,
            storage_ref=storage_ref,
            display_name=display_name,
            indexing_status=IndexingStatus.PENDING.value,
        )

    async def list_by_session(self, session_id: uuid.UUID) -> List[Document]:
        query = (
            select(Document)
            .where(Document.session_id == session_id)
            .order_by(Document.created_at, Document.id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def set_operation_id(self, document_id: uuid.UUID, operation_id: str) -> None:
        """Record the indexer operation and mark a pending document as processing."""
        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                Document.indexing_status == IndexingStatus.PENDING.value,
            )
            .values(
                indexing_operation_id=operation_id,
                indexing_status=IndexingStatus.PROCESSING.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def update_status_if_not_terminal(
        self,
        document_id: uuid.UUID,
        status: IndexingStatus,
        error: Optional[str] = None,
    ) -> bool:
        """Apply an indexing status unless the document already reached a terminal one.

        Returns:
            True if the row changed
        """
        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                Document.indexing_status.notin_([s.value for s in TERMINAL_INDEXING_STATUSES]),
                Document.indexing_status != status.value,
            )
            .values(
                indexing_status=status.value,
                indexing_error=error,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
