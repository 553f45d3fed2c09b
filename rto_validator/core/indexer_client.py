"""Document indexing through Gemini File Search stores."""

from typing import Optional, Protocol

from google import genai
from google.genai import types

from rto_validator.core.exceptions import APIClientError
from rto_validator.core.llm_client import translate_provider_error
from rto_validator.schemas.validation import IndexingOperationStatus, IndexingStatus
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)


class IndexerClient(Protocol):
    async def submit_for_indexing(
        self, storage_ref: str, namespace: str, display_name: Optional[str] = None
    ) -> str:
        ...

    async def get_operation_status(self, operation_id: str) -> IndexingOperationStatus:
        ...


class GeminiFileSearchIndexer:
    """Uploads documents into a File Search store, tagged with the session namespace."""

    def __init__(
        self,
        api_key: str,
        store_name: str,
        client: Optional[genai.Client] = None,
    ):
        if not store_name:
            raise APIClientError("A File Search store name is required for indexing")
        self.store_name = store_name
        self.client = client or genai.Client(api_key=api_key)

    async def submit_for_indexing(
        self, storage_ref: str, namespace: str, display_name: Optional[str] = None
    ) -> str:
        """Start indexing a stored file.

        Returns:
            The indexer's operation id
        """
        config = {
            "display_name": display_name or storage_ref.rsplit("/", 1)[-1],
            "custom_metadata": [{"key": "namespace", "string_value": namespace}],
        }
        try:
            operation = await self.client.aio.file_search_stores.upload_to_file_search_store(
                file=storage_ref,
                file_search_store_name=self.store_name,
                config=config,
            )
        except Exception as e:
            raise translate_provider_error(e) from e

        LOGGER.info(
            f"Submitted {storage_ref} for indexing",
            extra={"operation": operation.name, "namespace": namespace},
        )
        return operation.name

    async def get_operation_status(self, operation_id: str) -> IndexingOperationStatus:
        try:
            operation = await self.client.aio.operations.get(
                types.UploadToFileSearchStoreOperation(name=operation_id)
            )
        except Exception as e:
            raise translate_provider_error(e) from e

        if not operation.done:
            return IndexingOperationStatus(status=IndexingStatus.PROCESSING)
        if operation.error:
            message = operation.error.get("message") if isinstance(operation.error, dict) else str(operation.error)
            return IndexingOperationStatus(status=IndexingStatus.FAILED, error=message or "indexing failed")
        return IndexingOperationStatus(status=IndexingStatus.COMPLETED)
