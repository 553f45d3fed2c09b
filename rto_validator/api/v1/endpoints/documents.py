from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from rto_validator.core.exceptions import AppError
from rto_validator.dependencies import get_session_service
from rto_validator.schemas.common import ApiResponse
from rto_validator.schemas.sessions import DocumentResponse, IndexingStatusCallback
from rto_validator.services.session_service import SessionService
from rto_validator.utils.responses import create_api_response, raise_http_error

router = APIRouter()


@router.post(
    "/{document_id}/indexing-status",
    response_model=ApiResponse,
    summary="Indexer status callback",
    operation_id="report_indexing_status",
)
async def report_indexing_status(
    request: Request,
    document_id: UUID,
    payload: IndexingStatusCallback,
    service: Annotated[SessionService, Depends(get_session_service)],
) -> ApiResponse:
    """Apply an indexer status update. Repeated or late updates are ignored."""
    try:
        document = await service.report_indexing_status(document_id, payload.status, payload.error)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=DocumentResponse.model_validate(document),
        message="Indexing status recorded",
        request=request,
    )
