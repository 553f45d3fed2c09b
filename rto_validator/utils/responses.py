from datetime import datetime, timezone
from typing import Any, Dict, NoReturn, Optional
from uuid import uuid4

from fastapi import HTTPException, Request, status as http_status

from rto_validator.core.exceptions import (
    APIClientError,
    AppError,
    DocumentNotFoundError,
    RequirementNotFoundError,
    RetryExhaustedError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
)
from rto_validator.schemas.common import ApiResponse, ErrorDetail, ResponseMeta
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Domain error -> (HTTP status, problem title)
ERROR_STATUS = (
    (SessionNotFoundError, http_status.HTTP_404_NOT_FOUND, "Session Not Found"),
    (DocumentNotFoundError, http_status.HTTP_404_NOT_FOUND, "Document Not Found"),
    (RequirementNotFoundError, http_status.HTTP_404_NOT_FOUND, "Requirement Not Found"),
    (SessionStateError, http_status.HTTP_409_CONFLICT, "Invalid Session State"),
    (ValidationError, http_status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid Request"),
    (APIClientError, http_status.HTTP_502_BAD_GATEWAY, "AI Provider Error"),
    (RetryExhaustedError, http_status.HTTP_502_BAD_GATEWAY, "AI Provider Error"),
)


def _request_id(request: Optional[Request]) -> str:
    if request is not None and hasattr(request.state, "correlation_id"):
        return request.state.correlation_id
    return str(uuid4())


def create_api_response(
    data: Any,
    message: str = "Operation successful",
    status: bool = True,
    request: Optional[Request] = None,
    api_version: str = "v1"
) -> Dict[str, Any]:
    """Create a standardized API response as a dictionary."""
    meta = ResponseMeta(
        timestamp=datetime.now(timezone.utc),
        request_id=_request_id(request),
        api_version=api_version
    )

    data_dict: Dict[str, Any]
    if isinstance(data, dict):
        data_dict = data
    elif hasattr(data, "model_dump"):
        data_dict = data.model_dump(mode="json")
    elif isinstance(data, list):
        data_dict = {
            "items": [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in data]
        }
    elif data is None:
        data_dict = {}
    else:
        data_dict = {"value": data}

    response = ApiResponse(status=status, message=message, data=data_dict, meta=meta)
    return response.model_dump(mode="json")


def create_error_detail(
    title: str,
    status: int,
    detail: str,
    request: Optional[Request] = None,
    instance: Optional[str] = None
) -> ErrorDetail:
    """Create a standardized error detail (RFC 7807)."""
    return ErrorDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance or (request.url.path if request else None),
        request_id=_request_id(request),
        timestamp=datetime.now(timezone.utc)
    )


def raise_http_error(error: AppError, request: Optional[Request] = None) -> NoReturn:
    """Convert a domain error into an HTTPException carrying problem details."""
    for error_type, status_code, title in ERROR_STATUS:
        if isinstance(error, error_type):
            break
    else:
        status_code, title = http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Error"
        LOGGER.error(f"Unhandled application error: {error}", exc_info=error)

    detail = create_error_detail(title=title, status=status_code, detail=str(error), request=request)
    raise HTTPException(status_code=status_code, detail=detail.model_dump(mode="json")) from error
