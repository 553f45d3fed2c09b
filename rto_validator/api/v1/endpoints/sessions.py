from dataclasses import asdict
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from rto_validator.core.exceptions import AppError
from rto_validator.dependencies import get_session_service
from rto_validator.schemas.common import ApiResponse
from rto_validator.schemas.sessions import (
    DocumentResponse,
    OutcomeResponse,
    RegenerateQuestionsRequest,
    RegisterDocumentRequest,
    RetriggerSessionRequest,
    SessionResponse,
    StartSessionRequest,
    TriggerLogResponse,
    TriggerResponse,
)
from rto_validator.schemas.validation import RequirementCategory
from rto_validator.services.session_service import SessionService
from rto_validator.utils.logging import get_logger
from rto_validator.utils.responses import create_api_response, raise_http_error

LOGGER = get_logger(__name__)

router = APIRouter()

SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]


@router.post(
    "",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a validation session",
    operation_id="start_session",
)
async def start_session(
    request: Request,
    payload: StartSessionRequest,
    service: SessionServiceDep,
) -> ApiResponse:
    try:
        validation_session = await service.start_session(payload.org_code, payload.unit_code)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=SessionResponse.model_validate(validation_session),
        message="Validation session started",
        request=request,
    )


@router.get(
    "/{session_id}/status",
    response_model=ApiResponse,
    summary="Get session status and progress",
    operation_id="get_session_status",
)
async def get_session_status(
    request: Request,
    session_id: UUID,
    service: SessionServiceDep,
) -> ApiResponse:
    try:
        view = await service.get_session_status(session_id)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(data=view, message="Session status retrieved", request=request)


@router.post(
    "/{session_id}/documents",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a document for the session",
    operation_id="register_document",
)
async def register_document(
    request: Request,
    session_id: UUID,
    payload: RegisterDocumentRequest,
    service: SessionServiceDep,
) -> ApiResponse:
    try:
        document = await service.add_document(
            session_id,
            payload.storage_ref,
            payload.display_name,
            submit=payload.submit_for_indexing,
        )
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=DocumentResponse.model_validate(document),
        message="Document registered",
        request=request,
    )


@router.get(
    "/{session_id}/documents",
    response_model=ApiResponse,
    summary="List the session's documents",
    operation_id="list_documents",
)
async def list_documents(request: Request, session_id: UUID, service: SessionServiceDep) -> ApiResponse:
    try:
        documents = await service.list_documents(session_id)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=[DocumentResponse.model_validate(d) for d in documents],
        message=f"{len(documents)} document(s)",
        request=request,
    )


@router.post(
    "/{session_id}/readiness-check",
    response_model=ApiResponse,
    summary="Run one poll-mode readiness check",
    operation_id="check_readiness",
)
async def check_readiness(request: Request, session_id: UUID, service: SessionServiceDep) -> ApiResponse:
    try:
        result = await service.check_readiness(session_id)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=TriggerResponse(**asdict(result)),
        message=result.message or "Validation triggered",
        request=request,
    )


@router.post(
    "/{session_id}/trigger",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Manually trigger validation",
    operation_id="trigger_validation",
)
async def trigger_validation(request: Request, session_id: UUID, service: SessionServiceDep) -> ApiResponse:
    try:
        result = await service.trigger_validation(session_id)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=TriggerResponse(**asdict(result)),
        message=result.message or "Validation triggered",
        status=result.triggered,
        request=request,
    )


@router.post(
    "/{session_id}/requirements/{category}/{number}/revalidate",
    response_model=ApiResponse,
    summary="Re-validate a single requirement",
    operation_id="revalidate_requirement",
)
async def revalidate_requirement(
    request: Request,
    session_id: UUID,
    category: RequirementCategory,
    number: str,
    service: SessionServiceDep,
) -> ApiResponse:
    try:
        outcome = await service.re_validate_requirement(session_id, category, number)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=OutcomeResponse.model_validate(outcome),
        message="Requirement re-validated",
        request=request,
    )


@router.post(
    "/{session_id}/requirements/{category}/{number}/smart-questions",
    response_model=ApiResponse,
    summary="Regenerate the smart question for a requirement",
    operation_id="regenerate_smart_questions",
)
async def regenerate_smart_questions(
    request: Request,
    session_id: UUID,
    category: RequirementCategory,
    number: str,
    payload: RegenerateQuestionsRequest,
    service: SessionServiceDep,
) -> ApiResponse:
    try:
        outcome = await service.regenerate_smart_questions(
            session_id, category, number, payload.user_context
        )
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=OutcomeResponse.model_validate(outcome),
        message="Smart question regenerated",
        request=request,
    )


@router.post(
    "/{session_id}/retrigger",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a new session from a finished one",
    operation_id="retrigger_session",
)
async def retrigger_session(
    request: Request,
    session_id: UUID,
    payload: RetriggerSessionRequest,
    service: SessionServiceDep,
) -> ApiResponse:
    try:
        validation_session = await service.retrigger_session(session_id, payload.storage_refs)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=SessionResponse.model_validate(validation_session),
        message="Validation session re-triggered",
        request=request,
    )


@router.get(
    "/{session_id}/outcomes",
    response_model=ApiResponse,
    summary="List requirement outcomes",
    operation_id="list_outcomes",
)
async def list_outcomes(request: Request, session_id: UUID, service: SessionServiceDep) -> ApiResponse:
    try:
        outcomes = await service.list_outcomes(session_id)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=[OutcomeResponse.model_validate(o) for o in outcomes],
        message=f"{len(outcomes)} outcome(s)",
        request=request,
    )


@router.get(
    "/{session_id}/triggers",
    response_model=ApiResponse,
    summary="Validation trigger history",
    operation_id="list_triggers",
)
async def list_triggers(request: Request, session_id: UUID, service: SessionServiceDep) -> ApiResponse:
    try:
        entries = await service.list_trigger_log(session_id)
    except AppError as e:
        raise_http_error(e, request)
    return create_api_response(
        data=[TriggerLogResponse.model_validate(e) for e in entries],
        message=f"{len(entries)} trigger attempt(s)",
        request=request,
    )
