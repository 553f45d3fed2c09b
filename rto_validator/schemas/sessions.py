"""Request and response models for the sessions API."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rto_validator.schemas.validation import (
    Citation,
    IndexingStatus,
    OutcomeStatus,
    SessionStatus,
    SmartQuestion,
    TriggerSource,
)


class StartSessionRequest(BaseModel):
    org_code: str = Field(..., min_length=1, description="Registered training organisation code")
    unit_code: str = Field(..., min_length=1, description="Unit of competency code")


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_code: str
    unit_code: str
    namespace: str
    status: SessionStatus
    source_session_id: Optional[UUID] = None
    created_at: Optional[datetime] = None


class RegisterDocumentRequest(BaseModel):
    storage_ref: str = Field(..., min_length=1, description="Opaque object store reference")
    display_name: Optional[str] = None
    submit_for_indexing: bool = True


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    storage_ref: str
    display_name: Optional[str] = None
    indexing_operation_id: Optional[str] = None
    indexing_status: IndexingStatus
    indexing_error: Optional[str] = None


class IndexingStatusCallback(BaseModel):
    """Status update pushed by the indexer."""
    status: IndexingStatus
    error: Optional[str] = None


class TriggerResponse(BaseModel):
    triggered: bool
    ready: bool
    status: SessionStatus
    message: Optional[str] = None


class OutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    requirement_number: str
    requirement_text: str
    status: OutcomeStatus
    reasoning: str
    mapped_content: str
    unmapped_content: str
    citations: List[Citation] = Field(default_factory=list)
    smart_questions: List[SmartQuestion] = Field(default_factory=list)
    confidence: Optional[float] = None
    validation_error: bool = False
    parse_tier: str
    retry_count: int = 0
    updated_at: Optional[datetime] = None


class TriggerLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source: TriggerSource
    succeeded: bool
    error: Optional[str] = None
    triggered_at: datetime


class RetriggerSessionRequest(BaseModel):
    """Documents for a re-triggered session; omit to reuse the source session's."""
    storage_refs: Optional[List[str]] = Field(default=None, min_length=1)


class RegenerateQuestionsRequest(BaseModel):
    user_context: Optional[str] = Field(
        default=None,
        max_length=4000,
        description="Reviewer feedback steering the new question",
    )
