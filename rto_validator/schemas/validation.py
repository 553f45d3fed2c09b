"""Domain schemas for sessions, requirements and validation outcomes.

The enums here are also the string values persisted in the database.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    PENDING = "pending"
    DOCUMENT_PROCESSING = "document_processing"
    VALIDATING_IN_BACKGROUND = "validating_in_background"
    COMPLETED = "completed"
    FAILED = "failed"


class IndexingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_INDEXING_STATUSES

    @property
    def is_failure(self) -> bool:
        return self in (IndexingStatus.FAILED, IndexingStatus.TIMEOUT)


TERMINAL_INDEXING_STATUSES = frozenset(
    {IndexingStatus.COMPLETED, IndexingStatus.FAILED, IndexingStatus.TIMEOUT}
)


class OutcomeStatus(str, Enum):
    MET = "met"
    PARTIALLY_MET = "partially_met"
    NOT_MET = "not_met"


class RequirementCategory(str, Enum):
    """Requirement categories, in catalog order."""
    KNOWLEDGE_EVIDENCE = "knowledge_evidence"
    PERFORMANCE_EVIDENCE = "performance_evidence"
    FOUNDATION_SKILLS = "foundation_skills"
    ELEMENTS_PERFORMANCE_CRITERIA = "elements_performance_criteria"
    ASSESSMENT_CONDITIONS = "assessment_conditions"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: "Knowledge Evidence",
    RequirementCategory.PERFORMANCE_EVIDENCE: "Performance Evidence",
    RequirementCategory.FOUNDATION_SKILLS: "Foundation Skills",
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: "Elements & Performance Criteria",
    RequirementCategory.ASSESSMENT_CONDITIONS: "Assessment Conditions",
}


class TriggerSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    POLL = "poll"


class ParseTier(str, Enum):
    """Which parser tier produced an outcome."""
    STRICT = "strict"
    FENCED = "fenced"
    EMBEDDED = "embedded"
    HEURISTIC = "heuristic"
    UNPARSEABLE = "unparseable"
    FAILED = "failed"


class RequirementKey(BaseModel):
    """Identifies one requirement within a session."""
    category: RequirementCategory
    number: str


class RequirementInput(BaseModel):
    """The unit of work handed to the AI validation client."""
    category: RequirementCategory
    number: str
    text: str
    element_text: Optional[str] = None

    @property
    def key(self) -> RequirementKey:
        return RequirementKey(category=self.category, number=self.number)


class ValidationContext(BaseModel):
    """Everything a validation call needs about its session.

    ``namespace`` scopes File Search retrieval to this session's documents.
    It is quoted into the metadata filter, so only ``[a-z0-9-]`` is accepted.
    """
    session_id: UUID
    unit_code: str
    namespace: str = Field(..., pattern=r"^[a-z0-9][a-z0-9-]*$")
    document_refs: List[str] = Field(default_factory=list)
    validation_temperature: float = 0.2
    question_temperature: float = 0.7

    @property
    def metadata_filter(self) -> str:
        return f'namespace="{self.namespace}"'


class Citation(BaseModel):
    document_name: str
    page_numbers: List[int] = Field(default_factory=list)
    snippet: Optional[str] = None

    def dedupe_key(self) -> tuple:
        return (self.document_name, tuple(sorted(self.page_numbers)), (self.snippet or "")[:200])


class SmartQuestion(BaseModel):
    question: str
    benchmark_answer: str = ""


class ModelResponse(BaseModel):
    """Raw provider output: text plus optional grounding metadata."""
    text: str = ""
    grounding_metadata: Optional[Dict[str, Any]] = None
    attempts: int = 1


class RequirementOutcomeData(BaseModel):
    """A parsed, normalized verdict for one requirement."""
    status: OutcomeStatus
    reasoning: str = ""
    mapped_content: str = ""
    unmapped_content: str = ""
    citations: List[Citation] = Field(default_factory=list)
    smart_questions: List[SmartQuestion] = Field(default_factory=list)
    confidence: Optional[float] = None
    validation_error: bool = False
    parse_tier: ParseTier = ParseTier.STRICT
    retry_count: int = 0


class IndexingOperationStatus(BaseModel):
    status: IndexingStatus
    error: Optional[str] = None


class SessionStatusView(BaseModel):
    session_id: UUID
    status: SessionStatus
    completed: int
    total: int
    progress: float
    last_error: Optional[str] = None
    failed_requirement_count: int = 0


class ValidationRunSummary(BaseModel):
    session_id: UUID
    total: int
    validated: int
    skipped: int
    errored: int
    status: SessionStatus
