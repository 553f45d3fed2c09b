"""SQLAlchemy models for all database tables."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rto_validator.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationSession(Base):
    """One validation run of a unit's assessment documents."""

    __tablename__ = "validation_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_code: Mapped[str] = mapped_column(String, nullable=False)
    unit_code: Mapped[str] = mapped_column(String, nullable=False, index=True)
    namespace: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    requirement_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )  # pending | document_processing | validating_in_background | completed | failed
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    failed_requirement_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Set on sessions created by re-triggering an earlier one
    source_session_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("validation_sessions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    documents: Mapped[list["Document"]] = relationship(
        "Document", back_populates="session", cascade="all, delete-orphan"
    )


class Document(Base):
    """An uploaded assessment document and its indexing state."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("validation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    storage_ref: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    indexing_operation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    indexing_status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )  # pending | processing | completed | failed | timeout
    indexing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    session: Mapped["ValidationSession"] = relationship(
        "ValidationSession", back_populates="documents"
    )


class Requirement(Base):
    """A regulatory requirement of a unit of competency."""

    __tablename__ = "requirements"
    __table_args__ = (
        UniqueConstraint("unit_code", "category", "number", name="uq_requirement_unit_category_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    unit_code: Mapped[str] = mapped_column(String, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    number: Mapped[str] = mapped_column(String, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    element_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class RequirementOutcome(Base):
    """The stored verdict for one requirement in one session."""

    __tablename__ = "requirement_outcomes"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "category", "requirement_number", "namespace",
            name="uq_outcome_session_requirement_namespace",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("validation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    requirement_number: Mapped[str] = mapped_column(String, nullable=False)
    namespace: Mapped[str] = mapped_column(String, nullable=False)
    requirement_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False)  # met | partially_met | not_met
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    mapped_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    unmapped_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    citations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    smart_questions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    validation_error: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parse_tier: Mapped[str] = mapped_column(String, nullable=False, default="strict")
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )


class TriggerLogEntry(Base):
    """Append-only record of every validation trigger attempt."""

    __tablename__ = "trigger_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("validation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(String, nullable=False)  # auto | manual | poll
    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class OutboxEvent(Base):
    """Event written in the same transaction as the state change that caused it."""

    __tablename__ = "outbox_events"
    __table_args__ = (
        Index("ix_outbox_events_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("validation_sessions.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )  # pending | published | failed
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
