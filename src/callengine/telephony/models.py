"""
SQLAlchemy models for call sessions, legs, events and derived metrics.

The queue and extension tables belong to the PBX configuration owner; the
engine only reads them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from callengine.shared.database import JSONB, Base, UTCDateTime, utcnow
from callengine.telephony.events import TelephonyEventType


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CallDirection(str, Enum):
    """Direction of a call relative to the PBX."""

    IN = "IN"
    OUT = "OUT"


class CallDisposition(str, Enum):
    """Final outcome of a call."""

    ANSWERED = "ANSWERED"
    NOANSWER = "NOANSWER"
    BUSY = "BUSY"
    ABANDONED = "ABANDONED"
    FAILED = "FAILED"
    MISSED = "MISSED"


class CallLegType(str, Enum):
    """Party a leg of the call timeline belongs to."""

    CUSTOMER = "CUSTOMER"
    AGENT = "AGENT"
    TRANSFER = "TRANSFER"


class RecordingStatus(str, Enum):
    NONE = "NONE"
    AVAILABLE = "AVAILABLE"


class QualityReviewStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"


class TelephonyQueue(Base):
    """PBX queue with its optional business-hours configuration."""

    __tablename__ = "telephony_queues"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    worktime_config: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)


class TelephonyExtension(Base):
    """PBX extension mapped to a CRM user."""

    __tablename__ = "telephony_extensions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    extension: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    crm_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_operator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CallSession(Base):
    """One telephony call, keyed by the PBX linkedId."""

    __tablename__ = "call_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    linked_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    unique_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    direction: Mapped[CallDirection] = mapped_column(
        SQLEnum(CallDirection, name="call_direction", native_enum=False, length=8),
        nullable=False,
        default=CallDirection.IN,
    )
    caller_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    callee_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    did: Mapped[str | None] = mapped_column(String(128), nullable=True)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    answer_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disposition: Mapped[CallDisposition | None] = mapped_column(
        SQLEnum(CallDisposition, name="call_disposition", native_enum=False, length=16),
        nullable=True,
        index=True,
    )
    hangup_cause: Mapped[str | None] = mapped_column(String(100), nullable=True)
    queue_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("telephony_queues.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    assigned_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    assigned_extension: Mapped[str | None] = mapped_column(String(32), nullable=True)
    recording_status: Mapped[RecordingStatus] = mapped_column(
        SQLEnum(RecordingStatus, name="recording_status", native_enum=False, length=16),
        nullable=False,
        default=RecordingStatus.NONE,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Only loaded explicitly (selectinload) by the query services.
    legs: Mapped[list["CallLeg"]] = relationship(
        "CallLeg", order_by="CallLeg.start_at", lazy="raise", viewonly=True
    )
    metrics: Mapped[Optional["CallMetrics"]] = relationship(
        "CallMetrics", uselist=False, lazy="raise", viewonly=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.end_at is not None and self.disposition is not None


class CallLeg(Base):
    """Segment of a call timeline attached to one party."""

    __tablename__ = "call_legs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("call_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[CallLegType] = mapped_column(
        SQLEnum(CallLegType, name="call_leg_type", native_enum=False, length=16),
        nullable=False,
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    extension: Mapped[str | None] = mapped_column(String(32), nullable=True)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    answer_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    disposition: Mapped[CallDisposition | None] = mapped_column(
        SQLEnum(CallDisposition, name="call_disposition", native_enum=False, length=16),
        nullable=True,
    )


class CallEvent(Base):
    """Immutable fact: one PBX event as received."""

    __tablename__ = "call_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_session_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("call_sessions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_type: Mapped[TelephonyEventType] = mapped_column(
        SQLEnum(
            TelephonyEventType,
            name="telephony_event_type",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    ts: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="asterisk")
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class CallMetrics(Base):
    """Derived timing and service-level figures of one session."""

    __tablename__ = "call_metrics"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("call_sessions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    wait_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ring_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    talk_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    hold_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    wrapup_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    transfers_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_response_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    abandons_after_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_sla_met: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    sla_threshold_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=20)


class Recording(Base):
    """Recording announced by the PBX (storage is external)."""

    __tablename__ = "recordings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("call_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="asterisk")
    file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    available_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class QualityReview(Base):
    """Quality review of an answered, recorded call."""

    __tablename__ = "quality_reviews"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("call_sessions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    status: Mapped[QualityReviewStatus] = mapped_column(
        SQLEnum(QualityReviewStatus, name="quality_review_status", native_enum=False, length=16),
        nullable=False,
        default=QualityReviewStatus.PENDING,
    )
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    summary: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    flags: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSONB, nullable=True)
    reviewer_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
