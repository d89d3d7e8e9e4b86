"""
SQLAlchemy models for missed calls and callback requests.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Enum as SQLEnum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from callengine.shared.database import Base, UTCDateTime, utcnow


class MissedCallReason(str, Enum):
    """Why a session ended without being answered."""

    ABANDONED = "ABANDONED"
    OUT_OF_HOURS = "OUT_OF_HOURS"
    NO_ANSWER = "NO_ANSWER"


class MissedCallStatus(str, Enum):
    NEW = "NEW"
    HANDLED = "HANDLED"


class CallbackStatus(str, Enum):
    """Lifecycle of a callback request."""

    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    ATTEMPTING = "ATTEMPTING"
    DONE = "DONE"


class MissedCall(Base):
    """Non-answered session, at most one per call session."""

    __tablename__ = "missed_calls"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("call_sessions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    reason: Mapped[MissedCallReason] = mapped_column(
        SQLEnum(MissedCallReason, name="missed_call_reason", native_enum=False, length=16),
        nullable=False,
    )
    status: Mapped[MissedCallStatus] = mapped_column(
        SQLEnum(MissedCallStatus, name="missed_call_status", native_enum=False, length=16),
        nullable=False,
        default=MissedCallStatus.NEW,
    )
    queue_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    caller_number: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class CallbackRequest(Base):
    """Callback owed to a caller, at most one per missed call."""

    __tablename__ = "callback_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    missed_call_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("missed_calls.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    status: Mapped[CallbackStatus] = mapped_column(
        SQLEnum(CallbackStatus, name="callback_status", native_enum=False, length=16),
        nullable=False,
        default=CallbackStatus.PENDING,
        index=True,
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    attempts_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
