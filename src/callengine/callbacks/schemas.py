"""
Pydantic schemas for the callback queue API.
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from callengine.callbacks.models import CallbackStatus, MissedCallReason, MissedCallStatus
from callengine.shared.schemas import CamelModel
from callengine.telephony.models import CallDirection


class CallbackSessionSummary(CamelModel):
    id: UUID
    caller_number: str
    start_at: datetime
    direction: CallDirection


class MissedCallSummary(CamelModel):
    id: UUID
    reason: MissedCallReason
    status: MissedCallStatus
    queue_id: UUID | None = None
    user_id: str | None = None
    caller_number: str
    call_session: CallbackSessionSummary


class CallbackItem(CamelModel):
    """Callback request with its missed call and originating session."""

    id: UUID
    status: CallbackStatus
    scheduled_at: datetime | None = None
    attempts_count: int
    last_attempt_at: datetime | None = None
    outcome: str | None = None
    created_at: datetime
    missed_call: MissedCallSummary


class CallbackAttemptRequest(CamelModel):
    """Outcome of one callback attempt. "completed" or "resolved" closes it."""

    outcome: str = Field(..., min_length=1, max_length=255)
