"""
Pydantic schemas for call listing, call detail, caller lookup and live state.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import Field

from callengine.shared.schemas import CamelModel
from callengine.telephony.events import TelephonyEventType
from callengine.telephony.models import (
    CallDirection,
    CallDisposition,
    CallLegType,
    QualityReviewStatus,
    RecordingStatus,
)

LIVE_DISCLAIMER = (
    "Best-effort from event data; real-time accuracy requires a live PBX presence feed"
)


class CallMetricsResponse(CamelModel):
    wait_seconds: float
    ring_seconds: float
    talk_seconds: float
    hold_seconds: float
    wrapup_seconds: float
    transfers_count: int
    first_response_seconds: float | None = None
    abandons_after_seconds: float | None = None
    is_sla_met: bool | None = None
    sla_threshold_seconds: int


class RecordingBrief(CamelModel):
    id: UUID
    file_path: str | None = None
    duration_seconds: int | None = None
    available_at: datetime


class QualityReviewBrief(CamelModel):
    id: UUID
    status: QualityReviewStatus
    score: int | None = None


class CallSessionResponse(CamelModel):
    """Call session as shown in listings."""

    id: UUID
    linked_id: str
    direction: CallDirection
    caller_number: str
    callee_number: str | None = None
    did: str | None = None
    start_at: datetime
    answer_at: datetime | None = None
    end_at: datetime | None = None
    disposition: CallDisposition | None = None
    hangup_cause: str | None = None
    queue_id: UUID | None = None
    queue_name: str | None = None
    assigned_user_id: str | None = None
    assigned_extension: str | None = None
    recording_status: RecordingStatus
    metrics: CallMetricsResponse | None = None
    recordings: list[RecordingBrief] = Field(default_factory=list)
    quality_review: QualityReviewBrief | None = None


class CallLegResponse(CamelModel):
    id: UUID
    type: CallLegType
    user_id: str | None = None
    extension: str | None = None
    start_at: datetime
    answer_at: datetime | None = None
    end_at: datetime | None = None
    disposition: CallDisposition | None = None


class CallEventResponse(CamelModel):
    id: UUID
    event_type: TelephonyEventType
    ts: datetime
    source: str
    idempotency_key: str
    payload: dict[str, Any] = Field(default_factory=dict)


class CallSessionDetail(CallSessionResponse):
    """Session with its leg timeline and raw events."""

    legs: list[CallLegResponse] = Field(default_factory=list)
    events: list[CallEventResponse] = Field(default_factory=list)


class ClientBrief(CamelModel):
    id: str
    name: str
    id_number: str | None = None
    payment_id: str | None = None
    buildings: list[dict[str, Any]] = Field(default_factory=list)


class LeadBrief(CamelModel):
    id: str
    lead_number: int
    stage_name: str
    responsible_employee: str | None = None


class WorkOrderBrief(CamelModel):
    id: str
    work_order_number: int
    title: str
    status: str
    type: str


class RecentCall(CamelModel):
    id: UUID
    direction: CallDirection
    start_at: datetime
    disposition: CallDisposition | None = None
    duration_sec: float | None = None


class CallerLookupResult(CamelModel):
    """Everything known about a phone number. Missing categories are empty."""

    normalized_phone: str = ""
    client: ClientBrief | None = None
    lead: LeadBrief | None = None
    open_work_orders: list[WorkOrderBrief] = Field(default_factory=list)
    recent_calls: list[RecentCall] = Field(default_factory=list)


class AgentPresence(str, Enum):
    ON_CALL = "ON_CALL"
    IDLE = "IDLE"
    OFFLINE = "OFFLINE"


class LiveQueueState(CamelModel):
    """Best-effort queue snapshot derived from recent sessions."""

    queue_id: UUID
    queue_name: str
    active_calls: int
    waiting_callers: int
    longest_current_wait_sec: int | None = None
    available_agents: int
    disclaimer: str = LIVE_DISCLAIMER


class LiveAgentState(CamelModel):
    """Best-effort agent snapshot derived from recent sessions."""

    user_id: str
    extension: str
    display_name: str | None = None
    current_state: AgentPresence
    current_call_duration_sec: int | None = None
    calls_handled_today: int
    disclaimer: str = LIVE_DISCLAIMER
