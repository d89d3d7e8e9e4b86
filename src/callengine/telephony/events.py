"""
Wire models for PBX event notifications.

Events arrive already structured (no SIP/AMI parsing here) as
``{eventType, timestamp, idempotencyKey, payload, linkedId?, uniqueId?}``.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from callengine.shared.database import ensure_utc


class TelephonyEventType(str, Enum):
    """Types of events emitted by the PBX."""

    CALL_START = "call_start"
    CALL_ANSWER = "call_answer"
    CALL_END = "call_end"
    QUEUE_ENTER = "queue_enter"
    QUEUE_LEAVE = "queue_leave"
    AGENT_CONNECT = "agent_connect"
    TRANSFER = "transfer"
    HOLD_START = "hold_start"
    HOLD_END = "hold_end"
    RECORDING_READY = "recording_ready"
    WRAPUP_START = "wrapup_start"
    WRAPUP_END = "wrapup_end"


def _lenient_number(v: Any) -> float | None:
    # AMI sends "" or free text for fields it has no value for.
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, (int, float)):
        number = float(v)
    elif isinstance(v, str):
        try:
            number = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


class EventPayload(BaseModel):
    """Known keys of the (otherwise opaque) Asterisk-style event payload.

    Unknown keys are preserved so the stored event keeps the full payload.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    unique_id: str | None = None
    linked_id: str | None = None
    channel: str | None = None
    caller_id_num: str | None = None
    caller_id_name: str | None = None
    connected_line_num: str | None = None
    context: str | None = None
    extension: str | None = None
    priority: int | None = None
    queue: str | None = None
    position: int | None = None
    hold_time: float | None = None
    talk_time: float | None = None
    cause: str | None = None
    cause_txt: str | None = None
    recording_file: str | None = None
    recording_duration: float | None = None
    source: str | None = None

    @field_validator(
        "unique_id",
        "linked_id",
        "channel",
        "caller_id_num",
        "caller_id_name",
        "connected_line_num",
        "context",
        "extension",
        "queue",
        "cause",
        "cause_txt",
        "recording_file",
        "source",
        mode="before",
    )
    @classmethod
    def coerce_numeric_strings(cls, v: Any) -> Any:
        """PBX emits numeric codes, extensions and queue names as JSON numbers at times."""
        if isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return str(v)
        if v is None or isinstance(v, str):
            return v
        return None

    @field_validator("priority", "position", mode="before")
    @classmethod
    def lenient_int(cls, v: Any) -> int | None:
        number = _lenient_number(v)
        if number is None or not number.is_integer():
            return None
        return int(number)

    @field_validator("hold_time", "talk_time", "recording_duration", mode="before")
    @classmethod
    def lenient_float(cls, v: Any) -> float | None:
        return _lenient_number(v)


class IngestEventItem(BaseModel):
    """One event notification as delivered to the ingestion endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    event_type: TelephonyEventType = Field(..., description="One of the twelve PBX event types")
    timestamp: datetime = Field(..., description="ISO-8601 event time")
    idempotency_key: str = Field(..., min_length=1, max_length=255)
    payload: EventPayload = Field(default_factory=EventPayload)
    linked_id: str | None = Field(default=None, max_length=255)
    unique_id: str | None = Field(default=None, max_length=255)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def resolved_linked_id(self) -> str | None:
        """linkedId from the envelope, falling back to the payload."""
        return self.linked_id or self.payload.linked_id

    @property
    def resolved_unique_id(self) -> str | None:
        return self.unique_id or self.payload.unique_id

    def stored_payload(self) -> dict[str, Any]:
        """Payload as it should be persisted on the CallEvent."""
        return self.payload.model_dump(by_alias=True, exclude_unset=True)


class IngestError(BaseModel):
    """Per-item failure reported back to the caller."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    idempotency_key: str
    error: str


class IngestResult(BaseModel):
    """Outcome of one ingestion batch."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    processed: int = 0
    skipped: int = 0
    errors: list[IngestError] = Field(default_factory=list)
