"""
Pydantic schemas for quality reviews.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, model_validator

from callengine.calls.schemas import CallMetricsResponse, RecordingBrief
from callengine.shared.schemas import CamelModel
from callengine.telephony.models import CallDirection, CallDisposition, QualityReviewStatus


class ReviewSessionSummary(CamelModel):
    id: UUID
    caller_number: str
    direction: CallDirection
    start_at: datetime
    end_at: datetime | None = None
    disposition: CallDisposition | None = None
    assigned_user_id: str | None = None
    queue_id: UUID | None = None


class QualityReviewResponse(CamelModel):
    id: UUID
    call_session_id: UUID
    status: QualityReviewStatus
    score: int | None = None
    summary: str | None = None
    flags: dict[str, Any] | None = None
    tags: list[str] | None = None
    reviewer_user_id: str | None = None
    created_at: datetime
    updated_at: datetime
    call_session: ReviewSessionSummary


class QualityReviewDetail(QualityReviewResponse):
    """Review with the metrics and recordings of its call."""

    metrics: CallMetricsResponse | None = None
    recordings: list[RecordingBrief] = Field(default_factory=list)


class UpdateReviewRequest(CamelModel):
    """Partial update. Setting a score completes the review."""

    summary: str | None = Field(default=None, max_length=4000)
    score: int | None = Field(default=None, ge=0, le=100)
    flags: dict[str, Any] | None = None
    tags: list[str] | None = None
    reviewer_user_id: str | None = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def require_some_field(self) -> "UpdateReviewRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self
