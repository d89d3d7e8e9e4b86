"""
Quality review listing and scoring.

Placeholders are created by the recording sink when an answered call gets a
long enough recording; this service lets supervisors fill them in.
"""

from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.calls.schemas import CallMetricsResponse, RecordingBrief
from callengine.quality.schemas import (
    QualityReviewDetail,
    QualityReviewResponse,
    ReviewSessionSummary,
    UpdateReviewRequest,
)
from callengine.shared.database import ensure_utc, utcnow
from callengine.shared.exceptions import NotFoundError, ValidationError
from callengine.shared.logging import get_logger
from callengine.shared.schemas import Page
from callengine.telephony.models import (
    CallMetrics,
    CallSession,
    QualityReview,
    QualityReviewStatus,
    Recording,
)

logger = get_logger(__name__)


class QualityService:
    """Service for quality review operations."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock

    async def list_reviews(
        self,
        status: QualityReviewStatus | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
        agent_id: str | None = None,
        min_score: int | None = None,
        max_score: int | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> Page[QualityReviewResponse]:
        """List reviews, newest first.

        Args:
            status: Only reviews in this status.
            from_: Reviews created at or after this time.
            to: Reviews created at or before this time.
            agent_id: Only reviews of calls assigned to this user.
            min_score: Minimum score (inclusive).
            max_score: Maximum score (inclusive).
            page: 1-based page number.
            page_size: Items per page.

        Returns:
            Paginated reviews with their call summary.
        """
        if min_score is not None and max_score is not None and min_score > max_score:
            raise ValidationError(message="minScore must not exceed maxScore")

        conditions = []
        if status is not None:
            conditions.append(QualityReview.status == status)
        if from_ is not None:
            conditions.append(QualityReview.created_at >= ensure_utc(from_))
        if to is not None:
            conditions.append(QualityReview.created_at <= ensure_utc(to))
        if agent_id:
            conditions.append(CallSession.assigned_user_id == agent_id)
        if min_score is not None:
            conditions.append(QualityReview.score >= min_score)
        if max_score is not None:
            conditions.append(QualityReview.score <= max_score)

        base = select(QualityReview, CallSession).join(
            CallSession, CallSession.id == QualityReview.call_session_id
        )
        count_stmt = (
            select(func.count(QualityReview.id))
            .join(CallSession, CallSession.id == QualityReview.call_session_id)
            .where(*conditions)
        )
        total = (await self._session.execute(count_stmt)).scalar_one()

        rows = (
            await self._session.execute(
                base.where(*conditions)
                .order_by(QualityReview.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        ).all()

        return Page[QualityReviewResponse](
            data=[self._to_response(review, call_session) for review, call_session in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def get_review(self, review_id: UUID) -> QualityReviewDetail:
        """Get one review with its call metrics and recordings.

        Raises:
            NotFoundError: If the review does not exist.
        """
        row = (
            await self._session.execute(
                select(QualityReview, CallSession)
                .join(CallSession, CallSession.id == QualityReview.call_session_id)
                .where(QualityReview.id == review_id)
            )
        ).one_or_none()
        if row is None:
            raise NotFoundError(message=f"Quality review {review_id} not found")
        review, call_session = row

        metrics = (
            await self._session.execute(
                select(CallMetrics).where(CallMetrics.call_session_id == call_session.id)
            )
        ).scalar_one_or_none()
        recordings = (
            await self._session.execute(
                select(Recording)
                .where(Recording.call_session_id == call_session.id)
                .order_by(Recording.available_at)
            )
        ).scalars().all()

        base = self._to_response(review, call_session)
        return QualityReviewDetail(
            **base.model_dump(),
            metrics=CallMetricsResponse.model_validate(metrics) if metrics else None,
            recordings=[RecordingBrief.model_validate(r) for r in recordings],
        )

    async def update_review(self, review_id: UUID, request: UpdateReviewRequest) -> QualityReviewDetail:
        """Apply a partial update; a score marks the review DONE."""
        review = await self._session.get(QualityReview, review_id)
        if review is None:
            raise NotFoundError(message=f"Quality review {review_id} not found")

        fields = request.model_fields_set
        if "summary" in fields:
            review.summary = request.summary
        if "flags" in fields:
            review.flags = request.flags
        if "tags" in fields:
            review.tags = request.tags
        if "score" in fields and request.score is not None:
            review.score = request.score
            review.status = QualityReviewStatus.DONE
        if request.reviewer_user_id:
            review.reviewer_user_id = request.reviewer_user_id
        review.updated_at = self._clock()

        await self._session.flush()
        logger.info(
            "Quality review updated",
            extra={
                "review_id": str(review_id),
                "fields": sorted(fields),
                "status": review.status.value,
            },
        )
        return await self.get_review(review_id)

    @staticmethod
    def _to_response(review: QualityReview, call_session: CallSession) -> QualityReviewResponse:
        return QualityReviewResponse(
            id=review.id,
            call_session_id=review.call_session_id,
            status=review.status,
            score=review.score,
            summary=review.summary,
            flags=review.flags,
            tags=review.tags,
            reviewer_user_id=review.reviewer_user_id,
            created_at=review.created_at,
            updated_at=review.updated_at,
            call_session=ReviewSessionSummary.model_validate(call_session),
        )
