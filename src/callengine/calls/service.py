"""
Read-only queries over call sessions: listing, detail and caller lookup.
"""

import re
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from callengine.calls.schemas import (
    CallerLookupResult,
    CallEventResponse,
    CallLegResponse,
    CallMetricsResponse,
    CallSessionDetail,
    CallSessionResponse,
    ClientBrief,
    LeadBrief,
    QualityReviewBrief,
    RecentCall,
    RecordingBrief,
    WorkOrderBrief,
)
from callengine.shared.exceptions import NotFoundError
from callengine.shared.logging import get_logger
from callengine.shared.schemas import Page, validate_range
from callengine.telephony.directory import CrmLookup, QueueDirectory
from callengine.telephony.models import (
    CallDisposition,
    CallMetrics,
    CallSession,
    QualityReview,
    Recording,
)
from callengine.telephony.repository import CallEventRepository

logger = get_logger(__name__)

RECENT_CALLS_LIMIT = 5
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str, digits: int = 9) -> str:
    """Strip everything but digits and keep the last ``digits`` of them."""
    return _NON_DIGITS.sub("", phone or "")[-digits:]


class CallsService:
    """Call listing, call detail and phone lookup."""

    def __init__(
        self,
        session: AsyncSession,
        queues: QueueDirectory,
        crm: CrmLookup,
        phone_match_digits: int = 9,
    ) -> None:
        self._session = session
        self._queues = queues
        self._crm = crm
        self._phone_match_digits = phone_match_digits

    async def list_calls(
        self,
        from_: datetime,
        to: datetime,
        queue_id: UUID | None = None,
        user_id: str | None = None,
        disposition: CallDisposition | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> Page[CallSessionResponse]:
        """List sessions started in ``[from_, to]``, newest first.

        Args:
            from_: Range start (inclusive).
            to: Range end (inclusive).
            queue_id: Only sessions routed through this queue.
            user_id: Only sessions assigned to this user.
            disposition: Only sessions with this final disposition.
            search: Substring of the caller or callee number.
            page: 1-based page number.
            page_size: Items per page.

        Returns:
            Paginated sessions with metrics, recordings and review summary.
        """
        from_, to = validate_range(from_, to)

        conditions = [CallSession.start_at >= from_, CallSession.start_at <= to]
        if queue_id is not None:
            conditions.append(CallSession.queue_id == queue_id)
        if user_id:
            conditions.append(CallSession.assigned_user_id == user_id)
        if disposition is not None:
            conditions.append(CallSession.disposition == disposition)
        if search:
            conditions.append(
                or_(
                    CallSession.caller_number.contains(search, autoescape=True),
                    CallSession.callee_number.contains(search, autoescape=True),
                )
            )

        total = (
            await self._session.execute(select(func.count(CallSession.id)).where(*conditions))
        ).scalar_one()

        stmt = (
            select(CallSession)
            .where(*conditions)
            .options(selectinload(CallSession.metrics))
            .execution_options(populate_existing=True)
            .order_by(CallSession.start_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        sessions = list((await self._session.execute(stmt)).scalars().all())

        return Page[CallSessionResponse](
            data=await self._to_responses(sessions, CallSessionResponse),
            total=total,
            page=page,
            page_size=page_size,
        )

    async def get_call(self, call_session_id: UUID) -> CallSessionDetail:
        """Session detail with legs and events.

        Raises:
            NotFoundError: If the session does not exist.
        """
        stmt = (
            select(CallSession)
            .where(CallSession.id == call_session_id)
            .options(selectinload(CallSession.metrics), selectinload(CallSession.legs))
            .execution_options(populate_existing=True)
        )
        call_session = (await self._session.execute(stmt)).scalar_one_or_none()
        if call_session is None:
            raise NotFoundError(message=f"Call session {call_session_id} not found")

        [detail] = await self._to_responses([call_session], CallSessionDetail)
        detail.legs = [CallLegResponse.model_validate(leg) for leg in call_session.legs]
        events = await CallEventRepository(self._session).list_for_session(call_session.id)
        detail.events = [CallEventResponse.model_validate(event) for event in events]
        return detail

    async def lookup_phone(self, phone: str) -> CallerLookupResult:
        """Resolve what the CRM knows about a calling number."""
        normalized = normalize_phone(phone, self._phone_match_digits)
        if not normalized:
            return CallerLookupResult()

        result = CallerLookupResult(normalized_phone=normalized)

        client = await self._crm.find_client_by_phone(normalized)
        if client is not None:
            result.client = ClientBrief.model_validate(client)
            building_ids = [str(b["id"]) for b in client.buildings if b.get("id") is not None]
            if building_ids:
                work_orders = await self._crm.find_open_work_orders(building_ids)
                result.open_work_orders = [WorkOrderBrief.model_validate(wo) for wo in work_orders]

        lead = await self._crm.find_active_lead_by_phone(normalized)
        if lead is not None:
            result.lead = LeadBrief.model_validate(lead)

        stmt = (
            select(CallSession, CallMetrics.talk_seconds)
            .outerjoin(CallMetrics, CallMetrics.call_session_id == CallSession.id)
            .where(CallSession.caller_number.contains(normalized, autoescape=True))
            .order_by(CallSession.start_at.desc())
            .limit(RECENT_CALLS_LIMIT)
        )
        rows = (await self._session.execute(stmt)).all()
        result.recent_calls = [
            RecentCall(
                id=call_session.id,
                direction=call_session.direction,
                start_at=call_session.start_at,
                disposition=call_session.disposition,
                duration_sec=talk_seconds,
            )
            for call_session, talk_seconds in rows
        ]

        logger.debug(
            "Caller lookup",
            extra={
                "normalized_phone": normalized,
                "client_found": result.client is not None,
                "lead_found": result.lead is not None,
                "recent_calls": len(result.recent_calls),
            },
        )
        return result

    async def _to_responses(
        self,
        sessions: Sequence[CallSession],
        model: type[CallSessionResponse],
    ) -> list:
        if not sessions:
            return []
        ids = [s.id for s in sessions]

        recordings: dict[UUID, list[RecordingBrief]] = {}
        rec_rows = await self._session.execute(
            select(Recording)
            .where(Recording.call_session_id.in_(ids))
            .order_by(Recording.available_at)
        )
        for recording in rec_rows.scalars().all():
            recordings.setdefault(recording.call_session_id, []).append(
                RecordingBrief.model_validate(recording)
            )

        review_rows = await self._session.execute(
            select(QualityReview).where(QualityReview.call_session_id.in_(ids))
        )
        reviews = {
            review.call_session_id: QualityReviewBrief.model_validate(review)
            for review in review_rows.scalars().all()
        }

        queue_names = await self._queues.names([s.queue_id for s in sessions if s.queue_id])

        responses = []
        for call_session in sessions:
            responses.append(
                model(
                    id=call_session.id,
                    linked_id=call_session.linked_id,
                    direction=call_session.direction,
                    caller_number=call_session.caller_number,
                    callee_number=call_session.callee_number,
                    did=call_session.did,
                    start_at=call_session.start_at,
                    answer_at=call_session.answer_at,
                    end_at=call_session.end_at,
                    disposition=call_session.disposition,
                    hangup_cause=call_session.hangup_cause,
                    queue_id=call_session.queue_id,
                    queue_name=queue_names.get(call_session.queue_id) if call_session.queue_id else None,
                    assigned_user_id=call_session.assigned_user_id,
                    assigned_extension=call_session.assigned_extension,
                    recording_status=call_session.recording_status,
                    metrics=(
                        CallMetricsResponse.model_validate(call_session.metrics)
                        if call_session.metrics is not None
                        else None
                    ),
                    recordings=recordings.get(call_session.id, []),
                    quality_review=reviews.get(call_session.id),
                )
            )
        return responses
