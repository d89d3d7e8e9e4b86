"""
Missed-call classification and callback lifecycle.

A session that ends with any disposition other than ANSWERED gets exactly
one MissedCall. ABANDONED and OUT_OF_HOURS misses additionally get exactly
one CallbackRequest; NO_ANSWER misses do not.
"""

from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.callbacks.models import (
    CallbackRequest,
    CallbackStatus,
    MissedCall,
    MissedCallReason,
    MissedCallStatus,
)
from callengine.callbacks.schemas import (
    CallbackItem,
    CallbackSessionSummary,
    MissedCallSummary,
)
from callengine.shared.database import utcnow
from callengine.shared.exceptions import NotFoundError
from callengine.shared.logging import get_logger
from callengine.shared.schemas import Page
from callengine.telephony.directory import QueueDirectory, QueueInfo
from callengine.telephony.models import CallDisposition, CallSession
from callengine.telephony.worktime import is_within_window, next_window_start

logger = get_logger(__name__)

Clock = Callable[[], datetime]
MissedCallClassifier = Callable[[CallSession, QueueInfo | None], MissedCallReason]

TERMINAL_OUTCOMES = frozenset({"completed", "resolved"})
_CALLBACK_REASONS = frozenset({MissedCallReason.ABANDONED, MissedCallReason.OUT_OF_HOURS})


def _has_windows(queue: QueueInfo | None) -> bool:
    return queue is not None and queue.worktime is not None and bool(queue.worktime.windows)


def classify_by_queue_config(call_session: CallSession, queue: QueueInfo | None) -> MissedCallReason:
    """Any configured business hours on the queue count as an out-of-hours miss.

    The call time is not checked against the windows.
    """
    if call_session.disposition == CallDisposition.ABANDONED:
        return MissedCallReason.ABANDONED
    if _has_windows(queue):
        return MissedCallReason.OUT_OF_HOURS
    return MissedCallReason.NO_ANSWER


def classify_by_worktime_window(call_session: CallSession, queue: QueueInfo | None) -> MissedCallReason:
    """OUT_OF_HOURS only when the call started outside the queue's windows."""
    if call_session.disposition == CallDisposition.ABANDONED:
        return MissedCallReason.ABANDONED
    if _has_windows(queue) and not is_within_window(call_session.start_at, queue.worktime):
        return MissedCallReason.OUT_OF_HOURS
    return MissedCallReason.NO_ANSWER


CLASSIFIERS: dict[str, MissedCallClassifier] = {
    "queue_config": classify_by_queue_config,
    "worktime_window": classify_by_worktime_window,
}


def get_classifier(name: str) -> MissedCallClassifier:
    try:
        return CLASSIFIERS[name]
    except KeyError:
        raise ValueError(f"Unknown missed call classifier: {name}") from None


class CallbackService:
    """Creates missed calls and callbacks, and tracks callback attempts."""

    def __init__(
        self,
        session: AsyncSession,
        queues: QueueDirectory,
        clock: Clock = utcnow,
        classifier: MissedCallClassifier = classify_by_queue_config,
    ) -> None:
        """Initialize service.

        Args:
            session: Async database session.
            queues: Queue lookup used for worktime configuration.
            clock: Source of "now" for scheduling and attempt stamps.
            classifier: Rule deciding the MissedCall reason.
        """
        self._session = session
        self._queues = queues
        self._clock = clock
        self._classifier = classifier

    async def handle_non_answered_call(self, call_session: CallSession) -> None:
        """Record a missed call (and callback if owed) for a terminated session.

        Calling this again for the same session creates nothing new.
        """
        if not call_session.is_terminal or call_session.disposition == CallDisposition.ANSWERED:
            return

        queue = (
            await self._queues.get_by_id(call_session.queue_id)
            if call_session.queue_id is not None
            else None
        )
        reason = self._classifier(call_session, queue)
        now = self._clock()

        missed_call = await self._get_missed_call_by_session(call_session.id)
        if missed_call is None:
            missed_call = MissedCall(
                call_session_id=call_session.id,
                reason=reason,
                status=MissedCallStatus.NEW,
                queue_id=call_session.queue_id,
                user_id=call_session.assigned_user_id,
                caller_number=call_session.caller_number,
                created_at=now,
            )
            self._session.add(missed_call)
            await self._session.flush()
            logger.info(
                "Missed call recorded",
                extra={
                    "missed_call_id": str(missed_call.id),
                    "call_session_id": str(call_session.id),
                    "reason": reason.value,
                },
            )

        if missed_call.reason not in _CALLBACK_REASONS:
            return

        existing = await self._session.execute(
            select(CallbackRequest.id).where(CallbackRequest.missed_call_id == missed_call.id)
        )
        if existing.scalar_one_or_none() is not None:
            return

        scheduled_at: datetime | None = None
        if missed_call.reason == MissedCallReason.OUT_OF_HOURS and queue is not None and queue.worktime:
            scheduled_at = next_window_start(now, queue.worktime)

        callback = CallbackRequest(
            missed_call_id=missed_call.id,
            status=CallbackStatus.SCHEDULED if scheduled_at else CallbackStatus.PENDING,
            scheduled_at=scheduled_at,
            attempts_count=0,
            created_at=now,
            updated_at=now,
        )
        self._session.add(callback)
        await self._session.flush()

        logger.info(
            "Callback created",
            extra={
                "callback_id": str(callback.id),
                "missed_call_id": str(missed_call.id),
                "reason": missed_call.reason.value,
                "status": callback.status.value,
                "scheduled_at": scheduled_at.isoformat() if scheduled_at else None,
            },
        )

    async def handle_callback(self, callback_id: UUID, outcome: str) -> CallbackItem:
        """Record one callback attempt.

        Args:
            callback_id: Callback request id.
            outcome: Free-form outcome; "completed" and "resolved" close it.

        Returns:
            The updated callback.

        Raises:
            NotFoundError: If the callback does not exist.
        """
        callback = await self._session.get(CallbackRequest, callback_id)
        if callback is None:
            raise NotFoundError(message=f"Callback {callback_id} not found")

        now = self._clock()
        is_done = outcome.strip().lower() in TERMINAL_OUTCOMES

        callback.status = CallbackStatus.DONE if is_done else CallbackStatus.ATTEMPTING
        callback.attempts_count = (callback.attempts_count or 0) + 1
        callback.last_attempt_at = now
        callback.outcome = outcome
        callback.updated_at = now

        if is_done:
            missed_call = await self._session.get(MissedCall, callback.missed_call_id)
            if missed_call is not None:
                missed_call.status = MissedCallStatus.HANDLED

        await self._session.flush()

        logger.info(
            "Callback attempt recorded",
            extra={
                "callback_id": str(callback_id),
                "outcome": outcome,
                "status": callback.status.value,
                "attempts_count": callback.attempts_count,
            },
        )
        return await self.get_callback(callback_id)

    async def get_callback(self, callback_id: UUID) -> CallbackItem:
        stmt = self._item_query().where(CallbackRequest.id == callback_id)
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(message=f"Callback {callback_id} not found")
        return self._to_item(*row)

    async def get_callback_queue(
        self,
        status: CallbackStatus | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> Page[CallbackItem]:
        """Callbacks with a due time first (earliest first), then by creation."""
        count_stmt = select(func.count(CallbackRequest.id))
        stmt = self._item_query()
        if status is not None:
            count_stmt = count_stmt.where(CallbackRequest.status == status)
            stmt = stmt.where(CallbackRequest.status == status)

        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(
                CallbackRequest.scheduled_at.is_(None),
                CallbackRequest.scheduled_at.asc(),
                CallbackRequest.created_at.asc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = (await self._session.execute(stmt)).all()
        return Page[CallbackItem](
            data=[self._to_item(*row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def _get_missed_call_by_session(self, call_session_id: UUID) -> MissedCall | None:
        result = await self._session.execute(
            select(MissedCall).where(MissedCall.call_session_id == call_session_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _item_query():
        return (
            select(CallbackRequest, MissedCall, CallSession)
            .join(MissedCall, MissedCall.id == CallbackRequest.missed_call_id)
            .join(CallSession, CallSession.id == MissedCall.call_session_id)
        )

    @staticmethod
    def _to_item(
        callback: CallbackRequest,
        missed_call: MissedCall,
        call_session: CallSession,
    ) -> CallbackItem:
        return CallbackItem(
            id=callback.id,
            status=callback.status,
            scheduled_at=callback.scheduled_at,
            attempts_count=callback.attempts_count,
            last_attempt_at=callback.last_attempt_at,
            outcome=callback.outcome,
            created_at=callback.created_at,
            missed_call=MissedCallSummary(
                id=missed_call.id,
                reason=missed_call.reason,
                status=missed_call.status,
                queue_id=missed_call.queue_id,
                user_id=missed_call.user_id,
                caller_number=missed_call.caller_number,
                call_session=CallbackSessionSummary.model_validate(call_session),
            ),
        )
