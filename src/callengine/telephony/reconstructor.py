"""
Call-session state machine driven by PBX events.

One ``SessionReconstructor`` is built per ingestion unit of work. It owns all
writes to CallSession and CallLeg; every other component only reads them.
"""

from typing import Protocol
from uuid import UUID

from callengine.shared.logging import get_logger
from callengine.telephony.directory import (
    ExtensionDirectory,
    QueueDirectory,
    RecordingSink,
)
from callengine.telephony.events import EventPayload, IngestEventItem, TelephonyEventType
from callengine.telephony.metrics import MetricsComputer
from callengine.telephony.models import (
    CallDirection,
    CallDisposition,
    CallEvent,
    CallLegType,
    CallSession,
    RecordingStatus,
)
from callengine.telephony.repository import CallEventRepository, CallSessionRepository

logger = get_logger(__name__)

_OUTBOUND_CONTEXT_MARKERS = ("outbound", "from-internal")
_AGENT_LEG_TYPES = (CallLegType.AGENT, CallLegType.TRANSFER)


class NonAnsweredCallHandler(Protocol):
    """Receives sessions that ended with a disposition other than ANSWERED."""

    async def handle_non_answered_call(self, call_session: CallSession) -> None:
        ...


def infer_direction(context: str | None) -> CallDirection:
    """OUT for outbound/internal dialplan contexts, IN otherwise."""
    if context and any(marker in context for marker in _OUTBOUND_CONTEXT_MARKERS):
        return CallDirection.OUT
    return CallDirection.IN


def infer_disposition(cause: str | None) -> CallDisposition:
    """Map a PBX hangup cause (text or Q.850 code) to a disposition.

    Cause strings are not mutually exclusive, so the checks run in priority
    order and the first match wins.
    """
    normalized = (cause or "").strip().upper()

    if "NORMAL_CLEARING" in normalized or "ANSWERED" in normalized or normalized == "16":
        return CallDisposition.ANSWERED
    if "NO_ANSWER" in normalized or normalized == "19":
        return CallDisposition.NOANSWER
    if "USER_BUSY" in normalized or normalized == "17":
        return CallDisposition.BUSY
    if "ORIGINATOR_CANCEL" in normalized or normalized == "487":
        return CallDisposition.ABANDONED
    if "FAILURE" in normalized or "CONGESTION" in normalized:
        return CallDisposition.FAILED
    return CallDisposition.MISSED


def hangup_cause_of(payload: EventPayload) -> str | None:
    return payload.cause_txt or payload.cause


class SessionReconstructor:
    """Applies one stored event to the session it belongs to."""

    def __init__(
        self,
        events: CallEventRepository,
        sessions: CallSessionRepository,
        extensions: ExtensionDirectory,
        queues: QueueDirectory,
        recordings: RecordingSink,
        metrics: MetricsComputer,
        missed_calls: NonAnsweredCallHandler | None = None,
        quality_review_min_recording_seconds: float = 30,
    ) -> None:
        self._events = events
        self._sessions = sessions
        self._extensions = extensions
        self._queues = queues
        self._recordings = recordings
        self._metrics = metrics
        self._missed_calls = missed_calls
        self._quality_review_min_recording_seconds = quality_review_min_recording_seconds

    async def apply(
        self,
        item: IngestEventItem,
        event: CallEvent,
        call_session: CallSession | None,
    ) -> CallSession | None:
        """Dispatch ``item`` by type.

        Args:
            item: Validated event notification.
            event: The CallEvent row just stored for ``item``.
            call_session: Session resolved by linkedId, if it already existed.

        Returns:
            The session the event was applied to, if any.
        """
        if item.event_type == TelephonyEventType.CALL_START:
            return await self._on_call_start(item, event, call_session)

        if call_session is None:
            logger.info(
                "Event ignored: no session for linkedId",
                extra={
                    "event_type": item.event_type.value,
                    "linked_id": item.resolved_linked_id,
                    "idempotency_key": item.idempotency_key,
                },
            )
            return None

        match item.event_type:
            case TelephonyEventType.CALL_ANSWER:
                await self._on_call_answer(item, call_session)
            case TelephonyEventType.CALL_END:
                await self._on_call_end(item, call_session)
            case TelephonyEventType.QUEUE_ENTER:
                await self._on_queue_enter(item, call_session)
            case TelephonyEventType.QUEUE_LEAVE:
                pass
            case TelephonyEventType.AGENT_CONNECT:
                await self._on_agent_connect(item, call_session)
            case TelephonyEventType.TRANSFER:
                await self._on_transfer(item, call_session)
            case TelephonyEventType.HOLD_END:
                seconds = await self._paired_duration(
                    item, call_session.id, TelephonyEventType.HOLD_START
                )
                if seconds is not None:
                    await self._metrics.add_hold(call_session.id, seconds)
            case TelephonyEventType.WRAPUP_END:
                seconds = await self._paired_duration(
                    item, call_session.id, TelephonyEventType.WRAPUP_START
                )
                if seconds is not None:
                    await self._metrics.add_wrapup(call_session.id, seconds)
            case TelephonyEventType.HOLD_START | TelephonyEventType.WRAPUP_START:
                # Accounted for when the matching *_end arrives.
                pass
            case TelephonyEventType.RECORDING_READY:
                await self._on_recording_ready(item, call_session)

        return call_session

    async def _on_call_start(
        self,
        item: IngestEventItem,
        event: CallEvent,
        call_session: CallSession | None,
    ) -> CallSession | None:
        linked_id = item.resolved_linked_id
        if not linked_id:
            return None

        unique_id = item.resolved_unique_id
        if call_session is not None:
            if unique_id:
                call_session.unique_id = unique_id
            logger.debug(
                "call_start retransmit refreshed session",
                extra={"linked_id": linked_id, "call_session_id": str(call_session.id)},
            )
            return call_session

        payload = item.payload
        call_session = await self._sessions.create(
            linked_id=linked_id,
            unique_id=unique_id,
            direction=infer_direction(payload.context),
            caller_number=payload.caller_id_num or "unknown",
            callee_number=payload.connected_line_num,
            did=payload.context,
            start_at=item.timestamp,
        )
        await self._sessions.add_leg(call_session.id, CallLegType.CUSTOMER, item.timestamp)
        event.call_session_id = call_session.id

        logger.info(
            "Call session created",
            extra={
                "linked_id": linked_id,
                "call_session_id": str(call_session.id),
                "direction": call_session.direction.value,
            },
        )
        return call_session

    async def _on_call_answer(self, item: IngestEventItem, call_session: CallSession) -> None:
        call_session.answer_at = item.timestamp
        customer_leg = await self._sessions.customer_leg(call_session.id)
        if customer_leg is not None:
            customer_leg.answer_at = item.timestamp

    async def _on_call_end(self, item: IngestEventItem, call_session: CallSession) -> None:
        cause = hangup_cause_of(item.payload)
        disposition = infer_disposition(cause)

        call_session.end_at = item.timestamp
        call_session.disposition = disposition
        call_session.hangup_cause = cause

        for leg in await self._sessions.open_legs(call_session.id):
            leg.end_at = item.timestamp
            leg.disposition = disposition

        await self._metrics.recompute(call_session)

        logger.info(
            "Call session ended",
            extra={
                "call_session_id": str(call_session.id),
                "disposition": disposition.value,
                "hangup_cause": cause,
            },
        )

        if disposition != CallDisposition.ANSWERED and self._missed_calls is not None:
            await self._missed_calls.handle_non_answered_call(call_session)

    async def _on_queue_enter(self, item: IngestEventItem, call_session: CallSession) -> None:
        queue_name = item.payload.queue
        if not queue_name:
            return
        queue = await self._queues.get_by_name(queue_name)
        if queue is None:
            logger.warning(
                "Unknown queue in queue_enter",
                extra={"queue": queue_name, "call_session_id": str(call_session.id)},
            )
            return
        call_session.queue_id = queue.id

    async def _resolve_extension(self, extension: str | None, call_session_id: UUID) -> str | None:
        if not extension:
            return None
        user_id = await self._extensions.resolve_user_id(extension)
        if user_id is None:
            logger.warning(
                "Extension not mapped to a user",
                extra={"extension": extension, "call_session_id": str(call_session_id)},
            )
        return user_id

    async def _close_agent_legs(self, item: IngestEventItem, call_session_id: UUID) -> None:
        for leg in await self._sessions.open_legs(call_session_id, _AGENT_LEG_TYPES):
            leg.end_at = item.timestamp

    async def _on_agent_connect(self, item: IngestEventItem, call_session: CallSession) -> None:
        extension = item.payload.extension
        user_id = await self._resolve_extension(extension, call_session.id)

        await self._close_agent_legs(item, call_session.id)
        call_session.assigned_user_id = user_id
        call_session.assigned_extension = extension
        await self._sessions.add_leg(
            call_session.id,
            CallLegType.AGENT,
            item.timestamp,
            user_id=user_id,
            extension=extension,
        )

    async def _on_transfer(self, item: IngestEventItem, call_session: CallSession) -> None:
        await self._close_agent_legs(item, call_session.id)

        extension = item.payload.extension
        user_id = await self._resolve_extension(extension, call_session.id)
        await self._sessions.add_leg(
            call_session.id,
            CallLegType.TRANSFER,
            item.timestamp,
            user_id=user_id,
            extension=extension,
        )
        metrics = await self._metrics.increment_transfers(call_session.id)

        call_session.assigned_user_id = user_id
        call_session.assigned_extension = extension

        logger.info(
            "Call transferred",
            extra={
                "call_session_id": str(call_session.id),
                "extension": extension,
                "transfers_count": metrics.transfers_count,
            },
        )

    async def _paired_duration(
        self,
        item: IngestEventItem,
        call_session_id: UUID,
        start_type: TelephonyEventType,
    ) -> float | None:
        start_event = await self._events.latest_before(call_session_id, start_type, item.timestamp)
        if start_event is None:
            logger.debug(
                "No matching start event, nothing accumulated",
                extra={
                    "call_session_id": str(call_session_id),
                    "event_type": item.event_type.value,
                },
            )
            return None
        return max(0.0, (item.timestamp - start_event.ts).total_seconds())

    async def _on_recording_ready(self, item: IngestEventItem, call_session: CallSession) -> None:
        duration = item.payload.recording_duration
        await self._recordings.create_recording(
            call_session.id,
            item.payload.recording_file,
            duration,
        )
        call_session.recording_status = RecordingStatus.AVAILABLE

        if (
            call_session.disposition == CallDisposition.ANSWERED
            and duration is not None
            and duration > self._quality_review_min_recording_seconds
        ):
            await self._recordings.ensure_quality_review(call_session.id)
