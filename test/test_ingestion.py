"""
Integration tests for event ingestion and session reconstruction.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.callbacks.models import (
    CallbackRequest,
    CallbackStatus,
    MissedCall,
    MissedCallReason,
)
from callengine.telephony.ingestion.service import IngestionService
from callengine.telephony.models import (
    CallDirection,
    CallDisposition,
    CallEvent,
    CallLeg,
    CallLegType,
    CallMetrics,
    CallSession,
    QualityReview,
    Recording,
    RecordingStatus,
    TelephonyExtension,
    TelephonyQueue,
)

from conftest import at, make_event


async def _count(db_session: AsyncSession, model) -> int:
    return (await db_session.execute(select(func.count()).select_from(model))).scalar_one()


async def _session_by_linked_id(db_session: AsyncSession, linked_id: str) -> CallSession:
    result = await db_session.execute(select(CallSession).where(CallSession.linked_id == linked_id))
    return result.scalar_one()


async def _metrics(db_session: AsyncSession, call_session: CallSession) -> CallMetrics:
    result = await db_session.execute(
        select(CallMetrics).where(CallMetrics.call_session_id == call_session.id)
    )
    return result.scalar_one()


def answered_call(linked_id: str = "L1", extension: str = "101") -> list[dict]:
    """Inbound call, queued, answered after 10 s, ended 30 s later."""
    return [
        make_event("call_start", linked_id, 0, callerIdNum="+995555123456", context="from-trunk"),
        make_event("queue_enter", linked_id, 2, queue="support"),
        make_event("agent_connect", linked_id, 8, extension=extension),
        make_event("call_answer", linked_id, 10),
        make_event("call_end", linked_id, 40, cause="16", causeTxt="NORMAL_CLEARING"),
    ]


class TestIdempotency:
    """Re-delivered events have no additional effect."""

    @pytest.mark.asyncio
    async def test_reingesting_batch_skips_everything(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
        agents: list[TelephonyExtension],
    ) -> None:
        events = answered_call()

        first = await ingestion_service.ingest_batch(events)
        assert first.processed == 5
        assert first.skipped == 0
        assert first.errors == []

        second = await ingestion_service.ingest_batch(events)
        assert second.processed == 0
        assert second.skipped == 5

        assert await _count(db_session, CallEvent) == 5
        assert await _count(db_session, CallSession) == 1
        assert await _count(db_session, CallMetrics) == 1

    @pytest.mark.asyncio
    async def test_duplicate_within_batch(self, ingestion_service: IngestionService) -> None:
        event = make_event("call_start", "L1", 0, callerIdNum="555")
        result = await ingestion_service.ingest_batch([event, event])

        assert result.processed == 1
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_call_start_retransmit_refreshes_unique_id(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        first = make_event("call_start", "L1", 0, key="start-a", callerIdNum="555")
        first["uniqueId"] = "U1"
        retry = make_event("call_start", "L1", 1, key="start-b", callerIdNum="555")
        retry["uniqueId"] = "U2"

        result = await ingestion_service.ingest_batch([first, retry])

        assert result.processed == 2
        call_session = await _session_by_linked_id(db_session, "L1")
        assert call_session.unique_id == "U2"
        assert call_session.start_at == at(0)
        assert await _count(db_session, CallSession) == 1
        assert await _count(db_session, CallLeg) == 1


class TestAnsweredCall:
    """Happy path: inbound, queued, answered."""

    @pytest.mark.asyncio
    async def test_session_and_metrics(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
        agents: list[TelephonyExtension],
    ) -> None:
        await ingestion_service.ingest_batch(answered_call())

        call_session = await _session_by_linked_id(db_session, "L1")
        assert call_session.direction == CallDirection.IN
        assert call_session.caller_number == "+995555123456"
        assert call_session.queue_id == support_queue.id
        assert call_session.assigned_user_id == "user-alice"
        assert call_session.assigned_extension == "101"
        assert call_session.answer_at == at(10)
        assert call_session.end_at == at(40)
        assert call_session.disposition == CallDisposition.ANSWERED
        assert call_session.hangup_cause == "NORMAL_CLEARING"

        metrics = await _metrics(db_session, call_session)
        assert metrics.wait_seconds == 10
        assert metrics.talk_seconds == 30
        assert metrics.first_response_seconds == 8
        assert metrics.is_sla_met is True
        assert metrics.sla_threshold_seconds == 20

        # Answered calls never produce a missed call.
        assert await _count(db_session, MissedCall) == 0

    @pytest.mark.asyncio
    async def test_legs_closed_on_end(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
        agents: list[TelephonyExtension],
    ) -> None:
        await ingestion_service.ingest_batch(answered_call())

        legs = (await db_session.execute(select(CallLeg).order_by(CallLeg.start_at))).scalars().all()
        assert [leg.type for leg in legs] == [CallLegType.CUSTOMER, CallLegType.AGENT]
        assert all(leg.end_at == at(40) for leg in legs)
        assert all(leg.disposition == CallDisposition.ANSWERED for leg in legs)
        assert legs[0].answer_at == at(10)
        assert legs[1].user_id == "user-alice"

    @pytest.mark.asyncio
    async def test_events_linked_to_session(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
        agents: list[TelephonyExtension],
    ) -> None:
        await ingestion_service.ingest_batch(answered_call())

        call_session = await _session_by_linked_id(db_session, "L1")
        unlinked = (
            await db_session.execute(
                select(func.count()).select_from(CallEvent).where(CallEvent.call_session_id.is_(None))
            )
        ).scalar_one()
        assert unlinked == 0
        stored = (await db_session.execute(select(CallEvent).limit(1))).scalar_one()
        assert stored.call_session_id == call_session.id

    @pytest.mark.asyncio
    async def test_outbound_direction(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        await ingestion_service.ingest_batch(
            [make_event("call_start", "L9", 0, callerIdNum="101", context="from-internal")]
        )
        call_session = await _session_by_linked_id(db_session, "L9")
        assert call_session.direction == CallDirection.OUT

    @pytest.mark.asyncio
    async def test_unmapped_extension_leaves_user_empty(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        await ingestion_service.ingest_batch(
            [
                make_event("call_start", "L1", 0, callerIdNum="555"),
                make_event("agent_connect", "L1", 5, extension="999"),
            ]
        )
        call_session = await _session_by_linked_id(db_session, "L1")
        assert call_session.assigned_extension == "999"
        assert call_session.assigned_user_id is None


class TestNonAnsweredCalls:
    """Missed-call and callback creation on call_end."""

    @pytest.mark.asyncio
    async def test_abandoned_creates_missed_call_and_callback(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        sales_queue: TelephonyQueue,
    ) -> None:
        events = [
            make_event("call_start", "L2", 0, callerIdNum="+995577000111"),
            make_event("queue_enter", "L2", 1, queue="sales"),
            make_event("call_end", "L2", 45, causeTxt="ORIGINATOR_CANCEL"),
        ]
        await ingestion_service.ingest_batch(events)
        await ingestion_service.ingest_batch(events)

        call_session = await _session_by_linked_id(db_session, "L2")
        assert call_session.disposition == CallDisposition.ABANDONED

        metrics = await _metrics(db_session, call_session)
        assert metrics.abandons_after_seconds == 45
        assert metrics.is_sla_met is False

        missed = (await db_session.execute(select(MissedCall))).scalars().all()
        assert len(missed) == 1
        assert missed[0].reason == MissedCallReason.ABANDONED
        assert missed[0].queue_id == sales_queue.id
        assert missed[0].caller_number == "+995577000111"

        callbacks = (await db_session.execute(select(CallbackRequest))).scalars().all()
        assert len(callbacks) == 1
        assert callbacks[0].status == CallbackStatus.PENDING
        assert callbacks[0].scheduled_at is None

    @pytest.mark.asyncio
    async def test_queue_with_hours_is_out_of_hours_and_scheduled(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
    ) -> None:
        await ingestion_service.ingest_batch(
            [
                make_event("call_start", "L3", 0, callerIdNum="555"),
                make_event("queue_enter", "L3", 1, queue="support"),
                make_event("call_end", "L3", 30, cause="19"),
            ]
        )

        missed = (await db_session.execute(select(MissedCall))).scalar_one()
        assert missed.reason == MissedCallReason.OUT_OF_HOURS

        callback = (await db_session.execute(select(CallbackRequest))).scalar_one()
        assert callback.status == CallbackStatus.SCHEDULED
        # Fixed clock is Monday 11:00 UTC, inside the window.
        assert callback.scheduled_at == datetime(2026, 3, 2, 11, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_queue_open_until_midnight_keeps_its_hours(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        db_session.add(
            TelephonyQueue(
                name="late",
                worktime_config={
                    "timezone": "UTC",
                    "windows": [
                        {"day": 1, "start": "09:00", "end": "24:00"},
                        {"day": 2, "start": "9am", "end": "5pm"},
                    ],
                },
            )
        )
        await db_session.commit()

        await ingestion_service.ingest_batch(
            [
                make_event("call_start", "L5", 0, callerIdNum="555"),
                make_event("queue_enter", "L5", 1, queue="late"),
                make_event("call_end", "L5", 30, cause="19"),
            ]
        )

        missed = (await db_session.execute(select(MissedCall))).scalar_one()
        assert missed.reason == MissedCallReason.OUT_OF_HOURS
        callback = (await db_session.execute(select(CallbackRequest))).scalar_one()
        assert callback.status == CallbackStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_no_answer_without_queue_has_no_callback(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        await ingestion_service.ingest_batch(
            [
                make_event("call_start", "L4", 0, callerIdNum="555"),
                make_event("call_end", "L4", 30, causeTxt="NO_ANSWER"),
            ]
        )

        missed = (await db_session.execute(select(MissedCall))).scalar_one()
        assert missed.reason == MissedCallReason.NO_ANSWER
        assert await _count(db_session, CallbackRequest) == 0


class TestTransfersHoldAndWrapup:
    """Accumulated metrics."""

    @pytest.mark.asyncio
    async def test_transfers_counted_once_per_event(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        agents: list[TelephonyExtension],
    ) -> None:
        events = [
            make_event("call_start", "L5", 0, callerIdNum="555"),
            make_event("agent_connect", "L5", 5, extension="101"),
            make_event("call_answer", "L5", 5),
            make_event("transfer", "L5", 20, extension="102"),
            make_event("transfer", "L5", 20, extension="102"),
            make_event("transfer", "L5", 50, extension="101"),
        ]
        result = await ingestion_service.ingest_batch(events)
        assert result.skipped == 1

        call_session = await _session_by_linked_id(db_session, "L5")
        metrics = await _metrics(db_session, call_session)
        assert metrics.transfers_count == 2
        assert call_session.assigned_user_id == "user-alice"

        legs = (
            await db_session.execute(
                select(CallLeg).where(CallLeg.type != CallLegType.CUSTOMER).order_by(CallLeg.start_at)
            )
        ).scalars().all()
        assert [leg.type for leg in legs] == [
            CallLegType.AGENT,
            CallLegType.TRANSFER,
            CallLegType.TRANSFER,
        ]
        assert legs[0].end_at == at(20)
        assert legs[1].end_at == at(50)
        assert legs[2].end_at is None

    @pytest.mark.asyncio
    async def test_hold_and_wrapup_accumulate(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        events = [
            make_event("call_start", "L6", 0, callerIdNum="555"),
            make_event("call_answer", "L6", 5),
            make_event("hold_start", "L6", 10),
            make_event("hold_end", "L6", 25),
            make_event("hold_start", "L6", 40),
            make_event("hold_end", "L6", 45),
            make_event("call_end", "L6", 60, cause="16"),
            make_event("wrapup_start", "L6", 60),
            make_event("wrapup_end", "L6", 90),
        ]
        await ingestion_service.ingest_batch(events)

        call_session = await _session_by_linked_id(db_session, "L6")
        metrics = await _metrics(db_session, call_session)
        assert metrics.hold_seconds == 20
        assert metrics.wrapup_seconds == 30
        assert metrics.talk_seconds == 55

    @pytest.mark.asyncio
    async def test_hold_end_without_start_adds_nothing(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        result = await ingestion_service.ingest_batch(
            [
                make_event("call_start", "L7", 0, callerIdNum="555"),
                make_event("hold_end", "L7", 10),
            ]
        )
        assert result.processed == 2
        assert await _count(db_session, CallMetrics) == 0


class TestRecordings:
    """recording_ready handling."""

    @pytest.mark.asyncio
    async def test_long_answered_recording_gets_review(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
        agents: list[TelephonyExtension],
    ) -> None:
        events = answered_call() + [
            make_event("recording_ready", "L1", 45, recordingFile="a.wav", recordingDuration=31),
            make_event("recording_ready", "L1", 46, recordingFile="b.wav", recordingDuration=40),
        ]
        await ingestion_service.ingest_batch(events)

        call_session = await _session_by_linked_id(db_session, "L1")
        assert call_session.recording_status == RecordingStatus.AVAILABLE
        assert await _count(db_session, Recording) == 2
        assert await _count(db_session, QualityReview) == 1

    @pytest.mark.asyncio
    async def test_short_recording_gets_no_review(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        support_queue: TelephonyQueue,
        agents: list[TelephonyExtension],
    ) -> None:
        events = answered_call() + [
            make_event("recording_ready", "L1", 45, recordingFile="a.wav", recordingDuration=30),
        ]
        await ingestion_service.ingest_batch(events)

        assert await _count(db_session, Recording) == 1
        assert await _count(db_session, QualityReview) == 0


class TestBatchErrors:
    """Malformed items and orphan events."""

    @pytest.mark.asyncio
    async def test_event_without_linked_id_is_stored_only(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        result = await ingestion_service.ingest_batch([make_event("call_start", None, 0, key="orphan")])

        assert result.processed == 1
        assert await _count(db_session, CallEvent) == 1
        assert await _count(db_session, CallSession) == 0

    @pytest.mark.asyncio
    async def test_event_for_unknown_session_is_stored_only(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        result = await ingestion_service.ingest_batch([make_event("call_answer", "nope", 0)])

        assert result.processed == 1
        event = (await db_session.execute(select(CallEvent))).scalar_one()
        assert event.call_session_id is None

    @pytest.mark.asyncio
    async def test_malformed_item_does_not_fail_batch(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        events = [
            {"eventType": "call_start", "idempotencyKey": "bad-1"},
            {"eventType": "not_a_type", "timestamp": "2026-03-02T10:00:00Z", "idempotencyKey": "bad-2"},
            "garbage",
            make_event("call_start", "L8", 0, callerIdNum="555"),
        ]
        result = await ingestion_service.ingest_batch(events)

        assert result.processed == 1
        assert [e.idempotency_key for e in result.errors] == ["bad-1", "bad-2", ""]
        assert all(e.error for e in result.errors)
        assert await _count(db_session, CallSession) == 1


class TestConcurrentDelivery:
    """Another worker wins the race between the checks and the insert."""

    @pytest.mark.asyncio
    async def test_duplicate_key_stored_concurrently_is_skipped(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        event = make_event("call_start", "L1", 0, callerIdNum="555")
        await ingestion_service.ingest_batch([event])

        async def not_seen_yet(idempotency_key: str) -> bool:
            return False

        monkeypatch.setattr(ingestion_service._events, "exists", not_seen_yet)

        result = await ingestion_service.ingest_batch(
            [event, make_event("call_start", "L2", 5, callerIdNum="556")]
        )

        assert result.processed == 1
        assert result.skipped == 1
        assert result.errors == []
        keys = (await db_session.execute(select(CallEvent.idempotency_key))).scalars().all()
        assert sorted(keys) == ["L1-call_start-0", "L2-call_start-5"]
        assert await _count(db_session, CallSession) == 2

    @pytest.mark.asyncio
    async def test_session_created_concurrently_is_reported_for_redelivery(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await ingestion_service.ingest_batch([make_event("call_start", "L1", 0, callerIdNum="555")])
        retry = make_event("call_start", "L1", 1, key="start-retry", callerIdNum="555")

        sessions = ingestion_service._sessions
        original_lookup = sessions.get_by_linked_id

        async def not_created_yet(linked_id: str) -> CallSession | None:
            return None

        monkeypatch.setattr(sessions, "get_by_linked_id", not_created_yet)
        result = await ingestion_service.ingest_batch(
            [retry, make_event("call_start", "L2", 5, callerIdNum="556")]
        )

        assert result.processed == 1
        assert [e.idempotency_key for e in result.errors] == ["start-retry"]
        assert await _count(db_session, CallSession) == 2
        stored = (await db_session.execute(select(CallEvent.idempotency_key))).scalars().all()
        assert "start-retry" not in stored

        monkeypatch.setattr(sessions, "get_by_linked_id", original_lookup)
        redelivered = await ingestion_service.ingest_batch([retry])

        assert redelivered.processed == 1
        assert await _count(db_session, CallSession) == 2
        assert await _count(db_session, CallLeg) == 2


class TestLenientPayload:
    """Informational payload keys never reject an event."""

    @pytest.mark.asyncio
    async def test_empty_priority_and_numeric_queue(
        self,
        ingestion_service: IngestionService,
        db_session: AsyncSession,
    ) -> None:
        queue = TelephonyQueue(name="700", worktime_config=None)
        db_session.add(queue)
        await db_session.commit()

        result = await ingestion_service.ingest_batch(
            [
                make_event("call_start", "P1", 0, callerIdNum="555", priority="", position="n/a"),
                make_event("queue_enter", "P1", 1, queue=700, holdTime=""),
            ]
        )

        assert result.errors == []
        assert result.processed == 2
        call_session = await _session_by_linked_id(db_session, "P1")
        assert call_session.queue_id == queue.id
