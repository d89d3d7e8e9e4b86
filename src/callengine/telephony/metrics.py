"""
Per-session timing and service-level metrics.

``compute_call_metrics`` is a pure function of a terminated session and its
legs. ``MetricsComputer`` persists the result, merging it with the
accumulator fields (hold, wrapup, transfers) written by other handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.shared.logging import get_logger
from callengine.telephony.models import (
    CallDisposition,
    CallLeg,
    CallLegType,
    CallMetrics,
    CallSession,
)

logger = get_logger(__name__)

DEFAULT_SLA_THRESHOLD_SECONDS = 20


def _seconds_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds()


@dataclass(frozen=True)
class ComputedMetrics:
    """Derived fields of a CallMetrics row (accumulators excluded)."""

    wait_seconds: float
    ring_seconds: float
    talk_seconds: float
    first_response_seconds: float | None
    abandons_after_seconds: float | None
    is_sla_met: bool
    sla_threshold_seconds: int


def compute_call_metrics(
    session: CallSession,
    legs: Sequence[CallLeg],
    sla_threshold_seconds: int = DEFAULT_SLA_THRESHOLD_SECONDS,
) -> ComputedMetrics:
    """Compute the derived metrics of a terminated session.

    Args:
        session: Session with ``end_at`` set.
        legs: All legs of the session.
        sla_threshold_seconds: Maximum wait for the call to count as SLA-met.

    Returns:
        ComputedMetrics for the session.

    Raises:
        ValueError: If the session has not ended.
    """
    if session.end_at is None:
        raise ValueError("Cannot compute metrics for a session without end_at")

    answered = session.answer_at is not None
    if answered:
        wait = _seconds_between(session.start_at, session.answer_at)
        talk = _seconds_between(session.answer_at, session.end_at)
    else:
        wait = 0.0
        talk = 0.0

    agent_starts = [leg.start_at for leg in legs if leg.type == CallLegType.AGENT]
    first_response = (
        _seconds_between(session.start_at, min(agent_starts)) if agent_starts else None
    )

    abandons_after = (
        _seconds_between(session.start_at, session.end_at)
        if session.disposition == CallDisposition.ABANDONED
        else None
    )

    return ComputedMetrics(
        wait_seconds=wait,
        ring_seconds=wait,
        talk_seconds=talk,
        first_response_seconds=first_response,
        abandons_after_seconds=abandons_after,
        is_sla_met=answered and wait <= sla_threshold_seconds,
        sla_threshold_seconds=sla_threshold_seconds,
    )


class MetricsComputer:
    """Persists CallMetrics rows for sessions."""

    def __init__(
        self,
        session: AsyncSession,
        sla_threshold_seconds: int = DEFAULT_SLA_THRESHOLD_SECONDS,
    ) -> None:
        self._session = session
        self._sla_threshold_seconds = sla_threshold_seconds

    async def get_or_create(self, call_session_id: UUID) -> CallMetrics:
        """Return the metrics row of a session, creating an empty one if absent."""
        result = await self._session.execute(
            select(CallMetrics).where(CallMetrics.call_session_id == call_session_id)
        )
        metrics = result.scalar_one_or_none()
        if metrics is None:
            metrics = CallMetrics(
                call_session_id=call_session_id,
                wait_seconds=0.0,
                ring_seconds=0.0,
                talk_seconds=0.0,
                hold_seconds=0.0,
                wrapup_seconds=0.0,
                transfers_count=0,
                sla_threshold_seconds=self._sla_threshold_seconds,
            )
            self._session.add(metrics)
            await self._session.flush()
        return metrics

    async def add_hold(self, call_session_id: UUID, seconds: float) -> CallMetrics:
        metrics = await self.get_or_create(call_session_id)
        metrics.hold_seconds = (metrics.hold_seconds or 0.0) + seconds
        await self._session.flush()
        return metrics

    async def add_wrapup(self, call_session_id: UUID, seconds: float) -> CallMetrics:
        metrics = await self.get_or_create(call_session_id)
        metrics.wrapup_seconds = (metrics.wrapup_seconds or 0.0) + seconds
        await self._session.flush()
        return metrics

    async def increment_transfers(self, call_session_id: UUID) -> CallMetrics:
        metrics = await self.get_or_create(call_session_id)
        metrics.transfers_count = (metrics.transfers_count or 0) + 1
        await self._session.flush()
        return metrics

    async def recompute(self, call_session: CallSession) -> CallMetrics | None:
        """Recompute and upsert the derived metrics of a terminated session.

        Hold, wrapup and transfer accumulators already on the row are kept.
        Returns None when the session has not ended yet.
        """
        if call_session.end_at is None:
            logger.debug(
                "Skipping metrics for open session",
                extra={"call_session_id": str(call_session.id)},
            )
            return None

        result = await self._session.execute(
            select(CallLeg).where(CallLeg.call_session_id == call_session.id)
        )
        legs = list(result.scalars().all())
        computed = compute_call_metrics(call_session, legs, self._sla_threshold_seconds)

        metrics = await self.get_or_create(call_session.id)
        metrics.wait_seconds = computed.wait_seconds
        metrics.ring_seconds = computed.ring_seconds
        metrics.talk_seconds = computed.talk_seconds
        metrics.first_response_seconds = computed.first_response_seconds
        metrics.abandons_after_seconds = computed.abandons_after_seconds
        metrics.is_sla_met = computed.is_sla_met
        metrics.sla_threshold_seconds = computed.sla_threshold_seconds
        await self._session.flush()

        logger.info(
            "Call metrics computed",
            extra={
                "call_session_id": str(call_session.id),
                "wait_seconds": computed.wait_seconds,
                "talk_seconds": computed.talk_seconds,
                "is_sla_met": computed.is_sla_met,
            },
        )
        return metrics
