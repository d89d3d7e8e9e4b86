"""
Telephony KPIs: overview with period comparison, per-agent and per-queue.

Sessions are selected by ``start_at`` within ``[from, to]``. Aggregation is
done in Python over one row per session so that "no data" (None) and a real
zero stay distinguishable.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.callbacks.models import CallbackRequest, CallbackStatus, MissedCall
from callengine.shared.logging import get_logger
from callengine.shared.schemas import validate_range
from callengine.stats.schemas import (
    AgentKpis,
    OverviewDelta,
    OverviewKpis,
    OverviewResponse,
    QualityKpis,
    QueueKpis,
    ServiceLevelKpis,
    SpeedKpis,
    VolumeKpis,
)
from callengine.telephony.directory import ExtensionDirectory, QueueDirectory
from callengine.telephony.models import CallDisposition, CallMetrics, CallSession

logger = get_logger(__name__)

_OVERVIEW_MISSED = frozenset({CallDisposition.MISSED, CallDisposition.NOANSWER})


@dataclass(frozen=True)
class SessionStatsRow:
    """One session joined with its metrics (metric fields None when absent)."""

    start_at: datetime
    disposition: CallDisposition | None
    queue_id: UUID | None = None
    assigned_user_id: str | None = None
    has_metrics: bool = False
    wait_seconds: float | None = None
    talk_seconds: float | None = None
    hold_seconds: float | None = None
    wrapup_seconds: float | None = None
    transfers_count: int | None = None
    abandons_after_seconds: float | None = None
    is_sla_met: bool | None = None

    @property
    def answered(self) -> bool:
        return self.disposition == CallDisposition.ANSWERED

    @property
    def handle_seconds(self) -> float:
        return (self.talk_seconds or 0.0) + (self.hold_seconds or 0.0) + (self.wrapup_seconds or 0.0)


def percentile(sorted_values: Sequence[float], pct: float) -> float | None:
    """Linear-interpolated percentile of an ascending sequence."""
    if not sorted_values:
        return None
    idx = (pct / 100) * (len(sorted_values) - 1)
    lower, upper = math.floor(idx), math.ceil(idx)
    if lower == upper:
        return sorted_values[lower]
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * (idx - lower)


def mean(values: Iterable[float]) -> float | None:
    values = list(values)
    return sum(values) / len(values) if values else None


def rounded(value: float | None, digits: int = 2) -> float | None:
    return None if value is None else round(value, digits)


def ratio(part: float, whole: float) -> float | None:
    return part / whole if whole else None


def pct_change(current: float | None, previous: float | None) -> float | None:
    """Percentage change, None when either side is missing or previous is 0."""
    if current is None or previous is None or previous == 0:
        return None
    return round((current - previous) / previous * 100, 2)


def compute_overview_kpis(
    rows: Sequence[SessionStatsRow],
    callbacks_created: int = 0,
    callbacks_completed: int = 0,
    zone: ZoneInfo | None = None,
) -> OverviewKpis:
    """Aggregate headline KPIs over a set of sessions."""
    zone = zone or ZoneInfo("UTC")

    answered = [r for r in rows if r.answered]
    answered_with_metrics = [r for r in answered if r.has_metrics]
    waits = sorted(r.wait_seconds or 0.0 for r in answered_with_metrics)
    abandon_waits = [
        r.abandons_after_seconds
        for r in rows
        if r.disposition == CallDisposition.ABANDONED and r.abandons_after_seconds is not None
    ]
    sla_flags = [r.is_sla_met for r in rows if r.is_sla_met is not None]

    hours: dict[int, int] = {}
    for r in rows:
        hour = r.start_at.astimezone(zone).hour
        hours[hour] = hours.get(hour, 0) + 1

    transfers = sum(r.transfers_count or 0 for r in answered_with_metrics)

    return OverviewKpis(
        volume=VolumeKpis(
            total_calls=len(rows),
            answered=len(answered),
            missed=sum(1 for r in rows if r.disposition in _OVERVIEW_MISSED),
            abandoned=sum(1 for r in rows if r.disposition == CallDisposition.ABANDONED),
            callbacks_created=callbacks_created,
            callbacks_completed=callbacks_completed,
        ),
        speed=SpeedKpis(
            avg_answer_time_sec=rounded(mean(waits)),
            median_answer_time_sec=rounded(percentile(waits, 50)),
            p90_answer_time_sec=rounded(percentile(waits, 90)),
            avg_abandon_wait_sec=rounded(mean(abandon_waits)),
        ),
        quality=QualityKpis(
            avg_talk_time_sec=rounded(mean(r.talk_seconds or 0.0 for r in answered_with_metrics)),
            avg_hold_time_sec=rounded(mean(r.hold_seconds or 0.0 for r in answered_with_metrics)),
            avg_wrapup_time_sec=rounded(mean(r.wrapup_seconds or 0.0 for r in answered_with_metrics)),
            transfer_rate=rounded(ratio(transfers, len(answered)), 4),
        ),
        service_level=ServiceLevelKpis(
            sla_met_percent=rounded(
                ratio(sum(1 for f in sla_flags if f), len(sla_flags)) * 100 if sla_flags else None
            ),
            longest_wait_sec=rounded(waits[-1]) if waits else None,
            peak_hour_distribution=dict(sorted(hours.items())),
        ),
    )


def compute_delta(current: OverviewKpis, comparison: OverviewKpis) -> OverviewDelta:
    return OverviewDelta(
        total_calls=pct_change(current.volume.total_calls, comparison.volume.total_calls),
        answered=pct_change(current.volume.answered, comparison.volume.answered),
        missed=pct_change(current.volume.missed, comparison.volume.missed),
        avg_answer_time_sec=pct_change(
            current.speed.avg_answer_time_sec, comparison.speed.avg_answer_time_sec
        ),
        avg_talk_time_sec=pct_change(
            current.quality.avg_talk_time_sec, comparison.quality.avg_talk_time_sec
        ),
        sla_met_percent=pct_change(
            current.service_level.sla_met_percent, comparison.service_level.sla_met_percent
        ),
    )


@dataclass
class _GroupTotals:
    total: int = 0
    answered: int = 0
    missed: int = 0
    abandoned: int = 0
    wait_sum: float = 0.0
    talk_sum: float = 0.0
    hold_sum: float = 0.0
    wrapup_sum: float = 0.0
    handle_sum: float = 0.0
    sla_met: int = 0
    sla_total: int = 0
    agents: set[str] = field(default_factory=set)

    def add(self, row: SessionStatsRow) -> None:
        self.total += 1
        if row.answered:
            self.answered += 1
            self.wait_sum += row.wait_seconds or 0.0
            self.talk_sum += row.talk_seconds or 0.0
            self.hold_sum += row.hold_seconds or 0.0
            self.wrapup_sum += row.wrapup_seconds or 0.0
            self.handle_sum += row.handle_seconds
        elif row.disposition == CallDisposition.ABANDONED:
            self.abandoned += 1
        elif row.disposition is not None:
            self.missed += 1
        if row.is_sla_met is not None:
            self.sla_total += 1
            self.sla_met += int(row.is_sla_met)
        if row.assigned_user_id:
            self.agents.add(row.assigned_user_id)

    def per_answered(self, value: float) -> float | None:
        return rounded(ratio(value, self.answered))


def compute_agent_kpis(
    rows: Sequence[SessionStatsRow],
    display_names: dict[str, str | None] | None = None,
) -> list[AgentKpis]:
    """Per assigned user. Every non-answered terminal session counts as missed."""
    display_names = display_names or {}
    groups: dict[str, _GroupTotals] = {}
    for row in rows:
        if row.assigned_user_id:
            groups.setdefault(row.assigned_user_id, _GroupTotals()).add(row)

    result = []
    for user_id, g in groups.items():
        missed = g.missed + g.abandoned
        result.append(
            AgentKpis(
                user_id=user_id,
                display_name=display_names.get(user_id),
                total_calls=g.total,
                answered=g.answered,
                missed=missed,
                answer_rate=rounded(ratio(g.answered, g.total), 4),
                missed_rate=rounded(ratio(missed, g.total), 4),
                avg_handle_time_sec=g.per_answered(g.handle_sum),
                avg_talk_time_sec=g.per_answered(g.talk_sum),
                avg_hold_time_sec=g.per_answered(g.hold_sum),
                after_call_work_time_sec=g.per_answered(g.wrapup_sum),
            )
        )
    return sorted(result, key=lambda k: k.total_calls, reverse=True)


def compute_queue_kpis(
    rows: Sequence[SessionStatsRow],
    queue_names: dict[UUID, str] | None = None,
) -> list[QueueKpis]:
    """Per queue. Abandoned calls are counted apart from other misses."""
    queue_names = queue_names or {}
    groups: dict[UUID, _GroupTotals] = {}
    for row in rows:
        if row.queue_id is not None:
            groups.setdefault(row.queue_id, _GroupTotals()).add(row)

    result = []
    for queue_id, g in groups.items():
        result.append(
            QueueKpis(
                queue_id=queue_id,
                queue_name=queue_names.get(queue_id, "Unknown"),
                agent_count=len(g.agents),
                total_calls=g.total,
                answered=g.answered,
                missed=g.missed,
                abandoned=g.abandoned,
                answer_rate=rounded(ratio(g.answered, g.total), 4),
                missed_rate=rounded(ratio(g.missed + g.abandoned, g.total), 4),
                avg_answer_time_sec=g.per_answered(g.wait_sum),
                avg_handle_time_sec=g.per_answered(g.handle_sum),
                avg_talk_time_sec=g.per_answered(g.talk_sum),
                avg_hold_time_sec=g.per_answered(g.hold_sum),
                after_call_work_time_sec=g.per_answered(g.wrapup_sum),
                sla_met_percent=rounded(
                    ratio(g.sla_met, g.sla_total) * 100 if g.sla_total else None
                ),
            )
        )
    return sorted(result, key=lambda k: k.total_calls, reverse=True)


class StatsService:
    """Loads sessions for a period and aggregates them."""

    def __init__(
        self,
        session: AsyncSession,
        queues: QueueDirectory,
        extensions: ExtensionDirectory,
        timezone: str = "UTC",
    ) -> None:
        self._session = session
        self._queues = queues
        self._extensions = extensions
        self._zone = ZoneInfo(timezone)

    async def get_overview(
        self,
        from_: datetime,
        to: datetime,
        queue_id: UUID | None = None,
        compare_from: datetime | None = None,
        compare_to: datetime | None = None,
    ) -> OverviewResponse:
        """Overview KPIs, plus comparison and delta when both compare bounds are given."""
        current = await self._overview_for(from_, to, queue_id)

        comparison = delta = None
        if compare_from is not None and compare_to is not None:
            comparison = await self._overview_for(compare_from, compare_to, queue_id)
            delta = compute_delta(current, comparison)

        return OverviewResponse(current=current, comparison=comparison, delta=delta)

    async def get_agent_stats(
        self,
        from_: datetime,
        to: datetime,
        queue_id: UUID | None = None,
        user_id: str | None = None,
    ) -> list[AgentKpis]:
        rows = await self.load_rows(from_, to, queue_id=queue_id, user_id=user_id, assigned_only=True)
        user_ids = sorted({r.assigned_user_id for r in rows if r.assigned_user_id})
        names = await self._extensions.display_names(user_ids)
        return compute_agent_kpis(rows, names)

    async def get_queue_stats(
        self,
        from_: datetime,
        to: datetime,
        queue_id: UUID | None = None,
    ) -> list[QueueKpis]:
        rows = await self.load_rows(from_, to, queue_id=queue_id, queued_only=True)
        names = await self._queues.names(sorted({r.queue_id for r in rows if r.queue_id}, key=str))
        return compute_queue_kpis(rows, names)

    async def load_rows(
        self,
        from_: datetime,
        to: datetime,
        queue_id: UUID | None = None,
        user_id: str | None = None,
        assigned_only: bool = False,
        queued_only: bool = False,
    ) -> list[SessionStatsRow]:
        from_, to = validate_range(from_, to)
        stmt = (
            select(
                CallSession.start_at,
                CallSession.disposition,
                CallSession.queue_id,
                CallSession.assigned_user_id,
                CallMetrics.id,
                CallMetrics.wait_seconds,
                CallMetrics.talk_seconds,
                CallMetrics.hold_seconds,
                CallMetrics.wrapup_seconds,
                CallMetrics.transfers_count,
                CallMetrics.abandons_after_seconds,
                CallMetrics.is_sla_met,
            )
            .outerjoin(CallMetrics, CallMetrics.call_session_id == CallSession.id)
            .where(CallSession.start_at >= from_, CallSession.start_at <= to)
        )
        if queue_id is not None:
            stmt = stmt.where(CallSession.queue_id == queue_id)
        if user_id:
            stmt = stmt.where(CallSession.assigned_user_id == user_id)
        if assigned_only:
            stmt = stmt.where(CallSession.assigned_user_id.is_not(None))
        if queued_only:
            stmt = stmt.where(CallSession.queue_id.is_not(None))

        result = await self._session.execute(stmt)
        return [
            SessionStatsRow(
                start_at=start_at,
                disposition=disposition,
                queue_id=row_queue_id,
                assigned_user_id=assigned_user_id,
                has_metrics=metrics_id is not None,
                wait_seconds=wait,
                talk_seconds=talk,
                hold_seconds=hold,
                wrapup_seconds=wrapup,
                transfers_count=transfers,
                abandons_after_seconds=abandons_after,
                is_sla_met=is_sla_met,
            )
            for (
                start_at,
                disposition,
                row_queue_id,
                assigned_user_id,
                metrics_id,
                wait,
                talk,
                hold,
                wrapup,
                transfers,
                abandons_after,
                is_sla_met,
            ) in result.all()
        ]

    async def _overview_for(self, from_: datetime, to: datetime, queue_id: UUID | None) -> OverviewKpis:
        rows = await self.load_rows(from_, to, queue_id=queue_id)
        created, completed = await self._callback_counts(from_, to, queue_id)
        return compute_overview_kpis(rows, created, completed, self._zone)

    async def _callback_counts(
        self,
        from_: datetime,
        to: datetime,
        queue_id: UUID | None,
    ) -> tuple[int, int]:
        from_, to = validate_range(from_, to)
        base = select(func.count(CallbackRequest.id)).where(
            CallbackRequest.created_at >= from_, CallbackRequest.created_at <= to
        )
        if queue_id is not None:
            base = base.join(MissedCall, MissedCall.id == CallbackRequest.missed_call_id).where(
                MissedCall.queue_id == queue_id
            )
        created = (await self._session.execute(base)).scalar_one()
        completed = (
            await self._session.execute(base.where(CallbackRequest.status == CallbackStatus.DONE))
        ).scalar_one()
        return created, completed
