"""
Pydantic schemas for telephony KPIs.

Time-based figures are None when there is no data to average, never 0.
"""

from uuid import UUID

from pydantic import Field

from callengine.shared.schemas import CamelModel


class VolumeKpis(CamelModel):
    total_calls: int = 0
    answered: int = 0
    missed: int = 0
    abandoned: int = 0
    callbacks_created: int = 0
    callbacks_completed: int = 0


class SpeedKpis(CamelModel):
    avg_answer_time_sec: float | None = None
    median_answer_time_sec: float | None = None
    p90_answer_time_sec: float | None = None
    avg_abandon_wait_sec: float | None = None


class QualityKpis(CamelModel):
    avg_talk_time_sec: float | None = None
    avg_hold_time_sec: float | None = None
    avg_wrapup_time_sec: float | None = None
    transfer_rate: float | None = None


class ServiceLevelKpis(CamelModel):
    sla_met_percent: float | None = None
    longest_wait_sec: float | None = None
    peak_hour_distribution: dict[int, int] = Field(default_factory=dict)


class OverviewKpis(CamelModel):
    volume: VolumeKpis = Field(default_factory=VolumeKpis)
    speed: SpeedKpis = Field(default_factory=SpeedKpis)
    quality: QualityKpis = Field(default_factory=QualityKpis)
    service_level: ServiceLevelKpis = Field(default_factory=ServiceLevelKpis)


class OverviewDelta(CamelModel):
    """Percentage change of headline metrics versus the comparison period."""

    total_calls: float | None = None
    answered: float | None = None
    missed: float | None = None
    avg_answer_time_sec: float | None = None
    avg_talk_time_sec: float | None = None
    sla_met_percent: float | None = None


class OverviewResponse(CamelModel):
    current: OverviewKpis
    comparison: OverviewKpis | None = None
    delta: OverviewDelta | None = None


class AgentKpis(CamelModel):
    user_id: str
    display_name: str | None = None
    total_calls: int
    answered: int
    missed: int
    answer_rate: float | None = None
    missed_rate: float | None = None
    avg_handle_time_sec: float | None = None
    avg_talk_time_sec: float | None = None
    avg_hold_time_sec: float | None = None
    after_call_work_time_sec: float | None = None


class QueueKpis(CamelModel):
    queue_id: UUID
    queue_name: str
    agent_count: int
    total_calls: int
    answered: int
    missed: int
    abandoned: int
    answer_rate: float | None = None
    missed_rate: float | None = None
    avg_answer_time_sec: float | None = None
    avg_handle_time_sec: float | None = None
    avg_talk_time_sec: float | None = None
    avg_hold_time_sec: float | None = None
    after_call_work_time_sec: float | None = None
    sla_met_percent: float | None = None
