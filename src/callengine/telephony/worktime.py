"""
Business-hours evaluation for telephony queues.

A worktime configuration is a timezone plus a list of weekly windows
``{"day": 0-6, "start": "HH:mm", "end": "HH:mm"}`` where day 0 is Sunday.
A queue without configuration is always open.

Times are compared as zero-padded ``HH:mm`` strings in the configured zone,
with ``start`` inclusive and ``end`` exclusive.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from callengine.shared.database import ensure_utc
from callengine.shared.logging import get_logger

if TYPE_CHECKING:
    from callengine.telephony.directory import QueueDirectory

logger = get_logger(__name__)

_HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
# "24:00" closes a window at midnight; end is exclusive.
_END_PATTERN = r"^(([01]\d|2[0-3]):[0-5]\d|24:00)$"


class WorktimeWindow(BaseModel):
    """One weekly opening window."""

    model_config = ConfigDict(frozen=True)

    day: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start: str = Field(..., pattern=_HHMM_PATTERN)
    end: str = Field(..., pattern=_END_PATTERN)

    @property
    def start_time(self) -> time:
        hours, minutes = self.start.split(":")
        return time(int(hours), int(minutes))


class WorktimeConfig(BaseModel):
    """Timezone plus weekly windows."""

    model_config = ConfigDict(frozen=True)

    timezone: str = Field(..., min_length=1)
    windows: list[WorktimeWindow] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def sorted_windows(self) -> list[WorktimeWindow]:
        return sorted(self.windows, key=lambda w: (w.day, w.start))


def parse_worktime_config(raw: Any) -> WorktimeConfig | None:
    """Validate a stored JSON configuration.

    Invalid windows are dropped one by one and the rest are kept. Returns
    None when the configuration is absent, has an unusable timezone or
    window list, or has no valid window left; the engine treats that as
    "always open".
    """
    if raw is None:
        return None
    if isinstance(raw, WorktimeConfig):
        return raw
    if not isinstance(raw, dict):
        logger.warning("Ignoring non-object worktime config", extra={"config_type": type(raw).__name__})
        return None

    raw_windows = raw.get("windows", [])
    if not isinstance(raw_windows, list):
        logger.warning("Ignoring worktime config without a window list")
        return None

    windows: list[WorktimeWindow] = []
    for index, raw_window in enumerate(raw_windows):
        try:
            windows.append(WorktimeWindow.model_validate(raw_window))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed worktime window",
                extra={"window_index": index, "errors": exc.error_count()},
            )
    if raw_windows and not windows:
        logger.warning("Ignoring worktime config: no valid window left")
        return None

    try:
        return WorktimeConfig.model_validate({**raw, "windows": windows})
    except ValidationError as exc:
        logger.warning(
            "Ignoring malformed worktime config",
            extra={"errors": exc.error_count()},
        )
        return None


def _sunday_based_day(local: datetime) -> int:
    # Python weekday(): Monday=0 ... Sunday=6
    return (local.weekday() + 1) % 7


def _hhmm(local: datetime) -> str:
    return f"{local.hour:02d}:{local.minute:02d}"


def _local_start_instant(local_after: datetime, day_offset: int, window: WorktimeWindow, zone: ZoneInfo) -> datetime:
    target_date = local_after.date() + timedelta(days=day_offset)
    target_local = datetime.combine(target_date, window.start_time, tzinfo=zone)
    return target_local.astimezone(timezone.utc)


def is_within_window(timestamp: datetime, config: WorktimeConfig | None) -> bool:
    """Return True when ``timestamp`` falls inside any configured window."""
    if config is None:
        return True

    local = ensure_utc(timestamp).astimezone(config.zone)
    day = _sunday_based_day(local)
    now_str = _hhmm(local)
    return any(w.day == day and w.start <= now_str < w.end for w in config.windows)


def next_window_start(after: datetime, config: WorktimeConfig | None) -> datetime:
    """Earliest instant >= ``after`` at which a window is open.

    Returns ``after`` itself when it already lies inside a window, when no
    configuration is given, or when the configuration has no windows.
    """
    after = ensure_utc(after)
    if config is None or not config.windows:
        return after

    zone = config.zone
    ordered = config.sorted_windows()
    local_after = after.astimezone(zone)
    current_day = _sunday_based_day(local_after)
    current_time = _hhmm(local_after)

    for day_offset in range(8):
        check_day = (current_day + day_offset) % 7
        for window in ordered:
            if window.day != check_day:
                continue
            if day_offset == 0 and window.start <= current_time:
                if window.end > current_time:
                    return after
                continue
            return _local_start_instant(local_after, day_offset, window, zone)

    first = ordered[0]
    days_until = ((first.day - current_day + 7) % 7) or 7
    return _local_start_instant(local_after, days_until, first, zone)


class WorktimeService:
    """Queue-id based worktime checks over a QueueDirectory."""

    def __init__(self, queues: "QueueDirectory") -> None:
        self._queues = queues

    async def get_config(self, queue_id: UUID) -> WorktimeConfig | None:
        queue = await self._queues.get_by_id(queue_id)
        return queue.worktime if queue else None

    async def is_within_worktime(self, queue_id: UUID, timestamp: datetime) -> bool:
        return is_within_window(timestamp, await self.get_config(queue_id))

    async def next_worktime_start(self, queue_id: UUID, after: datetime) -> datetime:
        return next_window_start(after, await self.get_config(queue_id))
