"""
Best-effort live queue and agent state.

There is no presence feed from the PBX; state is inferred from sessions that
started within the look-back window. An open session is one without
``end_at``.
"""

from datetime import datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.calls.schemas import AgentPresence, LiveAgentState, LiveQueueState
from callengine.shared.database import utcnow
from callengine.telephony.directory import ExtensionDirectory, QueueDirectory
from callengine.telephony.models import CallDisposition, CallSession


class LiveStateService:
    """Derives live queue/agent snapshots from recent sessions."""

    def __init__(
        self,
        session: AsyncSession,
        queues: QueueDirectory,
        extensions: ExtensionDirectory,
        clock: Callable[[], datetime] = utcnow,
        window_minutes: int = 15,
        timezone: str = "UTC",
    ) -> None:
        self._session = session
        self._queues = queues
        self._extensions = extensions
        self._clock = clock
        self._window = timedelta(minutes=window_minutes)
        self._zone = ZoneInfo(timezone)

    def _start_of_today(self, now: datetime) -> datetime:
        local = now.astimezone(self._zone)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    async def get_queue_live_state(self) -> list[LiveQueueState]:
        now = self._clock()
        cutoff = now - self._window
        states: list[LiveQueueState] = []

        for queue in await self._queues.list_active():
            recent = [CallSession.queue_id == queue.id, CallSession.start_at >= cutoff]
            open_calls = [*recent, CallSession.end_at.is_(None)]
            waiting = [*open_calls, CallSession.assigned_user_id.is_(None)]

            active_calls = (
                await self._session.execute(select(func.count(CallSession.id)).where(*open_calls))
            ).scalar_one()
            waiting_callers, oldest_wait_start = (
                await self._session.execute(
                    select(func.count(CallSession.id), func.min(CallSession.start_at)).where(*waiting)
                )
            ).one()
            available_agents = (
                await self._session.execute(
                    select(func.count(func.distinct(CallSession.assigned_user_id))).where(
                        *recent,
                        CallSession.assigned_user_id.is_not(None),
                        CallSession.end_at.is_not(None),
                    )
                )
            ).scalar_one()

            longest_wait = None
            if oldest_wait_start is not None:
                oldest = oldest_wait_start
                if oldest.tzinfo is None:
                    oldest = oldest.replace(tzinfo=now.tzinfo)
                longest_wait = round((now - oldest).total_seconds())

            states.append(
                LiveQueueState(
                    queue_id=queue.id,
                    queue_name=queue.name,
                    active_calls=active_calls,
                    waiting_callers=waiting_callers,
                    longest_current_wait_sec=longest_wait,
                    available_agents=available_agents,
                )
            )
        return states

    async def get_agent_live_state(self) -> list[LiveAgentState]:
        now = self._clock()
        cutoff = now - self._window
        today_start = self._start_of_today(now)
        states: list[LiveAgentState] = []

        for agent in await self._extensions.list_operators():
            assigned = CallSession.assigned_user_id == agent.user_id

            active_call = (
                await self._session.execute(
                    select(CallSession)
                    .where(assigned, CallSession.end_at.is_(None), CallSession.start_at >= cutoff)
                    .order_by(CallSession.start_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()

            current_duration = None
            if active_call is not None:
                presence = AgentPresence.ON_CALL
                reference = active_call.answer_at or active_call.start_at
                current_duration = max(0, round((now - reference).total_seconds()))
            else:
                recent_ended = (
                    await self._session.execute(
                        select(func.count(CallSession.id)).where(
                            assigned,
                            CallSession.start_at >= cutoff,
                            CallSession.end_at.is_not(None),
                        )
                    )
                ).scalar_one()
                presence = AgentPresence.IDLE if recent_ended else AgentPresence.OFFLINE

            handled_today = (
                await self._session.execute(
                    select(func.count(CallSession.id)).where(
                        assigned,
                        CallSession.start_at >= today_start,
                        CallSession.disposition == CallDisposition.ANSWERED,
                    )
                )
            ).scalar_one()

            states.append(
                LiveAgentState(
                    user_id=agent.user_id,
                    extension=agent.extension,
                    display_name=agent.display_name,
                    current_state=presence,
                    current_call_duration_sec=current_duration,
                    calls_handled_today=handled_today,
                )
            )
        return states
