"""
Data access for call events, sessions and legs.
"""

from datetime import datetime
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.telephony.events import TelephonyEventType
from callengine.telephony.models import (
    CallDirection,
    CallEvent,
    CallLeg,
    CallLegType,
    CallSession,
)


class CallEventRepository:
    """Append-only store of PBX events, unique by idempotency key."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def exists(self, idempotency_key: str) -> bool:
        stmt = select(CallEvent.id).where(CallEvent.idempotency_key == idempotency_key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add(
        self,
        event_type: TelephonyEventType,
        ts: datetime,
        idempotency_key: str,
        payload: dict[str, Any],
        source: str,
        call_session_id: UUID | None = None,
    ) -> CallEvent:
        """Insert an event and flush it.

        The flush raises ``IntegrityError`` when another delivery of the same
        idempotency key was stored first.
        """
        event = CallEvent(
            call_session_id=call_session_id,
            event_type=event_type,
            ts=ts,
            payload=payload,
            source=source,
            idempotency_key=idempotency_key,
        )
        self._session.add(event)
        await self._session.flush()
        return event

    async def latest_before(
        self,
        call_session_id: UUID,
        event_type: TelephonyEventType,
        before: datetime,
    ) -> CallEvent | None:
        """Most recent event of ``event_type`` for the session at or before ``before``."""
        stmt = (
            select(CallEvent)
            .where(CallEvent.call_session_id == call_session_id)
            .where(CallEvent.event_type == event_type)
            .where(CallEvent.ts <= before)
            .order_by(CallEvent.ts.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_session(self, call_session_id: UUID) -> Sequence[CallEvent]:
        stmt = (
            select(CallEvent)
            .where(CallEvent.call_session_id == call_session_id)
            .order_by(CallEvent.ts, CallEvent.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()


class CallSessionRepository:
    """Sessions and their legs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_linked_id(self, linked_id: str) -> CallSession | None:
        stmt = select(CallSession).where(CallSession.linked_id == linked_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        linked_id: str,
        unique_id: str | None,
        direction: CallDirection,
        caller_number: str,
        callee_number: str | None,
        did: str | None,
        start_at: datetime,
    ) -> CallSession:
        """Insert a session and flush. Raises IntegrityError on a linkedId race."""
        call_session = CallSession(
            linked_id=linked_id,
            unique_id=unique_id,
            direction=direction,
            caller_number=caller_number,
            callee_number=callee_number,
            did=did,
            start_at=start_at,
        )
        self._session.add(call_session)
        await self._session.flush()
        return call_session

    async def add_leg(
        self,
        call_session_id: UUID,
        leg_type: CallLegType,
        start_at: datetime,
        user_id: str | None = None,
        extension: str | None = None,
    ) -> CallLeg:
        leg = CallLeg(
            call_session_id=call_session_id,
            type=leg_type,
            start_at=start_at,
            user_id=user_id,
            extension=extension,
        )
        self._session.add(leg)
        await self._session.flush()
        return leg

    async def customer_leg(self, call_session_id: UUID) -> CallLeg | None:
        stmt = (
            select(CallLeg)
            .where(CallLeg.call_session_id == call_session_id)
            .where(CallLeg.type == CallLegType.CUSTOMER)
            .order_by(CallLeg.start_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def open_legs(
        self,
        call_session_id: UUID,
        types: Iterable[CallLegType] | None = None,
    ) -> Sequence[CallLeg]:
        stmt = (
            select(CallLeg)
            .where(CallLeg.call_session_id == call_session_id)
            .where(CallLeg.end_at.is_(None))
        )
        if types is not None:
            stmt = stmt.where(CallLeg.type.in_(list(types)))
        result = await self._session.execute(stmt.order_by(CallLeg.start_at))
        return result.scalars().all()
