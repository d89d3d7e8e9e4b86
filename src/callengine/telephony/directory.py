"""
Collaborator interfaces consumed by the engine, with SQL-backed defaults.

The engine only needs four things from the rest of the CRM:

* extension number -> CRM user id,
* queue name -> queue id + worktime configuration,
* phone number -> CRM entities (read-only caller lookup),
* a sink for recordings and quality-review placeholders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.shared.database import utcnow
from callengine.shared.logging import get_logger
from callengine.telephony.models import (
    QualityReview,
    Recording,
    TelephonyExtension,
    TelephonyQueue,
)
from callengine.telephony.worktime import WorktimeConfig, parse_worktime_config

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueueInfo:
    """Queue as seen by the engine."""

    id: UUID
    name: str
    worktime: WorktimeConfig | None = None


@dataclass(frozen=True)
class AgentInfo:
    """Operator extension as seen by the live-state and stats services."""

    extension: str
    user_id: str
    display_name: str | None = None


@dataclass(frozen=True)
class ClientMatch:
    id: str
    name: str
    id_number: str | None = None
    payment_id: str | None = None
    buildings: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class LeadMatch:
    id: str
    lead_number: int
    stage_name: str
    responsible_employee: str | None = None


@dataclass(frozen=True)
class WorkOrderMatch:
    id: str
    work_order_number: int
    title: str
    status: str
    type: str


class ExtensionDirectory(Protocol):
    """Lookup from PBX extension to CRM user."""

    async def resolve_user_id(self, extension: str) -> str | None:
        """Return the CRM user id bound to ``extension``, if any."""
        ...

    async def display_names(self, user_ids: Sequence[str]) -> dict[str, str | None]:
        """Return display names keyed by user id."""
        ...

    async def list_operators(self) -> list[AgentInfo]:
        """Return active operator extensions bound to a user."""
        ...


class QueueDirectory(Protocol):
    """Lookup of PBX queues and their business hours."""

    async def get_by_name(self, name: str) -> QueueInfo | None:
        ...

    async def get_by_id(self, queue_id: UUID) -> QueueInfo | None:
        ...

    async def names(self, queue_ids: Sequence[UUID]) -> dict[UUID, str]:
        ...

    async def list_active(self) -> list[QueueInfo]:
        ...


class CrmLookup(Protocol):
    """Read-only CRM lookups used by the caller lookup query."""

    async def find_client_by_phone(self, normalized_phone: str) -> ClientMatch | None:
        ...

    async def find_active_lead_by_phone(self, normalized_phone: str) -> LeadMatch | None:
        ...

    async def find_open_work_orders(self, building_ids: Sequence[str]) -> list[WorkOrderMatch]:
        ...


class RecordingSink(Protocol):
    """Destination for recordings and quality-review placeholders."""

    async def create_recording(
        self,
        call_session_id: UUID,
        file_path: str | None,
        duration_seconds: float | None,
        provider: str = "asterisk",
    ) -> None:
        ...

    async def ensure_quality_review(self, call_session_id: UUID) -> bool:
        """Create a placeholder review once per session. Returns True if created."""
        ...


class SqlExtensionDirectory:
    """ExtensionDirectory over the ``telephony_extensions`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def resolve_user_id(self, extension: str) -> str | None:
        stmt = select(TelephonyExtension.crm_user_id).where(
            TelephonyExtension.extension == extension
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def display_names(self, user_ids: Sequence[str]) -> dict[str, str | None]:
        if not user_ids:
            return {}
        stmt = select(TelephonyExtension.crm_user_id, TelephonyExtension.display_name).where(
            TelephonyExtension.crm_user_id.in_(list(user_ids))
        )
        result = await self._session.execute(stmt)
        names: dict[str, str | None] = {}
        for user_id, display_name in result.all():
            if names.get(user_id) is None:
                names[user_id] = display_name
        return names

    async def list_operators(self) -> list[AgentInfo]:
        stmt = (
            select(TelephonyExtension)
            .where(TelephonyExtension.is_active.is_(True))
            .where(TelephonyExtension.is_operator.is_(True))
            .where(TelephonyExtension.crm_user_id.is_not(None))
            .order_by(TelephonyExtension.extension)
        )
        result = await self._session.execute(stmt)
        return [
            AgentInfo(extension=ext.extension, user_id=ext.crm_user_id, display_name=ext.display_name)
            for ext in result.scalars().all()
        ]


class SqlQueueDirectory:
    """QueueDirectory over the ``telephony_queues`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _to_info(queue: TelephonyQueue) -> QueueInfo:
        return QueueInfo(
            id=queue.id,
            name=queue.name,
            worktime=parse_worktime_config(queue.worktime_config),
        )

    async def get_by_name(self, name: str) -> QueueInfo | None:
        result = await self._session.execute(
            select(TelephonyQueue).where(TelephonyQueue.name == name)
        )
        queue = result.scalar_one_or_none()
        return self._to_info(queue) if queue else None

    async def get_by_id(self, queue_id: UUID) -> QueueInfo | None:
        queue = await self._session.get(TelephonyQueue, queue_id)
        return self._to_info(queue) if queue else None

    async def names(self, queue_ids: Sequence[UUID]) -> dict[UUID, str]:
        if not queue_ids:
            return {}
        result = await self._session.execute(
            select(TelephonyQueue.id, TelephonyQueue.name).where(
                TelephonyQueue.id.in_(list(queue_ids))
            )
        )
        return {queue_id: name for queue_id, name in result.all()}

    async def list_active(self) -> list[QueueInfo]:
        result = await self._session.execute(
            select(TelephonyQueue)
            .where(TelephonyQueue.is_active.is_(True))
            .order_by(TelephonyQueue.name)
        )
        return [self._to_info(q) for q in result.scalars().all()]


class NullCrmLookup:
    """CrmLookup used when no CRM integration is wired: nothing ever matches."""

    async def find_client_by_phone(self, normalized_phone: str) -> ClientMatch | None:
        return None

    async def find_active_lead_by_phone(self, normalized_phone: str) -> LeadMatch | None:
        return None

    async def find_open_work_orders(self, building_ids: Sequence[str]) -> list[WorkOrderMatch]:
        return []


class SqlRecordingSink:
    """RecordingSink writing ``recordings`` and ``quality_reviews`` rows."""

    def __init__(self, session: AsyncSession, clock: Any = utcnow) -> None:
        self._session = session
        self._clock = clock

    async def create_recording(
        self,
        call_session_id: UUID,
        file_path: str | None,
        duration_seconds: float | None,
        provider: str = "asterisk",
    ) -> None:
        now: datetime = self._clock()
        self._session.add(
            Recording(
                call_session_id=call_session_id,
                provider=provider,
                file_path=file_path,
                duration_seconds=round(duration_seconds) if duration_seconds is not None else None,
                available_at=now,
            )
        )
        await self._session.flush()

    async def ensure_quality_review(self, call_session_id: UUID) -> bool:
        result = await self._session.execute(
            select(QualityReview.id).where(QualityReview.call_session_id == call_session_id)
        )
        if result.scalar_one_or_none() is not None:
            return False
        now: datetime = self._clock()
        self._session.add(
            QualityReview(call_session_id=call_session_id, created_at=now, updated_at=now)
        )
        await self._session.flush()
        logger.info(
            "Quality review placeholder created",
            extra={"call_session_id": str(call_session_id)},
        )
        return True
