"""
API router for telephony statistics.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.config import Settings, get_settings
from callengine.shared.database import get_db_session
from callengine.stats.schemas import AgentKpis, OverviewResponse, QueueKpis
from callengine.stats.service import StatsService
from callengine.telephony.directory import SqlExtensionDirectory, SqlQueueDirectory

router = APIRouter(prefix="/v1/telephony/stats", tags=["stats"])

FromQuery = Annotated[datetime, Query(alias="from", description="Period start (ISO-8601)")]
ToQuery = Annotated[datetime, Query(alias="to", description="Period end (ISO-8601)")]
QueueIdQuery = Annotated[UUID | None, Query(alias="queueId")]


def get_stats_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StatsService:
    """Dependency for stats service."""
    return StatsService(
        session=session,
        queues=SqlQueueDirectory(session),
        extensions=SqlExtensionDirectory(session),
        timezone=settings.stats_timezone,
    )


@router.get(
    "/overview",
    response_model=OverviewResponse,
    response_model_by_alias=True,
    summary="Overview KPIs with optional period comparison",
)
async def overview(
    service: Annotated[StatsService, Depends(get_stats_service)],
    from_: FromQuery,
    to: ToQuery,
    queue_id: QueueIdQuery = None,
    compare_from: Annotated[datetime | None, Query(alias="compareFrom")] = None,
    compare_to: Annotated[datetime | None, Query(alias="compareTo")] = None,
) -> OverviewResponse:
    return await service.get_overview(
        from_=from_,
        to=to,
        queue_id=queue_id,
        compare_from=compare_from,
        compare_to=compare_to,
    )


@router.get(
    "/agents",
    response_model=list[AgentKpis],
    response_model_by_alias=True,
    summary="Per-agent KPIs",
)
async def agents(
    service: Annotated[StatsService, Depends(get_stats_service)],
    from_: FromQuery,
    to: ToQuery,
    queue_id: QueueIdQuery = None,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
) -> list[AgentKpis]:
    return await service.get_agent_stats(from_=from_, to=to, queue_id=queue_id, user_id=user_id)


@router.get(
    "/queues",
    response_model=list[QueueKpis],
    response_model_by_alias=True,
    summary="Per-queue KPIs",
)
async def queues(
    service: Annotated[StatsService, Depends(get_stats_service)],
    from_: FromQuery,
    to: ToQuery,
    queue_id: QueueIdQuery = None,
) -> list[QueueKpis]:
    return await service.get_queue_stats(from_=from_, to=to, queue_id=queue_id)
