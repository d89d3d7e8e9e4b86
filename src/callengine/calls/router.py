"""
API router for call listing, call detail, caller lookup and live state.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.calls.live import LiveStateService
from callengine.calls.schemas import (
    CallerLookupResult,
    CallSessionDetail,
    CallSessionResponse,
    LiveAgentState,
    LiveQueueState,
)
from callengine.calls.service import CallsService
from callengine.config import Settings, get_settings
from callengine.shared.database import get_db_session
from callengine.shared.schemas import Page, clamp_page
from callengine.telephony.directory import (
    NullCrmLookup,
    SqlExtensionDirectory,
    SqlQueueDirectory,
)
from callengine.telephony.models import CallDisposition

router = APIRouter(prefix="/v1/telephony", tags=["calls"])


def get_calls_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CallsService:
    """Dependency for calls service."""
    return CallsService(
        session=session,
        queues=SqlQueueDirectory(session),
        crm=NullCrmLookup(),
        phone_match_digits=settings.phone_match_digits,
    )


def get_live_state_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> LiveStateService:
    """Dependency for live state service."""
    return LiveStateService(
        session=session,
        queues=SqlQueueDirectory(session),
        extensions=SqlExtensionDirectory(session),
        window_minutes=settings.live_window_minutes,
        timezone=settings.stats_timezone,
    )


@router.get(
    "/calls",
    response_model=Page[CallSessionResponse],
    response_model_by_alias=True,
    summary="List calls",
)
async def list_calls(
    service: Annotated[CallsService, Depends(get_calls_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    from_: Annotated[datetime, Query(alias="from")],
    to: Annotated[datetime, Query()],
    queue_id: Annotated[UUID | None, Query(alias="queueId")] = None,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
    disposition: Annotated[CallDisposition | None, Query()] = None,
    search: Annotated[str | None, Query(max_length=64)] = None,
    page: Annotated[int | None, Query(ge=1)] = None,
    page_size: Annotated[int | None, Query(alias="pageSize", ge=1)] = None,
) -> Page[CallSessionResponse]:
    page, page_size = clamp_page(page, page_size, settings.default_page_size, settings.max_page_size)
    return await service.list_calls(
        from_=from_,
        to=to,
        queue_id=queue_id,
        user_id=user_id,
        disposition=disposition,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/calls/{call_session_id}",
    response_model=CallSessionDetail,
    response_model_by_alias=True,
    summary="Get call detail",
)
async def get_call(
    call_session_id: UUID,
    service: Annotated[CallsService, Depends(get_calls_service)],
) -> CallSessionDetail:
    return await service.get_call(call_session_id)


@router.get(
    "/lookup",
    response_model=CallerLookupResult,
    response_model_by_alias=True,
    summary="Look up a caller by phone number",
)
async def lookup_phone(
    phone: Annotated[str, Query(min_length=1, max_length=64)],
    service: Annotated[CallsService, Depends(get_calls_service)],
) -> CallerLookupResult:
    return await service.lookup_phone(phone)


@router.get(
    "/queues/live",
    response_model=list[LiveQueueState],
    response_model_by_alias=True,
    summary="Live queue state (best effort)",
)
async def queues_live(
    service: Annotated[LiveStateService, Depends(get_live_state_service)],
) -> list[LiveQueueState]:
    return await service.get_queue_live_state()


@router.get(
    "/agents/live",
    response_model=list[LiveAgentState],
    response_model_by_alias=True,
    summary="Live agent state (best effort)",
)
async def agents_live(
    service: Annotated[LiveStateService, Depends(get_live_state_service)],
) -> list[LiveAgentState]:
    return await service.get_agent_live_state()
