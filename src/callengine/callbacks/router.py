"""
API router for the callback queue.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.callbacks.models import CallbackStatus
from callengine.callbacks.schemas import CallbackAttemptRequest, CallbackItem
from callengine.callbacks.service import CallbackService, get_classifier
from callengine.config import Settings, get_settings
from callengine.shared.database import get_db_session
from callengine.shared.logging import get_logger
from callengine.shared.schemas import Page, clamp_page
from callengine.telephony.directory import SqlQueueDirectory

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/telephony/callbacks", tags=["callbacks"])


def get_callback_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CallbackService:
    """Dependency for callback service."""
    return CallbackService(
        session=session,
        queues=SqlQueueDirectory(session),
        classifier=get_classifier(settings.missed_call_classifier),
    )


@router.get(
    "",
    response_model=Page[CallbackItem],
    response_model_by_alias=True,
    summary="List callback queue",
)
async def list_callbacks(
    service: Annotated[CallbackService, Depends(get_callback_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    status_filter: Annotated[CallbackStatus | None, Query(alias="status")] = None,
    page: Annotated[int | None, Query(ge=1)] = None,
    page_size: Annotated[int | None, Query(alias="pageSize", ge=1)] = None,
) -> Page[CallbackItem]:
    """Callbacks due soonest first; open-ended ones last."""
    page, page_size = clamp_page(page, page_size, settings.default_page_size, settings.max_page_size)
    return await service.get_callback_queue(status=status_filter, page=page, page_size=page_size)


@router.get(
    "/{callback_id}",
    response_model=CallbackItem,
    response_model_by_alias=True,
    summary="Get callback",
)
async def get_callback(
    callback_id: UUID,
    service: Annotated[CallbackService, Depends(get_callback_service)],
) -> CallbackItem:
    return await service.get_callback(callback_id)


@router.post(
    "/{callback_id}/attempts",
    response_model=CallbackItem,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    summary="Record a callback attempt",
)
async def record_callback_attempt(
    callback_id: UUID,
    body: CallbackAttemptRequest,
    service: Annotated[CallbackService, Depends(get_callback_service)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CallbackItem:
    """Record an attempt; outcome "completed" or "resolved" closes the callback."""
    item = await service.handle_callback(callback_id, body.outcome)
    await session.commit()
    return item
