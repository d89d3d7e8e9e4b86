"""
API router for quality reviews.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.config import Settings, get_settings
from callengine.quality.schemas import QualityReviewDetail, QualityReviewResponse, UpdateReviewRequest
from callengine.quality.service import QualityService
from callengine.shared.database import get_db_session
from callengine.shared.schemas import Page, clamp_page
from callengine.telephony.models import QualityReviewStatus

router = APIRouter(prefix="/v1/telephony/quality", tags=["quality"])


def get_quality_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> QualityService:
    """Dependency for quality service."""
    return QualityService(session=session)


@router.get(
    "/reviews",
    response_model=Page[QualityReviewResponse],
    response_model_by_alias=True,
    summary="List quality reviews",
)
async def list_reviews(
    service: Annotated[QualityService, Depends(get_quality_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    status_filter: Annotated[QualityReviewStatus | None, Query(alias="status")] = None,
    from_: Annotated[datetime | None, Query(alias="from")] = None,
    to: Annotated[datetime | None, Query()] = None,
    agent_id: Annotated[str | None, Query(alias="agentId")] = None,
    min_score: Annotated[int | None, Query(alias="minScore", ge=0, le=100)] = None,
    max_score: Annotated[int | None, Query(alias="maxScore", ge=0, le=100)] = None,
    page: Annotated[int | None, Query(ge=1)] = None,
    page_size: Annotated[int | None, Query(alias="pageSize", ge=1)] = None,
) -> Page[QualityReviewResponse]:
    page, page_size = clamp_page(page, page_size, settings.default_page_size, settings.max_page_size)
    return await service.list_reviews(
        status=status_filter,
        from_=from_,
        to=to,
        agent_id=agent_id,
        min_score=min_score,
        max_score=max_score,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/reviews/{review_id}",
    response_model=QualityReviewDetail,
    response_model_by_alias=True,
    summary="Get quality review",
)
async def get_review(
    review_id: UUID,
    service: Annotated[QualityService, Depends(get_quality_service)],
) -> QualityReviewDetail:
    return await service.get_review(review_id)


@router.patch(
    "/reviews/{review_id}",
    response_model=QualityReviewDetail,
    response_model_by_alias=True,
    summary="Update quality review",
)
async def update_review(
    review_id: UUID,
    body: UpdateReviewRequest,
    service: Annotated[QualityService, Depends(get_quality_service)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> QualityReviewDetail:
    """Setting a score marks the review DONE."""
    detail = await service.update_review(review_id, body)
    await session.commit()
    return detail
