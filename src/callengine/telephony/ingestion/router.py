"""
FastAPI router for PBX event ingestion.

Called by the telephony system itself, so it is protected by a shared
secret header instead of user authentication.
"""

import hmac
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.config import Settings, get_settings
from callengine.shared.database import get_db_session
from callengine.shared.exceptions import ForbiddenError, ValidationError
from callengine.shared.logging import get_logger
from callengine.telephony.events import IngestResult
from callengine.telephony.ingestion.service import IngestionService, build_ingestion_service

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/telephony", tags=["telephony-ingestion"])


async def require_ingest_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_telephony_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Reject requests without the configured shared secret."""
    if not settings.ingest_enabled:
        logger.error("Telephony ingest secret is not configured")
        raise ForbiddenError(message="Telephony ingest endpoint is not configured")

    if x_telephony_secret is None or not hmac.compare_digest(
        x_telephony_secret.encode("utf-8"),
        settings.telephony_ingest_secret.encode("utf-8"),
    ):
        logger.warning("Invalid telephony ingest secret")
        raise ForbiddenError(message="Invalid telephony ingest secret")


def get_ingestion_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> IngestionService:
    """Dependency for ingestion service."""
    return build_ingestion_service(session, settings)


def _extract_events(body: Any) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get("events"), list):
        return body["events"]
    raise ValidationError(
        message="Body must be an array of events or an object with an 'events' array",
    )


@router.post(
    "/events",
    response_model=IngestResult,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_ingest_secret)],
    summary="Ingest PBX events",
    description="Accepts a JSON array of events or {\"events\": [...]}. "
    "Duplicates (same idempotencyKey) are counted as skipped; malformed "
    "items are reported in errors without failing the batch.",
)
async def ingest_events(
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    body: Annotated[list[Any] | dict[str, Any], Body()],
) -> IngestResult:
    events = _extract_events(body)
    return await service.ingest_batch(events)
