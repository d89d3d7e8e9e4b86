"""
Batch ingestion of PBX events.

Every item is handled in its own short transaction:

1. validate the item shape,
2. skip it when its idempotency key is already stored,
3. store the CallEvent (the UNIQUE idempotency key is the compare-and-set),
4. apply it to its session and commit.

A failure in one item rolls back that item only and is reported in the
batch result; the remaining items are still processed.
"""

from datetime import datetime
from typing import Any, Callable, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from callengine.callbacks.service import CallbackService, get_classifier
from callengine.config import Settings
from callengine.shared.database import utcnow
from callengine.shared.exceptions import ValidationError
from callengine.shared.logging import get_logger
from callengine.telephony.directory import (
    ExtensionDirectory,
    QueueDirectory,
    RecordingSink,
    SqlExtensionDirectory,
    SqlQueueDirectory,
    SqlRecordingSink,
)
from callengine.telephony.events import IngestError, IngestEventItem, IngestResult
from callengine.telephony.metrics import DEFAULT_SLA_THRESHOLD_SECONDS, MetricsComputer
from callengine.telephony.reconstructor import NonAnsweredCallHandler, SessionReconstructor
from callengine.telephony.repository import CallEventRepository, CallSessionRepository

logger = get_logger(__name__)

EventInput = IngestEventItem | dict[str, Any]


def _format_validation_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return "; ".join(parts) or "Invalid event"


def parse_event(raw: EventInput) -> IngestEventItem:
    """Validate one raw event.

    Raises:
        ValidationError: If the item does not have the event shape.
    """
    if isinstance(raw, IngestEventItem):
        return raw
    key = raw.get("idempotencyKey") if isinstance(raw, dict) else None
    try:
        return IngestEventItem.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            message=_format_validation_error(exc),
            details={"idempotency_key": key if isinstance(key, str) else ""},
        ) from exc


class IngestionService:
    """Entry point turning event batches into session state."""

    def __init__(
        self,
        session: AsyncSession,
        extensions: ExtensionDirectory,
        queues: QueueDirectory,
        recordings: RecordingSink,
        missed_calls: NonAnsweredCallHandler | None = None,
        sla_threshold_seconds: int = DEFAULT_SLA_THRESHOLD_SECONDS,
        quality_review_min_recording_seconds: float = 30,
    ) -> None:
        self._session = session
        self._events = CallEventRepository(session)
        self._sessions = CallSessionRepository(session)
        self._reconstructor = SessionReconstructor(
            events=self._events,
            sessions=self._sessions,
            extensions=extensions,
            queues=queues,
            recordings=recordings,
            metrics=MetricsComputer(session, sla_threshold_seconds),
            missed_calls=missed_calls,
            quality_review_min_recording_seconds=quality_review_min_recording_seconds,
        )

    async def ingest_batch(self, events: Sequence[EventInput]) -> IngestResult:
        """Ingest events in order.

        Args:
            events: Raw event dicts (camelCase keys) or validated items.

        Returns:
            Counters of processed and skipped events plus per-item errors.
        """
        result = IngestResult()

        for raw in events:
            try:
                item = parse_event(raw)
            except ValidationError as exc:
                key = (exc.details or {}).get("idempotency_key", "")
                logger.warning(
                    "Rejected malformed event",
                    extra={"idempotency_key": key, "error": exc.message},
                )
                result.errors.append(IngestError(idempotency_key=key, error=exc.message))
                continue

            try:
                stored = await self._process(item)
            except Exception as exc:
                await self._session.rollback()
                logger.exception(
                    "Failed to process event",
                    extra={
                        "idempotency_key": item.idempotency_key,
                        "event_type": item.event_type.value,
                    },
                )
                result.errors.append(
                    IngestError(idempotency_key=item.idempotency_key, error=str(exc) or type(exc).__name__)
                )
                continue

            if stored:
                result.processed += 1
            else:
                result.skipped += 1

        logger.info(
            "Event batch ingested",
            extra={
                "batch_size": len(events),
                "processed": result.processed,
                "skipped": result.skipped,
                "errors": len(result.errors),
            },
        )
        return result

    async def _process(self, item: IngestEventItem) -> bool:
        """Store and apply one event. Returns False for a duplicate."""
        if await self._events.exists(item.idempotency_key):
            logger.info(
                "Duplicate event skipped",
                extra={"idempotency_key": item.idempotency_key, "event_type": item.event_type.value},
            )
            return False

        linked_id = item.resolved_linked_id
        call_session = None
        if linked_id:
            call_session = await self._sessions.get_by_linked_id(linked_id)
        else:
            logger.warning(
                "Event without linkedId stored without session effects",
                extra={"idempotency_key": item.idempotency_key, "event_type": item.event_type.value},
            )

        try:
            event = await self._events.add(
                event_type=item.event_type,
                ts=item.timestamp,
                idempotency_key=item.idempotency_key,
                payload=item.stored_payload(),
                source=item.payload.source or "asterisk",
                call_session_id=call_session.id if call_session else None,
            )
        except IntegrityError:
            await self._session.rollback()
            logger.info(
                "Duplicate event skipped (concurrent delivery)",
                extra={"idempotency_key": item.idempotency_key},
            )
            return False

        if linked_id:
            await self._reconstructor.apply(item, event, call_session)

        await self._session.commit()
        return True


def build_ingestion_service(
    session: AsyncSession,
    settings: Settings,
    clock: Callable[[], datetime] = utcnow,
) -> IngestionService:
    """Wire an IngestionService with the SQL-backed collaborators."""
    queues = SqlQueueDirectory(session)
    callbacks = CallbackService(
        session=session,
        queues=queues,
        clock=clock,
        classifier=get_classifier(settings.missed_call_classifier),
    )
    return IngestionService(
        session=session,
        extensions=SqlExtensionDirectory(session),
        queues=queues,
        recordings=SqlRecordingSink(session, clock=clock),
        missed_calls=callbacks,
        sla_threshold_seconds=settings.sla_threshold_seconds,
        quality_review_min_recording_seconds=settings.quality_review_min_recording_seconds,
    )
