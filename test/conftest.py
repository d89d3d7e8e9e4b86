"""
Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database with all tables created.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import callengine.callbacks.models  # noqa: F401
from callengine.config import Settings, get_settings
from callengine.main import app
from callengine.shared.database import Base, get_db_session
from callengine.telephony.ingestion.service import IngestionService, build_ingestion_service
from callengine.telephony.models import TelephonyExtension, TelephonyQueue

INGEST_SECRET = "test-ingest-secret"

# Monday 2 March 2026, 10:00 UTC
T0 = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)

BUSINESS_HOURS = {
    "timezone": "UTC",
    "windows": [{"day": day, "start": "09:00", "end": "18:00"} for day in range(1, 6)],
}


def at(seconds: float) -> datetime:
    """Instant ``seconds`` after T0."""
    return T0 + timedelta(seconds=seconds)


def make_event(
    event_type: str,
    linked_id: str | None,
    seconds: float = 0,
    key: str | None = None,
    **payload: Any,
) -> dict[str, Any]:
    """Build a raw camelCase event as the PBX would send it."""
    event: dict[str, Any] = {
        "eventType": event_type,
        "timestamp": at(seconds).isoformat(),
        "idempotencyKey": key or f"{linked_id}-{event_type}-{seconds}",
        "payload": payload,
    }
    if linked_id is not None:
        event["linkedId"] = linked_id
    return event


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        app_env="dev",
        debug=True,
        database_url="sqlite+aiosqlite:///:memory:",
        telephony_ingest_secret=INGEST_SECRET,
        sla_threshold_seconds=20,
        quality_review_min_recording_seconds=30,
        missed_call_classifier="queue_config",
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock frozen one hour after T0."""
    return lambda: T0 + timedelta(hours=1)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[Any, None]:
    """Create test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine: Any) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def support_queue(db_session: AsyncSession) -> TelephonyQueue:
    """Queue open Monday to Friday, 09:00-18:00 UTC."""
    queue = TelephonyQueue(name="support", worktime_config=BUSINESS_HOURS)
    db_session.add(queue)
    await db_session.commit()
    return queue


@pytest_asyncio.fixture
async def sales_queue(db_session: AsyncSession) -> TelephonyQueue:
    """Queue without business hours (always open)."""
    queue = TelephonyQueue(name="sales", worktime_config=None)
    db_session.add(queue)
    await db_session.commit()
    return queue


@pytest_asyncio.fixture
async def agents(db_session: AsyncSession) -> list[TelephonyExtension]:
    """Two operator extensions mapped to CRM users."""
    rows = [
        TelephonyExtension(extension="101", crm_user_id="user-alice", display_name="Alice"),
        TelephonyExtension(extension="102", crm_user_id="user-bob", display_name="Bob"),
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return rows


@pytest.fixture
def ingestion_service(
    db_session: AsyncSession,
    test_settings: Settings,
    fixed_clock: Callable[[], datetime],
) -> IngestionService:
    """Ingestion service wired with the SQL collaborators."""
    return build_ingestion_service(db_session, test_settings, clock=fixed_clock)


@pytest_asyncio.fixture
async def async_client(
    db_session: AsyncSession,
    test_settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API tests."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
