"""
API tests for the event ingestion endpoint and the callback endpoints.
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from callengine.config import Settings, get_settings
from callengine.main import app

from conftest import INGEST_SECRET, make_event

HEADERS = {"x-telephony-secret": INGEST_SECRET}


def abandoned_call(linked_id: str = "L1") -> list[dict]:
    return [
        make_event("call_start", linked_id, 0, callerIdNum="+995577000111"),
        make_event("call_end", linked_id, 25, causeTxt="ORIGINATOR_CANCEL"),
    ]


class TestIngestAuth:
    """Shared-secret protection."""

    @pytest.mark.asyncio
    async def test_missing_secret_is_403(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/v1/telephony/events", json=abandoned_call())
        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid telephony ingest secret"

    @pytest.mark.asyncio
    async def test_wrong_secret_is_403(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/v1/telephony/events",
            json=abandoned_call(),
            headers={"x-telephony-secret": "nope"},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unconfigured_secret_refuses_everything(
        self,
        async_client: AsyncClient,
        test_settings: Settings,
    ) -> None:
        app.dependency_overrides[get_settings] = lambda: test_settings.model_copy(
            update={"telephony_ingest_secret": ""}
        )

        response = await async_client.post("/v1/telephony/events", json=abandoned_call(), headers=HEADERS)

        assert response.status_code == 403
        assert response.json()["detail"] == "Telephony ingest endpoint is not configured"


class TestIngestEvents:
    """Tests for POST /v1/telephony/events."""

    @pytest.mark.asyncio
    async def test_array_body(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/v1/telephony/events", json=abandoned_call(), headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"processed": 2, "skipped": 0, "errors": []}

    @pytest.mark.asyncio
    async def test_envelope_body_and_redelivery(self, async_client: AsyncClient) -> None:
        payload = {"events": abandoned_call()}

        first = await async_client.post("/v1/telephony/events", json=payload, headers=HEADERS)
        second = await async_client.post("/v1/telephony/events", json=payload, headers=HEADERS)

        assert first.json()["processed"] == 2
        assert second.json() == {"processed": 0, "skipped": 2, "errors": []}

    @pytest.mark.asyncio
    async def test_item_errors_are_reported(self, async_client: AsyncClient) -> None:
        events = [{"idempotencyKey": "k-1", "eventType": "call_start"}, *abandoned_call()]

        response = await async_client.post("/v1/telephony/events", json=events, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 2
        assert body["errors"][0]["idempotencyKey"] == "k-1"
        assert "timestamp" in body["errors"][0]["error"]

    @pytest.mark.asyncio
    async def test_object_without_events_is_400(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/v1/telephony/events", json={"items": []}, headers=HEADERS
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            "/v1/telephony/events",
            json=[],
            headers={**HEADERS, "x-request-id": "req-42"},
        )
        assert response.status_code == 200
        assert response.headers["x-request-id"] == "req-42"


class TestCallbackEndpoints:
    """Tests for /v1/telephony/callbacks."""

    @pytest.mark.asyncio
    async def test_callback_lifecycle(self, async_client: AsyncClient) -> None:
        await async_client.post("/v1/telephony/events", json=abandoned_call(), headers=HEADERS)

        listing = await async_client.get("/v1/telephony/callbacks")
        assert listing.status_code == 200
        [item] = listing.json()["data"]
        assert item["status"] == "PENDING"
        assert item["missedCall"]["reason"] == "ABANDONED"
        assert item["missedCall"]["callerNumber"] == "+995577000111"

        attempt = await async_client.post(
            f"/v1/telephony/callbacks/{item['id']}/attempts", json={"outcome": "busy"}
        )
        assert attempt.status_code == 200
        assert attempt.json()["status"] == "ATTEMPTING"
        assert attempt.json()["attemptsCount"] == 1

        done = await async_client.post(
            f"/v1/telephony/callbacks/{item['id']}/attempts", json={"outcome": "completed"}
        )
        assert done.json()["status"] == "DONE"
        assert done.json()["missedCall"]["status"] == "HANDLED"

        pending = await async_client.get("/v1/telephony/callbacks", params={"status": "PENDING"})
        assert pending.json()["total"] == 0

        fetched = await async_client.get(f"/v1/telephony/callbacks/{item['id']}")
        assert fetched.json()["attemptsCount"] == 2

    @pytest.mark.asyncio
    async def test_unknown_callback_is_404(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"/v1/telephony/callbacks/{uuid4()}/attempts", json={"outcome": "completed"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_outcome_is_422(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"/v1/telephony/callbacks/{uuid4()}/attempts", json={"outcome": ""}
        )
        assert response.status_code == 422


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
