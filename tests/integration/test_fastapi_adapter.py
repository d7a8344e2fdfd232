"""Integration tests for the FastAPI adapter."""

import asyncio
import json
import logging

import pytest
from fastapi.testclient import TestClient

from edgeinsights.adapters.frameworks.asgi import HEALTH_BODY
from edgeinsights.adapters.frameworks.fastapi import (
    FastAPIWebSocketConnection,
    create_fastapi_app,
)
from edgeinsights.adapters.storage import InMemoryReadingStorage
from edgeinsights.core.errors import ConnectionClosedError
from edgeinsights.services import ConnectionHub, QueryService
from tests.fakes import FailingStorage

pytestmark = [pytest.mark.tier(2), pytest.mark.fastapi]

READING = {
    "device_id": "hum_04",
    "device_type": "humidity_sensor",
    "location": "server_room",
    "log_type": "INFO",
    "message": "Humidity reading",
    "raw_value": 48.0,
    "unit": "percent",
}


class RecordingService:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    def start(self) -> None:
        self.events.append("start")

    async def stop(self) -> None:
        self.events.append("stop")


@pytest.fixture
def client(
    hub: ConnectionHub,
    query_service: QueryService,
    reading_storage: InMemoryReadingStorage,
):
    app = create_fastapi_app(hub, query_service, reading_storage)
    with TestClient(app) as test_client:
        yield test_client


class TestFastAPIEndpoints:
    """Tests for the HTTP endpoints."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == HEALTH_BODY

    def test_logs_empty(self, client: TestClient) -> None:
        assert client.get("/api/logs").json() == {"logs": [], "count": 0}

    def test_query_bad_request(self, client: TestClient) -> None:
        response = client.post("/api/ai/query", content=b"{oops")
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

        response = client.post("/api/ai/query", json={"query": ""})
        assert response.json() == {"error": "query is required"}

    def test_query_envelope(self, client: TestClient) -> None:
        response = client.post(
            "/api/ai/query", json={"query": "Why did the door malfunction?"}
        )
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["result"]["query_type"] == "pattern_search"

    def test_search_requires_text(self, client: TestClient) -> None:
        response = client.post("/api/ai/search", json={"search_text": 5})
        assert response.status_code == 400

    def test_summarize_default_range(self, client: TestClient) -> None:
        body = client.post("/api/ai/summarize").json()
        assert body["query"] == "Summarize logs from last 1h"
        assert body["result"]["summary"] == "No logs found in the last 1h."

    def test_anomalies(self, client: TestClient) -> None:
        body = client.get("/api/ai/anomalies").json()
        assert body["result"] == {"anomalies": [], "total_found": 0, "time_range": "24h"}

    def test_cors_preflight(self, client: TestClient) -> None:
        response = client.options(
            "/api/ai/query",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


class TestFastAPIWebSocket:
    """Tests for the /ws ingestion channel."""

    def test_reading_is_acked_broadcast_and_listed(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as observer:
            with client.websocket_connect("/ws") as sender:
                sender.send_text(json.dumps(READING))
                ack = sender.receive_json()
                event = observer.receive_json()

        assert ack["success"] is True
        assert ack["data"]["raw_value"] == 48.0
        assert event == {"type": "log_entry", "data": ack["data"]}

        logs = client.get("/api/logs/device/hum_04").json()
        assert logs["count"] == 1
        assert logs["logs"][0]["unit"] == "percent"

    def test_invalid_reading_is_nacked(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as sender:
            sender.send_text(json.dumps({**READING, "device_id": ""}))
            reply = sender.receive_json()

        assert reply == {
            "success": False,
            "message": "Error processing log",
            "error": "device_id is required",
        }


def test_lifespan_runs_services(
    hub: ConnectionHub,
    query_service: QueryService,
    reading_storage: InMemoryReadingStorage,
) -> None:
    events: list[str] = []
    app = create_fastapi_app(
        hub, query_service, reading_storage, services=[RecordingService(events)]
    )
    with TestClient(app):
        assert events == ["start"]
    assert events == ["start", "stop"]


class TestFastAPIErrors:
    """Tests for unexpected endpoint errors."""

    @pytest.mark.parametrize("path", ["/api/logs", "/api/logs/device/hum_04"])
    def test_storage_failure_is_logged_json_500(
        self,
        hub: ConnectionHub,
        query_service: QueryService,
        caplog: pytest.LogCaptureFixture,
        path: str,
    ) -> None:
        app = create_fastapi_app(hub, query_service, FailingStorage())

        with caplog.at_level(logging.ERROR), TestClient(app) as client:
            response = client.get(path)

        assert response.status_code == 500
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"error": "Internal Server Error"}
        [record] = [r for r in caplog.records if r.name.endswith("fastapi")]
        assert record.exc_type == "PersistenceError"
        assert path in record.getMessage()


class SlowWebSocket:
    """Duck-typed WebSocket whose sends yield mid-write."""

    def __init__(self) -> None:
        self.in_flight = 0
        self.max_in_flight = 0
        self.frames: list[str] = []
        self.close_calls = 0

    async def send_text(self, text: str) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.frames.append(text)
        self.in_flight -= 1

    async def close(self) -> None:
        self.close_calls += 1


class TestFastAPIWebSocketConnection:
    """Tests for FastAPIWebSocketConnection."""

    async def test_concurrent_sends_are_serialized(self) -> None:
        websocket = SlowWebSocket()
        conn = FastAPIWebSocketConnection(websocket)

        await asyncio.gather(*(conn.send_json({"seq": i}) for i in range(5)))

        assert websocket.max_in_flight == 1
        assert sorted(json.loads(f)["seq"] for f in websocket.frames) == list(range(5))

    async def test_close_is_sent_once_and_blocks_sends(self) -> None:
        websocket = SlowWebSocket()
        conn = FastAPIWebSocketConnection(websocket)

        await conn.close()
        await conn.close()

        assert websocket.close_calls == 1
        assert conn.closed
        with pytest.raises(ConnectionClosedError):
            await conn.send_json({"type": "log_entry"})
