"""FastAPI adapter for the ingestion channel and query endpoints."""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine, Sequence
from contextlib import asynccontextmanager
from typing import Any

from fastapi import (
    APIRouter,
    FastAPI,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.routing import APIRoute

from edgeinsights.adapters.frameworks.asgi import (
    DEFAULT_ALLOWED_ORIGINS,
    HEALTH_BODY,
    BackgroundService,
)
from edgeinsights.adapters.frameworks.query_params import (
    DEFAULT_DEVICE_LOGS_LIMIT,
    DEFAULT_LOGS_LIMIT,
    DEFAULT_RANGE,
    DEFAULT_SEARCH_LIMIT,
    parse_limit,
)
from edgeinsights.adapters.logging_context import clear_log_context, set_log_context
from edgeinsights.core.encoding.wire import encode_reading
from edgeinsights.core.errors import ConnectionClosedError
from edgeinsights.core.logs import log_exception
from edgeinsights.core.ports import ReadingStoragePort
from edgeinsights.services.hub import ConnectionHub
from edgeinsights.services.query import QueryService

logger = logging.getLogger(__name__)


class FastAPIWebSocketConnection:
    """ObserverConnection over an accepted FastAPI WebSocket.

    Like the raw ASGI connection, sends and the close frame go through a
    per-connection lock: acks come from the connection's own task while
    broadcasts come from other connections' tasks.
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid.uuid4())
        self._send_lock: asyncio.Lock | None = None
        self._closed = False

    def _get_lock(self) -> asyncio.Lock:
        if self._send_lock is None:
            self._send_lock = asyncio.Lock()
        return self._send_lock

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def closed(self) -> bool:
        return self._closed

    async def receive(self) -> str | bytes:
        if self._closed:
            raise ConnectionClosedError("connection closed")
        try:
            message = await self._websocket.receive()
        except (RuntimeError, OSError) as e:
            self._closed = True
            raise ConnectionClosedError(str(e)) from e
        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ConnectionClosedError(
                f"peer disconnected (code {message.get('code', 1000)})"
            )
        text = message.get("text")
        return text if text is not None else message.get("bytes") or b""

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionClosedError("connection closed")
        text = json.dumps(payload)
        async with self._get_lock():
            if self._closed:
                raise ConnectionClosedError("connection closed")
            try:
                await self._websocket.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self._closed = True
                raise ConnectionClosedError(str(e)) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        async with self._get_lock():
            try:
                await self._websocket.close()
            except (RuntimeError, OSError) as e:
                logger.debug("Close of %s failed: %s", self._connection_id, e)


class LoggedErrorRoute(APIRoute):
    """APIRoute answering unexpected endpoint errors with a logged JSON 500.

    Mirrors ``_handle_endpoint`` in the raw ASGI adapter. HTTP and request
    validation errors keep FastAPI's own responses.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def guarded(request: Request) -> Response:
            try:
                return await handler(request)
            except (HTTPException, RequestValidationError):
                raise
            except Exception:
                log_exception(
                    f"Error handling {request.method} {request.url.path}", logger
                )
                return JSONResponse({"error": "Internal Server Error"}, status_code=500)

        return guarded


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


async def _json_object(request: Request) -> dict[str, Any] | None:
    try:
        payload = await request.json()
    except (UnicodeDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def _text_field(payload: dict[str, Any], field: str) -> str | None:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def create_router(
    hub: ConnectionHub,
    query_service: QueryService,
    storage: ReadingStoragePort,
) -> APIRouter:
    """Create a FastAPI router with ``/ws``, ``/health`` and the ``/api`` endpoints.

    Args:
        hub: Connection hub serving ``/ws``.
        query_service: Answers the ``/api/ai/*`` endpoints.
        storage: Source of recent readings for ``/api/logs``.

    Returns:
        APIRouter with every endpoint configured.
    """
    router = APIRouter(route_class=LoggedErrorRoute)

    async def recent_logs(limit: int, device_id: str | None = None) -> list[dict[str, Any]]:
        return [
            encode_reading(r) async for r in storage.recent(limit, device_id=device_id)
        ]

    @router.websocket("/ws")
    async def ingest(websocket: WebSocket) -> None:
        """Ingestion channel: every connection sends readings and observes broadcasts."""
        await websocket.accept()
        conn = FastAPIWebSocketConnection(websocket)
        set_log_context(connection_id=conn.connection_id)
        try:
            await hub.serve(conn)
        finally:
            clear_log_context()

    @router.get("/health")
    async def health() -> dict[str, str]:
        return HEALTH_BODY

    @router.get("/api/logs")
    async def get_logs(limit: str | None = Query(default=None)) -> dict[str, Any]:
        """Return the most recent readings, newest first."""
        logs = await recent_logs(parse_limit(limit, DEFAULT_LOGS_LIMIT))
        return {"logs": logs, "count": len(logs)}

    @router.get("/api/logs/device/{device_id}")
    async def get_device_logs(
        device_id: str, limit: str | None = Query(default=None)
    ) -> dict[str, Any]:
        """Return the most recent readings of one device, newest first."""
        logs = await recent_logs(parse_limit(limit, DEFAULT_DEVICE_LOGS_LIMIT), device_id)
        return {"device_id": device_id, "logs": logs, "count": len(logs)}

    @router.post("/api/ai/query")
    async def ai_query(request: Request) -> JSONResponse:
        payload = await _json_object(request)
        if payload is None:
            return _bad_request("Invalid JSON")
        question = _text_field(payload, "query")
        if question is None:
            return _bad_request("query is required")
        envelope = await query_service.query(question)
        return JSONResponse(envelope.to_dict())

    @router.post("/api/ai/search")
    async def ai_search(request: Request) -> JSONResponse:
        payload = await _json_object(request)
        if payload is None:
            return _bad_request("Invalid JSON")
        text = _text_field(payload, "search_text")
        if text is None:
            return _bad_request("search_text is required")
        limit = parse_limit(payload.get("limit"), DEFAULT_SEARCH_LIMIT)
        envelope = await query_service.search(text, limit)
        return JSONResponse(envelope.to_dict())

    @router.post("/api/ai/summarize")
    async def ai_summarize(
        time_range: str = Query(default=DEFAULT_RANGE, alias="range"),
    ) -> JSONResponse:
        envelope = await query_service.summarize(time_range.strip() or DEFAULT_RANGE)
        return JSONResponse(envelope.to_dict())

    @router.get("/api/ai/anomalies")
    async def ai_anomalies() -> JSONResponse:
        envelope = await query_service.detect_anomalies()
        return JSONResponse(envelope.to_dict())

    return router


def create_fastapi_app(
    hub: ConnectionHub,
    query_service: QueryService,
    storage: ReadingStoragePort,
    allowed_origins: Sequence[str] = DEFAULT_ALLOWED_ORIGINS,
    services: Sequence[BackgroundService] = (),
) -> FastAPI:
    """Create a FastAPI app mounting the router with CORS and a lifespan.

    ``services`` are started on startup and stopped in reverse order on
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        for service in services:
            service.start()
        try:
            yield
        finally:
            for service in reversed(services):
                await service.stop()

    app = FastAPI(title="Edge Insights", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.include_router(create_router(hub, query_service, storage))
    return app
