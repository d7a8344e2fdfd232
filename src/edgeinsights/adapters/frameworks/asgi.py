"""ASGI generic adapter for the ingestion channel and query endpoints.

This adapter provides a framework-agnostic ASGI application that can be used
with any ASGI server (uvicorn, hypercorn, daphne) without requiring FastAPI
as a dependency. It serves the ``/ws`` ingestion channel, the REST query
endpoints and the lifespan protocol that starts background services.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Callable, Coroutine, Sequence
from typing import Any, Protocol
from urllib.parse import parse_qs

from edgeinsights.adapters.frameworks.query_params import (
    DEFAULT_DEVICE_LOGS_LIMIT,
    DEFAULT_LOGS_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    _parse_limit_param,
    _parse_range_param,
    parse_limit,
)
from edgeinsights.adapters.logging_context import (
    clear_log_context,
    set_log_context,
    update_log_context,
)
from edgeinsights.core.encoding.wire import encode_reading
from edgeinsights.core.errors import ConnectionClosedError
from edgeinsights.core.logs import log_exception
from edgeinsights.core.ports import ReadingStoragePort
from edgeinsights.services.hub import ConnectionHub
from edgeinsights.services.query import QueryService

logger = logging.getLogger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

DEFAULT_ALLOWED_ORIGINS = ("http://localhost:3000", "http://localhost:3001")
HEALTH_BODY = {"status": "healthy", "service": "edge-insights"}
DEVICE_LOGS_PREFIX = "/api/logs/device/"

_CORS_HEADERS = [
    (b"access-control-allow-methods", b"GET, POST, OPTIONS"),
    (b"access-control-allow-headers", b"Content-Type, Authorization"),
    (b"access-control-allow-credentials", b"true"),
]


class BackgroundService(Protocol):
    """A service started and stopped with the application lifespan."""

    def start(self) -> None: ...

    async def stop(self) -> None: ...


class BadRequestError(Exception):
    """Request body could not be used; answered with HTTP 400."""


def _parse_query_params(scope: Scope) -> dict[str, list[str]]:
    """Parse query string from ASGI scope into parameter dictionary.

    Args:
        scope: ASGI scope dictionary containing request metadata.

    Returns:
        Dictionary mapping parameter names to lists of values.
        Returns empty dict if query_string is missing or empty.
    """
    query_string = scope.get("query_string", b"").decode(errors="replace")
    return parse_qs(query_string)


def _get_header(scope: Scope, header_name: str) -> str | None:
    """Return the first value of a header (case-insensitive), if present."""
    header_bytes = header_name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for name, value in headers:
        if name.lower() == header_bytes:
            return value.decode("utf-8", errors="replace")
    return None


def _extract_request_id(scope: Scope, header_name: str = "X-Request-ID") -> str:
    """Extract or generate a request ID from ASGI scope headers.

    Searches for the specified header (case-insensitive). If not found,
    generates a new UUID.
    """
    request_id = _get_header(scope, header_name)
    return request_id if request_id is not None else str(uuid.uuid4())


def _cors_headers(scope: Scope, allowed_origins: Sequence[str]) -> list[tuple[bytes, bytes]]:
    """CORS headers for a request; the origin is echoed only if allowed."""
    headers = list(_CORS_HEADERS)
    origin = _get_header(scope, "origin")
    if origin is not None and origin in allowed_origins:
        headers.insert(0, (b"access-control-allow-origin", origin.encode()))
    return headers


async def _send_response(
    send: Send,
    status: int,
    content_type: str,
    body: str,
    extra_headers: Sequence[tuple[bytes, bytes]] = (),
) -> None:
    """Send an HTTP response with headers and body.

    Args:
        send: ASGI send callable for writing response.
        status: HTTP status code.
        content_type: Content-Type header value.
        body: Response body as string (will be encoded to bytes).
        extra_headers: Additional raw headers (e.g. CORS).
    """
    headers = [(b"content-type", content_type.encode()), *extra_headers]
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": body.encode()})


async def _send_json(
    send: Send,
    status: int,
    payload: Any,
    extra_headers: Sequence[tuple[bytes, bytes]] = (),
) -> None:
    await _send_response(
        send, status, "application/json", json.dumps(payload), extra_headers
    )


async def _handle_endpoint(
    send: Send,
    endpoint_func: Callable[[], Coroutine[Any, Any, Any]],
    log_message: str,
    extra_headers: Sequence[tuple[bytes, bytes]] = (),
) -> None:
    """Execute an endpoint function with error handling and send a JSON response.

    Args:
        send: ASGI send callable for writing response.
        endpoint_func: Async function that returns the JSON payload.
        log_message: Message to log on error.
        extra_headers: Additional raw headers (e.g. CORS).
    """
    try:
        payload = await endpoint_func()
    except BadRequestError as e:
        await _send_json(send, 400, {"error": str(e)}, extra_headers)
        return
    except Exception:
        log_exception(log_message, logger)
        await _send_json(send, 500, {"error": "Internal Server Error"}, extra_headers)
        return
    await _send_json(send, 200, payload, extra_headers)


async def _read_body(receive: Receive) -> bytes:
    """Collect the full request body from ``http.request`` messages."""
    chunks: list[bytes] = []
    while True:
        message = await receive()
        if message["type"] != "http.request":
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


async def _read_json_object(receive: Receive) -> dict[str, Any]:
    """Decode the request body as a JSON object or raise BadRequestError."""
    body = await _read_body(receive)
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise BadRequestError("Invalid JSON") from e
    if not isinstance(payload, dict):
        raise BadRequestError("Invalid JSON")
    return payload


def _required_text(payload: dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise BadRequestError(f"{field} is required")
    return value


class ASGIWebSocketConnection:
    """ObserverConnection over an accepted ASGI WebSocket.

    Sends are serialized by a per-connection lock, since the connection's
    own task (acks) and other connections' tasks (broadcasts) may write to
    it concurrently.
    """

    def __init__(
        self, receive: Receive, send: Send, connection_id: str | None = None
    ) -> None:
        self._receive = receive
        self._send = send
        self._connection_id = connection_id or str(uuid.uuid4())
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def closed(self) -> bool:
        return self._closed

    async def receive(self) -> str | bytes:
        """Wait for the next text or binary frame.

        Raises:
            ConnectionClosedError: If the peer disconnected.
        """
        while True:
            if self._closed:
                raise ConnectionClosedError("connection closed")
            message = await self._receive()
            if message["type"] == "websocket.disconnect":
                self._closed = True
                code = message.get("code", 1000)
                raise ConnectionClosedError(f"peer disconnected (code {code})")
            if message["type"] == "websocket.receive":
                text = message.get("text")
                if text is not None:
                    return text
                return message.get("bytes") or b""

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON text frame.

        Raises:
            ConnectionClosedError: If the connection is closed or the write fails.
        """
        if self._closed:
            raise ConnectionClosedError("connection closed")
        text = json.dumps(payload)
        async with self._send_lock:
            try:
                await self._send({"type": "websocket.send", "text": text})
            except (OSError, RuntimeError) as e:
                self._closed = True
                raise ConnectionClosedError(str(e)) from e

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return
        self._closed = True
        async with self._send_lock:
            try:
                await self._send({"type": "websocket.close", "code": code})
            except (OSError, RuntimeError) as e:
                logger.debug("Close of %s failed: %s", self._connection_id, e)


async def _serve_websocket(
    hub: ConnectionHub, scope: Scope, receive: Receive, send: Send
) -> None:
    message = await receive()
    if message["type"] != "websocket.connect":
        return
    if scope.get("path") != "/ws":
        await send({"type": "websocket.close", "code": 1008})
        return
    await send({"type": "websocket.accept"})
    conn = ASGIWebSocketConnection(receive, send)
    set_log_context(connection_id=conn.connection_id)
    try:
        await hub.serve(conn)
    finally:
        clear_log_context()


async def _run_lifespan(
    services: Sequence[BackgroundService], receive: Receive, send: Send
) -> None:
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            try:
                for service in services:
                    service.start()
            except Exception as e:
                log_exception("Error starting background services", logger)
                await send({"type": "lifespan.startup.failed", "message": str(e)})
                return
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            for service in reversed(services):
                try:
                    await service.stop()
                except Exception:
                    log_exception("Error stopping background service", logger)
            await send({"type": "lifespan.shutdown.complete"})
            return


def create_asgi_app(
    hub: ConnectionHub,
    query_service: QueryService,
    storage: ReadingStoragePort,
    allowed_origins: Sequence[str] = DEFAULT_ALLOWED_ORIGINS,
    services: Sequence[BackgroundService] = (),
) -> ASGIApp:
    """Create an ASGI app with the ingestion channel and query endpoints.

    Args:
        hub: Connection hub serving ``/ws``.
        query_service: Answers the ``/api/ai/*`` endpoints.
        storage: Source of recent readings for ``/api/logs``.
        allowed_origins: Origins echoed in CORS responses.
        services: Background services started on lifespan startup and
            stopped, in reverse order, on shutdown.

    Returns:
        ASGI application callable.
    """
    origins = tuple(allowed_origins)

    async def recent_logs(limit: int, device_id: str | None = None) -> list[dict[str, Any]]:
        return [
            encode_reading(r) async for r in storage.recent(limit, device_id=device_id)
        ]

    async def handle_http(scope: Scope, receive: Receive, send: Send) -> None:
        path = scope["path"]
        method = scope.get("method", "GET")
        cors = _cors_headers(scope, origins)

        if method == "OPTIONS":
            await _send_response(send, 200, "text/plain", "", cors)
            return

        routes: dict[str, str] = {
            "/health": "GET",
            "/api/logs": "GET",
            "/api/ai/query": "POST",
            "/api/ai/search": "POST",
            "/api/ai/summarize": "POST",
            "/api/ai/anomalies": "GET",
        }
        expected = "GET" if path.startswith(DEVICE_LOGS_PREFIX) else routes.get(path)
        if expected is None:
            await _send_response(send, 404, "text/plain", "Not Found", cors)
            return
        if method != expected:
            await _send_response(send, 405, "text/plain", "Method not allowed", cors)
            return

        params = _parse_query_params(scope)

        if path == "/health":
            await _send_json(send, 200, HEALTH_BODY, cors)

        elif path == "/api/logs":
            limit = _parse_limit_param(params, DEFAULT_LOGS_LIMIT)

            async def list_logs() -> dict[str, Any]:
                logs = await recent_logs(limit)
                return {"logs": logs, "count": len(logs)}

            await _handle_endpoint(send, list_logs, "Error reading logs", cors)

        elif path.startswith(DEVICE_LOGS_PREFIX):
            device_id = path[len(DEVICE_LOGS_PREFIX) :].strip("/")
            limit = _parse_limit_param(params, DEFAULT_DEVICE_LOGS_LIMIT)

            async def device_logs() -> dict[str, Any]:
                if not device_id:
                    raise BadRequestError("Device ID required")
                logs = await recent_logs(limit, device_id)
                return {"device_id": device_id, "logs": logs, "count": len(logs)}

            await _handle_endpoint(send, device_logs, "Error reading device logs", cors)

        elif path == "/api/ai/query":

            async def ai_query() -> dict[str, Any]:
                payload = await _read_json_object(receive)
                question = _required_text(payload, "query")
                return (await query_service.query(question)).to_dict()

            await _handle_endpoint(send, ai_query, "Error answering query", cors)

        elif path == "/api/ai/search":

            async def ai_search() -> dict[str, Any]:
                payload = await _read_json_object(receive)
                text = _required_text(payload, "search_text")
                limit = parse_limit(payload.get("limit"), DEFAULT_SEARCH_LIMIT)
                return (await query_service.search(text, limit)).to_dict()

            await _handle_endpoint(send, ai_search, "Error running search", cors)

        elif path == "/api/ai/summarize":
            time_range = _parse_range_param(params)

            async def ai_summarize() -> dict[str, Any]:
                return (await query_service.summarize(time_range)).to_dict()

            await _handle_endpoint(send, ai_summarize, "Error summarizing logs", cors)

        else:

            async def ai_anomalies() -> dict[str, Any]:
                return (await query_service.detect_anomalies()).to_dict()

            await _handle_endpoint(send, ai_anomalies, "Error detecting anomalies", cors)

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await _run_lifespan(services, receive, send)
            return
        if scope["type"] == "websocket":
            await _serve_websocket(hub, scope, receive, send)
            return
        if scope["type"] != "http":
            return

        set_log_context(request_id=_extract_request_id(scope))
        update_log_context(method=scope.get("method", ""), path=scope["path"])
        try:
            await handle_http(scope, receive, send)
        finally:
            clear_log_context()

    return app
