"""Connection hub: ingestion over live connections and fan-out to observers.

Every open connection is both a sender and an observer. Each connection
runs ``serve`` in its own task: messages are decoded, validated, persisted
and acknowledged to the sender one at a time, and every stored reading is
broadcast to all other registered connections.

The registry is the only state shared between connection tasks. Broadcast
iterates it under the read lock; register/unregister take the write lock.
Observers whose send fails during a broadcast are collected and removed in
a second, write-locked pass.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from edgeinsights.core.encoding.wire import encode_reading, parse_message
from edgeinsights.core.errors import (
    ConnectionClosedError,
    PersistenceError,
    ValidationError,
)
from edgeinsights.core.logs import log_exception
from edgeinsights.core.models import Reading
from edgeinsights.core.ports import ObserverConnection, ReadingStoragePort
from edgeinsights.core.validation import validate
from edgeinsights.services.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

ACK_MESSAGE = "Log stored successfully"
NACK_MESSAGE = "Error processing log"
STORE_FAILED = "Failed to store log"

StoredHook = Callable[[Reading], Awaitable[None]]


def ack(reading: Reading) -> dict[str, Any]:
    """Positive acknowledgment echoing the stored reading."""
    return {"success": True, "message": ACK_MESSAGE, "data": encode_reading(reading)}


def nack(error: str) -> dict[str, Any]:
    """Negative acknowledgment sent to the sender only."""
    return {"success": False, "message": NACK_MESSAGE, "error": error}


def log_entry_event(reading: Reading) -> dict[str, Any]:
    """Broadcast event for a stored reading."""
    return {"type": "log_entry", "data": encode_reading(reading)}


class ConnectionHub:
    """Owns the set of open connections and the ingest/broadcast flow.

    Args:
        storage: Persistence gateway for accepted readings.
        on_stored: Optional hook awaited after each successful store and
            broadcast (e.g. to queue the reading for embedding). Its
            failures are logged and never reach the sender.
        now: Clock used to fill in missing timestamps.
    """

    def __init__(
        self,
        storage: ReadingStoragePort,
        on_stored: StoredHook | None = None,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._on_stored = on_stored
        self._now = now
        self._connections: dict[str, ObserverConnection] = {}
        self._lock = ReadWriteLock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connections(self) -> list[ObserverConnection]:
        """Snapshot of the registered connections."""
        async with self._lock.read_locked():
            return list(self._connections.values())

    async def register(self, conn: ObserverConnection) -> None:
        async with self._lock.write_locked():
            self._connections[conn.connection_id] = conn
            total = len(self._connections)
        logger.info(
            "Connection %s registered. Total clients: %d", conn.connection_id, total
        )

    async def unregister(self, conn: ObserverConnection) -> bool:
        """Remove a connection. Returns False if it was not registered."""
        async with self._lock.write_locked():
            removed = self._connections.pop(conn.connection_id, None) is not None
            total = len(self._connections)
        if removed:
            logger.info(
                "Connection %s unregistered. Total clients: %d",
                conn.connection_id,
                total,
            )
        return removed

    async def broadcast(
        self, event: dict[str, Any], exclude: ObserverConnection | None = None
    ) -> int:
        """Send ``event`` to every registered connection except ``exclude``.

        Returns:
            Number of observers the event was delivered to.
        """
        excluded = exclude.connection_id if exclude is not None else None
        async with self._lock.read_locked():
            targets = [
                conn
                for conn_id, conn in self._connections.items()
                if conn_id != excluded
            ]
            results = await asyncio.gather(
                *(conn.send_json(event) for conn in targets), return_exceptions=True
            )

        failed: list[ObserverConnection] = []
        for conn, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Error broadcasting to %s: %s", conn.connection_id, result
                )
                failed.append(conn)

        if failed:
            async with self._lock.write_locked():
                for conn in failed:
                    self._connections.pop(conn.connection_id, None)
            for conn in failed:
                await self._close_quietly(conn)
        return len(targets) - len(failed)

    async def serve(self, conn: ObserverConnection) -> None:
        """Register ``conn`` and handle its ingress until it closes."""
        await self.register(conn)
        await self.handle_ingress(conn)

    async def handle_ingress(self, conn: ObserverConnection) -> None:
        """Process messages from ``conn`` until a receive fails.

        A clean close and a transport error both end the loop; either way
        the connection is unregistered and closed.
        """
        try:
            while True:
                try:
                    message = await conn.receive()
                except ConnectionClosedError as e:
                    logger.debug("Connection %s closed: %s", conn.connection_id, e)
                    break
                await self.process(conn, message)
        finally:
            await self.unregister(conn)
            await self._close_quietly(conn)

    async def process(self, conn: ObserverConnection, message: str | bytes) -> bool:
        """Ingest one message from ``conn``.

        Returns:
            True if the reading was stored and broadcast.
        """
        try:
            reading = validate(parse_message(message), now=self._now)
        except ValidationError as e:
            logger.info("Rejected reading from %s: %s", conn.connection_id, e)
            await self._reply(conn, nack(str(e)))
            return False

        try:
            await self._storage.write(reading)
        except PersistenceError:
            log_exception("Error storing reading", logger, device_id=reading.device_id)
            await self._reply(conn, nack(STORE_FAILED))
            return False

        await self._reply(conn, ack(reading))
        await self.broadcast(log_entry_event(reading), exclude=conn)
        await self._notify_stored(reading)
        return True

    async def _reply(self, conn: ObserverConnection, payload: dict[str, Any]) -> None:
        try:
            await conn.send_json(payload)
        except ConnectionClosedError as e:
            logger.warning("Error sending response to %s: %s", conn.connection_id, e)

    async def _notify_stored(self, reading: Reading) -> None:
        if self._on_stored is None:
            return
        try:
            await self._on_stored(reading)
        except Exception:
            log_exception("Stored-reading hook failed", logger)

    async def _close_quietly(self, conn: ObserverConnection) -> None:
        try:
            await conn.close()
        except Exception as e:
            logger.debug("Error closing %s: %s", conn.connection_id, e)
