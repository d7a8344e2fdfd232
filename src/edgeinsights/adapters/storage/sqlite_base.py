"""Shared connection handling for the SQLite adapters."""

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import aiosqlite

from edgeinsights.core.errors import PersistenceError

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"
BUSY_TIMEOUT_MS = 5000

ConnectHook = Callable[[aiosqlite.Connection], Awaitable[None]]


class AsyncConnectionManager:
    """Opens aiosqlite connections for one database and creates its schema.

    File databases get a fresh connection per operation in WAL mode, so the
    hub, the indexer and the rollup scheduler can write without sharing a
    connection. A ``:memory:`` database only lives as long as its
    connection, so a single connection is kept open until ``close``.

    Args:
        db_path: Database file path or ":memory:".
        schema: Script run once, before the first operation.
        on_connect: Awaited on every new connection. SQL functions are
            registered per connection, so the vector index installs its
            distance function here.
    """

    def __init__(
        self, db_path: str, schema: str, on_connect: ConnectHook | None = None
    ) -> None:
        self.db_path = db_path
        self._schema = schema
        self._on_connect = on_connect
        self._ready = False
        self._setup_lock: asyncio.Lock | None = None
        self._shared: aiosqlite.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == MEMORY_PATH

    async def _open(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        if not self.in_memory:
            await db.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        if self._on_connect is not None:
            await self._on_connect(db)
        return db

    async def _setup(self) -> None:
        # Lock created on first use so it binds to the running loop.
        if self._setup_lock is None:
            self._setup_lock = asyncio.Lock()
        async with self._setup_lock:
            if self._ready:
                return
            if self.in_memory:
                self._shared = await self._open()
                await self._shared.executescript(self._schema)
            else:
                db = await self._open()
                try:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
                finally:
                    await db.close()
            logger.debug("Schema ready for %s", self.db_path)
            self._ready = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a ready connection; per-operation connections are closed after use."""
        if not self._ready:
            await self._setup()
        if self._shared is not None:
            yield self._shared
            return
        db = await self._open()
        try:
            yield db
        finally:
            await db.close()

    async def close(self) -> None:
        """Close the shared in-memory connection, discarding its data."""
        if self._shared is not None:
            await self._shared.close()
            self._shared = None
            self._ready = False


class SQLiteStorageBase:
    """Base for adapters that keep their tables in one SQLite database.

    Every ``sqlite3.Error`` raised inside ``async_connection`` is re-raised
    as PersistenceError carrying the sqlite error class name.
    """

    def __init__(
        self, db_path: str, schema: str, on_connect: ConnectHook | None = None
    ) -> None:
        self._connections = AsyncConnectionManager(db_path, schema, on_connect)

    @property
    def db_path(self) -> str:
        return self._connections.db_path

    async def close(self) -> None:
        await self._connections.close()

    @asynccontextmanager
    async def async_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with self._connections.connection() as conn:
                yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"{type(e).__name__}: {e}") from e
