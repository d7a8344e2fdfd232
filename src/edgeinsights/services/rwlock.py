"""Writer-preferring read/write lock for asyncio tasks."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ReadWriteLock:
    """Many concurrent readers or one writer.

    A waiting writer blocks new readers, so a steady stream of broadcasts
    cannot starve register/unregister.
    """

    def __init__(self) -> None:
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0
        self._cond: asyncio.Condition | None = None

    def _condition(self) -> asyncio.Condition:
        """Get or create the condition (lazy to avoid event loop issues)."""
        if self._cond is None:
            self._cond = asyncio.Condition()
        return self._cond

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        cond = self._condition()
        async with cond:
            await cond.wait_for(lambda: not self._writer and not self._waiting_writers)
            self._readers += 1

    async def release_read(self) -> None:
        cond = self._condition()
        async with cond:
            self._readers -= 1
            if self._readers == 0:
                cond.notify_all()

    async def acquire_write(self) -> None:
        cond = self._condition()
        async with cond:
            self._waiting_writers += 1
            try:
                await cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                self._waiting_writers -= 1
                cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    async def release_write(self) -> None:
        cond = self._condition()
        async with cond:
            self._writer = False
            cond.notify_all()

    @asynccontextmanager
    async def read_locked(self) -> AsyncIterator[None]:
        """Hold the lock for reading."""
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write_locked(self) -> AsyncIterator[None]:
        """Hold the lock exclusively."""
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()
