"""Port interfaces for storage, LLM collaborators and live connections.

These protocols define the contracts that adapters must implement.
The core domain and services depend only on these interfaces, not on
concrete implementations.
"""

from collections.abc import AsyncIterable, Sequence
from typing import Any, Protocol, runtime_checkable

from edgeinsights.core.models import EmbeddingRecord, Reading, SearchHit
from edgeinsights.core.rollups import RollupStage


@runtime_checkable
class ReadingStoragePort(Protocol):
    """Port for the persistence gateway.

    Adapters implementing this protocol store readings and read back
    the most recent ones.
    Examples: InMemoryReadingStorage, SQLiteReadingStorage.
    """

    async def write(self, reading: Reading) -> None:
        """Persist a validated reading.

        Raises:
            PersistenceError: If the store rejects the write.
        """
        ...

    def recent(
        self, limit: int, device_id: str | None = None, since: float = 0
    ) -> AsyncIterable[Reading]:
        """Read the most recent readings, newest first.

        Args:
            limit: Maximum number of readings returned.
            device_id: Only return readings from this device.
            since: Only return readings with timestamp >= since.
        """
        ...


@runtime_checkable
class QueryExecutorPort(Protocol):
    """Port for executing generated read-only queries.

    Examples: SQLiteReadingStorage.
    """

    async def query(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """Execute a read-only query and return rows keyed by column name.

        Raises:
            PersistenceError: If the query fails.
        """
        ...


@runtime_checkable
class RollupStoragePort(Protocol):
    """Port for stores that materialize the rollup tiers."""

    async def refresh(self, stage: RollupStage, since: float) -> int:
        """Recompute every bucket of ``stage`` starting at ``since``.

        Returns:
            Number of rows written.
        """
        ...

    async def refresh_all(self) -> None:
        """Recompute every tier over its full history, in pipeline order."""
        ...


@runtime_checkable
class VectorIndexPort(Protocol):
    """Port for the embedding record index."""

    async def write(self, record: EmbeddingRecord) -> None:
        """Store an embedding record."""
        ...

    async def nearest(self, vector: Sequence[float], limit: int) -> list[SearchHit]:
        """Return up to ``limit`` records ordered by ascending cosine distance."""
        ...


@runtime_checkable
class EmbedderPort(Protocol):
    """Port for the ``Embed(text) -> vector`` collaborator."""

    async def embed(self, text: str) -> list[float]:
        """Embed text.

        Raises:
            EmbeddingError: If the collaborator fails.
        """
        ...


@runtime_checkable
class CompleterPort(Protocol):
    """Port for the ``Complete(prompt) -> text`` collaborator."""

    async def complete(self, prompt: str) -> str:
        """Complete a prompt.

        Raises:
            CompletionError: If the collaborator fails.
        """
        ...


@runtime_checkable
class ObserverConnection(Protocol):
    """A live duplex channel registered with the connection hub."""

    @property
    def connection_id(self) -> str: ...

    async def receive(self) -> str | bytes:
        """Wait for the next message.

        Raises:
            ConnectionClosedError: When the peer closes or the channel fails.
        """
        ...

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send one JSON message.

        Raises:
            ConnectionClosedError: If the message cannot be delivered.
        """
        ...

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        ...
