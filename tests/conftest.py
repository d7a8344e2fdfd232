"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator
from pathlib import Path

import httpx
import pytest

from edgeinsights.adapters.storage import (
    InMemoryReadingStorage,
    InMemoryVectorIndex,
    SQLiteReadingStorage,
    SQLiteVectorIndex,
)
from edgeinsights.services import ConnectionHub, QueryService, SemanticSearchEngine
from tests.fakes import KeywordEmbedder, ManualClock, RecordingExecutor


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for SQLite storage tests."""
    return str(tmp_path / "edgeinsights.db")


@pytest.fixture
def clock() -> ManualClock:
    """Manually advanced clock starting at a fixed instant."""
    return ManualClock()


# === Storage Fixtures ===


@pytest.fixture
def reading_storage() -> InMemoryReadingStorage:
    """Fixture providing an empty in-memory reading storage."""
    return InMemoryReadingStorage()


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    """Fixture providing an empty in-memory vector index."""
    return InMemoryVectorIndex()


@pytest.fixture
async def memory_reading_storage() -> AsyncGenerator[SQLiteReadingStorage]:
    """In-memory SQLite reading storage with proper cleanup."""
    storage = SQLiteReadingStorage(":memory:")
    yield storage
    await storage.close()


@pytest.fixture
async def memory_vector_index() -> AsyncGenerator[SQLiteVectorIndex]:
    """In-memory SQLite vector index with proper cleanup."""
    index = SQLiteVectorIndex(":memory:")
    yield index
    await index.close()


# === Service Fixtures ===


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def hub(reading_storage: InMemoryReadingStorage, clock: ManualClock) -> ConnectionHub:
    """Connection hub over in-memory storage with a manual clock."""
    return ConnectionHub(reading_storage, now=clock)


@pytest.fixture
def query_service(
    reading_storage: InMemoryReadingStorage,
    vector_index: InMemoryVectorIndex,
    embedder: KeywordEmbedder,
    clock: ManualClock,
) -> QueryService:
    """Query service over in-memory storage and a keyword embedder."""
    return QueryService(
        reading_storage,
        RecordingExecutor(),
        SemanticSearchEngine(embedder, vector_index),
        now=clock,
    )


# === ASGI Test Fixtures ===


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""
    from edgeinsights.adapters.frameworks.asgi import Scope

    def _scope(
        method: str = "GET",
        path: str = "/health",
        query_string: bytes = b"",
        headers: list[tuple[bytes, bytes]] | None = None,
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": query_string,
            "headers": headers or [],
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            app = create_asgi_app(hub, query_service, storage)
            async with asgi_test_client(app) as client:
                response = await client.get("/health")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
