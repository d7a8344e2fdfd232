"""Storage adapters implementing core ports."""

from edgeinsights.adapters.storage.in_memory import (
    InMemoryReadingStorage,
    InMemoryVectorIndex,
)
from edgeinsights.adapters.storage.sqlite_readings import SQLiteReadingStorage
from edgeinsights.adapters.storage.sqlite_vectors import SQLiteVectorIndex

__all__ = [
    "InMemoryReadingStorage",
    "InMemoryVectorIndex",
    "SQLiteReadingStorage",
    "SQLiteVectorIndex",
]
