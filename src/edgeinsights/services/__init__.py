"""Services orchestrating the core: hub, search, indexing, rollups, queries."""

from edgeinsights.services.hub import ConnectionHub
from edgeinsights.services.indexer import EmbeddingIndexer
from edgeinsights.services.query import QueryService
from edgeinsights.services.scheduler import RollupScheduler
from edgeinsights.services.search import SemanticSearchEngine

__all__ = [
    "ConnectionHub",
    "EmbeddingIndexer",
    "QueryService",
    "RollupScheduler",
    "SemanticSearchEngine",
]
