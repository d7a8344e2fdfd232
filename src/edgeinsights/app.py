"""Application wiring and the ``edgeinsights`` server entry point.

Run with:
    edgeinsights

or, for development:
    uvicorn edgeinsights.app:create_app --factory --reload
"""

import logging
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI

from edgeinsights.adapters.frameworks.fastapi import create_fastapi_app
from edgeinsights.adapters.llm.openai_client import (
    OpenAICompleter,
    OpenAIEmbedder,
    UnconfiguredEmbedder,
    create_client,
)
from edgeinsights.adapters.logging_context import configure_logging
from edgeinsights.adapters.storage import SQLiteReadingStorage, SQLiteVectorIndex
from edgeinsights.config import Settings
from edgeinsights.core.ports import EmbedderPort
from edgeinsights.core.querygen import (
    CompletionQueryGenerator,
    QueryGenerator,
    TemplateQueryGenerator,
)
from edgeinsights.services import (
    ConnectionHub,
    EmbeddingIndexer,
    QueryService,
    RollupScheduler,
    SemanticSearchEngine,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Components:
    """Everything the HTTP layer needs, wired from one Settings."""

    storage: SQLiteReadingStorage
    vectors: SQLiteVectorIndex
    hub: ConnectionHub
    query_service: QueryService
    scheduler: RollupScheduler
    indexer: EmbeddingIndexer


def build_components(settings: Settings) -> Components:
    """Wire storage, collaborators and services from ``settings``.

    Without an OpenAI API key, structured questions use the template query
    generator and semantic search reports an embedding error.
    """
    storage = SQLiteReadingStorage(settings.storage.db_path)
    vectors = SQLiteVectorIndex(settings.storage.db_path)

    embedder: EmbedderPort
    generator: QueryGenerator
    if settings.llm.is_configured:
        client = create_client(settings.llm.api_key, settings.llm.timeout)
        embedder = OpenAIEmbedder(client, settings.llm.embedding_model)
        completer = OpenAICompleter(client, settings.llm.model)
        generator = CompletionQueryGenerator(
            completer.complete, max_rows=settings.pipeline.query_max_rows
        )
    else:
        logger.warning("OPENAI_API_KEY not set; semantic search is disabled")
        embedder = UnconfiguredEmbedder()
        generator = TemplateQueryGenerator(max_rows=settings.pipeline.query_max_rows)

    indexer = EmbeddingIndexer(
        embedder, vectors, queue_size=settings.pipeline.embedding_queue_size
    )
    hub = ConnectionHub(
        storage,
        on_stored=indexer.submit if settings.llm.is_configured else None,
    )
    query_service = QueryService(
        storage,
        storage,
        SemanticSearchEngine(embedder, vectors),
        generator=generator,
    )
    scheduler = RollupScheduler(
        storage, tick_seconds=settings.pipeline.rollup_tick_seconds
    )
    return Components(
        storage=storage,
        vectors=vectors,
        hub=hub,
        query_service=query_service,
        scheduler=scheduler,
        indexer=indexer,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application; settings default to the environment."""
    settings = settings or Settings.from_env()
    components = build_components(settings)
    return create_fastapi_app(
        components.hub,
        components.query_service,
        components.storage,
        allowed_origins=settings.server.allowed_origins,
        services=(components.scheduler, components.indexer),
    )


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.server.log_level)
    logger.info(
        "Starting edge insights server on %s:%d",
        settings.server.host,
        settings.server.port,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
