"""Semantic search over embedding records."""

import logging
from collections.abc import Sequence

from edgeinsights.core.errors import EmbeddingError, InvalidFieldError
from edgeinsights.core.models import SearchHit
from edgeinsights.core.ports import EmbedderPort, VectorIndexPort

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
ANSWER_HITS = 3
NO_RESULTS_ANSWER = "I couldn't find any relevant logs to answer your question."


class SemanticSearchEngine:
    """Embeds a question and ranks embedding records by cosine distance.

    There is no keyword fallback: if the embedder fails, the search fails.

    Args:
        embedder: The ``Embed(text) -> vector`` collaborator.
        index: Vector index holding embedding records.
    """

    def __init__(self, embedder: EmbedderPort, index: VectorIndexPort) -> None:
        self._embedder = embedder
        self._index = index

    async def search(self, text: str, limit: int = DEFAULT_LIMIT) -> list[SearchHit]:
        """Return up to ``limit`` hits, most similar first.

        Raises:
            InvalidFieldError: If ``limit`` is not positive.
            EmbeddingError: If the embedder fails or returns an empty vector.
        """
        if limit < 1:
            raise InvalidFieldError("limit", "must be a positive integer")
        vector = await self._embedder.embed(text)
        if not vector:
            raise EmbeddingError("embedding collaborator returned an empty vector")
        hits = await self._index.nearest(vector, limit)
        logger.debug("Semantic search for %r returned %d hits", text, len(hits))
        return hits[:limit]


def answer(hits: Sequence[SearchHit]) -> str:
    """Render a short answer from the most similar hits."""
    if not hits:
        return NO_RESULTS_ANSWER
    lines = [f"Based on {len(hits)} relevant logs, here's what I found:", ""]
    for hit in hits[:ANSWER_HITS]:
        lines.append(
            f"• {hit.record.chunk} (Device: {hit.record.device_id}, "
            f"Similarity: {hit.distance:.2f})"
        )
    return "\n".join(lines) + "\n"
