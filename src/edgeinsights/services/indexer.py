"""Background creation of embedding records for stored readings."""

import asyncio
import logging
import uuid

from edgeinsights.core.errors import CollaboratorError, EmbeddingError
from edgeinsights.core.logs import log_exception
from edgeinsights.core.models import EmbeddingRecord, Reading
from edgeinsights.core.ports import EmbedderPort, VectorIndexPort

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_CHUNK_SIZE = 500


def render_reading(reading: Reading) -> str:
    """Text that gets embedded for a reading."""
    parts = [f"[{reading.log_type}]"]
    if reading.device_type:
        parts.append(reading.device_type)
    parts.append(reading.device_id)
    if reading.location:
        parts.append(f"at {reading.location}")
    text = " ".join(parts) + ":"
    if reading.message:
        text += f" {reading.message}"
    if reading.raw_value is not None:
        unit = f" {reading.unit}" if reading.unit else ""
        text += f" (value {reading.raw_value:g}{unit})"
    return text


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split text on whitespace into chunks of at most ``chunk_size`` characters.

    A single word longer than ``chunk_size`` is split mid-word.
    """
    chunks: list[str] = []
    current = ""
    for word in text.split():
        while len(word) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:chunk_size])
            word = word[chunk_size:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) > chunk_size:
            chunks.append(current)
            current = word
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class EmbeddingIndexer:
    """Queue worker that embeds stored readings after the fact.

    Readings are submitted without waiting; a single worker task embeds
    them in arrival order. When the queue is full new readings are dropped
    with a warning so ingestion never blocks on the embedder.

    Args:
        embedder: The ``Embed(text) -> vector`` collaborator.
        index: Where embedding records are written.
        queue_size: Maximum number of readings waiting to be embedded.
        chunk_size: Maximum characters per embedded chunk.
    """

    def __init__(
        self,
        embedder: EmbedderPort,
        index: VectorIndexPort,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._queue_size = queue_size
        self._chunk_size = chunk_size
        self._queue: asyncio.Queue[Reading] | None = None
        self._worker: asyncio.Task[None] | None = None
        self.dropped = 0

    def _get_queue(self) -> asyncio.Queue[Reading]:
        """Get or create the queue (lazy to avoid event loop issues)."""
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._queue_size)
        return self._queue

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._get_queue().qsize()

    async def submit(self, reading: Reading) -> None:
        """Queue a stored reading for embedding."""
        try:
            self._get_queue().put_nowait(reading)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Embedding queue full; dropping reading from %s", reading.device_id
            )

    def start(self) -> None:
        """Start the worker task on the running loop."""
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="embedding-indexer"
        )

    async def stop(self) -> None:
        """Cancel the worker. Readings still queued are not embedded."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def drain(self) -> None:
        """Wait until every submitted reading has been processed."""
        await self._get_queue().join()

    async def _run(self) -> None:
        queue = self._get_queue()
        while True:
            reading = await queue.get()
            try:
                await self.index_reading(reading)
            except CollaboratorError:
                log_exception("Error embedding reading", logger, device_id=reading.device_id)
            except Exception:
                log_exception(
                    "Unexpected error indexing reading", logger, device_id=reading.device_id
                )
            finally:
                queue.task_done()

    async def index_reading(self, reading: Reading) -> list[EmbeddingRecord]:
        """Embed every chunk of a reading and write the records.

        Raises:
            EmbeddingError: If the embedder fails or returns an empty vector.
        """
        records: list[EmbeddingRecord] = []
        for seq, chunk in enumerate(chunk_text(render_reading(reading), self._chunk_size)):
            vector = await self._embedder.embed(chunk)
            if not vector:
                raise EmbeddingError("embedding collaborator returned an empty vector")
            record = EmbeddingRecord(
                embedding_id=str(uuid.uuid4()),
                timestamp=reading.timestamp,
                device_id=reading.device_id,
                chunk_seq=seq,
                chunk=chunk,
                embedding=tuple(vector),
                device_type=reading.device_type,
                location=reading.location,
                log_type=reading.log_type,
                raw_value=reading.raw_value,
                unit=reading.unit,
            )
            await self._index.write(record)
            records.append(record)
        return records
