"""
Embedding request channel and its consumer.

The refresh pipeline hands new and updated items to the EmbeddingWorker
through a bounded queue. The worker passes each request to the embedding
service and stores the returned embedding id on the item.

Items whose embedding_id is still NULL are the durable backlog: requests
rejected by a full queue, lost on restart, or failed by the service are
picked up again whenever the queue has been idle.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

import aiohttp
from bs4 import BeautifulSoup

from .database import Database

logger = logging.getLogger(__name__)

# embed(item_id, text) -> embedding id, or None when nothing was stored
EmbedFn = Callable[[int, str], Awaitable["str | None"]]


def embedding_text(title: str, body: str | None) -> str:
    """Title plus the plain text of the body."""
    text = title
    if body:
        plain = BeautifulSoup(body, "html.parser").get_text(separator=" ", strip=True)
        if plain:
            text = f"{title}\n\n{plain}"
    return text


@dataclass
class EmbeddingRequest:
    item_id: int
    text: str
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EmbeddingQueue:
    """Bounded, non-blocking queue of embedding requests."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._queue: asyncio.Queue[EmbeddingRequest] = asyncio.Queue(maxsize=max_size)
        self.total_enqueued = 0
        self.total_rejected = 0

    def enqueue(self, item_id: int, text: str):
        """
        Queue an embedding request without waiting.

        Raises asyncio.QueueFull when the consumer has fallen behind.
        """
        try:
            self._queue.put_nowait(EmbeddingRequest(item_id=item_id, text=text))
        except asyncio.QueueFull:
            self.total_rejected += 1
            raise
        self.total_enqueued += 1

    async def get(self) -> EmbeddingRequest:
        """Wait for the next request (consumer side)."""
        return await self._queue.get()

    def drain(self) -> list[EmbeddingRequest]:
        """Remove and return every pending request."""
        drained = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return drained

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def free_slots(self) -> int:
        return max(0, self.max_size - self.pending)


class EmbeddingClient:
    """
    HTTP client for the embedding service.

    POSTs {"item_id", "text"} and expects {"id": "<embedding id>"} back.
    """

    def __init__(self, url: str, timeout: int = 30):
        self.url = url
        self.timeout = timeout

    async def __call__(self, item_id: int, text: str) -> str | None:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                json={"item_id": item_id, "text": text},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                response.raise_for_status()
                data = await response.json()
        embedding_id = data.get("id") if isinstance(data, dict) else None
        return str(embedding_id) if embedding_id is not None else None


class EmbeddingWorker:
    """Single consumer of the embedding queue."""

    def __init__(
        self,
        db: Database,
        queue: EmbeddingQueue,
        embed: EmbedFn,
        idle_seconds: float = 60.0,
    ):
        self.db = db
        self.queue = queue
        self.embed = embed
        self.idle_seconds = idle_seconds
        self.processed = 0
        self.failed = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Embedding worker started")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Embedding worker stopped")

    async def _run(self):
        self.backfill()
        while True:
            try:
                request = await asyncio.wait_for(self.queue.get(), timeout=self.idle_seconds)
            except asyncio.TimeoutError:
                self.backfill()
                continue
            await self.process(request)

    def backfill(self) -> int:
        """Queue items that still lack an embedding, up to the free capacity."""
        slots = self.queue.free_slots
        if slots == 0:
            return 0
        queued = 0
        for item in self.db.items.get_missing_embeddings(slots):
            try:
                self.queue.enqueue(item.id, embedding_text(item.title, item.body))
            except asyncio.QueueFull:
                break
            queued += 1
        if queued:
            logger.info(f"Queued {queued} items missing embeddings")
        return queued

    async def process(self, request: EmbeddingRequest) -> bool:
        """
        Embed one request and record the result. Returns True when an
        embedding id was stored.
        """
        item = self.db.items.get(request.item_id)
        if item is None or item.embedding_id is not None:
            return False
        try:
            embedding_id = await self.embed(item.id, request.text)
        except Exception as e:
            self.failed += 1
            logger.warning(f"Embedding failed for item {item.id}: {e!r}")
            return False
        if embedding_id is None:
            return False
        self.processed += 1
        return self.db.items.set_embedding_id(item.id, embedding_id)

    async def process_pending(self) -> int:
        """Process every request currently queued. Returns embeddings stored."""
        stored = 0
        for request in self.queue.drain():
            if await self.process(request):
                stored += 1
        return stored
