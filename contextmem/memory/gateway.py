"""Lazy, credential-gated construction of the shared vector index.

Architectural role:
    Hides index construction from callers. The first credentialed call builds
    the `VectorIndex`, seeds it with one sentinel item (so the index is never
    empty), and drains chat turns that arrived before any credential was seen.

State machine:
    UNINITIALIZED -> INITIALIZING -> READY
                          |
                          +-> FAILED -> INITIALIZING (next `ensure` retries)

Single-flight:
    `_state_lock` guards the transition into INITIALIZING. The build runs as one
    `asyncio.Task`; every concurrent `ensure` awaits that same task (shielded so
    one cancelled caller cannot abort the shared build).

Credential binding:
    The index records a SHA-256 fingerprint of the credential that built it. A
    different credential later raises `CredentialMismatch` instead of mixing
    vectors from possibly incompatible embedding spaces.

Pending queue:
    FIFO of items submitted without a credential. Drained in batches under
    `_drain_lock`; a batch leaves the queue only after it has been inserted, so
    an `EmbeddingProviderError` mid-drain keeps the undrained remainder queued.
    No retry count or backoff applies; the queue grows until a credentialed
    call succeeds.

Fire-and-forget indexing:
    `submit` puts credentialed items on a bounded `asyncio.Queue` served by a
    worker pool. Delivery is at-most-once: a full queue drops the item with a
    warning and worker failures are logged, never raised to the submitter.
"""

import asyncio
import hashlib
import logging
from collections import deque
from enum import Enum

from contextmem.errors import CredentialMismatch, CredentialRequired, EmbeddingProviderError
from contextmem.memory.embeddings import EmbeddingProvider
from contextmem.memory.models import IndexedItem, ItemType
from contextmem.memory.vector_index import VectorIndex


logger = logging.getLogger(__name__)


SENTINEL_ID = "init"
SENTINEL_TEXT = "contextual memory seed"

DEFAULT_BATCH_SIZE = 64
DEFAULT_WORKERS = 4
DEFAULT_QUEUE_SIZE = 1000


class GatewayState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


def credential_fingerprint(credential: str) -> str:
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


def require_credential(credential: str | None) -> str:
    """Return the stripped credential or raise `CredentialRequired`."""
    if credential is None or not str(credential).strip():
        raise CredentialRequired("An embedding credential is required for this operation")
    return str(credential).strip()


def sentinel_item() -> IndexedItem:
    return IndexedItem(
        ref_id=SENTINEL_ID,
        user_id="",
        item_type=ItemType.SENTINEL,
        text=SENTINEL_TEXT,
        metadata={"id": SENTINEL_ID},
    )


class EmbeddingGateway:
    """Owner of the shared index, its build state and the pending queue.

    Args:
        provider: Embedding provider used for every vector in the index.
        batch_size: Maximum texts per provider call.
        workers: Background indexing worker count.
        queue_size: Capacity of the background job queue.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.worker_count = max(1, workers)
        self.queue_size = queue_size

        self._state = GatewayState.UNINITIALIZED
        self._index: VectorIndex | None = None
        self._fingerprint: str | None = None
        self._build_task: asyncio.Task | None = None
        self._state_lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()
        self._pending: deque[IndexedItem] = deque()

        self._jobs: asyncio.Queue | None = None
        self._workers: list[asyncio.Task] = []

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def index(self) -> VectorIndex | None:
        return self._index

    @property
    def is_ready(self) -> bool:
        return self._state is GatewayState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_items(self) -> list[IndexedItem]:
        return list(self._pending)

    def _check_binding(self, fingerprint: str) -> None:
        if self._fingerprint is not None and fingerprint != self._fingerprint:
            raise CredentialMismatch(
                "Credential differs from the one the shared index was built with"
            )

    async def ensure(self, credential: str | None) -> VectorIndex:
        """Return the ready index, building it on first use.

        Concurrent callers during INITIALIZING await the in-flight build. When
        the index is already READY the sentinel is not re-embedded, and the
        pending queue is only drained if it holds items.

        Raises:
            CredentialRequired: Missing/empty credential.
            CredentialMismatch: Credential differs from the bound one.
            CredentialInvalid / EmbeddingProviderError: Build failed.
        """
        credential = require_credential(credential)
        fingerprint = credential_fingerprint(credential)

        async with self._state_lock:
            if self._state is GatewayState.READY:
                self._check_binding(fingerprint)
                build_task = None
            elif self._state is GatewayState.INITIALIZING:
                self._check_binding(fingerprint)
                build_task = self._build_task
            else:
                self._state = GatewayState.INITIALIZING
                self._fingerprint = fingerprint
                self._build_task = asyncio.create_task(self._build(credential))
                build_task = self._build_task

        if build_task is not None:
            await asyncio.shield(build_task)

        if self._pending:
            try:
                await self._drain(credential)
            except EmbeddingProviderError:
                logger.warning(
                    "Pending queue drain interrupted; %d items remain queued",
                    len(self._pending),
                )

        return self._index

    async def _build(self, credential: str) -> None:
        logger.info("Initializing vector index (provider=%s)", self.provider.name)

        try:
            vectors = await self.provider.embed([SENTINEL_TEXT], credential)
            if vectors.ndim != 2 or vectors.shape[0] != 1 or vectors.shape[1] == 0:
                raise EmbeddingProviderError(
                    f"Unexpected sentinel embedding shape: {vectors.shape}"
                )

            index = VectorIndex(int(vectors.shape[1]))
            index.insert([sentinel_item()], vectors)
        except BaseException:
            self._state = GatewayState.FAILED
            self._fingerprint = None
            logger.exception("Vector index initialization failed")
            raise

        self._index = index
        self._state = GatewayState.READY
        logger.info("Vector index initialized (dimension=%d)", index.dimension)

    async def _drain(self, credential: str) -> int:
        """Embed queued items batch by batch; return how many were indexed."""
        drained = 0

        async with self._drain_lock:
            if self._pending:
                logger.info("Processing %d pending items", len(self._pending))

            while self._pending:
                batch = [self._pending[i] for i in range(min(self.batch_size, len(self._pending)))]
                vectors = await self.provider.embed([item.text for item in batch], credential)
                self._index.insert(batch, vectors)

                for _ in batch:
                    self._pending.popleft()
                drained += len(batch)

        return drained

    async def _embed_and_insert(self, items: list[IndexedItem], credential: str) -> None:
        for start in range(0, len(items), self.batch_size):
            batch = items[start:start + self.batch_size]
            vectors = await self.provider.embed([item.text for item in batch], credential)
            self._index.insert(batch, vectors)

    async def enqueue_or_embed(self, item: IndexedItem, credential: str | None = None) -> bool:
        """Index one item now, or queue it until a credential arrives.

        Returns:
            `True` if the item was embedded and inserted, `False` if queued.
        """
        if credential is None or not str(credential).strip():
            self._pending.append(item)
            logger.info("Queued item %s for later indexing", item.ref_id)
            return False

        await self.ensure(credential)
        await self._embed_and_insert([item], str(credential).strip())
        return True

    async def add_items(self, items: list[IndexedItem], credential: str | None) -> int:
        """Synchronously embed and insert a batch (document ingestion path).

        Errors propagate to the caller.
        """
        credential = require_credential(credential)
        if not items:
            return 0

        await self.ensure(credential)
        await self._embed_and_insert(items, credential)
        logger.info("Added %d items to vector index", len(items))
        return len(items)

    async def query(self, text: str, credential: str | None, k: int) -> list[tuple[IndexedItem, float]]:
        """Raw nearest-neighbour candidates for `text`.

        Returns `[]` while the index is not READY; search never triggers a build.
        """
        if not self.is_ready:
            logger.info("Vector index not initialized, returning empty search results")
            return []

        credential = require_credential(credential)
        self._check_binding(credential_fingerprint(credential))

        vectors = await self.provider.embed([text], credential, is_query=True)
        return self._index.search(vectors[0], k)

    def start(self) -> None:
        """Start background indexing workers on the running event loop."""
        if self._workers:
            return

        self._jobs = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"contextmem-indexer-{n}")
            for n in range(self.worker_count)
        ]

    def submit(self, item: IndexedItem, credential: str | None = None) -> bool:
        """Schedule best-effort indexing of `item` and return immediately.

        Without a credential the item goes straight to the pending queue and no
        index is created. Returns `True` if a background job was scheduled.
        """
        if credential is None or not str(credential).strip():
            self._pending.append(item)
            logger.info("Queued item %s for later indexing", item.ref_id)
            return False

        if not self._workers:
            self.start()

        try:
            self._jobs.put_nowait((item, credential))
        except asyncio.QueueFull:
            logger.warning("Index job queue full; dropping item %s", item.ref_id)
            return False

        return True

    async def _worker(self) -> None:
        while True:
            item, credential = await self._jobs.get()
            try:
                await self.enqueue_or_embed(item, credential)
            except Exception:
                logger.exception("Failed to add item %s to vector index", item.ref_id)
            finally:
                self._jobs.task_done()

    async def join(self) -> None:
        """Wait until every submitted background job has been processed."""
        if self._jobs is not None:
            await self._jobs.join()

    async def aclose(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._jobs = None
        await self.provider.aclose()

    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "initialized": self.is_ready,
            "has_index": self._index is not None,
            "pending": len(self._pending),
            "indexed": self._index.count() if self._index is not None else 0,
        }
