"""Shared fixtures: deterministic embeddings, a manual clock and engine wiring."""

import asyncio
import hashlib
import re
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from contextmem.config import EngineConfig
from contextmem.core.engine import MemoryEngine
from contextmem.errors import EmbeddingProviderError
from contextmem.memory.gateway import EmbeddingGateway
from contextmem.memory.session_store import SessionStore


TOKEN_PATTERN = re.compile(r"\w+")


class FakeEmbeddingProvider:
    """Bag-of-words hashing embeddings.

    Texts sharing most of their words get a high cosine similarity; unrelated
    texts land near zero. Every call is recorded in `calls`.
    """

    name = "fake"
    model = "hashing-bow"

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.calls: list[list[str]] = []
        self.credentials: list[str] = []
        self.delay = 0.0
        self.fail_with: Exception | None = None
        self.fail_texts: set[str] = set()
        self.closed = False

    async def embed(self, texts, credential, is_query=False):
        self.calls.append(list(texts))
        self.credentials.append(credential)

        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        if self.fail_texts.intersection(texts):
            raise EmbeddingProviderError("simulated provider outage")

        return np.array([self.vector(text) for text in texts], dtype="float32")

    def vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dimension, dtype="float32")
        for token in TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vec[int.from_bytes(digest[:4], "little") % self.dimension] += 1.0
        if not vec.any():
            vec[0] = 1.0
        return vec

    async def aclose(self) -> None:
        self.closed = True


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class FakeCompletion:
    """Blocking completion client that records prompts."""

    def __init__(self, reply: str = "Blue is a calm color.") -> None:
        self.reply = reply
        self.prompts: list[list[dict]] = []

    def __call__(self, messages, credential):
        self.prompts.append(messages)
        return self.reply


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def store(clock):
    return SessionStore(max_messages=15, ttl_seconds=48 * 3600, clock=clock)


@pytest.fixture
async def gateway(provider):
    gateway = EmbeddingGateway(provider, batch_size=2, workers=2, queue_size=10)
    yield gateway
    await gateway.aclose()


@pytest.fixture
def engine_config():
    return EngineConfig(index_workers=2, index_queue_size=50)


@pytest.fixture
async def engine(engine_config, provider, clock, completion):
    engine = MemoryEngine(
        config=engine_config,
        provider=provider,
        clock=clock,
        completion_client=completion,
    )
    yield engine
    await engine.aclose()
