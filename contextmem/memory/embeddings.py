"""Credential-keyed embedding providers.

Architectural role:
    Turn text batches into float32 matrices for `contextmem.memory.gateway`.
    Every call carries the caller's credential explicitly; providers hold no
    API key of their own.

Providers:
    - `OpenAIEmbeddingProvider`: OpenAI-compatible `/embeddings` endpoint over
      `httpx`, with retry/backoff for transient failures.
    - `LocalEmbeddingProvider`: in-process `sentence-transformers` model. The
      credential only gates access and binds the index; it is never sent anywhere.

Failure model:
    - 401/403 -> `CredentialInvalid`.
    - 429/5xx and transport errors are retried, then raised as
      `EmbeddingProviderError`.
    - Any other HTTP error -> `EmbeddingProviderError` without retry.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Protocol

import httpx
import numpy as np

from contextmem.config import EngineConfig
from contextmem.errors import CredentialInvalid, EmbeddingProviderError


logger = logging.getLogger(__name__)


RETRYABLE_STATUS = (429, 500, 502, 503, 504)
AUTH_STATUS = (401, 403)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_MODEL = "intfloat/multilingual-e5-small"


class EmbeddingProvider(Protocol):
    """Minimal async interface required by the embedding gateway."""

    name: str
    model: str

    async def embed(self, texts: list[str], credential: str, is_query: bool = False) -> np.ndarray:
        """Return a `(len(texts), dim)` float32 matrix."""
        ...

    async def aclose(self) -> None:
        ...


class OpenAIEmbeddingProvider:
    """Embeddings from an OpenAI-compatible HTTP endpoint.

    One `httpx.AsyncClient` is created lazily and reused for all calls; the
    credential is sent per request as a bearer token.
    """

    name = "openai"

    def __init__(
        self,
        model: str = DEFAULT_OPENAI_MODEL,
        url: str = "https://api.openai.com/v1/embeddings",
        timeout_seconds: float = 60.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def embed(self, texts: list[str], credential: str, is_query: bool = False) -> np.ndarray:
        """Embed a batch of texts.

        Args:
            texts: Non-empty strings to embed.
            credential: Provider API key.
            is_query: Unused; OpenAI models embed queries and passages alike.

        Returns:
            Float32 matrix with one row per input, in input order.
        """
        if not texts:
            return np.zeros((0, 0), dtype="float32")

        payload = {"model": self.model, "input": list(texts)}
        data = await self._post_with_retry(payload, credential)

        rows = sorted(data.get("data", []), key=lambda row: row.get("index", 0))
        if len(rows) != len(texts):
            raise EmbeddingProviderError(
                f"Embedding response size mismatch: expected={len(texts)} got={len(rows)}"
            )

        return np.array([row["embedding"] for row in rows], dtype="float32")

    async def _post_with_retry(self, payload: dict, credential: str) -> dict:
        """POST with exponential backoff on 429/5xx and transport errors.

        Raises:
            CredentialInvalid: Provider rejected the credential.
            EmbeddingProviderError: Retries exhausted or unrecoverable response.
        """
        attempts = max(1, self.retry_attempts)
        headers = {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
        }
        client = self._get_client()

        for attempt in range(attempts):
            try:
                response = await client.post(self.url, headers=headers, json=payload)
            except httpx.RequestError as exc:
                if attempt < attempts - 1:
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise EmbeddingProviderError(f"Embedding request failed: {exc!r}") from exc

            if response.status_code in AUTH_STATUS:
                raise CredentialInvalid(
                    f"Embedding provider rejected credential (status={response.status_code})"
                )

            if response.status_code in RETRYABLE_STATUS:
                if attempt < attempts - 1:
                    logger.warning(
                        "Embedding provider returned %d, retrying (attempt %d/%d)",
                        response.status_code,
                        attempt + 1,
                        attempts,
                    )
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                raise EmbeddingProviderError(
                    f"Embedding retry exhausted: status={response.status_code}"
                )

            if response.is_error:
                raise EmbeddingProviderError(
                    f"Embedding request rejected: status={response.status_code}"
                )

            try:
                return response.json()
            except ValueError as exc:
                raise EmbeddingProviderError("Embedding response was not valid JSON") from exc

        raise EmbeddingProviderError("Embedding request failed without error details")

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def has_enough_vram(min_required_mb: int = 800) -> bool:
    """Return whether CUDA is available with more than `min_required_mb` free."""
    import torch

    if not torch.cuda.is_available():
        return False

    free_mem, _total = torch.cuda.mem_get_info()
    free_mb = free_mem / 1024 / 1024
    logger.info("Free VRAM: %.0f MB", free_mb)

    return free_mb > min_required_mb


class LocalEmbeddingProvider:
    """In-process `SentenceTransformer` embeddings.

    The model loads on first use. CUDA is used only when enough free VRAM is
    reported; otherwise CPU is forced. Encoding runs in a worker thread so the
    event loop is not blocked. E5-family models get `query:` / `passage:`
    prefixes.
    """

    name = "local"

    def __init__(self, model: str = DEFAULT_LOCAL_MODEL) -> None:
        self.model = model
        self._model = None
        self._load_lock = asyncio.Lock()

    def _load(self):
        use_gpu = False
        try:
            use_gpu = has_enough_vram()
        except Exception:
            logger.exception("VRAM check failed; falling back to CPU")

        if not use_gpu:
            os.environ["CUDA_VISIBLE_DEVICES"] = ""

        from sentence_transformers import SentenceTransformer

        device = "cuda" if use_gpu else "cpu"
        logger.info("Loading embedding model %s on %s", self.model, device.upper())
        return SentenceTransformer(self.model, device=device)

    async def _get_model(self):
        async with self._load_lock:
            if self._model is None:
                self._model = await asyncio.to_thread(self._load)
        return self._model

    async def embed(self, texts: list[str], credential: str, is_query: bool = False) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0), dtype="float32")

        model = await self._get_model()

        if "e5" in self.model.lower():
            prefix = "query: " if is_query else "passage: "
            texts = [prefix + text for text in texts]

        try:
            vectors = await asyncio.to_thread(model.encode, list(texts))
        except RuntimeError as exc:
            raise EmbeddingProviderError(f"Local embedding failed: {exc}") from exc

        return np.asarray(vectors, dtype="float32")

    async def aclose(self) -> None:
        self._model = None


def build_provider(config: EngineConfig) -> EmbeddingProvider:
    """Create the provider selected by `config.embedding_provider`.

    Raises:
        ValueError: Unknown provider name.
    """
    if config.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            model=config.embedding_model or DEFAULT_OPENAI_MODEL,
            url=config.embedding_url,
            timeout_seconds=config.embedding_timeout_seconds,
            retry_attempts=config.embedding_retry_attempts,
            backoff_seconds=config.embedding_backoff_seconds,
        )

    if config.embedding_provider == "local":
        return LocalEmbeddingProvider(model=config.embedding_model or DEFAULT_LOCAL_MODEL)

    raise ValueError(f"Unsupported embedding provider: {config.embedding_provider}")
