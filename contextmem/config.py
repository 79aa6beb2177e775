"""Runtime configuration for the memory engine.

Architectural role:
    Centralizes every tunable used by the session store, embedding gateway,
    ingestion pipeline, context assembler and completion client. Values are
    read from the process environment (after `load_dotenv()`) when this module
    is imported; tests construct `EngineConfig(...)` with explicit overrides.

Credentials:
    No API key is configured here. Credentials are supplied per call by the
    caller and passed explicitly through every layer.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
OPENAI_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"


@dataclass(frozen=True)
class EngineConfig:
    """Engine settings.

    Relevant environment variables:
        - `CM_MAX_RECENT_MESSAGES`, `CM_SESSION_TTL_HOURS`, `CM_SWEEP_INTERVAL_SECONDS`
        - `CM_EMBEDDING_PROVIDER` (`openai` | `local`), `CM_EMBEDDING_MODEL`,
          `CM_EMBEDDING_URL`, `CM_EMBEDDING_TIMEOUT_SECONDS`,
          `CM_EMBEDDING_RETRY_ATTEMPTS`, `CM_EMBEDDING_BACKOFF_SECONDS`,
          `CM_EMBEDDING_BATCH_SIZE`
        - `CM_RELEVANCE_THRESHOLD`, `CM_CHUNK_SIZE`, `CM_CHUNK_OVERLAP`
        - `CM_RECENT_LIMIT`, `CM_HISTORY_LIMIT`, `CM_DOCUMENT_LIMIT`
        - `CM_INDEX_WORKERS`, `CM_INDEX_QUEUE_SIZE`
        - `CM_COMPLETION_URL`, `CM_COMPLETION_MODEL`, `CM_COMPLETION_TEMPERATURE`,
          `CM_COMPLETION_MAX_TOKENS`, `CM_COMPLETION_TIMEOUT_SECONDS`
    """

    # Session store
    max_recent_messages: int = int(os.getenv("CM_MAX_RECENT_MESSAGES", "15"))
    session_ttl_hours: float = float(os.getenv("CM_SESSION_TTL_HOURS", "48"))
    sweep_interval_seconds: float = float(os.getenv("CM_SWEEP_INTERVAL_SECONDS", "3600"))

    # Embedding provider
    embedding_provider: str = os.getenv("CM_EMBEDDING_PROVIDER", "openai").strip().lower()
    # Empty means the provider default (`text-embedding-3-small` or `intfloat/multilingual-e5-small`).
    embedding_model: str = os.getenv("CM_EMBEDDING_MODEL", "").strip()
    embedding_url: str = os.getenv("CM_EMBEDDING_URL", OPENAI_EMBEDDINGS_URL).strip()
    embedding_timeout_seconds: float = float(os.getenv("CM_EMBEDDING_TIMEOUT_SECONDS", "60"))
    embedding_retry_attempts: int = int(os.getenv("CM_EMBEDDING_RETRY_ATTEMPTS", "3"))
    embedding_backoff_seconds: float = float(os.getenv("CM_EMBEDDING_BACKOFF_SECONDS", "0.5"))
    embedding_batch_size: int = int(os.getenv("CM_EMBEDDING_BATCH_SIZE", "64"))

    # Retrieval
    relevance_threshold: float = float(os.getenv("CM_RELEVANCE_THRESHOLD", "0.6"))
    recent_limit: int = int(os.getenv("CM_RECENT_LIMIT", "8"))
    history_limit: int = int(os.getenv("CM_HISTORY_LIMIT", "4"))
    document_limit: int = int(os.getenv("CM_DOCUMENT_LIMIT", "3"))

    # Ingestion
    chunk_size: int = int(os.getenv("CM_CHUNK_SIZE", "1000"))
    chunk_overlap: int = int(os.getenv("CM_CHUNK_OVERLAP", "200"))

    # Background indexing
    index_workers: int = int(os.getenv("CM_INDEX_WORKERS", "4"))
    index_queue_size: int = int(os.getenv("CM_INDEX_QUEUE_SIZE", "1000"))

    # Completion
    completion_url: str = os.getenv("CM_COMPLETION_URL", OPENAI_COMPLETIONS_URL).strip()
    completion_model: str = os.getenv("CM_COMPLETION_MODEL", "gpt-3.5-turbo").strip()
    completion_temperature: float = float(os.getenv("CM_COMPLETION_TEMPERATURE", "0.7"))
    completion_max_tokens: int = int(os.getenv("CM_COMPLETION_MAX_TOKENS", "500"))
    completion_timeout_seconds: float = float(os.getenv("CM_COMPLETION_TIMEOUT_SECONDS", "120"))

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_hours * 3600
