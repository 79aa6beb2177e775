"""Memory subsystem package.

Architectural role:
    Groups the stateful memory components used by the engine:
    - `models`: shared record types.
    - `session_store`: short-term per-user session buffering with TTL eviction.
    - `embeddings`: credential-keyed embedding providers.
    - `vector_index`: append-only FAISS index with parallel item metadata.
    - `gateway`: lazy, single-flight index construction and pending-queue drain.

All state is process memory only and is lost on restart.
"""
