"""Contextual memory and retrieval engine.

Architectural role:
    Keeps short-term conversation state per user, ingests documents into
    overlapping chunks, embeds chat and document content into one shared vector
    index, and assembles labeled context for a downstream generation step.

Package layout:
    - `memory`: session store, vector index, embedding providers and gateway.
    - `ingestion`: text extraction, recursive splitting, document pipeline.
    - `retrieval`: filtered semantic search and context assembly.
    - `prompting` / `llm`: prompt construction and completion transport.
    - `core`: the `MemoryEngine` facade exposing public operations.
    - `api`: FastAPI adapter over the engine.
"""

from contextmem.config import EngineConfig
from contextmem.core.engine import MemoryEngine

__all__ = ["EngineConfig", "MemoryEngine"]
