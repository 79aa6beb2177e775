"""Append-only FAISS vector index with parallel item metadata.

Index lifecycle:
    One `VectorIndex` is created by `contextmem.memory.gateway` the first time a
    credential is available. Its dimension is fixed by the first insert (the
    sentinel seed). Items are never removed; the index lives as long as the
    owning engine instance.

Similarity:
    Vectors are L2-normalized before insertion and before search, so FAISS
    `IndexFlatIP` inner product equals cosine similarity. Scores are in [-1, 1]
    with higher meaning more similar.

Concurrency:
    `faiss` indexes are not safe for concurrent add/search; a `threading.Lock`
    serializes both and keeps `items[i]` aligned with vector `i`.
"""

import logging
import threading

import faiss
import numpy as np

from contextmem.memory.models import IndexedItem


logger = logging.getLogger(__name__)


def normalize(vectors) -> np.ndarray:
    """Return a contiguous float32 2D copy of `vectors`, L2-normalized row-wise."""
    matrix = np.array(vectors, dtype="float32", copy=True)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    matrix = np.ascontiguousarray(matrix)
    faiss.normalize_L2(matrix)
    return matrix


class VectorIndex:
    """Flat inner-product index over normalized embeddings.

    Args:
        dimension: Embedding width; every inserted and query vector must match.
    """

    def __init__(self, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")

        self.dimension = dimension
        self._index = faiss.IndexFlatIP(dimension)
        self._items: list[IndexedItem] = []
        self._lock = threading.Lock()

    def insert(self, items: list[IndexedItem], vectors) -> None:
        """Append items and their vectors.

        Raises:
            ValueError: Row count differs from item count or width differs from
                the index dimension.
        """
        if not items:
            return

        matrix = normalize(vectors)

        if matrix.shape[0] != len(items):
            raise ValueError(
                f"Vector/item count mismatch: vectors={matrix.shape[0]} items={len(items)}"
            )
        if matrix.shape[1] != self.dimension:
            raise ValueError(
                f"Vector dimension mismatch: got={matrix.shape[1]} expected={self.dimension}"
            )

        with self._lock:
            self._index.add(matrix)
            self._items.extend(items)

    def search(self, query_vector, k: int) -> list[tuple[IndexedItem, float]]:
        """Return up to `k` nearest items, descending by cosine similarity."""
        if k <= 0:
            return []

        query = normalize(query_vector)
        if query.shape[1] != self.dimension:
            raise ValueError(
                f"Query dimension mismatch: got={query.shape[1]} expected={self.dimension}"
            )

        with self._lock:
            total = self._index.ntotal
            if total == 0:
                return []
            scores, indices = self._index.search(query, min(k, total))
            items = self._items

            results = []
            for rank, idx in enumerate(indices[0]):
                if idx < 0 or idx >= len(items):
                    continue
                results.append((items[idx], float(scores[0][rank])))

        results.sort(key=lambda pair: pair[1], reverse=True)
        return results

    def items(self) -> list[IndexedItem]:
        """Snapshot of all stored items in insertion order."""
        with self._lock:
            return list(self._items)

    def count(self) -> int:
        with self._lock:
            return self._index.ntotal
