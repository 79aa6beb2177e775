"""Filtered semantic search over the shared vector index.

Retrieval and ranking model:
    The index is multi-tenant; isolation happens here at query time.
    1. Ask the gateway for `limit * 2` nearest candidates (oversampling to
       compensate for filtered-out hits).
    2. Keep items owned by `user_id`, of the requested type, that are not the
       sentinel seed.
    3. Drop weak matches (`score <= threshold`).
    4. Return the first `limit`, preserving descending similarity order.

    Fewer than `limit` results are returned when filters remove candidates;
    this is accepted, not compensated further.
"""

from contextmem.errors import ValidationError
from contextmem.memory.gateway import SENTINEL_ID, EmbeddingGateway
from contextmem.memory.models import IndexedItem, ItemType


RELEVANCE_THRESHOLD = 0.6
OVERSAMPLE_FACTOR = 2


class Retriever:
    def __init__(self, gateway: EmbeddingGateway, threshold: float = RELEVANCE_THRESHOLD) -> None:
        self.gateway = gateway
        self.threshold = threshold

    async def search_chat(self, query, user_id, credential, limit=5) -> list[tuple[IndexedItem, float]]:
        return await self._search(query, user_id, credential, ItemType.CHAT, limit)

    async def search_documents(self, query, user_id, credential, limit=5) -> list[tuple[IndexedItem, float]]:
        return await self._search(query, user_id, credential, ItemType.DOCUMENT, limit)

    async def _search(self, query, user_id, credential, item_type, limit):
        if not query or not query.strip():
            raise ValidationError("Search query must not be empty")
        if limit <= 0:
            return []

        candidates = await self.gateway.query(query, credential, limit * OVERSAMPLE_FACTOR)

        hits = [
            (item, score)
            for item, score in candidates
            if item.user_id == user_id
            and item.item_type is item_type
            and item.ref_id != SENTINEL_ID
            and score > self.threshold
        ]

        return hits[:limit]

    def list_documents(self, user_id: str) -> list[dict]:
        """Unique documents indexed for `user_id`, in upload order.

        Scans index metadata directly; no embedding call is made.
        """
        index = self.gateway.index
        if index is None:
            return []

        documents = {}
        for item in index.items():
            if item.user_id != user_id or item.item_type is not ItemType.DOCUMENT:
                continue

            document_id = item.metadata.get("document_id")
            if not document_id or document_id in documents:
                continue

            documents[document_id] = {
                "id": document_id,
                "file_name": item.metadata.get("file_name"),
                "file_type": item.metadata.get("file_type"),
                "uploaded_at": item.metadata.get("uploaded_at"),
                "total_chunks": item.metadata.get("total_chunks"),
            }

        return list(documents.values())
