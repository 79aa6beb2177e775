"""Context assembly for the generation step.

Retrieval strategy, in priority order (each section capped):
    1. Recent: the last `recent_limit` session messages, chronological.
    2. Relevant History: semantic chat search, minus ids already in Recent.
    3. Documents: semantic document search for the same user.

Sections that produced anything are labeled and emitted in that order. When all
three are empty a single `NO_CONTEXT_MARKER` segment is emitted, so the
downstream prompt always receives an explicit instruction.

`used_context` is true iff step 2 or 3 produced at least one hit. Semantic
steps run only when a credential is supplied; without one only Recent is used.

Consistency:
    Chat indexing is fire-and-forget, so the user's own just-sent message may
    not be searchable yet. Recent covers it through the session store.
"""

import asyncio
import logging

from contextmem.errors import ValidationError
from contextmem.memory.models import ContextBundle
from contextmem.memory.session_store import SessionStore
from contextmem.retrieval.retriever import Retriever


logger = logging.getLogger(__name__)


NO_CONTEXT_MARKER = "No previous conversation context or document content available."

RECENT_LABEL = "RECENT CONVERSATION:"
HISTORY_LABEL = "RELEVANT HISTORY:"
DOCUMENTS_LABEL = "DOCUMENTS:"

RECENT_LIMIT = 8
HISTORY_LIMIT = 4
DOCUMENT_LIMIT = 3


class ContextAssembler:
    def __init__(
        self,
        sessions: SessionStore,
        retriever: Retriever,
        recent_limit: int = RECENT_LIMIT,
        history_limit: int = HISTORY_LIMIT,
        document_limit: int = DOCUMENT_LIMIT,
    ) -> None:
        self.sessions = sessions
        self.retriever = retriever
        self.recent_limit = recent_limit
        self.history_limit = history_limit
        self.document_limit = document_limit

    async def assemble(self, query, user_id, credential=None, k=None) -> ContextBundle:
        """Build the labeled context bundle for one request.

        Args:
            query: Current user input.
            user_id: Requesting user; every semantic hit is filtered to it.
            credential: Embedding credential; `None` skips semantic search.
            k: Optional cap overriding both semantic section limits.

        Raises:
            ValidationError: Empty query.
            CredentialMismatch / CredentialInvalid / EmbeddingProviderError:
                Propagated from semantic search.
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")

        history_limit = k if k is not None else self.history_limit
        document_limit = k if k is not None else self.document_limit

        recent = self.sessions.recent(user_id, self.recent_limit)
        history = []
        documents = []

        if credential:
            chat_hits, document_hits = await asyncio.gather(
                self.retriever.search_chat(query, user_id, credential, history_limit * 2),
                self.retriever.search_documents(query, user_id, credential, document_limit),
            )

            recent_ids = {message.id for message in recent}
            history = [
                item for item, _score in chat_hits
                if item.ref_id not in recent_ids
            ][:history_limit]
            documents = [item for item, _score in document_hits][:document_limit]

        segments = []

        if recent:
            lines = [f"{message.role}: {message.content}" for message in recent]
            segments.append(RECENT_LABEL + "\n" + "\n".join(lines))

        if history:
            segments.append(HISTORY_LABEL + "\n" + "\n\n".join(item.text for item in history))

        if documents:
            blocks = [
                f"Document: {item.metadata.get('file_name', 'unknown')}\nContent: {item.text}"
                for item in documents
            ]
            segments.append(DOCUMENTS_LABEL + "\n" + "\n\n".join(blocks))

        if not segments:
            segments = [NO_CONTEXT_MARKER]

        logger.debug(
            "Assembled context: recent=%d history=%d documents=%d",
            len(recent),
            len(history),
            len(documents),
        )

        return ContextBundle(
            segments=segments,
            used_context=bool(history or documents),
            recent=recent,
            history=history,
            documents=documents,
        )
