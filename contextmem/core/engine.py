"""Engine facade exposing the memory and retrieval operations.

Architectural role:
    Owns one explicitly constructed set of collaborators (session store,
    sweeper, embedding gateway, retriever, context assembler, ingestion
    pipeline). There is no process-wide state: each `MemoryEngine` instance is
    independent, so tests can build fresh instances with an injected clock and
    a fake embedding provider.

Exposed operations:
    - `process_document(data, mime_type, user_id, credential)`
    - `add_chat_message(message, credential=None)` (best-effort indexing)
    - `search_context(query, user_id, credential=None, k=None)`
    - `start_new_conversation(user_id)`
    - `get_session_info(user_id)`
    - `draft_email(context, user_id, credential, ...)`

Chat turn control flow (`process_chat`):
    1. Require a credential.
    2. Assemble context (recent + relevant history + documents).
    3. Build the prompt and call the completion client in a worker thread.
    4. Record user and assistant turns: session append now, indexing
       fire-and-forget.

Error handling strategy:
    Synchronous operations raise `contextmem.errors` types. Background
    indexing failures are logged by the gateway workers and never reach the
    chat turn.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable

from contextmem.config import EngineConfig
from contextmem.errors import CompletionError, ContextMemError, ValidationError
from contextmem.ingestion.extractors import TextExtractorRegistry
from contextmem.ingestion.pipeline import DocumentIngestionPipeline
from contextmem.ingestion.splitter import RecursiveTextSplitter
from contextmem.llm.service import generate_answer
from contextmem.memory.embeddings import EmbeddingProvider, build_provider
from contextmem.memory.gateway import EmbeddingGateway, require_credential
from contextmem.memory.models import (
    CHAT_ROLES,
    EMAIL_TONES,
    ChatMessage,
    ChatReply,
    ContextBundle,
    EmailDraft,
    IndexedItem,
    ProcessedDocument,
    SessionInfo,
)
from contextmem.memory.session_store import SessionStore, SessionSweeper, utc_now
from contextmem.prompting.prompt_builder import (
    build_chat_prompt,
    build_email_prompt,
    parse_email_draft,
)
from contextmem.retrieval.context_builder import ContextAssembler
from contextmem.retrieval.retriever import Retriever


logger = logging.getLogger(__name__)


CompletionClient = Callable[[list, str], str]


class MemoryEngine:
    """Contextual memory and retrieval service.

    Args:
        config: Engine settings; defaults to environment-derived `EngineConfig()`.
        provider: Embedding provider; defaults to `build_provider(config)`.
        clock: Zero-argument callable returning an aware `datetime`.
        completion_client: Blocking `(messages, credential) -> text` callable;
            defaults to the OpenAI-compatible client in `contextmem.llm`.
        extractors: Text extractor registry for uploads.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        provider: EmbeddingProvider | None = None,
        clock: Callable[[], datetime] | None = None,
        completion_client: CompletionClient | None = None,
        extractors: TextExtractorRegistry | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._clock = clock or utc_now

        self.sessions = SessionStore(
            max_messages=self.config.max_recent_messages,
            ttl_seconds=self.config.session_ttl_seconds,
            clock=self._clock,
        )
        self.sweeper = SessionSweeper(self.sessions, self.config.sweep_interval_seconds)

        self.gateway = EmbeddingGateway(
            provider or build_provider(self.config),
            batch_size=self.config.embedding_batch_size,
            workers=self.config.index_workers,
            queue_size=self.config.index_queue_size,
        )
        self.retriever = Retriever(self.gateway, threshold=self.config.relevance_threshold)
        self.assembler = ContextAssembler(
            self.sessions,
            self.retriever,
            recent_limit=self.config.recent_limit,
            history_limit=self.config.history_limit,
            document_limit=self.config.document_limit,
        )
        self.ingestion = DocumentIngestionPipeline(
            self.gateway,
            splitter=RecursiveTextSplitter(self.config.chunk_size, self.config.chunk_overlap),
            extractors=extractors,
            clock=self._clock,
        )
        self._complete = completion_client or self._default_completion

    def _default_completion(self, messages: list, credential: str) -> str:
        return generate_answer(messages, credential, self.config)

    async def start(self) -> None:
        """Start the TTL sweeper thread and background indexing workers."""
        self.sweeper.start()
        self.gateway.start()

    async def aclose(self) -> None:
        self.sweeper.stop()
        await self.gateway.aclose()

    def create_chat_message(self, role: str, content: str, user_id: str) -> ChatMessage:
        if role not in CHAT_ROLES:
            raise ValidationError(f"Unsupported role: {role}")
        if not content or not str(content).strip():
            raise ValidationError("Message content must not be empty")
        if not user_id or not str(user_id).strip():
            raise ValidationError("user_id is required")

        return ChatMessage(
            id=str(uuid.uuid4()),
            role=role,
            content=str(content),
            timestamp=self._clock(),
            user_id=user_id,
        )

    async def process_document(
        self,
        data: bytes,
        mime_type: str,
        user_id: str,
        credential: str | None,
        file_name: str = "document",
    ) -> ProcessedDocument:
        return await self.ingestion.process_document(data, mime_type, file_name, user_id, credential)

    async def add_chat_message(self, message: ChatMessage, credential: str | None = None) -> None:
        """Record a chat turn in the session and schedule best-effort indexing.

        Returns once the session is updated; indexing happens in the background
        (or waits in the pending queue when no credential is given).
        """
        if not message.content or not message.content.strip():
            logger.warning("Skipping empty message content (%s)", message.id)
            return

        self.sessions.append(message)
        self.gateway.submit(IndexedItem.from_message(message), credential)

    async def search_context(
        self,
        query: str,
        user_id: str,
        credential: str | None = None,
        k: int | None = None,
    ) -> ContextBundle:
        return await self.assembler.assemble(query, user_id, credential, k)

    def start_new_conversation(self, user_id: str) -> str:
        return self.sessions.reset(user_id)

    def get_session_info(self, user_id: str) -> SessionInfo | None:
        return self.sessions.info(user_id)

    def get_recent_messages(self, user_id: str, limit: int | None = None) -> list[ChatMessage]:
        return self.sessions.recent(user_id, limit)

    async def search_history(
        self,
        query: str,
        user_id: str,
        credential: str | None = None,
        limit: int = 10,
    ) -> list[ChatMessage]:
        """Semantic chat-history search, rebuilt into `ChatMessage` records.

        Without a credential, falls back to the user's recent session messages.
        """
        if not credential:
            logger.info("No credential for history search, returning recent messages only")
            return self.get_recent_messages(user_id, limit)

        hits = await self.retriever.search_chat(query, user_id, credential, limit)
        return [_message_from_item(item) for item, _score in hits]

    def list_documents(self, user_id: str) -> list[dict]:
        return self.retriever.list_documents(user_id)

    def get_stats(self) -> dict:
        return {
            "vector_store": self.gateway.stats(),
            "sessions": self.sessions.count(),
            "embedding_provider": self.gateway.provider.name,
            "llm_model": self.config.completion_model,
        }

    async def process_chat(self, message: str, user_id: str, credential: str | None) -> ChatReply:
        """Answer one chat turn using assembled context."""
        credential = require_credential(credential)
        user_message = self.create_chat_message("user", message, user_id)

        context = await self.search_context(message, user_id, credential)
        prompt = build_chat_prompt(context.segments, message)

        response = await asyncio.to_thread(self._complete, prompt, credential)
        if not response or not response.strip():
            raise CompletionError("Completion provider returned an empty response")

        assistant_message = self.create_chat_message("assistant", response, user_id)

        await self.add_chat_message(user_message, credential)
        await self.add_chat_message(assistant_message, credential)

        return ChatReply(
            id=assistant_message.id,
            response=response,
            timestamp=assistant_message.timestamp,
            context=context,
        )

    async def draft_email(
        self,
        context: str,
        user_id: str,
        credential: str | None,
        recipient: str | None = None,
        tone: str = "professional",
        subject_hint: str | None = None,
        include_context: bool = True,
    ) -> EmailDraft:
        """Draft an email about `context`, optionally grounded in chat history.

        Background retrieval is best-effort: when it fails the draft is
        generated without it.
        """
        credential = require_credential(credential)
        if not context or not context.strip():
            raise ValidationError("Email context must not be empty")
        if tone not in EMAIL_TONES:
            raise ValidationError(f"Unsupported tone: {tone}")

        background = ""
        if include_context:
            try:
                hits = await self.retriever.search_chat(context, user_id, credential, limit=3)
                background = "\n\n".join(item.text for item, _score in hits)
            except ContextMemError as exc:
                logger.warning("Could not retrieve email background, drafting without it: %s", exc)

        messages = build_email_prompt(context, tone, recipient, subject_hint, background)
        response = await asyncio.to_thread(self._complete, messages, credential)
        subject, body = parse_email_draft(response, subject_hint, context)

        logger.info("Drafted %s email for %s", tone, user_id)
        return EmailDraft(subject=subject, body=body, tone=tone, generated_at=self._clock())

    async def draft_email_from_chat(
        self,
        user_id: str,
        credential: str | None,
        tone: str = "professional",
    ) -> EmailDraft:
        recent = self.get_recent_messages(user_id, 3)
        if not recent:
            raise ValidationError("No conversation to draft an email from")

        conversation = "\n\n".join(f"{m.role}: {m.content}" for m in recent)
        return await self.draft_email(
            f"Based on our conversation: {conversation}",
            user_id,
            credential,
            tone=tone,
        )


def _message_from_item(item: IndexedItem) -> ChatMessage:
    role = item.metadata.get("role", "user")
    prefix = f"{role}: "
    content = item.text[len(prefix):] if item.text.startswith(prefix) else item.text
    # `IndexedItem.from_message` always records the timestamp.
    return ChatMessage(
        id=item.ref_id,
        role=role,
        content=content,
        timestamp=datetime.fromisoformat(item.metadata["timestamp"]),
        user_id=item.user_id,
    )
