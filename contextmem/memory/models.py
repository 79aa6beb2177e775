"""Record types shared across memory, ingestion and retrieval layers."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
CHAT_ROLES = (USER_ROLE, ASSISTANT_ROLE)


class ItemType(str, Enum):
    """Type tag stored with every indexed vector."""

    CHAT = "chat"
    DOCUMENT = "document"
    SENTINEL = "sentinel"


@dataclass
class ChatMessage:
    id: str
    role: str
    content: str
    timestamp: datetime
    user_id: str

    def index_text(self) -> str:
        """Text embedded for semantic history search (`role: content`)."""
        return f"{self.role}: {self.content}"


@dataclass
class ConversationSession:
    """Bounded short-term buffer for one user.

    `messages` is a `deque(maxlen=N)`, so appending beyond capacity drops the
    oldest message.
    """

    session_id: str
    user_id: str
    messages: deque
    last_activity: datetime
    created_at: datetime


@dataclass(frozen=True)
class DocumentChunk:
    id: str
    document_id: str
    user_id: str
    content: str
    chunk_index: int
    total_chunks: int
    file_name: str
    file_type: str
    uploaded_at: datetime


@dataclass
class IndexedItem:
    """Metadata row stored at the same position as its vector in the index.

    Attributes:
        ref_id: Id of the owning `ChatMessage` or `DocumentChunk`.
        user_id: Owner used for query-time isolation.
        item_type: `ItemType` tag.
        text: Raw text payload that was embedded.
        metadata: Extra fields (role, timestamp, file name, document id, ...).
    """

    ref_id: str
    user_id: str
    item_type: ItemType
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: ChatMessage) -> "IndexedItem":
        return cls(
            ref_id=message.id,
            user_id=message.user_id,
            item_type=ItemType.CHAT,
            text=message.index_text(),
            metadata={
                "role": message.role,
                "timestamp": message.timestamp.isoformat(),
            },
        )

    @classmethod
    def from_chunk(cls, chunk: DocumentChunk) -> "IndexedItem":
        return cls(
            ref_id=chunk.id,
            user_id=chunk.user_id,
            item_type=ItemType.DOCUMENT,
            text=chunk.content,
            metadata={
                "document_id": chunk.document_id,
                "file_name": chunk.file_name,
                "file_type": chunk.file_type,
                "chunk_index": chunk.chunk_index,
                "total_chunks": chunk.total_chunks,
                "uploaded_at": chunk.uploaded_at.isoformat(),
            },
        )


@dataclass
class ProcessedDocument:
    id: str
    file_name: str
    file_type: str
    chunks: list[DocumentChunk]
    total_chunks: int
    uploaded_at: datetime
    user_id: str


@dataclass
class SessionInfo:
    session_id: str
    message_count: int
    last_activity: datetime


@dataclass
class ContextBundle:
    """Labeled context handed to the generation step.

    Attributes:
        segments: Ordered, labeled text sections (or the no-context marker).
        used_context: `True` iff history or document search produced a hit.
        recent: Recent session messages used for the first section.
        history: Relevant-history items after dedupe against `recent`.
        documents: Document chunk items.
    """

    segments: list[str]
    used_context: bool
    recent: list[ChatMessage] = field(default_factory=list)
    history: list[IndexedItem] = field(default_factory=list)
    documents: list[IndexedItem] = field(default_factory=list)


@dataclass
class ChatReply:
    id: str
    response: str
    timestamp: datetime
    context: ContextBundle


EMAIL_TONES = ("professional", "casual", "friendly")


@dataclass
class EmailDraft:
    subject: str
    body: str
    tone: str
    generated_at: datetime
