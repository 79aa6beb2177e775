"""
HTTP API adapter for the contextual memory engine.

Architectural role:
- Expose engine operations as JSON routes under `/api`.
- Resolve caller identity and credential from request headers/body.
- Delegate every operation to one `MemoryEngine` instance owned by the app.
- Map the `contextmem.errors` taxonomy to HTTP status codes in one handler.

Endpoint responsibilities:
- `POST /api/chat`: answer one chat turn with assembled context.
- `POST /api/chat/new`: start a fresh conversation session.
- `GET /api/chat/session`: active session summary (or `null`).
- `GET /api/chat/history`: semantic history search, or recent messages when
  no query/credential is given.
- `GET /api/chat/stats`: index, pending queue and session counters.
- `POST /api/documents/upload`: multipart upload, extract, chunk and index.
- `GET /api/documents`: documents indexed for the caller.
- `POST /api/context/search`: raw context bundle for a query.
- `POST /api/email/draft`: draft an email, grounded in relevant chat history.
- `POST /api/email/draft/from-chat`: draft an email from the recent turns.

Identity and credentials:
- `X-User-Id` header carries the already-authenticated user id; auth itself
  is external to this adapter.
- The credential comes from the request body (`api_key`) or the `X-Api-Key`
  header; the body wins when both are present.

Error handling strategy:
| Error                                         | Status |
|-----------------------------------------------|--------|
| `ValidationError`, `CredentialRequired`       | 400    |
| `CredentialMismatch`                          | 409    |
| `CredentialInvalid`                           | 401    |
| `UnsupportedFormat`                           | 415    |
| `EmbeddingProviderError`, `CompletionError`   | 502    |

Lifecycle:
- App lifespan calls `engine.start()` (sweeper thread + indexing workers)
  and `engine.aclose()` on shutdown.

Run with: `uvicorn contextmem.api.http_api:create_app --factory`.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from contextmem.core.engine import MemoryEngine
from contextmem.errors import (
    CompletionError,
    ContextMemError,
    CredentialInvalid,
    CredentialMismatch,
    CredentialRequired,
    EmbeddingProviderError,
    UnsupportedFormat,
    ValidationError,
)
from contextmem.logging_setup import configure_logging


logger = logging.getLogger(__name__)


# Order matters: subclasses before their bases.
ERROR_STATUS = (
    (CredentialMismatch, 409),
    (CredentialInvalid, 401),
    (CredentialRequired, 400),
    (ValidationError, 400),
    (UnsupportedFormat, 415),
    (EmbeddingProviderError, 502),
    (CompletionError, 502),
)


def status_for(error: ContextMemError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


# ============================================================
# Request Schemas
# ============================================================

class ChatRequest(BaseModel):
    message: str
    api_key: str | None = None


class ContextSearchRequest(BaseModel):
    query: str
    k: int | None = None
    api_key: str | None = None


class EmailDraftRequest(BaseModel):
    context: str
    recipient: str | None = None
    tone: str = "professional"
    subject_hint: str | None = None
    include_context: bool = True
    api_key: str | None = None


class ChatEmailRequest(BaseModel):
    tone: str = "professional"
    api_key: str | None = None


# ============================================================
# Serialization helpers
# ============================================================

def _message_dict(message) -> dict:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }


def _bundle_dict(bundle) -> dict:
    return {
        "segments": bundle.segments,
        "used_context": bundle.used_context,
        "recent": len(bundle.recent),
        "history": len(bundle.history),
        "documents": len(bundle.documents),
    }


def _draft_dict(draft) -> dict:
    return {
        "subject": draft.subject,
        "body": draft.body,
        "tone": draft.tone,
        "generated_at": draft.generated_at.isoformat(),
    }


# ============================================================
# App factory
# ============================================================

def create_app(engine: MemoryEngine | None = None) -> FastAPI:
    """Build the FastAPI app around `engine` (a default engine if omitted)."""
    configure_logging()
    engine = engine or MemoryEngine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start()
        logger.info("Memory engine started")
        yield
        await engine.aclose()
        logger.info("Memory engine stopped")

    app = FastAPI(title="contextmem", lifespan=lifespan)
    app.state.engine = engine

    @app.exception_handler(ContextMemError)
    async def handle_engine_error(request: Request, exc: ContextMemError):
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    def current_user(x_user_id: str | None = Header(default=None)) -> str:
        if not x_user_id or not x_user_id.strip():
            raise ValidationError("X-User-Id header is required")
        return x_user_id.strip()

    def header_credential(x_api_key: str | None = Header(default=None)) -> str | None:
        return x_api_key

    # ------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------

    @app.post("/api/chat")
    async def chat(
        body: ChatRequest,
        user_id: str = Depends(current_user),
        api_key: str | None = Depends(header_credential),
    ):
        reply = await engine.process_chat(body.message, user_id, body.api_key or api_key)
        return {
            "id": reply.id,
            "response": reply.response,
            "timestamp": reply.timestamp.isoformat(),
            "used_context": reply.context.used_context,
        }

    @app.post("/api/chat/new")
    async def new_conversation(user_id: str = Depends(current_user)):
        return {"session_id": engine.start_new_conversation(user_id)}

    @app.get("/api/chat/session")
    async def session_info(user_id: str = Depends(current_user)):
        info = engine.get_session_info(user_id)
        if info is None:
            return {"session": None}

        return {
            "session": {
                "session_id": info.session_id,
                "message_count": info.message_count,
                "last_activity": info.last_activity.isoformat(),
            }
        }

    @app.get("/api/chat/history")
    async def chat_history(
        query: str | None = None,
        limit: int = 10,
        user_id: str = Depends(current_user),
        api_key: str | None = Depends(header_credential),
    ):
        if query and query.strip():
            messages = await engine.search_history(query, user_id, api_key, limit)
        else:
            messages = engine.get_recent_messages(user_id, limit)

        return {"messages": [_message_dict(message) for message in messages]}

    @app.get("/api/chat/stats")
    async def stats():
        return engine.get_stats()

    # ------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------

    @app.post("/api/documents/upload")
    async def upload_document(
        file: UploadFile = File(...),
        api_key: str | None = Form(default=None),
        user_id: str = Depends(current_user),
        header_key: str | None = Depends(header_credential),
    ):
        data = await file.read()
        logger.info("Upload from user %s: %s (%d bytes)", user_id, file.filename, len(data))

        document = await engine.process_document(
            data,
            file.content_type or "application/octet-stream",
            user_id,
            api_key or header_key,
            file_name=file.filename or "document",
        )

        return {
            "id": document.id,
            "file_name": document.file_name,
            "file_type": document.file_type,
            "total_chunks": document.total_chunks,
            "uploaded_at": document.uploaded_at.isoformat(),
        }

    @app.get("/api/documents")
    async def documents(user_id: str = Depends(current_user)):
        return {"documents": engine.list_documents(user_id)}

    # ------------------------------------------------------------
    # Context
    # ------------------------------------------------------------

    @app.post("/api/context/search")
    async def context_search(
        body: ContextSearchRequest,
        user_id: str = Depends(current_user),
        api_key: str | None = Depends(header_credential),
    ):
        bundle = await engine.search_context(body.query, user_id, body.api_key or api_key, body.k)
        return _bundle_dict(bundle)

    # ------------------------------------------------------------
    # Email
    # ------------------------------------------------------------

    @app.post("/api/email/draft")
    async def email_draft(
        body: EmailDraftRequest,
        user_id: str = Depends(current_user),
        api_key: str | None = Depends(header_credential),
    ):
        draft = await engine.draft_email(
            body.context,
            user_id,
            body.api_key or api_key,
            recipient=body.recipient,
            tone=body.tone,
            subject_hint=body.subject_hint,
            include_context=body.include_context,
        )
        return _draft_dict(draft)

    @app.post("/api/email/draft/from-chat")
    async def email_draft_from_chat(
        body: ChatEmailRequest,
        user_id: str = Depends(current_user),
        api_key: str | None = Depends(header_credential),
    ):
        draft = await engine.draft_email_from_chat(user_id, body.api_key or api_key, body.tone)
        return _draft_dict(draft)

    return app
