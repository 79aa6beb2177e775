"""Short-term per-user session memory with TTL eviction.

Purpose of this abstraction:
    Maintain one active `ConversationSession` per user as a bounded in-memory
    buffer of the most recent chat turns. Sessions live only in process memory;
    nothing is mirrored to disk.

Lifecycle:
    NEW -> ACTIVE (append) -> EXPIRED (removed by `sweep`)
    ACTIVE -> RESET -> NEW (fresh, empty session under a new id)

Concurrency:
    - `_registry_lock` guards the user -> session and user -> lock maps and is
      only held for dictionary lookups and swaps.
    - A per-user `threading.Lock` serializes every mutation for that user, so
      operations on different users never wait on each other.
    - `sweep` works on a snapshot and only takes per-user locks with
      `acquire(blocking=False)`; a user busy on the request path is skipped and
      reconsidered on the next sweep.

Short-term vs long-term memory:
    This store never embeds anything. Semantic recall of older turns is served
    by the shared vector index through `contextmem.memory.gateway`.
"""

import logging
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable

from contextmem.errors import ValidationError
from contextmem.memory.models import ChatMessage, ConversationSession, SessionInfo


logger = logging.getLogger(__name__)


MAX_RECENT_MESSAGES = 15
SESSION_TTL_SECONDS = 48 * 3600
SWEEP_INTERVAL_SECONDS = 3600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Thread-safe map of user id to the user's active conversation session.

    Args:
        max_messages: Capacity N of each session buffer; oldest messages drop.
        ttl_seconds: Inactivity window after which `sweep` evicts a session.
        clock: Zero-argument callable returning an aware `datetime`.
    """

    def __init__(
        self,
        max_messages: int = MAX_RECENT_MESSAGES,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")

        self.max_messages = max_messages
        self.ttl_seconds = ttl_seconds
        self._clock = clock or utc_now

        self._sessions: dict[str, ConversationSession] = {}
        self._user_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def _user_guard(self, user_id: str):
        """Hold the per-user lock for the duration of the block.

        The sweeper may retire a user's lock while another thread is blocked on
        it. After acquiring, the lock is re-checked against the registry and the
        acquisition is retried on a stale lock.
        """
        while True:
            with self._registry_lock:
                lock = self._user_locks.setdefault(user_id, threading.Lock())

            lock.acquire()

            with self._registry_lock:
                current = self._user_locks.get(user_id)

            if current is lock:
                break
            lock.release()

        try:
            yield
        finally:
            lock.release()

    def _new_session(self, user_id: str) -> ConversationSession:
        now = self._clock()
        return ConversationSession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            messages=deque(maxlen=self.max_messages),
            last_activity=now,
            created_at=now,
        )

    def _get_or_create_locked(self, user_id: str) -> ConversationSession:
        with self._registry_lock:
            session = self._sessions.get(user_id)

        if session is not None:
            return session

        session = self._new_session(user_id)
        with self._registry_lock:
            self._sessions[user_id] = session

        logger.info("Created conversation session %s for user %s", session.session_id, user_id)
        return session

    def get_or_create(self, user_id: str) -> ConversationSession:
        """Return the user's active session, creating an empty one if needed."""
        _require_user(user_id)
        with self._user_guard(user_id):
            return self._get_or_create_locked(user_id)

    def append(self, message: ChatMessage) -> ConversationSession:
        """Append a message to its owner's session and refresh `last_activity`.

        The deque capacity trims the buffer to the most recent N messages.
        """
        _require_user(message.user_id)
        with self._user_guard(message.user_id):
            session = self._get_or_create_locked(message.user_id)
            session.messages.append(message)
            session.last_activity = self._clock()
            return session

    def reset(self, user_id: str) -> str:
        """Replace the active session with a fresh empty one.

        Returns:
            The new session id; always different from the replaced session's id.
        """
        _require_user(user_id)
        with self._user_guard(user_id):
            with self._registry_lock:
                previous = self._sessions.get(user_id)

            session = self._new_session(user_id)
            while previous is not None and session.session_id == previous.session_id:
                session = self._new_session(user_id)

            with self._registry_lock:
                self._sessions[user_id] = session

        logger.info("Started new conversation session %s for user %s", session.session_id, user_id)
        return session.session_id

    def recent(self, user_id: str, limit: int | None = None) -> list[ChatMessage]:
        """Return up to `limit` trailing messages, oldest first.

        A user without a session gets `[]`; no session is created.
        """
        if limit is None:
            limit = self.max_messages
        if limit <= 0:
            return []

        with self._registry_lock:
            session = self._sessions.get(user_id)

        if session is None:
            return []

        with self._user_guard(user_id):
            messages = list(session.messages)

        return messages[-limit:]

    def info(self, user_id: str) -> SessionInfo | None:
        with self._registry_lock:
            session = self._sessions.get(user_id)

        if session is None:
            return None

        with self._user_guard(user_id):
            return SessionInfo(
                session_id=session.session_id,
                message_count=len(session.messages),
                last_activity=session.last_activity,
            )

    def count(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    def sweep(self, now: datetime | None = None) -> int:
        """Evict sessions idle for longer than the TTL.

        Args:
            now: Reference time; defaults to the injected clock.

        Returns:
            Number of sessions removed.

        Never blocks on a user lock: busy users are skipped.
        """
        now = now or self._clock()

        with self._registry_lock:
            snapshot = list(self._sessions.items())

        removed = 0

        for user_id, session in snapshot:
            if (now - session.last_activity).total_seconds() <= self.ttl_seconds:
                continue

            with self._registry_lock:
                lock = self._user_locks.get(user_id)

            if lock is None or not lock.acquire(blocking=False):
                continue

            try:
                with self._registry_lock:
                    current = self._sessions.get(user_id)
                    idle = (now - session.last_activity).total_seconds()
                    if current is session and idle > self.ttl_seconds:
                        del self._sessions[user_id]
                        del self._user_locks[user_id]
                        removed += 1
            finally:
                lock.release()

        if removed:
            logger.info("Cleaned up %d expired conversation sessions", removed)

        return removed


class SessionSweeper:
    """Daemon thread that calls `store.sweep()` on a fixed interval.

    Runs independently of request handling and of any event loop.
    """

    def __init__(self, store: SessionStore, interval_seconds: float = SWEEP_INTERVAL_SECONDS) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="contextmem-session-sweeper",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.store.sweep()
            except Exception:
                logger.exception("Session sweep failed")


def _require_user(user_id: str) -> None:
    if not user_id or not str(user_id).strip():
        raise ValidationError("user_id is required")
