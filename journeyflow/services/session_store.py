"""Thread-safe in-memory registry of live conversation sessions.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Count ceiling** (``SESSION_MAX_ACTIVE``): the least recently used
  session is dropped when a new one would exceed it.
• **Idle TTL** (``SESSION_IDLE_TTL_SECONDS``): sessions untouched for
  longer are swept on every ``put``/``get``.
• **threading.Lock** guards the mapping only; each session serialises its
  own actions.
• Purely ephemeral.  A visitor whose session was evicted starts over; the
  journeys that matter are already in the database.

Usage
─────
>>> store = SessionStore(max_sessions=100, idle_ttl_seconds=600)
>>> store.put(session)
>>> store.get(session.session_id)
<ConversationSession ...>
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict

from journeyflow.config import SESSION_IDLE_TTL_SECONDS, SESSION_MAX_ACTIVE
from journeyflow.errors import NotFoundError
from journeyflow.session import ConversationSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Least-Recently-Used session map bounded by count and idle time."""

    def __init__(
        self,
        max_sessions: int = SESSION_MAX_ACTIVE,
        idle_ttl_seconds: float = SESSION_IDLE_TTL_SECONDS,
    ) -> None:
        self._max_sessions = max_sessions
        self._idle_ttl = idle_ttl_seconds
        self._store: OrderedDict[str, ConversationSession] = OrderedDict()
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        expired = [
            sid for sid, s in self._store.items()
            if now - s.last_activity > self._idle_ttl
        ]
        for sid in expired:
            del self._store[sid]
        if expired:
            logger.info("Sessions: expired %d idle session(s)", len(expired))

    # ── Core operations ──────────────────────────────────────────────

    def put(self, session: ConversationSession) -> None:
        """Register *session*.  Evicts LRU entries if needed."""
        with self._lock:
            self._sweep(time.monotonic())
            self._store.pop(session.session_id, None)
            while len(self._store) >= self._max_sessions and self._store:
                evicted_id, _ = self._store.popitem(last=False)
                logger.info("Sessions: evicted %s (capacity %d)", evicted_id, self._max_sessions)
            self._store[session.session_id] = session

    def get(self, session_id: str) -> ConversationSession:
        """Return the session (promoting it to MRU) or raise ``NotFoundError``.

        A lookup counts as activity, so a session stays alive while a
        client polls it or a turn is running.
        """
        with self._lock:
            now = time.monotonic()
            self._sweep(now)
            session = self._store.get(session_id)
            if session is None:
                raise NotFoundError("Session not found or expired.")
            session.last_activity = now
            self._store.move_to_end(session_id)
            return session

    def discard(self, session_id: str) -> bool:
        """Remove a single session.  Returns ``True`` if it existed."""
        with self._lock:
            return self._store.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._store)
