"""Session state for the slot-filling conversation.

Design decisions
────────────────
• **SessionStore interface** (``get/put/delete/touch/keys/lock``) so the
  engine never touches a global dict and a distributed store can be swapped
  in without changing the state machine.
• **OrderedDict ordered by activity**: ``touch``/``put`` move a session to
  the most-recently-active end, so the size bound evicts the session that
  has been idle longest in O(1).
• **Per-key locks**: a turn holds its session's lock across
  lookup → extract → merge → store, so two racing requests for one key
  cannot both see the same missing fields.  Different keys never contend.
  Lock entries are reference-counted and dropped once nobody holds or waits
  on them.
• **Injectable clock** for ``IdleSweeper`` so expiry is testable without
  sleeping.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Protocol

from clinic_assistant.services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 10_000
DEFAULT_IDLE_SECONDS = 15 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60


@dataclass
class Session:
    """Conversation state for one session key."""

    key: str
    created_at: float
    last_active: float
    collected: dict[str, str] = field(default_factory=dict)
    awaiting_confirmation: bool = False


class SessionStore(Protocol):
    def get(self, key: str) -> Session | None: ...

    def put(self, session: Session) -> None: ...

    def delete(self, key: str) -> bool: ...

    def touch(self, key: str, now: float) -> bool: ...

    def keys(self) -> list[str]: ...

    def lock(self, key: str): ...


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class InMemorySessionStore:
    """Process-local session store bounded by session count."""

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._guard = threading.Lock()
        self._key_locks: dict[str, _KeyLock] = {}

    # ── Per-key locking ──────────────────────────────────────────────

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold the critical section for *key* (re-entrant use is not supported)."""
        with self._guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._key_locks.pop(key, None)

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Session | None:
        with self._guard:
            return self._sessions.get(key)

    def put(self, session: Session) -> None:
        """Insert or overwrite; evicts the least-recently-active when full."""
        with self._guard:
            self._sessions[session.key] = session
            self._sessions.move_to_end(session.key)
            while len(self._sessions) > self._max_sessions:
                evicted_key, _ = self._sessions.popitem(last=False)
                logger.info("Session store full: evicted %s", evicted_key)

    def delete(self, key: str) -> bool:
        """Remove a session.  Returns ``True`` if it existed."""
        with self._guard:
            return self._sessions.pop(key, None) is not None

    def touch(self, key: str, now: float) -> bool:
        with self._guard:
            session = self._sessions.get(key)
            if session is None:
                return False
            session.last_active = now
            self._sessions.move_to_end(key)
            return True

    def keys(self) -> list[str]:
        with self._guard:
            return list(self._sessions)

    # ── Introspection ────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions


class IdleSweeper:
    """Periodically delete sessions idle for longer than ``idle_seconds``."""

    def __init__(
        self,
        store: SessionStore,
        *,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._idle_seconds = idle_seconds
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self) -> int:
        """Delete every expired session.  Returns the number removed.

        ``last_active`` is re-read under the session's lock, so a turn that
        refreshed the session while we waited keeps it alive.
        """
        removed = 0
        for key in self._store.keys():
            with self._store.lock(key):
                session = self._store.get(key)
                if session is None:
                    continue
                if self._clock() - session.last_active > self._idle_seconds:
                    self._store.delete(key)
                    removed += 1
        if removed:
            logger.info("Idle sweep removed %d session(s)", removed)
            metrics.record_sessions_swept(removed)
        return removed

    def start(self) -> None:
        """Run ``sweep`` on a daemon thread every ``interval_seconds``."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()

        def _loop():
            while not self._stop.wait(self._interval_seconds):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Idle sweep error")

        self._thread = threading.Thread(target=_loop, daemon=True, name="session-sweeper")
        self._thread.start()
        logger.info(
            "Session sweeper started (idle=%ds, interval=%ds)",
            self._idle_seconds, self._interval_seconds,
        )

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
