"""Per-session sliding-window rate limiter."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable

from clinic_assistant.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

_PRUNE_THRESHOLD = 1024


class SessionRateLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each session key."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        # session key → timestamps of requests inside the window
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, session_key: str) -> None:
        """Record a request, or raise ``RateLimitExceeded`` if over the limit."""
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(session_key, deque())
            while hits and now - hits[0] >= self._window:
                hits.popleft()
            if len(hits) >= self._max_requests:
                retry_after = self._window - (now - hits[0])
                logger.warning("Rate limit hit for session %s", session_key)
                raise RateLimitExceeded(session_key, retry_after)
            hits.append(now)
            if len(self._hits) > _PRUNE_THRESHOLD:
                self._prune(now)

    def _prune(self, now: float) -> None:
        """Forget sessions whose newest request has left the window."""
        stale = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self._window]
        for key in stale:
            del self._hits[key]
