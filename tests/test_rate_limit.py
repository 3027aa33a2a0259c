"""Tests for the per-session rate limiter."""

from __future__ import annotations

import pytest

from clinic_assistant.errors import RateLimitExceeded
from clinic_assistant.services import rate_limit
from clinic_assistant.services.rate_limit import SessionRateLimiter


class TestSessionRateLimiter:
    def test_allows_up_to_the_limit(self, clock):
        limiter = SessionRateLimiter(3, 60, clock=clock)
        for _ in range(3):
            limiter.check("s1")

    def test_rejects_over_the_limit(self, clock):
        limiter = SessionRateLimiter(2, 60, clock=clock)
        limiter.check("s1")
        clock.advance(10)
        limiter.check("s1")
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check("s1")
        assert exc_info.value.session_key == "s1"
        assert exc_info.value.retry_after == pytest.approx(50)

    def test_window_slides(self, clock):
        limiter = SessionRateLimiter(1, 60, clock=clock)
        limiter.check("s1")
        clock.advance(60)
        limiter.check("s1")

    def test_sessions_are_independent(self, clock):
        limiter = SessionRateLimiter(1, 60, clock=clock)
        limiter.check("a")
        limiter.check("b")

    def test_stale_sessions_are_pruned(self, clock, monkeypatch):
        monkeypatch.setattr(rate_limit, "_PRUNE_THRESHOLD", 2)
        limiter = SessionRateLimiter(5, 10, clock=clock)
        limiter.check("a")
        limiter.check("b")
        clock.advance(30)
        limiter.check("c")
        assert set(limiter._hits) == {"c"}
