"""Shared test fixtures for the clinic booking assistant test suite."""

from __future__ import annotations

import os

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    ``clinic_assistant.config`` reads the environment at import time, so the
    in-memory, rule-based configuration must be in place before any test
    module imports the package.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("OPENAI_API_KEY", "test-openai-key-456")
    os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
    os.environ.setdefault("EXTRACTOR_MODE", "rules")
    os.environ.setdefault("CONFIRMATION_STYLE", "template")
    os.environ.setdefault("REQUIRED_FIELD_SET", "basic")
    os.environ.setdefault("RETRIEVAL_ENABLED", "false")
    os.environ.setdefault("METRICS_ENABLED", "false")


class FakeClock:
    """Manually advanced clock, usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(clock):
    """Factory fixture: a BookingEngine over in-memory collaborators."""
    from clinic_assistant.engine import BookingEngine
    from clinic_assistant.extraction import RuleBasedExtractor
    from clinic_assistant.fields import BASIC_FIELDS
    from clinic_assistant.services.repository import InMemoryAppointmentRepository
    from clinic_assistant.sessions import InMemorySessionStore

    def _make(
        *,
        fields=None,
        store=None,
        extractor=None,
        repository=None,
        conversations=None,
        retriever=None,
        confirmation_writer=None,
    ):
        fields = list(fields or BASIC_FIELDS)
        return BookingEngine(
            store=store if store is not None else InMemorySessionStore(),
            extractor=extractor if extractor is not None else RuleBasedExtractor(fields),
            repository=repository if repository is not None else InMemoryAppointmentRepository(),
            fields=fields,
            clock=clock,
            conversations=conversations,
            retriever=retriever,
            confirmation_writer=confirmation_writer,
        )

    return _make


@pytest.fixture
def booking_messages():
    """Messages that fill the seven-field booking form in four turns."""
    return [
        "My name is Jane Doe, email jane@example.com",
        "My phone is 555-123-4567",
        "I'd like to see Dr. Smith for a checkup",
        "on Monday at 10:30 am",
    ]
