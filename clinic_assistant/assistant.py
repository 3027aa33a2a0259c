"""Wiring: build the booking engine and its collaborators from configuration.

``create_booking_assistant`` is called once per process (FastAPI lifespan,
Lambda cold start, CLI start-up).  Every collaborator can be overridden,
which is how the tests assemble an assistant around fakes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from clinic_assistant import config
from clinic_assistant.engine import (
    BookingEngine,
    LLMConfirmationWriter,
    TurnResult,
    validate_turn_input,
)
from clinic_assistant.extraction import Extractor, build_extractor
from clinic_assistant.fields import FieldSpec, get_field_set
from clinic_assistant.services.completion import CompletionClient
from clinic_assistant.services.rate_limit import SessionRateLimiter
from clinic_assistant.services.repository import (
    AppointmentRepository,
    ConversationRepository,
    build_repositories,
)
from clinic_assistant.services.retrieval import ContextRetriever
from clinic_assistant.sessions import IdleSweeper, InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class BookingAssistant:
    """The engine plus the process-level pieces around it."""

    engine: BookingEngine
    sweeper: IdleSweeper
    rate_limiter: SessionRateLimiter
    appointments: AppointmentRepository
    retriever: ContextRetriever

    def chat(self, session_key: str, message: str) -> TurnResult:
        """Validate, rate-limit, then hand the turn to the engine."""
        validate_turn_input(session_key, message)
        self.rate_limiter.check(session_key)
        return self.engine.handle_turn(session_key, message)

    def health(self) -> dict[str, Any]:
        checks = {
            "persistence": self.appointments.ping(),
            "vector_index": self.retriever.ping(),
        }
        return {
            "status": "ok" if all(checks.values()) else "degraded",
            "checks": checks,
            "active_sessions": len(self.engine.store.keys()),
        }

    def start(self) -> None:
        self.sweeper.start()

    def stop(self) -> None:
        self.sweeper.stop()


def create_booking_assistant(
    *,
    fields: list[FieldSpec] | None = None,
    store: SessionStore | None = None,
    extractor: Extractor | None = None,
    appointments: AppointmentRepository | None = None,
    conversations: ConversationRepository | None = None,
    retriever: ContextRetriever | None = None,
    completion: CompletionClient | None = None,
    rate_limiter: SessionRateLimiter | None = None,
    clock: Callable[[], float] = time.time,
) -> BookingAssistant:
    """Assemble a ``BookingAssistant`` from config, honouring any overrides."""
    fields = fields or get_field_set(config.REQUIRED_FIELD_SET)
    if store is None:
        store = InMemorySessionStore(max_sessions=config.MAX_SESSIONS)

    needs_llm = config.EXTRACTOR_MODE == "llm" or config.CONFIRMATION_STYLE == "llm"
    if completion is None and needs_llm:
        completion = CompletionClient()
    if extractor is None:
        extractor = build_extractor(config.EXTRACTOR_MODE, fields, completion)

    if appointments is None or conversations is None:
        default_appointments, default_conversations = build_repositories(
            config.PERSISTENCE_BACKEND,
        )
        if appointments is None:
            appointments = default_appointments
        if conversations is None:
            conversations = default_conversations
    if retriever is None:
        retriever = ContextRetriever()

    confirmation_writer = None
    if config.CONFIRMATION_STYLE == "llm":
        confirmation_writer = LLMConfirmationWriter(completion, fields)

    engine = BookingEngine(
        store=store,
        extractor=extractor,
        repository=appointments,
        fields=fields,
        clock=clock,
        conversations=conversations,
        retriever=retriever if retriever.enabled else None,
        confirmation_writer=confirmation_writer,
    )
    sweeper = IdleSweeper(
        store,
        idle_seconds=config.SESSION_IDLE_SECONDS,
        interval_seconds=config.SWEEP_INTERVAL_SECONDS,
        clock=clock,
    )
    if rate_limiter is None:
        rate_limiter = SessionRateLimiter(
            config.RATE_LIMIT_REQUESTS, config.RATE_LIMIT_WINDOW_SECONDS,
        )
    logger.info(
        "Booking assistant ready: fields: %s, extractor: %s, persistence: %s, retrieval: %s",
        config.REQUIRED_FIELD_SET, config.EXTRACTOR_MODE,
        config.PERSISTENCE_BACKEND, "on" if retriever.enabled else "off",
    )
    return BookingAssistant(
        engine=engine,
        sweeper=sweeper,
        rate_limiter=rate_limiter,
        appointments=appointments,
        retriever=retriever,
    )
