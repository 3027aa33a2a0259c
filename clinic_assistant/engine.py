"""Slot-filling booking engine.

Each call to ``BookingEngine.handle_turn`` advances one session through::

    collecting ──(all fields present)──▶ awaiting confirmation
        ▲                                   │ yes → persist record, delete session (done)
        │                                   │ no  → delete session (cancelled)
        └────────── new session ◀───────────┘ anything else → ask again, no change

The whole lookup → extract → merge → store sequence for a key runs under
that key's lock.  Errors that reach the caller (``PersistenceFailure``,
``CompletionTimeout`` while phrasing the confirmation) leave the session
exactly as it was, so the user can simply retry.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from clinic_assistant.config import CONFIRMATION_TIMEOUT_SECONDS, FAST_MODEL_NAME
from clinic_assistant.errors import PersistenceFailure, ValidationError
from clinic_assistant.extraction import Extractor
from clinic_assistant.fields import FieldSpec, missing_fields
from clinic_assistant.prompts import (
    CANCELLATION_TEXT,
    GREETING_TEXT,
    confirm,
    confirmation_question,
    get_confirmation_prompt,
)
from clinic_assistant.services.completion import CompletionClient
from clinic_assistant.services.metrics import metrics
from clinic_assistant.services.repository import AppointmentRepository, ConversationRepository
from clinic_assistant.services.retrieval import ContextRetriever
from clinic_assistant.sessions import Session, SessionStore
from clinic_assistant.validation import field_error

logger = logging.getLogger(__name__)

MAX_SESSION_KEY_LENGTH = 100
MAX_MESSAGE_LENGTH = 4000

_AFFIRMATIVE_RE = re.compile(r"\b(yes|yeah|yep|yup|confirm|confirmed|correct)\b", re.IGNORECASE)
_NEGATIVE_RE = re.compile(r"\b(no|nope|cancel)\b", re.IGNORECASE)
# Any of these blocks a booking, even next to an affirmative word
_NEGATION_RE = re.compile(
    r"\b(?:no|not|nope|never|cancel|wrong|(?:can|don|won|isn|doesn)['’]?t|cannot)\b",
    re.IGNORECASE,
)

HISTORY_CONTEXT_TURNS = 6


@dataclass
class TurnResult:
    reply: str
    step: int
    total_steps: int
    done: bool = False
    record: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)
    outcome: str = "collecting"


class LLMConfirmationWriter:
    """Phrase the confirmation question with the completion API.

    There is no fallback text on this path: a ``CompletionTimeout`` (or any
    ``CompletionError``) propagates to the caller.
    """

    def __init__(
        self,
        completion: CompletionClient,
        fields: list[FieldSpec],
        *,
        model: str = FAST_MODEL_NAME,
        timeout: float = CONFIRMATION_TIMEOUT_SECONDS,
    ) -> None:
        self._completion = completion
        self._fields = list(fields)
        self._model = model
        self._timeout = timeout

    def __call__(self, collected: dict[str, str]) -> str:
        return self._completion.complete(
            get_confirmation_prompt(collected, self._fields),
            "Please confirm my appointment details.",
            model=self._model,
            temperature=0.7,
            max_tokens=150,
            timeout=self._timeout,
            operation="confirmation_message",
        )


class BookingEngine:
    """Drive appointment slot filling across chat turns."""

    def __init__(
        self,
        *,
        store: SessionStore,
        extractor: Extractor,
        repository: AppointmentRepository,
        fields: list[FieldSpec],
        clock: Callable[[], float] = time.time,
        conversations: ConversationRepository | None = None,
        retriever: ContextRetriever | None = None,
        confirmation_writer: Callable[[dict[str, str]], str] | None = None,
    ) -> None:
        if not fields:
            raise ValueError("At least one required field must be configured")
        self.store = store
        self.fields = list(fields)
        self._extractor = extractor
        self._repository = repository
        self._clock = clock
        self._conversations = conversations
        self._retriever = retriever
        self._confirmation_writer = confirmation_writer

    @property
    def total_steps(self) -> int:
        return len(self.fields)

    # ── Public API ───────────────────────────────────────────────────

    def handle_turn(self, session_key: str, message: str) -> TurnResult:
        """Process one user message for *session_key*.

        Raises:
            ValidationError: *session_key* or *message* is empty or too long.
            PersistenceFailure: the confirmed booking could not be stored.
            CompletionError: the confirmation message could not be generated
                (only with an LLM confirmation writer).
        """
        validate_turn_input(session_key, message)
        with self.store.lock(session_key):
            result = self._advance(session_key, message)

        metrics.record_turn(result.outcome)
        logger.info(
            "Session %s: %s (step %d/%d)",
            session_key, result.outcome, result.step, result.total_steps,
        )
        self._log_turn(session_key, message, result.reply)
        if result.record is not None and self._retriever is not None:
            self._retriever.index_appointment(result.record)
        return result

    def confirmation_text(self, collected: dict[str, str]) -> str:
        if self._confirmation_writer is not None:
            return self._confirmation_writer(collected)
        return confirmation_question(collected, self.fields)

    # ── State machine ────────────────────────────────────────────────

    def _advance(self, session_key: str, message: str) -> TurnResult:
        now = self._clock()
        session = self.store.get(session_key)
        is_new = session is None
        if is_new:
            session = Session(key=session_key, created_at=now, last_active=now)
            self.store.put(session)
            logger.debug("Session %s created", session_key)
        else:
            self.store.touch(session_key, now)

        if not missing_fields(session.collected, self.fields):
            return self._handle_confirmation(session, message)
        return self._collect(session, message, is_new)

    def _handle_confirmation(self, session: Session, message: str) -> TurnResult:
        total = self.total_steps
        if _NEGATIVE_RE.search(message):
            self.store.delete(session.key)
            return TurnResult(
                reply=CANCELLATION_TEXT, step=total, total_steps=total, outcome="cancelled",
            )

        if _AFFIRMATIVE_RE.search(message) and not _NEGATION_RE.search(message):
            record = self._build_record(session)
            try:
                self._repository.insert(record)
            except PersistenceFailure:
                raise
            except Exception as exc:
                logger.exception("Unexpected error storing appointment for %s", session.key)
                raise PersistenceFailure("Could not store the appointment") from exc
            self.store.delete(session.key)
            return TurnResult(
                reply=confirm(record, self.fields),
                step=total, total_steps=total,
                done=True, record=record, outcome="booked",
            )

        return TurnResult(
            reply=self.confirmation_text(session.collected),
            step=total, total_steps=total, outcome="reprompt",
        )

    def _collect(self, session: Session, message: str, is_new: bool) -> TurnResult:
        context = None
        if getattr(self._extractor, "uses_context", True):
            context = self._context(session.key, message) or None
        extraction = self._extractor.extract(dict(session.collected), message, context)

        required = {f.name: f for f in self.fields}
        errors = []
        accepted = {}
        for name, value in extraction.data.items():
            spec = required.get(name)
            if spec is None or not str(value).strip():
                continue
            error = field_error(spec, value)
            if error:
                errors.append(error)
            else:
                accepted[name] = str(value).strip()

        collected = {**session.collected, **accepted}
        missing = missing_fields(collected, self.fields)
        step = self.total_steps - len(missing)

        if not missing:
            # Phrase the question before committing, so a failure here
            # leaves the session as it was
            reply = self.confirmation_text(collected)
            session.collected = collected
            session.awaiting_confirmation = True
            self.store.put(session)
            return TurnResult(
                reply=reply, step=step, total_steps=self.total_steps,
                outcome="awaiting_confirmation",
            )

        if errors:
            reply = ". ".join(errors) + ". " + missing[0].ask()
        elif extraction.next_prompt:
            reply = extraction.next_prompt
        else:
            reply = missing[0].ask()
        if is_new and not accepted:
            reply = f"{GREETING_TEXT} {reply}"

        session.collected = collected
        self.store.put(session)
        return TurnResult(
            reply=reply, step=step, total_steps=self.total_steps,
            errors=errors, outcome="collecting",
        )

    def _build_record(self, session: Session) -> dict[str, Any]:
        record: dict[str, Any] = {f.name: session.collected[f.name] for f in self.fields}
        record.update(
            status="booked",
            action="appointment",
            created_at=datetime.now(UTC).isoformat(),
            session_id=session.key,
            appointment_id=str(uuid.uuid4()),
        )
        return record

    # ── Best-effort side channels ────────────────────────────────────

    def _context(self, session_key: str, message: str) -> list[str]:
        """Retrieved snippets, earlier bookings and recent turns for *session_key*."""
        context: list[str] = []
        if self._retriever is not None:
            context.extend(self._retriever.relevant_context(session_key, message))
        try:
            for booked in self._repository.find(session_key):
                details = ", ".join(
                    f"{f.label} {booked[f.name]}" for f in self.fields if booked.get(f.name)
                )
                context.append(f"Previously booked: {details}")
        except Exception as exc:
            logger.warning("Could not load earlier bookings for %s: %s", session_key, exc)
        if self._conversations is not None:
            try:
                turns = self._conversations.history(session_key, limit=HISTORY_CONTEXT_TURNS)
            except Exception as exc:
                logger.warning("Could not load conversation history for %s: %s", session_key, exc)
            else:
                context.extend(f"{t['role']}: {t['content']}" for t in turns)
        return context

    def _log_turn(self, session_key: str, message: str, reply: str) -> None:
        if self._conversations is not None:
            try:
                self._conversations.append(session_key, "user", message)
                self._conversations.append(session_key, "assistant", reply)
            except Exception as exc:
                logger.warning("Could not log conversation turn for %s: %s", session_key, exc)
        if self._retriever is not None:
            self._retriever.index_message(session_key, message)


def validate_turn_input(session_key: Any, message: Any) -> None:
    if not isinstance(session_key, str) or not session_key.strip():
        raise ValidationError("session_id", "must be a non-empty string")
    if len(session_key) > MAX_SESSION_KEY_LENGTH:
        raise ValidationError(
            "session_id", f"must be at most {MAX_SESSION_KEY_LENGTH} characters",
        )
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("message", "must be a non-empty string")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError("message", f"must be at most {MAX_MESSAGE_LENGTH} characters")
