"""Tests for the slot-filling booking engine."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from clinic_assistant.engine import BookingEngine, validate_turn_input
from clinic_assistant.errors import CompletionTimeout, PersistenceFailure, ValidationError
from clinic_assistant.extraction import Extraction, RuleBasedExtractor
from clinic_assistant.fields import BASIC_FIELDS, FieldSpec
from clinic_assistant.prompts import BOOKED_TEXT, CANCELLATION_TEXT, GREETING_TEXT
from clinic_assistant.services.repository import (
    InMemoryAppointmentRepository,
    InMemoryConversationRepository,
)
from clinic_assistant.sessions import IdleSweeper, InMemorySessionStore


class StubExtractor:
    """Returns a fixed extraction whatever the message."""

    def __init__(self, data: dict[str, str], next_prompt: str = "") -> None:
        self.data = data
        self.next_prompt = next_prompt
        self.calls = []

    def extract(self, collected, message, context=None):
        self.calls.append((collected, message, context))
        return Extraction(data=dict(self.data), next_prompt=self.next_prompt)


def _fill(engine, key, messages):
    result = None
    for message in messages:
        result = engine.handle_turn(key, message)
    return result


# ── Collecting ──────────────────────────────────────────────────────


class TestCollecting:
    def test_first_message_with_two_fields(self, make_engine):
        engine = make_engine()
        result = engine.handle_turn("s1", "My name is Jane Doe, email jane@example.com")
        assert result.step == 2
        assert result.total_steps == 7
        assert result.done is False
        assert result.reply == "What phone number can we call you on?"
        assert engine.store.get("s1").collected == {
            "name": "Jane Doe", "email": "jane@example.com",
        }

    def test_new_session_without_fields_is_greeted(self, make_engine):
        result = make_engine().handle_turn("s1", "hello")
        assert result.step == 0
        assert result.reply.startswith(GREETING_TEXT)
        assert "full name" in result.reply

    def test_unrecognised_message_changes_nothing(self, make_engine):
        engine = make_engine()
        engine.handle_turn("s1", "My name is Jane Doe")
        before = dict(engine.store.get("s1").collected)

        result = engine.handle_turn("s1", "maybe")
        assert result.step == 1
        assert engine.store.get("s1").collected == before
        assert result.reply == "What's the best email address to reach you?"

    def test_resubmitting_a_message_is_idempotent(self, make_engine):
        engine = make_engine()
        message = "My name is Jane Doe, email jane@example.com"
        first = engine.handle_turn("s1", message)
        collected = dict(engine.store.get("s1").collected)
        second = engine.handle_turn("s1", message)
        assert second.step == first.step
        assert engine.store.get("s1").collected == collected

    def test_last_write_wins(self, make_engine):
        engine = make_engine()
        engine.handle_turn("s1", "My name is Jane Doe")
        engine.handle_turn("s1", "Sorry, my name is Janet Smith")
        assert engine.store.get("s1").collected["name"] == "Janet Smith"

    def test_invalid_values_are_rejected_and_reasked(self, make_engine):
        extractor = StubExtractor({"name": "Jane Doe", "email": "bad", "phone_number": "123"})
        engine = make_engine(extractor=extractor)
        result = engine.handle_turn("s1", "whatever")

        assert result.errors == ["Valid email is required", "Valid phone number is required"]
        assert result.reply.startswith("Valid email is required. Valid phone number is required.")
        assert result.reply.endswith("What's the best email address to reach you?")
        assert engine.store.get("s1").collected == {"name": "Jane Doe"}

    def test_short_name_from_rules_is_rejected(self, make_engine):
        result = make_engine().handle_turn("s1", "I'm J")
        assert result.errors == ["Name must be at least 2 characters long"]
        assert result.step == 0

    def test_mentioning_a_doctor_keeps_the_name(self, make_engine):
        engine = make_engine()
        engine.handle_turn("s1", "My name is Jane Doe, email jane@example.com")
        engine.handle_turn("s1", "I am seeing Dr. Smith for a checkup")
        collected = engine.store.get("s1").collected
        assert collected["name"] == "Jane Doe"
        assert collected["doctor"] == "Dr. Smith"

    def test_unknown_fields_are_ignored(self, make_engine):
        engine = make_engine(extractor=StubExtractor({"favourite_colour": "blue"}))
        engine.handle_turn("s1", "blue")
        assert engine.store.get("s1").collected == {}

    def test_extractor_prompt_is_used(self, make_engine):
        engine = make_engine(extractor=StubExtractor({}, next_prompt="Sorry, say again?"))
        engine.handle_turn("s1", "hi")
        assert engine.handle_turn("s1", "hmm").reply == "Sorry, say again?"

    def test_extractor_sees_a_copy_of_collected(self, make_engine):
        extractor = StubExtractor({"name": "Jane Doe"})
        engine = make_engine(extractor=extractor)
        engine.handle_turn("s1", "one")
        extractor.calls[0][0]["name"] = "tampered"
        assert engine.store.get("s1").collected == {"name": "Jane Doe"}

    def test_sessions_are_isolated(self, make_engine):
        engine = make_engine()
        engine.handle_turn("a", "My name is Jane Doe")
        engine.handle_turn("b", "My name is John Roe")
        assert engine.store.get("a").collected["name"] == "Jane Doe"
        assert engine.store.get("b").collected["name"] == "John Roe"

    def test_requires_fields(self):
        with pytest.raises(ValueError):
            BookingEngine(
                store=InMemorySessionStore(),
                extractor=StubExtractor({}),
                repository=InMemoryAppointmentRepository(),
                fields=[],
            )


# ── Confirmation ────────────────────────────────────────────────────


class TestConfirmation:
    def test_all_fields_lead_to_confirmation(self, make_engine, booking_messages):
        engine = make_engine()
        result = _fill(engine, "s1", booking_messages)
        assert result.step == 7
        assert result.outcome == "awaiting_confirmation"
        assert "Reply yes to book or no to cancel." in result.reply
        assert "Dr. Smith" in result.reply
        assert engine.store.get("s1").awaiting_confirmation is True

    def test_unclear_reply_reasks_without_changes(self, make_engine, booking_messages):
        engine = make_engine()
        question = _fill(engine, "s1", booking_messages).reply
        collected = dict(engine.store.get("s1").collected)

        result = engine.handle_turn("s1", "not sure yet")
        assert result.outcome == "reprompt"
        assert result.reply == question
        assert engine.store.get("s1").collected == collected

    def test_yes_books_and_ends_the_session(self, make_engine, booking_messages):
        repository = InMemoryAppointmentRepository()
        engine = make_engine(repository=repository)
        _fill(engine, "s1", booking_messages)

        result = engine.handle_turn("s1", "Yes, that's correct")
        assert result.done is True
        assert result.outcome == "booked"
        assert result.reply.startswith(BOOKED_TEXT)
        assert result.record["status"] == "booked"
        assert result.record["session_id"] == "s1"
        assert result.record["name"] == "Jane Doe"
        assert result.record["phone_number"] == "5551234567"
        assert result.record["appointment_id"]
        assert engine.store.get("s1") is None
        assert len(repository) == 1
        assert repository.find("s1")[0]["appointment_id"] == result.record["appointment_id"]

    def test_every_value_is_in_the_final_reply(self, make_engine, booking_messages):
        engine = make_engine()
        _fill(engine, "s1", booking_messages)
        result = engine.handle_turn("s1", "yes")
        for spec in BASIC_FIELDS:
            assert result.record[spec.name] in result.reply

    def test_no_cancels(self, make_engine, booking_messages):
        repository = InMemoryAppointmentRepository()
        engine = make_engine(repository=repository)
        _fill(engine, "s1", booking_messages)

        result = engine.handle_turn("s1", "no")
        assert result.reply == CANCELLATION_TEXT
        assert result.outcome == "cancelled"
        assert engine.store.get("s1") is None
        assert len(repository) == 0

    def test_next_message_after_booking_starts_over(self, make_engine, booking_messages):
        engine = make_engine()
        _fill(engine, "s1", booking_messages)
        engine.handle_turn("s1", "yes")
        result = engine.handle_turn("s1", "hi again")
        assert result.step == 0
        assert result.reply.startswith(GREETING_TEXT)

    def test_yesterday_is_not_a_yes(self, make_engine, booking_messages):
        engine = make_engine()
        _fill(engine, "s1", booking_messages)
        assert engine.handle_turn("s1", "I called yesterday").outcome == "reprompt"

    def test_negated_correct_cancels(self, make_engine, booking_messages):
        repository = InMemoryAppointmentRepository()
        engine = make_engine(repository=repository)
        _fill(engine, "s1", booking_messages)

        result = engine.handle_turn("s1", "No, that's not correct")
        assert result.outcome == "cancelled"
        assert result.done is False
        assert engine.store.get("s1") is None
        assert len(repository) == 0

    def test_negated_confirm_does_not_book(self, make_engine, booking_messages):
        repository = InMemoryAppointmentRepository()
        engine = make_engine(repository=repository)
        _fill(engine, "s1", booking_messages)

        result = engine.handle_turn("s1", "I can't confirm that yet")
        assert result.done is False
        assert result.outcome == "reprompt"
        assert engine.store.get("s1").awaiting_confirmation is True
        assert len(repository) == 0

    def test_single_field_form(self, make_engine):
        fields = [FieldSpec("email", "Email", "email", "Email please?")]
        engine = make_engine(fields=fields)
        result = engine.handle_turn("s1", "jane@example.com")
        assert result.step == result.total_steps == 1
        assert result.outcome == "awaiting_confirmation"


# ── Failures ────────────────────────────────────────────────────────


class TestFailures:
    def test_persistence_failure_keeps_the_session(self, make_engine, booking_messages):
        repository = MagicMock()
        repository.insert.side_effect = [PersistenceFailure("table unavailable"), "appt-1"]
        engine = make_engine(repository=repository)
        _fill(engine, "s1", booking_messages)
        collected = dict(engine.store.get("s1").collected)

        with pytest.raises(PersistenceFailure):
            engine.handle_turn("s1", "yes")
        assert engine.store.get("s1").collected == collected

        result = engine.handle_turn("s1", "yes")
        assert result.done is True
        assert engine.store.get("s1") is None

    def test_unexpected_repository_error_becomes_persistence_failure(
        self, make_engine, booking_messages,
    ):
        repository = MagicMock()
        repository.insert.side_effect = RuntimeError("socket closed")
        engine = make_engine(repository=repository)
        _fill(engine, "s1", booking_messages)
        with pytest.raises(PersistenceFailure):
            engine.handle_turn("s1", "yes")
        assert engine.store.get("s1") is not None

    def test_confirmation_timeout_leaves_session_unchanged(self, make_engine, booking_messages):
        writer = MagicMock(side_effect=CompletionTimeout(10))
        engine = make_engine(confirmation_writer=writer)
        _fill(engine, "s1", booking_messages[:-1])
        collected = dict(engine.store.get("s1").collected)

        with pytest.raises(CompletionTimeout):
            engine.handle_turn("s1", booking_messages[-1])
        session = engine.store.get("s1")
        assert session.collected == collected
        assert session.awaiting_confirmation is False

    def test_confirmation_writer_is_used(self, make_engine, booking_messages):
        writer = MagicMock(return_value="All set? Say yes or no.")
        engine = make_engine(confirmation_writer=writer)
        result = _fill(engine, "s1", booking_messages)
        assert result.reply == "All set? Say yes or no."
        assert writer.call_args.args[0]["doctor"] == "Dr. Smith"


# ── Expiry and concurrency ──────────────────────────────────────────


class TestExpiry:
    def test_idle_session_is_swept(self, make_engine, clock):
        engine = make_engine()
        engine.handle_turn("s1", "My name is Jane Doe")
        sweeper = IdleSweeper(engine.store, idle_seconds=15 * 60, clock=clock)

        clock.advance(16 * 60)
        assert sweeper.sweep() == 1
        result = engine.handle_turn("s1", "hello")
        assert result.step == 0
        assert result.reply.startswith(GREETING_TEXT)

    def test_activity_keeps_session_alive(self, make_engine, clock):
        engine = make_engine()
        engine.handle_turn("s1", "My name is Jane Doe")
        sweeper = IdleSweeper(engine.store, idle_seconds=15 * 60, clock=clock)

        clock.advance(10 * 60)
        engine.handle_turn("s1", "maybe")
        clock.advance(10 * 60)
        assert sweeper.sweep() == 0
        assert engine.store.get("s1").collected["name"] == "Jane Doe"


class TestConcurrency:
    def test_turns_for_one_session_do_not_overlap(self, make_engine):
        active = 0
        max_active = 0
        lock = threading.Lock()

        class SlowExtractor:
            def extract(self, collected, message, context=None):
                nonlocal active, max_active
                with lock:
                    active += 1
                    max_active = max(max_active, active)
                time.sleep(0.02)
                with lock:
                    active -= 1
                return RuleBasedExtractor(list(BASIC_FIELDS)).extract(collected, message)

        engine = make_engine(extractor=SlowExtractor())
        messages = ["My name is Jane Doe", "jane@example.com", "555-123-4567", "Dr. Smith"]
        threads = [
            threading.Thread(target=engine.handle_turn, args=("s1", m)) for m in messages
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max_active == 1
        assert set(engine.store.get("s1").collected) == {
            "name", "email", "phone_number", "doctor",
        }


# ── Side channels ───────────────────────────────────────────────────


class TestSideChannels:
    def test_turns_are_logged(self, make_engine):
        conversations = InMemoryConversationRepository()
        engine = make_engine(conversations=conversations)
        result = engine.handle_turn("s1", "My name is Jane Doe")

        history = conversations.history("s1")
        assert [(t["role"], t["content"]) for t in history] == [
            ("user", "My name is Jane Doe"),
            ("assistant", result.reply),
        ]

    def test_logging_failure_does_not_break_the_turn(self, make_engine):
        conversations = MagicMock()
        conversations.append.side_effect = PersistenceFailure("down")
        result = make_engine(conversations=conversations).handle_turn("s1", "hello")
        assert result.step == 0

    def test_retrieved_context_reaches_the_extractor(self, make_engine):
        retriever = MagicMock()
        retriever.relevant_context.return_value = ["Dr. Smith works Monday to Friday."]
        extractor = StubExtractor({})
        make_engine(extractor=extractor, retriever=retriever).handle_turn("s1", "Dr. Smith?")

        assert extractor.calls[0][2] == ["Dr. Smith works Monday to Friday."]
        retriever.index_message.assert_called_once_with("s1", "Dr. Smith?")

    def test_recent_turns_reach_the_extractor(self, make_engine):
        conversations = InMemoryConversationRepository()
        extractor = StubExtractor({}, next_prompt="Which doctor?")
        engine = make_engine(extractor=extractor, conversations=conversations)
        engine.handle_turn("s1", "I need a checkup")
        engine.handle_turn("s1", "the usual one")

        assert extractor.calls[0][2] is None
        assert extractor.calls[1][2] == [
            "user: I need a checkup",
            f"assistant: {GREETING_TEXT} Which doctor?",
        ]

    def test_earlier_bookings_reach_the_extractor(self, make_engine):
        repository = InMemoryAppointmentRepository()
        repository.insert(
            {"appointment_id": "a1", "session_id": "s1", "name": "Jane Doe", "doctor": "Dr. Smith"}
        )
        extractor = StubExtractor({})
        make_engine(extractor=extractor, repository=repository).handle_turn("s1", "same again")

        [line] = extractor.calls[0][2]
        assert line.startswith("Previously booked:")
        assert "Jane Doe" in line and "Dr. Smith" in line

    def test_history_failure_does_not_break_the_turn(self, make_engine):
        conversations = MagicMock()
        conversations.history.side_effect = PersistenceFailure("down")
        repository = MagicMock()
        repository.find.side_effect = PersistenceFailure("down")
        extractor = StubExtractor({"name": "Jane Doe"})
        engine = make_engine(
            extractor=extractor, repository=repository, conversations=conversations,
        )

        result = engine.handle_turn("s1", "Jane Doe")
        assert result.step == 1
        assert extractor.calls[0][2] is None

    def test_rule_extraction_skips_context_lookups(self, make_engine):
        repository = MagicMock()
        conversations = MagicMock()
        retriever = MagicMock()
        make_engine(
            repository=repository, conversations=conversations, retriever=retriever,
        ).handle_turn("s1", "My name is Jane Doe")

        repository.find.assert_not_called()
        conversations.history.assert_not_called()
        retriever.relevant_context.assert_not_called()

    def test_booking_is_indexed(self, make_engine, booking_messages):
        retriever = MagicMock()
        retriever.relevant_context.return_value = []
        engine = make_engine(retriever=retriever)
        _fill(engine, "s1", booking_messages)
        retriever.index_appointment.assert_not_called()

        result = engine.handle_turn("s1", "yes")
        retriever.index_appointment.assert_called_once_with(result.record)

    def test_cancellation_is_not_indexed(self, make_engine, booking_messages):
        retriever = MagicMock()
        engine = make_engine(retriever=retriever)
        _fill(engine, "s1", booking_messages)
        engine.handle_turn("s1", "no")
        retriever.index_appointment.assert_not_called()


# ── Input validation ────────────────────────────────────────────────


class TestTurnInput:
    @pytest.mark.parametrize(
        "key, message, field",
        [
            ("", "hello", "session_id"),
            ("   ", "hello", "session_id"),
            ("k" * 101, "hello", "session_id"),
            (None, "hello", "session_id"),
            ("s1", "", "message"),
            ("s1", "\n\t", "message"),
            ("s1", "x" * 4001, "message"),
        ],
    )
    def test_rejects_bad_input(self, key, message, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_turn_input(key, message)
        assert exc_info.value.field == field

    def test_accepts_limits(self):
        validate_turn_input("k" * 100, "x" * 4000)

    def test_engine_validates_before_touching_state(self, make_engine):
        engine = make_engine()
        with pytest.raises(ValidationError):
            engine.handle_turn("s1", "")
        assert engine.store.get("s1") is None
