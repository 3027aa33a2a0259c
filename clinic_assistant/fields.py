"""Required-field definitions for the slot-filling conversation.

The field list is configuration, not a constant: ``basic`` is the short
seven-field booking form and ``intake`` is the longer clinical intake form.
Order defines the default prompt sequence.
"""

from __future__ import annotations

from dataclasses import dataclass

# Field kinds select both the extraction rule and the validation rule
KIND_NAME = "name"
KIND_EMAIL = "email"
KIND_PHONE = "phone"
KIND_DOCTOR = "doctor"
KIND_SERVICE = "service"
KIND_DATE = "date"
KIND_TIME = "time"
KIND_DOB = "dob"
KIND_TEXT = "text"


@dataclass(frozen=True)
class FieldSpec:
    """A single field the assistant must collect before booking."""

    name: str
    label: str
    kind: str = KIND_TEXT
    prompt: str = ""

    def ask(self) -> str:
        return self.prompt or f"Could you tell me your {self.label.lower()}?"


BASIC_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("name", "Name", KIND_NAME, "Could I have your full name, please?"),
    FieldSpec("email", "Email", KIND_EMAIL, "What's the best email address to reach you?"),
    FieldSpec("phone_number", "Phone number", KIND_PHONE, "What phone number can we call you on?"),
    FieldSpec("doctor", "Doctor", KIND_DOCTOR, "Which doctor would you like to see?"),
    FieldSpec(
        "service", "Service", KIND_SERVICE,
        "What kind of visit do you need (consultation, checkup, examination, "
        "treatment, therapy or surgery)?",
    ),
    FieldSpec("date", "Date", KIND_DATE, "Which day would suit you?"),
    FieldSpec("time", "Time", KIND_TIME, "What time works best for you?"),
)

INTAKE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("patient_name", "Patient name", KIND_NAME, "Could I have the patient's full name?"),
    FieldSpec("dob", "Date of birth", KIND_DOB, "What is the patient's date of birth?"),
    FieldSpec("email", "Email", KIND_EMAIL, "What's the best email address to reach you?"),
    FieldSpec("phone", "Phone", KIND_PHONE, "What phone number can we call you on?"),
    FieldSpec("doctor", "Doctor", KIND_DOCTOR, "Which doctor would you like to see?"),
    FieldSpec("service", "Service", KIND_SERVICE, "What kind of visit do you need?"),
    FieldSpec("time", "Time", KIND_TIME, "When would you like the appointment?"),
    FieldSpec("status", "Status", KIND_TEXT, "Is this a new appointment or a follow-up?"),
    FieldSpec("action", "Action", KIND_TEXT, "Would you like to book, reschedule or cancel?"),
    FieldSpec(
        "chief_complaint", "Chief complaint", KIND_TEXT,
        "Briefly, what is the main reason for the visit?",
    ),
)

FIELD_SETS: dict[str, tuple[FieldSpec, ...]] = {
    "basic": BASIC_FIELDS,
    "intake": INTAKE_FIELDS,
}


def get_field_set(name: str) -> list[FieldSpec]:
    """Return the named field preset as a fresh list."""
    try:
        return list(FIELD_SETS[name.lower()])
    except KeyError:
        raise ValueError(
            f"Unknown REQUIRED_FIELD_SET {name!r}; expected one of {sorted(FIELD_SETS)}"
        ) from None


def missing_fields(collected: dict[str, str], fields: list[FieldSpec]) -> list[FieldSpec]:
    """Required fields that have no non-empty value yet, in prompt order."""
    return [f for f in fields if not str(collected.get(f.name) or "").strip()]
