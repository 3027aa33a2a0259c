"""Deterministic validation of collected appointment fields.

``validate`` runs every rule and accumulates the messages; it never stops at
the first failure.  ``field_error`` checks a single value and is what the
engine uses to reject a freshly extracted value before merging it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from clinic_assistant.fields import (
    BASIC_FIELDS,
    KIND_DATE,
    KIND_EMAIL,
    KIND_NAME,
    KIND_PHONE,
    KIND_SERVICE,
    KIND_TIME,
    FieldSpec,
)

MIN_NAME_LENGTH = 2
MIN_PHONE_DIGITS = 10

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_SEPARATORS_RE = re.compile(r"[\s\-.()+]")


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value.strip()))


def phone_digits(value: str) -> str:
    """Strip the usual separators (spaces, dashes, dots, brackets, plus)."""
    return _PHONE_SEPARATORS_RE.sub("", value)


def field_error(spec: FieldSpec, value: str | None) -> str | None:
    """Return the rule message *value* violates for *spec*, or ``None``."""
    text = (value or "").strip()
    if spec.kind == KIND_NAME:
        if len(text) < MIN_NAME_LENGTH:
            return "Name must be at least 2 characters long"
    elif spec.kind == KIND_EMAIL:
        if not text or not is_valid_email(text):
            return "Valid email is required"
    elif spec.kind == KIND_PHONE:
        digits = phone_digits(text)
        if len(digits) < MIN_PHONE_DIGITS or not digits.isdigit():
            return "Valid phone number is required"
    elif spec.kind == KIND_SERVICE:
        if not text:
            return "Service type is required"
    elif spec.kind == KIND_DATE:
        if not text:
            return "Preferred date is required"
    elif spec.kind == KIND_TIME:
        if not text:
            return "Preferred time is required"
    elif not text:
        return f"{spec.label} is required"
    return None


def validate(
    collected: dict[str, str], fields: list[FieldSpec] | None = None,
) -> ValidationResult:
    """Check *collected* against every field rule and report all violations.

    Defaults to the seven-field booking form when *fields* is omitted.
    """
    errors = []
    for spec in fields if fields is not None else BASIC_FIELDS:
        message = field_error(spec, collected.get(spec.name))
        if message:
            errors.append(message)
    return ValidationResult(valid=not errors, errors=errors)
