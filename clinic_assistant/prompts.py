"""Prompt templates and canned replies for the booking assistant."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from clinic_assistant.fields import FieldSpec

GREETING_TEXT = "Hi! I can help you book an appointment."
CLARIFICATION_TEXT = "Sorry, I didn't understand that. Can you rephrase?"
CANCELLATION_TEXT = "Appointment cancelled. If you want to start over, just say hi!"
BOOKED_TEXT = "Your appointment is confirmed! Thank you."

EXTRACTION_PROMPT_TEMPLATE = """You're a helpful medical appointment assistant for a clinic.
Today is {current_date} ({current_day_of_week}).

Extract as many of the following fields as possible from the user message:
{field_list}

Fields collected so far:
{collected}
{context}
Respond with ONLY a JSON object in this shape (no prose, no code fences):
{{
  "data": {{ "<field name>": "<value>", ... }},
  "nextPrompt": "<a friendly question asking for the next missing field>"
}}

Only include fields in "data" that the user actually provided in this message.
Use the exact field names listed above.
"""

CONFIRMATION_PROMPT_TEMPLATE = """You're an appointment assistant. Confirm the following appointment \
details in a friendly tone, repeating every value exactly as written:
{details}
Ask if everything looks good and tell the patient to answer yes or no."""


def _format_field_list(fields: list[FieldSpec]) -> str:
    return "\n".join(f"- {f.name}: {f.label}" for f in fields)


def _format_context(context: list[str]) -> str:
    if not context:
        return ""
    lines = ["", "Relevant clinic information and earlier conversation:"]
    lines.extend(f"- {item}" for item in context)
    lines.append("")
    return "\n".join(lines)


def get_extraction_prompt(
    collected: dict[str, str],
    fields: list[FieldSpec],
    context: list[str] | None = None,
) -> str:
    """Build the system prompt for delegated field extraction."""
    now = datetime.now(UTC)
    return EXTRACTION_PROMPT_TEMPLATE.format(
        current_date=now.strftime("%d %B %Y"),
        current_day_of_week=now.strftime("%A"),
        field_list=_format_field_list(fields),
        collected=json.dumps(collected, indent=2),
        context=_format_context(context or []),
    )


def summarize(values: dict[str, Any], fields: list[FieldSpec]) -> str:
    """One ``- Label: value`` line per field, values rendered verbatim."""
    return "\n".join(f"- {f.label}: {values.get(f.name, '')}" for f in fields)


def confirmation_question(collected: dict[str, str], fields: list[FieldSpec]) -> str:
    """The awaiting-confirmation prompt."""
    return (
        "Here are your appointment details:\n"
        f"{summarize(collected, fields)}\n"
        "Does everything look good? Reply yes to book or no to cancel."
    )


def get_confirmation_prompt(collected: dict[str, str], fields: list[FieldSpec]) -> str:
    return CONFIRMATION_PROMPT_TEMPLATE.format(details=summarize(collected, fields))


def confirm(record: dict[str, Any], fields: list[FieldSpec]) -> str:
    """Final booking confirmation; contains every collected value verbatim."""
    return f"{BOOKED_TEXT}\n{summarize(record, fields)}"
