"""Extractors: turn free text into appointment field values.

Two interchangeable implementations of one capability::

    extractor.extract(collected, message, context=None) -> Extraction

* ``RuleBasedExtractor``: independent regular-expression rules, one per
  field kind.  Deterministic, needs no network.
* ``DelegatedExtractor``: asks the completion API for structured field
  updates and a follow-up question.  Any failure (timeout, API error,
  malformed JSON) degrades to an empty update plus a clarification prompt;
  it never raises.

``build_extractor`` picks one from ``EXTRACTOR_MODE``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from clinic_assistant.config import EXTRACTION_TIMEOUT_SECONDS, MODEL_NAME
from clinic_assistant.errors import CompletionError, ExtractionFailure
from clinic_assistant.fields import (
    KIND_DATE,
    KIND_DOB,
    KIND_DOCTOR,
    KIND_EMAIL,
    KIND_NAME,
    KIND_PHONE,
    KIND_SERVICE,
    KIND_TIME,
    FieldSpec,
    missing_fields,
)
from clinic_assistant.prompts import CLARIFICATION_TEXT, get_extraction_prompt
from clinic_assistant.services.completion import CompletionClient

logger = logging.getLogger(__name__)


@dataclass
class Extraction:
    """Partial field mapping recognised in one message, plus what to ask next."""

    data: dict[str, str] = field(default_factory=dict)
    next_prompt: str = ""


class Extractor(Protocol):
    def extract(
        self,
        collected: dict[str, str],
        message: str,
        context: list[str] | None = None,
    ) -> Extraction: ...


# ── Rule-based extraction ────────────────────────────────────────────

SERVICE_KEYWORDS = ("consultation", "checkup", "examination", "treatment", "therapy", "surgery")

_WEEKDAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_MONTHS = (
    "jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    "aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)

_NAME_RE = re.compile(
    r"\b(?:my name is|call me)\s+([a-z][a-z'\-]*(?:\s+[a-z][a-z'\-]*){0,3})",
    re.IGNORECASE,
)
# "I'm ..." / "I am ..." is usually not an introduction, so only capitalised
# words count as a name there
_SELF_INTRO_RE = re.compile(
    r"\b(?i:i'm|i’m|i am)\s+([A-Z][a-zA-Z'\-]*(?:\s+[A-Z][a-zA-Z'\-]*){0,3})"
)
# Words that end a captured name ("I'm Jane and ...", "call me Jane, Dr ...")
_NAME_STOPWORDS = frozenset(
    {
        "and", "but", "my", "email", "phone", "number", "i", "at", "on", "for",
        "with", "is", "please", "would", "want", "like", "need", "looking",
        "free", "available", "here", "calling", "interested", "not", "sure",
        "fine", "good", "ok", "okay", "going", "booking", "trying", "hoping",
        "a", "an", "the", "to", "in", "from", "so", "just", "also", "seeing",
        "dr", "doctor", "mr", "mrs", "ms", "today", "tomorrow",
    }
)
_EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_PHONE_RE = re.compile(r"(?<!\d)(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})(?!\d)")
_DOCTOR_RE = re.compile(r"\b(?i:dr\.?|doctor)\s+([A-Z][a-zA-Z'\-]+(?:\s+[A-Z][a-zA-Z'\-]+)?)")
_DATE_PATTERNS = (
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
    re.compile(
        rf"\b(?:on|for|at)\s+((?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?)\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"\b(?:on|for|at)\s+((?:next\s+|this\s+)?(?:{_WEEKDAYS})(?:\s+\d{{1,2}}(?:st|nd|rd|th)?)?)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(today|tomorrow)\b", re.IGNORECASE),
)
_TIME_PATTERNS = (
    re.compile(r"(?<![\d:])(\d{1,2}:\d{2}\s*(?:am|pm)?)(?![\d:])", re.IGNORECASE),
    re.compile(r"(?<![\d:])(\d{1,2}\s*(?:am|pm))\b", re.IGNORECASE),
)
_DOB_RE = re.compile(
    r"\b(?:born on|dob|date of birth(?: is)?)[:\s]+"
    r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2}"
    rf"|(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}})",
    re.IGNORECASE,
)


def _extract_name(message: str) -> str | None:
    match = _NAME_RE.search(message) or _SELF_INTRO_RE.search(message)
    if not match:
        return None
    words = []
    for word in match.group(1).split():
        if word.lower() in _NAME_STOPWORDS:
            break
        words.append(word)
    return " ".join(words) or None


def _extract_email(message: str) -> str | None:
    match = _EMAIL_RE.search(message)
    return match.group(1) if match else None


def _extract_phone(message: str) -> str | None:
    match = _PHONE_RE.search(message)
    return re.sub(r"\D", "", match.group(1)) if match else None


def _extract_doctor(message: str) -> str | None:
    match = _DOCTOR_RE.search(message)
    return f"Dr. {match.group(1)}" if match else None


def _extract_service(message: str) -> str | None:
    lowered = message.lower().replace("check-up", "checkup").replace("check up", "checkup")
    for keyword in SERVICE_KEYWORDS:
        if keyword in lowered:
            return keyword
    return None


def _first_match(patterns: tuple[re.Pattern[str], ...], message: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(message)
        if match:
            return match.group(1).strip()
    return None


def _extract_date(message: str) -> str | None:
    # Don't mistake a date of birth for the appointment date
    return _first_match(_DATE_PATTERNS, _DOB_RE.sub(" ", message))


def _extract_time(message: str) -> str | None:
    return _first_match(_TIME_PATTERNS, message)


def _extract_dob(message: str) -> str | None:
    match = _DOB_RE.search(message)
    return match.group(1).strip() if match else None


_RULES = {
    KIND_NAME: _extract_name,
    KIND_EMAIL: _extract_email,
    KIND_PHONE: _extract_phone,
    KIND_DOCTOR: _extract_doctor,
    KIND_SERVICE: _extract_service,
    KIND_DATE: _extract_date,
    KIND_TIME: _extract_time,
    KIND_DOB: _extract_dob,
}


class RuleBasedExtractor:
    """Apply one independent regex rule per field kind.

    Rules do not see each other's results, so their order is irrelevant, and
    each yields at most one value.  Fields of kind ``text`` have no rule and
    can only be filled by the delegated extractor.
    """

    # Retrieved context cannot change what a regex matches
    uses_context = False

    def __init__(self, fields: list[FieldSpec]) -> None:
        self._fields = list(fields)

    def extract(
        self,
        collected: dict[str, str],
        message: str,
        context: list[str] | None = None,
    ) -> Extraction:
        data: dict[str, str] = {}
        for spec in self._fields:
            rule = _RULES.get(spec.kind)
            if rule is None:
                continue
            value = rule(message)
            if value:
                data[spec.name] = value

        still_missing = missing_fields({**collected, **data}, self._fields)
        next_prompt = still_missing[0].ask() if still_missing else ""
        logger.debug("Rule extraction found %s", sorted(data))
        return Extraction(data=data, next_prompt=next_prompt)


# ── Delegated (LLM) extraction ───────────────────────────────────────

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_extraction_response(text: str, fields: list[FieldSpec]) -> Extraction:
    """Parse ``{"data": {...}, "nextPrompt": "..."}`` out of a model reply.

    Tolerates code fences and prose around the JSON object.  Unknown field
    names and empty values are dropped.

    Raises:
        ExtractionFailure: no JSON object could be parsed.
    """
    cleaned = _CODE_FENCE_RE.sub("", text.strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ExtractionFailure("No JSON object in model response")
    try:
        parsed = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ExtractionFailure(f"Malformed JSON in model response: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ExtractionFailure("Model response is not a JSON object")

    raw_data = parsed.get("data") or {}
    if not isinstance(raw_data, dict):
        raise ExtractionFailure("'data' is not an object")

    known = {f.name for f in fields}
    data = {}
    for name, value in raw_data.items():
        if name not in known or value is None or isinstance(value, (dict, list)):
            continue
        text_value = str(value).strip()
        if text_value:
            data[name] = text_value

    next_prompt = parsed.get("nextPrompt") or parsed.get("next_prompt") or ""
    return Extraction(data=data, next_prompt=str(next_prompt).strip())


class DelegatedExtractor:
    """Ask the completion API for field updates; never raises."""

    uses_context = True

    def __init__(
        self,
        completion: CompletionClient,
        fields: list[FieldSpec],
        *,
        model: str = MODEL_NAME,
        timeout: float = EXTRACTION_TIMEOUT_SECONDS,
        temperature: float = 0.5,
        max_tokens: int = 300,
    ) -> None:
        self._completion = completion
        self._fields = list(fields)
        self._model = model
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens

    def extract(
        self,
        collected: dict[str, str],
        message: str,
        context: list[str] | None = None,
    ) -> Extraction:
        system_prompt = get_extraction_prompt(collected, self._fields, context)
        try:
            text = self._completion.complete(
                system_prompt,
                message,
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                timeout=self._timeout,
                operation="extract_fields",
            )
            return parse_extraction_response(text, self._fields)
        except (CompletionError, ExtractionFailure) as exc:
            logger.warning("Delegated extraction failed, asking to rephrase: %s", exc)
        except Exception:
            logger.exception("Unexpected error during delegated extraction")
        return Extraction(data={}, next_prompt=CLARIFICATION_TEXT)


def build_extractor(
    mode: str,
    fields: list[FieldSpec],
    completion: CompletionClient | None = None,
) -> Extractor:
    """Return the extractor for *mode* (``"rules"`` or ``"llm"``)."""
    if mode == "rules":
        return RuleBasedExtractor(fields)
    if mode == "llm":
        return DelegatedExtractor(completion or CompletionClient(), fields)
    raise ValueError(f"Unknown EXTRACTOR_MODE {mode!r}; expected 'rules' or 'llm'")
