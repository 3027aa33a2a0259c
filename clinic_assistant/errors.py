"""Exception hierarchy for the booking assistant.

Only ``ValidationError``, ``PersistenceFailure``, ``CompletionTimeout`` (outside
of extraction) and ``RateLimitExceeded`` ever reach the HTTP layer;
``ExtractionFailure`` is absorbed by the extractor that raised it.
"""

from __future__ import annotations


class ClinicAssistantError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(ClinicAssistantError):
    """Raised when caller input violates a size or shape constraint."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class ExtractionFailure(ClinicAssistantError):
    """The extractor could not turn a model response into field updates."""


class PersistenceFailure(ClinicAssistantError):
    """A write or read against the durable store failed."""


class CompletionError(ClinicAssistantError):
    """The completion API call failed."""


class CompletionTimeout(CompletionError):
    """The completion API call exceeded its wall-clock budget."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Completion call exceeded {timeout:.1f}s")


class RateLimitExceeded(ClinicAssistantError):
    """The session sent more requests than the rate limiter allows."""

    def __init__(self, session_key: str, retry_after: float):
        self.session_key = session_key
        self.retry_after = retry_after
        super().__init__(f"Too many requests for session {session_key}")
