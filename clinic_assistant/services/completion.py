"""Completion capability over the Anthropic API (via ``langchain-anthropic``).

Every call runs on a small worker pool.  The caller stops waiting once the
wall-clock budget (``timeout``) is spent; the same value is handed to the
HTTP client as its request timeout, which is what eventually ends the
abandoned call and frees its worker.  Errors are normalised to
``CompletionError`` / ``CompletionTimeout`` so callers only have to know
about this package's exception hierarchy.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from clinic_assistant.config import MODEL_NAME, get_secret
from clinic_assistant.errors import CompletionError, CompletionTimeout
from clinic_assistant.services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 25.0
_MAX_WORKERS = 8


def build_chat_model(
    model: str, temperature: float, max_tokens: int, timeout: float,
) -> ChatAnthropic:
    """Build a ChatAnthropic client; the API key is resolved on first use."""
    return ChatAnthropic(
        model=model,
        api_key=get_secret("ANTHROPIC_API_KEY"),
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )


class CompletionClient:
    """``complete(system_prompt, user_message) -> text`` with a timeout race.

    ``llm_factory`` is injectable for tests; it receives
    ``(model, temperature, max_tokens, timeout)`` and returns anything with an
    ``invoke(messages)`` method.
    """

    def __init__(
        self,
        llm_factory: Callable[[str, float, int, float], Any] = build_chat_model,
        *,
        default_model: str = MODEL_NAME,
    ) -> None:
        self._llm_factory = llm_factory
        self._default_model = default_model
        self._models: dict[tuple[str, float, int, float], Any] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=_MAX_WORKERS, thread_name_prefix="completion",
        )

    def _get_model(self, model: str, temperature: float, max_tokens: int, timeout: float):
        key = (model, temperature, max_tokens, timeout)
        if key not in self._models:
            self._models[key] = self._llm_factory(*key)
        return self._models[key]

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        *,
        model: str | None = None,
        temperature: float = 0.5,
        max_tokens: int = 300,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        operation: str = "complete",
    ) -> str:
        """Return the model's text reply.

        Raises:
            CompletionTimeout: no reply within *timeout* seconds of wall-clock time.
            CompletionError: the client could not be built or the call failed.
        """
        model = model or self._default_model
        try:
            llm = self._get_model(model, temperature, max_tokens, timeout)
        except Exception as exc:
            raise CompletionError(f"Could not build completion client: {exc}") from exc

        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_message)]
        t0 = time.perf_counter()
        future = self._executor.submit(llm.invoke, messages)
        try:
            response = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation, error_type="timeout", latency_ms=elapsed,
            )
            logger.warning("%s on %s timed out after %.1fs", operation, model, timeout)
            raise CompletionTimeout(timeout) from None
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise CompletionError(f"{operation} failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        logger.debug("%s on %s responded in %.0fms", operation, model, elapsed)
        return _content_text(response)


def _content_text(response: Any) -> str:
    """Flatten an AIMessage's content (str or list of content blocks) to text."""
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)
