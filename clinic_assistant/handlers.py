"""AWS Lambda handlers (API Gateway proxy integration).

``chat`` and ``health`` serve the same contract as the FastAPI routes, for
deployments that put API Gateway directly in front of Lambda.  The assistant
is built on the first invocation and reused while the container stays warm.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from clinic_assistant.api.schemas import ChatRequest, ChatResponse
from clinic_assistant.assistant import BookingAssistant, create_booking_assistant
from clinic_assistant.config import CORS_ORIGINS, STAGE
from clinic_assistant.errors import (
    CompletionError,
    CompletionTimeout,
    PersistenceFailure,
    RateLimitExceeded,
    ValidationError,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_assistant: BookingAssistant | None = None


def _get_assistant() -> BookingAssistant:
    global _assistant
    if _assistant is None:
        _assistant = create_booking_assistant()
        _assistant.start()
    return _assistant


def _headers(methods: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Access-Control-Allow-Origin": CORS_ORIGINS[0] if len(CORS_ORIGINS) == 1 else "*",
        "Access-Control-Allow-Headers": "Content-Type,X-Request-ID",
        "Access-Control-Allow-Methods": methods,
    }


def _respond(status: int, body: dict[str, Any], methods: str, **extra_headers: str) -> dict:
    return {
        "statusCode": status,
        "headers": {**_headers(methods), **extra_headers},
        "body": json.dumps(body, default=str),
    }


def _parse_body(event: dict[str, Any]) -> Any:
    body = event.get("body")
    if body is None:
        return {}
    if isinstance(body, str):
        return json.loads(body) if body else {}
    return body


def chat(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """POST /chat with ``{"sessionId": ..., "message": ...}``."""
    methods = "POST,OPTIONS"
    if event.get("httpMethod") == "OPTIONS":
        return {"statusCode": 200, "headers": _headers(methods), "body": ""}

    request_id = getattr(context, "aws_request_id", "?")
    try:
        request = ChatRequest.model_validate(_parse_body(event))
    except json.JSONDecodeError:
        return _respond(400, {"detail": "Request body must be valid JSON"}, methods)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][-1]) if first.get("loc") else "body"
        return _respond(400, {"detail": first["msg"], "field": field}, methods)

    try:
        result = _get_assistant().chat(request.session_id, request.message)
    except ValidationError as exc:
        return _respond(400, {"detail": str(exc), "field": exc.field}, methods)
    except RateLimitExceeded as exc:
        return _respond(
            429,
            {"detail": "Too many messages. Please slow down and try again shortly."},
            methods,
            **{"Retry-After": str(max(1, int(exc.retry_after + 0.999)))},
        )
    except PersistenceFailure as exc:
        logger.error("[%s] Persistence failure: %s", request_id, exc)
        return _respond(
            500, {"detail": "We couldn't save your appointment. Please try again."}, methods,
        )
    except CompletionTimeout:
        return _respond(
            504, {"detail": "The assistant took too long to respond. Please try again."}, methods,
        )
    except CompletionError as exc:
        logger.error("[%s] Completion failure: %s", request_id, exc)
        return _respond(
            502, {"detail": "The assistant is temporarily unavailable. Please try again."},
            methods,
        )
    except Exception:
        logger.exception("[%s] Error processing chat request", request_id)
        return _respond(500, {"detail": "An internal error occurred. Please try again."}, methods)

    response = ChatResponse(
        reply=result.reply,
        session_id=request.session_id,
        step=result.step,
        total_steps=result.total_steps,
        done=result.done,
        errors=result.errors,
        appointment=result.record,
    )
    return _respond(200, response.model_dump(), methods)


def health(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    """GET /health."""
    methods = "GET,OPTIONS"
    method = event.get("httpMethod", "GET")
    if method == "OPTIONS":
        return {"statusCode": 200, "headers": _headers(methods), "body": ""}
    if method != "GET":
        return _respond(405, {"detail": "Method not allowed"}, methods)

    report = _get_assistant().health()
    body = {"service": "clinic-booking-assistant", "stage": STAGE, **report}
    return _respond(200, body, methods)
