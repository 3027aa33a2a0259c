"""FastAPI route definitions for the booking assistant API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from clinic_assistant.api.schemas import ChatRequest, ChatResponse, ErrorResponse, HealthResponse
from clinic_assistant.assistant import BookingAssistant
from clinic_assistant.config import STAGE
from clinic_assistant.errors import ClinicAssistantError

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_assistant(request: Request) -> BookingAssistant:
    """Retrieve the booking assistant built during the FastAPI lifespan."""
    assistant = getattr(request.app.state, "assistant", None)
    if assistant is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return assistant


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check: persistence and vector index reachability."""
    assistant = _get_assistant(http_request)
    report = await asyncio.to_thread(assistant.health)
    return HealthResponse(stage=STAGE, **report)


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={
        code: {"model": ErrorResponse} for code in (400, 429, 500, 502, 503, 504)
    },
)
async def chat(request: ChatRequest, http_request: Request):
    """Send one message of the booking conversation.

    ``BookingAssistant.chat`` blocks (it may call the completion API and
    DynamoDB), so it runs on the default thread pool to keep the event loop
    free.  Domain errors propagate to the exception handlers registered in
    ``server.py``, which map them to status codes.
    """
    assistant = _get_assistant(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(
            assistant.chat, request.session_id, request.message,
        )
    except ClinicAssistantError:
        raise
    except Exception as e:
        # Full traceback server-side only; never leak internals to the client
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
    logger.debug("[%s] session %s step %d/%d", request_id, request.session_id,
                 result.step, result.total_steps)

    return ChatResponse(
        reply=result.reply,
        session_id=request.session_id,
        step=result.step,
        total_steps=result.total_steps,
        done=result.done,
        errors=result.errors,
        appointment=result.record,
    )
