"""FastAPI server for the clinic booking assistant.

Run with:
    uvicorn clinic_assistant.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_assistant.api.routes import router
from clinic_assistant.assistant import create_booking_assistant
from clinic_assistant.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from clinic_assistant.errors import (
    CompletionError,
    CompletionTimeout,
    PersistenceFailure,
    RateLimitExceeded,
    ValidationError,
)

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: build the assistant once, run the idle sweeper ─────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("Building booking assistant…")
    assistant = create_booking_assistant()
    assistant.start()
    application.state.assistant = assistant
    logger.info("Assistant ready.")
    yield
    assistant.stop()


app = FastAPI(
    title="Clinic Booking Assistant",
    description=(
        "Chat assistant that collects appointment details over several "
        "turns, confirms them and books the appointment."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID for log correlation and echo it as ``X-Request-ID``."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Error mapping ────────────────────────────────────────────────────
def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "?")


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    loc = first.get("loc") or ("body",)
    return JSONResponse(
        status_code=400,
        content={"detail": first.get("msg", "Invalid request"), "field": str(loc[-1])},
    )


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(RateLimitExceeded)
async def handle_rate_limit(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many messages. Please slow down and try again shortly."},
        headers={"Retry-After": str(max(1, int(exc.retry_after + 0.999)))},
    )


@app.exception_handler(PersistenceFailure)
async def handle_persistence_failure(request: Request, exc: PersistenceFailure):
    logger.error("[%s] Persistence failure: %s", _request_id(request), exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "We couldn't save your appointment. Please try again."},
    )


@app.exception_handler(CompletionError)
async def handle_completion_error(request: Request, exc: CompletionError):
    logger.error("[%s] Completion failure: %s", _request_id(request), exc)
    if isinstance(exc, CompletionTimeout):
        return JSONResponse(
            status_code=504,
            content={"detail": "The assistant took too long to respond. Please try again."},
        )
    return JSONResponse(
        status_code=502,
        content={"detail": "The assistant is temporarily unavailable. Please try again."},
    )


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Clinic Booking Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting booking assistant API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "clinic_assistant.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
