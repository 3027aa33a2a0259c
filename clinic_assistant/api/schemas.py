"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Incoming chat message; accepts ``session_id`` or ``sessionId``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("session_id", "sessionId"),
        description="Unique session identifier for conversation continuity",
    )


class ChatResponse(BaseModel):
    """One turn of the booking conversation."""

    reply: str = Field(..., description="The assistant's response message")
    session_id: str = Field(..., description="The session ID for this conversation")
    step: int = Field(..., description="Number of required fields collected so far")
    total_steps: int = Field(..., description="Number of required fields")
    done: bool = Field(False, description="True once the appointment is booked")
    errors: list[str] = Field(default_factory=list, description="Rejected field values")
    appointment: dict[str, Any] | None = Field(
        None, description="The stored appointment record, when done",
    )


class ErrorResponse(BaseModel):
    detail: str
    field: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "clinic-booking-assistant"
    stage: str = "dev"
    checks: dict[str, bool] = Field(default_factory=dict)
    active_sessions: int = 0
