"""Centralized configuration for the clinic booking assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/clinic-assistant/<VARIABLE_NAME>``.
Secrets are resolved lazily (see ``get_secret``) so that the rule-based,
in-memory configuration used in tests and local dev needs no keys at all.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or the call fails.
    Errors are logged but never raised so that local-dev fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415  (only needed on AWS)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/clinic-assistant/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def get_secret(name: str, *, required: bool = True) -> str | None:
    """Return a config value from env-var or SSM.

    Raises ``OSError`` naming the variable when *required* and nothing is
    found; otherwise returns ``None``.
    """
    # 1. Env var / .env (always checked first, allows local override)
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    # 2. SSM Parameter Store (only on AWS)
    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    if not required:
        return None
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /clinic-assistant/{name} (AWS)."
    )


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


STAGE: str = os.getenv("STAGE", "dev")

# ── LLM ─────────────────────────────────────────────────────────────
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Cheaper model for phrasing confirmation messages
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")
EXTRACTION_TIMEOUT_SECONDS: float = _float_env("EXTRACTION_TIMEOUT_SECONDS", "25")
CONFIRMATION_TIMEOUT_SECONDS: float = _float_env("CONFIRMATION_TIMEOUT_SECONDS", "10")

# ── Conversation engine ─────────────────────────────────────────────
EXTRACTOR_MODE: str = os.getenv("EXTRACTOR_MODE", "rules").lower()          # rules | llm
CONFIRMATION_STYLE: str = os.getenv("CONFIRMATION_STYLE", "template").lower()  # template | llm
REQUIRED_FIELD_SET: str = os.getenv("REQUIRED_FIELD_SET", "basic").lower()  # basic | intake

# ── Sessions ────────────────────────────────────────────────────────
SESSION_IDLE_SECONDS: float = _float_env("SESSION_IDLE_SECONDS", "900")
SWEEP_INTERVAL_SECONDS: float = _float_env("SWEEP_INTERVAL_SECONDS", "60")
MAX_SESSIONS: int = _int_env("MAX_SESSIONS", "10000")

# ── Rate limiting ───────────────────────────────────────────────────
RATE_LIMIT_REQUESTS: int = _int_env("RATE_LIMIT_REQUESTS", "30")
RATE_LIMIT_WINDOW_SECONDS: float = _float_env("RATE_LIMIT_WINDOW_SECONDS", "60")

# ── Persistence (DynamoDB) ──────────────────────────────────────────
PERSISTENCE_BACKEND: str = os.getenv("PERSISTENCE_BACKEND", "memory").lower()  # memory | dynamodb
AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
APPOINTMENTS_TABLE: str = os.getenv("APPOINTMENTS_TABLE", f"clinic-assistant-{STAGE}-appointments")
CONVERSATIONS_TABLE: str = os.getenv("CONVERSATIONS_TABLE", f"clinic-assistant-{STAGE}-conversations")
CONVERSATION_TTL_DAYS: int = _int_env("CONVERSATION_TTL_DAYS", "30")

# ── Retrieval (Qdrant + OpenAI embeddings) ──────────────────────────
RETRIEVAL_ENABLED: bool = _bool_env("RETRIEVAL_ENABLED", "false")
QDRANT_URL: str = os.getenv("QDRANT_URL", "http://localhost:6333")
QDRANT_COLLECTION: str = os.getenv("QDRANT_COLLECTION", "appointment-chatbot")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-large")
RETRIEVAL_TOP_K: int = _int_env("RETRIEVAL_TOP_K", "3")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", "8000")
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
