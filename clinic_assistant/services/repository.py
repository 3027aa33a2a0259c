"""Persistence for booked appointments and conversation turns.

Production uses two DynamoDB tables (``boto3``):

* appointments: partition key ``session_id``, sort key ``created_at``
* conversations: partition key ``session_id``, sort key ``timestamp``,
  TTL attribute ``expires_at`` (turns expire after ``CONVERSATION_TTL_DAYS``)

The in-memory variants back local development and tests.  Every backend
error surfaces as ``PersistenceFailure``.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from clinic_assistant.config import (
    APPOINTMENTS_TABLE,
    AWS_REGION,
    CONVERSATION_TTL_DAYS,
    CONVERSATIONS_TABLE,
)
from clinic_assistant.errors import PersistenceFailure
from clinic_assistant.services.metrics import metrics

logger = logging.getLogger(__name__)


class AppointmentRepository(Protocol):
    def insert(self, record: dict[str, Any]) -> str: ...

    def find(self, session_key: str) -> list[dict[str, Any]]: ...

    def ping(self) -> bool: ...


class ConversationRepository(Protocol):
    def append(self, session_key: str, role: str, content: str) -> None: ...

    def history(self, session_key: str, limit: int = 20) -> list[dict[str, Any]]: ...


# ── DynamoDB ─────────────────────────────────────────────────────────


def _dynamodb_table(name: str):
    return boto3.resource("dynamodb", region_name=AWS_REGION).Table(name)


class DynamoDBAppointmentRepository:
    """Appointments stored one item per booking."""

    def __init__(self, table=None, table_name: str = APPOINTMENTS_TABLE) -> None:
        self._table = table if table is not None else _dynamodb_table(table_name)

    def insert(self, record: dict[str, Any]) -> str:
        try:
            with metrics.track("dynamodb", "appointments.put_item"):
                self._table.put_item(Item=record)
        except (BotoCoreError, ClientError) as exc:
            logger.error(
                "Failed to store appointment for session %s: %s",
                record.get("session_id"), exc,
            )
            raise PersistenceFailure("Could not store the appointment") from exc
        logger.info(
            "Appointment %s stored for session %s",
            record.get("appointment_id"), record.get("session_id"),
        )
        return record["appointment_id"]

    def find(self, session_key: str) -> list[dict[str, Any]]:
        """All appointments booked from *session_key*, oldest first."""
        try:
            with metrics.track("dynamodb", "appointments.query"):
                resp = self._table.query(
                    KeyConditionExpression=Key("session_id").eq(session_key),
                    ScanIndexForward=True,
                )
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure("Could not load appointments") from exc
        return resp.get("Items", [])

    def ping(self) -> bool:
        try:
            self._table.meta.client.describe_table(TableName=self._table.name)
            return True
        except (BotoCoreError, ClientError) as exc:
            logger.warning("DynamoDB health check failed: %s", exc)
            return False


class DynamoDBConversationRepository:
    """Chat turns with a TTL so old conversations clean themselves up."""

    def __init__(
        self,
        table=None,
        table_name: str = CONVERSATIONS_TABLE,
        ttl_days: int = CONVERSATION_TTL_DAYS,
    ) -> None:
        self._table = table if table is not None else _dynamodb_table(table_name)
        self._ttl = timedelta(days=ttl_days)

    def append(self, session_key: str, role: str, content: str) -> None:
        now = datetime.now(UTC)
        item = {
            "session_id": session_key,
            "timestamp": now.isoformat(timespec="microseconds"),
            "role": role,
            "content": content,
            "expires_at": int((now + self._ttl).timestamp()),
        }
        try:
            with metrics.track("dynamodb", "conversations.put_item"):
                self._table.put_item(Item=item)
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure("Could not store the conversation turn") from exc

    def history(self, session_key: str, limit: int = 20) -> list[dict[str, Any]]:
        """The last *limit* turns for *session_key*, oldest first."""
        try:
            with metrics.track("dynamodb", "conversations.query"):
                resp = self._table.query(
                    KeyConditionExpression=Key("session_id").eq(session_key),
                    ScanIndexForward=False,
                    Limit=limit,
                )
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure("Could not load conversation history") from exc
        return list(reversed(resp.get("Items", [])))


# ── In-memory ────────────────────────────────────────────────────────


class InMemoryAppointmentRepository:
    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def insert(self, record: dict[str, Any]) -> str:
        with self._lock:
            self._records.append(dict(record))
        logger.info("Appointment %s stored in memory", record["appointment_id"])
        return record["appointment_id"]

    def find(self, session_key: str) -> list[dict[str, Any]]:
        with self._lock:
            matches = [dict(r) for r in self._records if r.get("session_id") == session_key]
        return sorted(matches, key=lambda r: r.get("created_at", ""))

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._records)


class InMemoryConversationRepository:
    def __init__(self) -> None:
        self._turns: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def append(self, session_key: str, role: str, content: str) -> None:
        turn = {
            "session_id": session_key,
            "timestamp": datetime.now(UTC).isoformat(timespec="microseconds"),
            "role": role,
            "content": content,
        }
        with self._lock:
            self._turns.setdefault(session_key, []).append(turn)

    def history(self, session_key: str, limit: int = 20) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._turns.get(session_key, [])[-limit:])


def build_repositories(backend: str):
    """Return ``(appointments, conversations)`` for ``PERSISTENCE_BACKEND``."""
    if backend == "dynamodb":
        return DynamoDBAppointmentRepository(), DynamoDBConversationRepository()
    if backend == "memory":
        return InMemoryAppointmentRepository(), InMemoryConversationRepository()
    raise ValueError(f"Unknown PERSISTENCE_BACKEND {backend!r}; expected 'memory' or 'dynamodb'")
