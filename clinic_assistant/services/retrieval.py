"""Semantic context for extraction prompts: OpenAI embeddings + Qdrant.

The index holds three kinds of points, told apart by the ``type`` payload:

* ``clinic_information``: seeded by ``scripts/ingest_clinic_info.py``
  (opening hours, doctors, policies)
* ``conversation``: every user message, tagged with its session id
* ``appointment``: every booked appointment, tagged with its session id

Retrieval is an enrichment only.  When it is disabled or any call fails,
``relevant_context`` returns ``[]`` and ``index_message`` does nothing, so
the booking flow never waits on the vector index.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from openai import OpenAI
from qdrant_client import QdrantClient, models

from clinic_assistant.config import (
    EMBEDDING_MODEL,
    QDRANT_COLLECTION,
    QDRANT_URL,
    RETRIEVAL_ENABLED,
    RETRIEVAL_TOP_K,
    get_secret,
)
from clinic_assistant.services.metrics import metrics

logger = logging.getLogger(__name__)

TYPE_CLINIC_INFO = "clinic_information"
TYPE_CONVERSATION = "conversation"
TYPE_APPOINTMENT = "appointment"

MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class ContextRetriever:
    """Embed text and search the Qdrant collection for related snippets."""

    def __init__(
        self,
        *,
        enabled: bool = RETRIEVAL_ENABLED,
        qdrant: QdrantClient | None = None,
        openai_client: OpenAI | None = None,
        collection: str = QDRANT_COLLECTION,
        embedding_model: str = EMBEDDING_MODEL,
        top_k: int = RETRIEVAL_TOP_K,
    ) -> None:
        self.enabled = enabled
        self._qdrant = qdrant
        self._openai = openai_client
        self._collection = collection
        self._embedding_model = embedding_model
        self._top_k = top_k

    @property
    def vector_size(self) -> int:
        return MODEL_DIMENSIONS.get(self._embedding_model, 1536)

    # ── Lazy clients ─────────────────────────────────────────────────

    def _get_qdrant(self) -> QdrantClient:
        if self._qdrant is None:
            self._qdrant = QdrantClient(
                url=QDRANT_URL, api_key=get_secret("QDRANT_API_KEY", required=False),
            )
        return self._qdrant

    def _get_openai(self) -> OpenAI:
        if self._openai is None:
            self._openai = OpenAI(api_key=get_secret("OPENAI_API_KEY"))
        return self._openai

    # ── Primitives (raise on failure) ────────────────────────────────

    def embed(self, texts: str | list[str]) -> list[list[float]]:
        """Return one embedding per input text."""
        batch = [texts] if isinstance(texts, str) else list(texts)
        if not batch:
            return []
        with metrics.track("openai", "embeddings.create"):
            response = self._get_openai().embeddings.create(
                input=batch, model=self._embedding_model,
            )
        return [item.embedding for item in response.data]

    def search(
        self,
        vector: list[float],
        filters: dict[str, str] | None = None,
        top_k: int | None = None,
    ) -> list[dict[str, Any]]:
        """Nearest points whose payload matches every ``filters`` key exactly."""
        query_filter = None
        if filters:
            query_filter = models.Filter(
                must=[
                    models.FieldCondition(key=k, match=models.MatchValue(value=v))
                    for k, v in filters.items()
                ]
            )
        with metrics.track("qdrant", "query_points"):
            result = self._get_qdrant().query_points(
                collection_name=self._collection,
                query=vector,
                query_filter=query_filter,
                limit=top_k or self._top_k,
                with_payload=True,
            )
        return [
            {"id": str(point.id), "score": point.score, "payload": point.payload or {}}
            for point in result.points
        ]

    def upsert_documents(self, documents: list[dict[str, Any]]) -> int:
        """Embed and store ``{"text": ..., **metadata}`` documents.  Returns count."""
        if not documents:
            return 0
        vectors = self.embed([doc["text"] for doc in documents])
        now = datetime.now(UTC).isoformat()
        points = [
            models.PointStruct(
                id=str(uuid.uuid4()),
                vector=vector,
                payload={"timestamp": now, **doc},
            )
            for doc, vector in zip(documents, vectors)
        ]
        with metrics.track("qdrant", "upsert"):
            self._get_qdrant().upsert(collection_name=self._collection, points=points)
        return len(points)

    def ensure_collection(self) -> bool:
        """Create the collection if missing.  Returns ``True`` if it was created."""
        client = self._get_qdrant()
        if client.collection_exists(self._collection):
            return False
        client.create_collection(
            collection_name=self._collection,
            vectors_config=models.VectorParams(
                size=self.vector_size, distance=models.Distance.COSINE,
            ),
        )
        logger.info("Created Qdrant collection %s (dim=%d)", self._collection, self.vector_size)
        return True

    # ── Best-effort enrichment (never raise) ─────────────────────────

    def index_message(self, session_key: str, text: str) -> None:
        if not self.enabled:
            return
        try:
            self.upsert_documents(
                [{"text": text, "type": TYPE_CONVERSATION, "session_id": session_key}]
            )
        except Exception as exc:
            logger.warning("Could not index message for session %s: %s", session_key, exc)

    def index_appointment(self, record: dict[str, Any]) -> None:
        """Store a booked appointment so later sessions can find it."""
        if not self.enabled:
            return
        details = ", ".join(
            f"{k}: {v}" for k, v in record.items() if k not in ("appointment_id", "session_id")
        )
        try:
            self.upsert_documents(
                [
                    {
                        "text": f"Appointment booked. {details}",
                        "type": TYPE_APPOINTMENT,
                        "session_id": record.get("session_id", ""),
                        "appointment_id": record.get("appointment_id", ""),
                    }
                ]
            )
        except Exception as exc:
            logger.warning(
                "Could not index appointment %s: %s", record.get("appointment_id"), exc,
            )

    def relevant_context(self, session_key: str, text: str) -> list[str]:
        """Clinic facts and earlier messages related to *text*, best first."""
        if not self.enabled:
            return []
        try:
            [vector] = self.embed(text)
            clinic = self.search(vector, {"type": TYPE_CLINIC_INFO})
            history = self.search(
                vector, {"type": TYPE_CONVERSATION, "session_id": session_key},
            )
        except Exception as exc:
            logger.warning("Context retrieval failed, continuing without it: %s", exc)
            return []

        snippets = []
        for match in clinic + history:
            snippet = match["payload"].get("text")
            if snippet and snippet != text and snippet not in snippets:
                snippets.append(snippet)
        return snippets

    def ping(self) -> bool:
        if not self.enabled:
            return True
        try:
            self._get_qdrant().get_collections()
            return True
        except Exception as exc:
            logger.warning("Qdrant health check failed: %s", exc)
            return False
