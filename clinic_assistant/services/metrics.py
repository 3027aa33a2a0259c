"""CloudWatch custom metrics emitter with background batching.

Two families of metrics are published:

* ``ExternalAPI/*``: count, latency and errors for every collaborator the
  assistant calls (``anthropic``, ``dynamodb``, ``qdrant``, ``openai``).
* ``Engine/*``: conversation outcomes (``TurnCount`` by outcome) and the
  number of idle sessions reclaimed by the sweeper.

Metrics are collected in a thread-safe buffer.  When ``METRICS_ENABLED`` is
``"true"`` a daemon thread flushes the buffer to CloudWatch every
``FLUSH_INTERVAL_SECONDS``; otherwise data points are only logged at DEBUG.

Usage
-----
>>> from clinic_assistant.services.metrics import metrics
>>> with metrics.track("dynamodb", "put_item"):
...     table.put_item(Item=item)
>>> metrics.record_turn("booked")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator

logger = logging.getLogger(__name__)

NAMESPACE = "ClinicAssistant"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._stage = os.getenv("STAGE", "dev")
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External calls ────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful collaborator call."""
        now = datetime.now(UTC)
        service_dim = [{"Name": "Service", "Value": service}]
        self._point(
            "ExternalAPI/RequestCount", 1, "Count", now,
            service_dim + [{"Name": "Status", "Value": "success"}],
        )
        self._point(
            "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
            service_dim + [{"Name": "Operation", "Value": operation}],
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed collaborator call."""
        now = datetime.now(UTC)
        service_dim = [{"Name": "Service", "Value": service}]
        self._point(
            "ExternalAPI/RequestCount", 1, "Count", now,
            service_dim + [{"Name": "Status", "Value": "failure"}],
        )
        self._point(
            "ExternalAPI/ErrorCount", 1, "Count", now,
            service_dim + [{"Name": "ErrorType", "Value": error_type}],
        )
        if latency_ms > 0:
            self._point(
                "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                service_dim + [{"Name": "Operation", "Value": operation}],
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    @contextmanager
    def track(self, service: str, operation: str) -> Iterator[None]:
        """Time the wrapped block and record success or failure; re-raises."""
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self.record_failure(
                service, operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        self.record_success(service, operation, (time.perf_counter() - t0) * 1000)

    # ── Conversation engine ───────────────────────────────────────────

    def record_turn(self, outcome: str) -> None:
        """Count a handled turn by outcome (collecting, awaiting, booked, ...)."""
        self._point(
            "Engine/TurnCount", 1, "Count", datetime.now(UTC),
            [{"Name": "Stage", "Value": self._stage}, {"Name": "Outcome", "Value": outcome}],
        )

    def record_sessions_swept(self, count: int) -> None:
        if count <= 0:
            return
        self._point(
            "Engine/SessionsExpired", count, "Count", datetime.now(UTC),
            [{"Name": "Stage", "Value": self._stage}],
        )

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _point(
        self,
        name: str,
        value: float,
        unit: str,
        timestamp: datetime,
        dimensions: list[dict[str, str]],
    ) -> None:
        with self._lock:
            self._buffer.append(
                {
                    "MetricName": name,
                    "Dimensions": dimensions,
                    "Timestamp": timestamp,
                    "Value": value,
                    "Unit": unit,
                }
            )

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
