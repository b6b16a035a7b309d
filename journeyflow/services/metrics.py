"""CloudWatch custom metrics emitter with background batching.

Two families of metrics are published:

* **Oracle calls** — count, latency and errors for every LLM request,
  dimensioned by operation (``oracle_initiate``, ``oracle_converse``,
  ``oracle_evaluate``, ``oracle_summarize``).
* **Session lifecycle** — plain counters such as ``Session/Started``,
  ``Session/Transition`` and ``Journey/Saved``.

Design
------
* Metrics are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS`` (default 60 s).
* When running locally (``METRICS_ENABLED != "true"``), metrics are
  logged at DEBUG level but **not** pushed to CloudWatch.

Usage
-----
>>> from journeyflow.services.metrics import metrics
>>> metrics.record_success("anthropic", "oracle_converse", latency_ms=812.0)
>>> metrics.record_event("Session/Transition", Category="form")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "JourneyFlow"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dimensions(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
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

    # ── Oracle calls ──────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful external call."""
        now = datetime.now(UTC)
        self._append(
            "Oracle/RequestCount", 1, "Count", now,
            _dimensions(Service=service, Operation=operation, Status="success"),
        )
        self._append(
            "Oracle/Latency", latency_ms, "Milliseconds", now,
            _dimensions(Service=service, Operation=operation),
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed external call (transport error or bad contract)."""
        now = datetime.now(UTC)
        self._append(
            "Oracle/RequestCount", 1, "Count", now,
            _dimensions(Service=service, Operation=operation, Status="failure"),
        )
        self._append(
            "Oracle/ErrorCount", 1, "Count", now,
            _dimensions(Service=service, Operation=operation, ErrorType=error_type),
        )
        if latency_ms > 0:
            self._append(
                "Oracle/Latency", latency_ms, "Milliseconds", now,
                _dimensions(Service=service, Operation=operation),
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Session lifecycle ─────────────────────────────────────────────

    def record_event(self, metric_name: str, **dimensions: str) -> None:
        """Count one occurrence of a lifecycle event."""
        self._append(metric_name, 1, "Count", datetime.now(UTC), _dimensions(**dimensions))
        logger.debug("Metric: %s %s", metric_name, dimensions)

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

    # ── Internal ──────────────────────────────────────────────────────

    def _append(
        self,
        name: str,
        value: float,
        unit: str,
        timestamp: datetime,
        dimensions: list[dict[str, str]],
    ) -> None:
        datum = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": timestamp,
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(datum)

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


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
