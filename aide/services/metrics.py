"""CloudWatch custom metrics emitter with background batching.

Two families of data points:

* ``ExternalAPI/*`` — count, latency and errors for every outbound call
  (Google Calendar, Anthropic).
* ``FormEngine/Transition`` — one count per dispatched trigger, dimensioned
  by trigger and outcome, so stuck or failing flows show up on a dashboard.

Points are buffered in memory and flushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS`` when ``METRICS_ENABLED=true``.  Otherwise they are
only logged at DEBUG level and dropped on flush.

Usage
-----
>>> from aide.services.metrics import metrics
>>> metrics.record_success("google_calendar", "POST /events", latency_ms=123.4)
>>> metrics.record_transition("confirm", "created")
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

NAMESPACE = "Aide"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
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
        """Create the boto3 CloudWatch client on first use."""
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Public API ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful outbound call."""
        now = datetime.now(UTC)
        self._point("ExternalAPI/RequestCount", _dims(Service=service, Status="success"), now)
        self._point(
            "ExternalAPI/Latency",
            _dims(Service=service, Operation=operation),
            now,
            value=latency_ms,
            unit="Milliseconds",
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed outbound call."""
        now = datetime.now(UTC)
        self._point("ExternalAPI/RequestCount", _dims(Service=service, Status="failure"), now)
        self._point("ExternalAPI/ErrorCount", _dims(Service=service, ErrorType=error_type), now)
        if latency_ms > 0:
            self._point(
                "ExternalAPI/Latency",
                _dims(Service=service, Operation=operation),
                now,
                value=latency_ms,
                unit="Milliseconds",
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_transition(self, trigger: str, outcome: str) -> None:
        """Record one dispatched trigger and the view it ended on."""
        self._point(
            "FormEngine/Transition",
            _dims(Trigger=trigger, Outcome=outcome),
            datetime.now(UTC),
        )
        logger.debug("Metric: transition %s -> %s", trigger, outcome)

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

    def _point(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        timestamp: datetime,
        *,
        value: float = 1,
        unit: str = "Count",
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
        """Start a daemon thread that flushes metrics periodically."""

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
