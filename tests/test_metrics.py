"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from aide.services.metrics import NAMESPACE, MetricsClient


def _dim_map(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestMetricsRecording:
    """Verify that the record_* methods buffer the right data."""

    def _make_client(self, *, enabled: bool = False) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
            return MetricsClient()

    def test_record_success_appends_count_and_latency(self):
        client = self._make_client()
        client.record_success("google_calendar", "POST /events", latency_ms=123.4)
        names = [m["MetricName"] for m in client._buffer]
        assert sorted(names) == ["ExternalAPI/Latency", "ExternalAPI/RequestCount"]

        latency = next(m for m in client._buffer if m["MetricName"] == "ExternalAPI/Latency")
        assert latency["Value"] == 123.4
        assert latency["Unit"] == "Milliseconds"
        assert _dim_map(latency) == {"Service": "google_calendar", "Operation": "POST /events"}

    def test_record_failure_without_latency_skips_latency_point(self):
        client = self._make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="timeout")
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/ErrorCount"}

    def test_record_failure_with_latency(self):
        client = self._make_client()
        client.record_failure("google_calendar", "PATCH /events", error_type="4xx", latency_ms=500.0)
        assert len(client._buffer) == 3
        error = next(m for m in client._buffer if m["MetricName"] == "ExternalAPI/ErrorCount")
        assert _dim_map(error)["ErrorType"] == "4xx"

    def test_failure_status_dimension(self):
        client = self._make_client()
        client.record_failure("google_calendar", "DELETE /events", error_type="ConnectError")
        count = next(m for m in client._buffer if m["MetricName"] == "ExternalAPI/RequestCount")
        assert _dim_map(count) == {"Service": "google_calendar", "Status": "failure"}

    def test_record_transition(self):
        client = self._make_client()
        client.record_transition("confirm", "created")
        [metric] = client._buffer
        assert metric["MetricName"] == "FormEngine/Transition"
        assert metric["Value"] == 1
        assert metric["Unit"] == "Count"
        assert _dim_map(metric) == {"Trigger": "confirm", "Outcome": "created"}


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_drops_buffer_without_boto3(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            client = MetricsClient()
        client.record_transition("create", "prompt")
        with patch.object(client, "_get_cw_client") as mock_get:
            assert client.flush() == 0
        mock_get.assert_not_called()
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}), \
                patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient()

        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("google_calendar", "POST /events", latency_ms=100.0)
        client.record_transition("confirm", "created")
        sent = client.flush()

        assert sent == 3
        kwargs = mock_cw.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == NAMESPACE == "Aide"
        assert len(kwargs["MetricData"]) == 3

    def test_flush_swallows_cloudwatch_errors(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}), \
                patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient()
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")

        client.record_transition("save", "edit")
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}), \
                patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient()
        assert client.flush() == 0
