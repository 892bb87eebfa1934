"""Tests for the Prometheus metrics collector."""

from unittest.mock import patch

from monitoring.metrics import MetricsCollector, create_metrics_collector


def sample(collector, name, **labels):
    return collector.registry.get_sample_value(name, labels or None)


def test_collectors_do_not_share_a_registry():
    first, second = MetricsCollector(), MetricsCollector()

    first.record_webhook("push", "created")

    assert sample(first, "backport_webhooks_total", event="push", result="created") == 1.0
    assert sample(second, "backport_webhooks_total", event="push", result="created") is None


def test_records_backports_and_requests():
    metrics = MetricsCollector()

    metrics.record_backport_created("rwinch/test")
    metrics.record_backport_closed("rwinch/test")
    metrics.record_backport_closed("rwinch/test")
    metrics.record_github_request("POST", 201)
    metrics.set_github_rate_limit(4999)
    metrics.record_error("webhook", "GitHubAPIError")

    assert sample(metrics, "backport_issues_created_total", repository="rwinch/test") == 1.0
    assert sample(metrics, "backport_issues_closed_total", repository="rwinch/test") == 2.0
    assert sample(
        metrics, "backport_github_api_requests_total", method="POST", status="201"
    ) == 1.0
    assert sample(metrics, "backport_github_rate_limit_remaining") == 4999.0

    snapshot = metrics.snapshot()
    assert snapshot["backports_created"] == 1
    assert snapshot["backports_closed"] == 2
    assert snapshot["github_requests"] == 1
    assert snapshot["errors"] == 1


def test_render_includes_system_info():
    metrics = MetricsCollector()
    metrics.set_system_info(version="0.1.0")

    text = metrics.render().decode("utf-8")

    assert 'backport_bot_info{version="0.1.0"} 1.0' in text
    assert metrics.content_type.startswith("text/plain")


def test_http_server_is_opt_in():
    with patch.object(MetricsCollector, "start_http_server") as start:
        create_metrics_collector({"enabled": True, "port": None})
        create_metrics_collector({"enabled": False, "port": 9090})
        start.assert_not_called()

        create_metrics_collector({"enabled": True, "port": "9090"})
        start.assert_called_once_with(9090)
