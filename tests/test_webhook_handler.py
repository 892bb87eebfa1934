"""Tests for the webhook handler and its aiohttp server."""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from backport_bot.events.event_service import GitHubEventService
from backport_bot.events.models import IssueEvent, PushEvent
from backport_bot.github.client import GitHubAPIError
from backport_bot.github.webhook_handler import (
    WebhookHandler,
    WebhookParseError,
    WebhookServer,
    WebhookValidationError,
    compute_signature,
    create_webhook_server,
    parse_event,
)
from monitoring.metrics import MetricsCollector

SECRET = "It's a Secret to Everybody"

PUSH_PAYLOAD = {
    "ref": "refs/heads/1.0.x",
    "repository": {"full_name": "rwinch/test"},
    "pusher": {"name": "rwinch"},
    "commits": [{"id": "a1b2c3", "message": "Fixes: gh-42"}],
}

ISSUE_PAYLOAD = {
    "action": "labeled",
    "repository": {"full_name": "rwinch/test"},
    "issue": {"number": 1, "title": "Found a bug", "labels": []},
    "label": {"name": "for: backport-to-1.0.x"},
    "sender": {"login": "rwinch"},
}


def signed_headers(event, body, secret=SECRET, delivery="72d3162e-cc78-11e3-81ab-4c9367dc0958"):
    return {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery,
        "X-Hub-Signature-256": compute_signature(secret, body),
        "Content-Type": "application/json",
    }


def encode(payload):
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def event_service():
    service = AsyncMock(spec=GitHubEventService)
    service.backport.return_value = True
    return service


@pytest.fixture
def audit():
    return Mock()


@pytest.fixture
def handler(event_service, audit, metrics):
    return WebhookHandler(
        SECRET, event_service, config={"request_timeout": 1}, metrics=metrics, audit=audit
    )


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest_asyncio.fixture
async def client(handler, metrics):
    server = WebhookServer(handler, metrics=metrics)
    async with TestClient(TestServer(server.create_app())) as client:
        yield client


# =============================================================================
# SIGNATURES
# =============================================================================


def test_compute_signature_matches_github_example():
    # Example delivery from the GitHub webhook documentation
    signature = compute_signature(SECRET, b"Hello, World!")

    assert signature == (
        "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"
    )


@pytest.mark.asyncio
async def test_rejects_invalid_signature(handler, event_service):
    body = encode(PUSH_PAYLOAD)
    headers = signed_headers("push", body, secret="wrong")

    with pytest.raises(WebhookValidationError, match="Invalid webhook signature"):
        await handler.handle_webhook(headers, body)

    event_service.backport.assert_not_awaited()
    assert handler.get_stats()["total_errors"] == 1


@pytest.mark.asyncio
async def test_rejects_missing_signature(handler, event_service):
    body = encode(PUSH_PAYLOAD)
    headers = signed_headers("push", body)
    del headers["X-Hub-Signature-256"]

    with pytest.raises(WebhookValidationError, match="Invalid webhook signature"):
        await handler.handle_webhook(headers, body)

    event_service.backport.assert_not_awaited()


@pytest.mark.asyncio
async def test_skips_validation_without_secret(event_service):
    handler = WebhookHandler("", event_service)
    body = encode(PUSH_PAYLOAD)

    result = await handler.handle_webhook({"X-GitHub-Event": "push"}, body)

    assert result["status"] == "created"


# =============================================================================
# HANDLER
# =============================================================================


@pytest.mark.asyncio
async def test_push_is_dispatched(handler, event_service, audit):
    body = encode(PUSH_PAYLOAD)

    result = await handler.handle_webhook(signed_headers("push", body), body)

    assert result == {
        "status": "created",
        "event": "push",
        "delivery_id": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
    }
    event = event_service.backport.await_args.args[0]
    assert isinstance(event, PushEvent)
    assert event.commits[0].fix_issue_id == 42
    audit.log_webhook.assert_called_once()


@pytest.mark.asyncio
async def test_headers_are_case_insensitive(handler, event_service):
    body = encode(ISSUE_PAYLOAD)
    headers = {k.lower(): v for k, v in signed_headers("issues", body).items()}

    result = await handler.handle_webhook(headers, body)

    assert result["status"] == "created"
    assert isinstance(event_service.backport.await_args.args[0], IssueEvent)


@pytest.mark.asyncio
async def test_not_acted_on_is_ok(handler, event_service):
    event_service.backport.return_value = False
    body = encode(ISSUE_PAYLOAD)

    result = await handler.handle_webhook(signed_headers("issues", body), body)

    assert result["status"] == "ok"
    assert handler.get_stats()["total_processed"] == 1


@pytest.mark.asyncio
async def test_unsupported_event_is_ignored(handler, event_service):
    body = encode({"zen": "Keep it logically awesome."})

    result = await handler.handle_webhook(signed_headers("star", body), body)

    assert result["status"] == "ignored"
    event_service.backport.assert_not_awaited()
    stats = handler.get_stats()
    assert stats["total_ignored"] == 1
    assert stats["by_event"] == {"star": 1}


@pytest.mark.asyncio
async def test_missing_event_header(handler):
    body = encode(PUSH_PAYLOAD)
    headers = signed_headers("push", body)
    del headers["X-GitHub-Event"]

    with pytest.raises(WebhookParseError, match="X-GitHub-Event"):
        await handler.handle_webhook(headers, body)


@pytest.mark.asyncio
async def test_malformed_json(handler):
    body = b"{not json"

    with pytest.raises(WebhookParseError, match="Invalid JSON payload"):
        await handler.handle_webhook(signed_headers("push", body), body)


@pytest.mark.asyncio
async def test_event_service_failure_propagates(handler, event_service, audit):
    event_service.backport.side_effect = GitHubAPIError("boom", 502)
    body = encode(PUSH_PAYLOAD)

    with pytest.raises(GitHubAPIError):
        await handler.handle_webhook(signed_headers("push", body), body)

    audit.log_error.assert_called_once()
    assert audit.log_error.call_args.args[:2] == ("webhook", "GitHubAPIError")


def test_parse_event_rejects_non_object():
    with pytest.raises(WebhookParseError, match="JSON object"):
        parse_event("push", [1, 2, 3])


def test_parse_event_rejects_unknown_event():
    with pytest.raises(WebhookParseError, match="Unsupported event: star"):
        parse_event("star", {})


def test_parse_event_reports_missing_field():
    payload = dict(PUSH_PAYLOAD)
    del payload["ref"]

    with pytest.raises(WebhookParseError, match="ref"):
        parse_event("push", payload)


def test_create_webhook_server_reads_config(handler):
    server = create_webhook_server(handler, {"host": "127.0.0.1", "port": "9000", "path": "/hooks"})

    assert (server.host, server.port, server.path) == ("127.0.0.1", 9000, "/hooks")
    assert server.is_running is False


# =============================================================================
# HTTP
# =============================================================================


@pytest.mark.asyncio
async def test_http_ping(client):
    body = encode({"zen": "Design for failure.", "hook_id": 1})

    response = await client.post("/events/", data=body, headers=signed_headers("ping", body))

    assert response.status == 200
    assert await response.text() == "SUCCESS"


@pytest.mark.asyncio
async def test_http_created(client):
    body = encode(PUSH_PAYLOAD)

    response = await client.post("/events/", data=body, headers=signed_headers("push", body))

    assert response.status == 201
    assert await response.text() == "Created"


@pytest.mark.asyncio
async def test_http_ok_when_not_acted_on(client, event_service):
    event_service.backport.return_value = False
    body = encode(PUSH_PAYLOAD)

    response = await client.post("/events/", data=body, headers=signed_headers("push", body))

    assert response.status == 200
    assert await response.text() == "OK"


@pytest.mark.asyncio
async def test_http_ignored_event(client):
    body = encode({"action": "created"})

    response = await client.post("/events/", data=body, headers=signed_headers("star", body))

    assert response.status == 200
    assert await response.text() == "OK"


@pytest.mark.asyncio
async def test_http_bad_signature(client):
    body = encode(PUSH_PAYLOAD)

    response = await client.post(
        "/events/", data=body, headers=signed_headers("push", body, secret="wrong")
    )

    assert response.status == 401


@pytest.mark.asyncio
async def test_http_bad_payload(client):
    body = encode({"ref": "refs/heads/1.0.x"})

    response = await client.post("/events/", data=body, headers=signed_headers("push", body))

    assert response.status == 400
    assert "repository" in await response.text()


@pytest.mark.asyncio
async def test_http_service_failure(client, event_service):
    event_service.backport.side_effect = RuntimeError("boom")
    body = encode(PUSH_PAYLOAD)

    response = await client.post("/events/", data=body, headers=signed_headers("push", body))

    assert response.status == 500
    assert await response.text() == "Internal server error"


@pytest.mark.asyncio
async def test_http_timeout(client, event_service):
    async def slow(event):
        await asyncio.sleep(5)

    event_service.backport.side_effect = slow
    body = encode(PUSH_PAYLOAD)

    response = await client.post("/events/", data=body, headers=signed_headers("push", body))

    assert response.status == 504


@pytest.mark.asyncio
async def test_http_health(client):
    response = await client.get("/health")

    assert response.status == 200
    assert (await response.json())["status"] == "healthy"


@pytest.mark.asyncio
async def test_http_stats(client):
    body = encode(PUSH_PAYLOAD)
    await client.post("/events/", data=body, headers=signed_headers("push", body))

    data = await (await client.get("/stats")).json()

    assert data["stats"]["total_received"] == 1
    assert data["stats"]["by_event"] == {"push": 1}
    assert data["metrics"]["webhooks"] == 1


@pytest.mark.asyncio
async def test_http_metrics(client):
    body = encode(PUSH_PAYLOAD)
    await client.post("/events/", data=body, headers=signed_headers("push", body))

    response = await client.get("/metrics")
    text = await response.text()

    assert response.status == 200
    assert response.headers["Content-Type"].startswith("text/plain")
    assert 'backport_webhooks_total{event="push",result="created"} 1.0' in text


@pytest.mark.asyncio
async def test_http_metrics_disabled(handler):
    server = WebhookServer(handler)
    async with TestClient(TestServer(server.create_app())) as client:
        response = await client.get("/metrics")

    assert response.status == 404
