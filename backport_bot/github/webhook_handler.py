# =============================================================================
# BACKPORT BOT - WEBHOOK HANDLER
# =============================================================================
"""
GitHub Webhook Handler

Receives GitHub webhook deliveries and runs them through the event
service.

Supported Events:
    - ping: Answered with ``SUCCESS`` when a hook is saved
    - push: Fix commits pushed to a backport branch
    - issues: Backport request labels on issues
    - pull_request: Backport request labels on pull requests

Every other event is acknowledged with 200 and ignored.

Responses:
    - 201 ``Created``: the event service acted on the event
    - 200 ``OK``: the event was ignored
    - 400: missing event header or malformed payload
    - 401: invalid or missing signature
    - 500: the event service failed (GitHub can redeliver)
    - 504: handling exceeded ``server.request_timeout``

Security:
    - Validates webhook signature using HMAC-SHA256
      (``X-Hub-Signature-256``) when a secret is configured
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from aiohttp import web

from backport_bot.events.event_service import GitHubEventService
from backport_bot.events.models import (
    EventPayloadError,
    IssueEvent,
    PullRequestEvent,
    PushEvent,
)
from monitoring.logger import LogContext


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class WebhookError(Exception):
    """Base exception for webhook errors."""
    pass


class WebhookValidationError(WebhookError):
    """Raised when webhook signature validation fails."""
    pass


class WebhookParseError(WebhookError):
    """Raised when webhook payload cannot be parsed."""
    pass


class WebhookTimeoutError(WebhookError):
    """Raised when handling a delivery exceeds the request timeout."""
    pass


# =============================================================================
# TYPE DEFINITIONS
# =============================================================================

Event = Union[PushEvent, IssueEvent, PullRequestEvent]


# =============================================================================
# CONSTANTS
# =============================================================================

# GitHub event header names
HEADER_EVENT = "X-GitHub-Event"
HEADER_SIGNATURE = "X-Hub-Signature-256"
HEADER_DELIVERY = "X-GitHub-Delivery"

PING_EVENT = "ping"

EVENT_PARSERS: Dict[str, Callable[[Dict[str, Any]], Event]] = {
    "push": PushEvent.from_payload,
    "issues": IssueEvent.from_payload,
    "pull_request": PullRequestEvent.from_payload,
}

SUPPORTED_EVENTS = frozenset(EVENT_PARSERS) | {PING_EVENT}

# Handler result status -> (HTTP status, response body)
STATUS_CREATED = "created"
STATUS_OK = "ok"
STATUS_IGNORED = "ignored"
STATUS_PONG = "pong"

RESPONSES: Dict[str, Tuple[int, str]] = {
    STATUS_CREATED: (201, "Created"),
    STATUS_OK: (200, "OK"),
    STATUS_IGNORED: (200, "OK"),
    STATUS_PONG: (200, "SUCCESS"),
}

DEFAULT_REQUEST_TIMEOUT = 60.0


# =============================================================================
# EVENT PARSING
# =============================================================================


def parse_event(event_name: str, payload: Any) -> Event:
    """
    Build the event model for a ``push``, ``issues`` or ``pull_request``
    payload.

    Raises:
        WebhookParseError: For another event name, a payload that is not a
            JSON object, or a payload missing a required field
    """
    parser = EVENT_PARSERS.get(event_name)
    if parser is None:
        raise WebhookParseError(f"Unsupported event: {event_name}")
    if not isinstance(payload, dict):
        raise WebhookParseError(f"{event_name} payload must be a JSON object")
    try:
        return parser(payload)
    except EventPayloadError as e:
        raise WebhookParseError(str(e)) from e


def compute_signature(secret: Union[str, bytes], body: bytes) -> str:
    """``X-Hub-Signature-256`` header value for ``body``."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return "sha256=" + hmac.new(secret, body, hashlib.sha256).hexdigest()


# =============================================================================
# WEBHOOK HANDLER CLASS
# =============================================================================


class WebhookHandler:
    """
    Handles incoming GitHub webhooks.

    This class:
    1. Validates webhook signatures using HMAC-SHA256
    2. Parses event payloads into event models
    3. Runs the event service under a timeout

    Attributes:
        secret: Webhook secret for validation (empty disables validation)
        event_service: GitHubEventService deciding on backports
        request_timeout: Seconds a delivery may take before it is abandoned
        metrics: Optional MetricsCollector
        audit: Optional AuditLogger
    """

    def __init__(
        self,
        secret: str,
        event_service: GitHubEventService,
        config: Optional[Dict[str, Any]] = None,
        metrics: Any = None,
        audit: Any = None,
    ):
        """
        Initialize webhook handler.

        Args:
            secret: Webhook secret for signature validation
            event_service: GitHubEventService instance
            config: Optional ``server`` configuration dict
            metrics: Optional MetricsCollector
            audit: Optional AuditLogger
        """
        self.secret = secret.encode("utf-8") if secret else b""
        self.event_service = event_service
        self.config = config or {}
        self.request_timeout = float(
            self.config.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
        )
        self.metrics = metrics
        self.audit = audit

        self.reset_stats()

        if not self.secret:
            logger.warning(
                "No webhook secret configured, deliveries are not authenticated"
            )
        logger.info("WebhookHandler initialized")

    async def handle_webhook(
        self,
        headers: Mapping[str, str],
        body: bytes,
    ) -> Dict[str, Any]:
        """
        Process an incoming webhook.

        Args:
            headers: HTTP headers including X-GitHub-Event and
                X-Hub-Signature-256 (looked up case-insensitively)
            body: Raw request body

        Returns:
            {"status": "created" | "ok" | "ignored" | "pong", "event": ...,
            "delivery_id": ...}

        Raises:
            WebhookValidationError: If signature is invalid
            WebhookParseError: If payload cannot be parsed
            WebhookTimeoutError: If the event service runs out of time
            Exception: Whatever the event service raised
        """
        headers = {k.lower(): v for k, v in headers.items()}
        delivery_id = headers.get(HEADER_DELIVERY.lower())
        started = time.monotonic()

        self.stats["total_received"] += 1
        self.stats["last_received"] = datetime.now(timezone.utc).isoformat()

        event_name = headers.get(HEADER_EVENT.lower(), "").strip().lower()

        with LogContext(delivery_id=delivery_id, event=event_name or None):
            try:
                # Validate signature
                if self.secret and not self._validate_signature(headers, body):
                    raise WebhookValidationError("Invalid webhook signature")

                status = await self._dispatch(event_name, body)
            except Exception as e:
                self.stats["total_errors"] += 1
                self._record(event_name, delivery_id, type(e).__name__, started)
                if self.metrics is not None:
                    self.metrics.record_error("webhook", type(e).__name__)
                if self.audit is not None:
                    self.audit.log_error(
                        "webhook", type(e).__name__, str(e), delivery_id=delivery_id
                    )
                raise

            if status == STATUS_IGNORED:
                self.stats["total_ignored"] += 1
            else:
                self.stats["total_processed"] += 1
            self._record(event_name, delivery_id, status, started)

        return {"status": status, "event": event_name, "delivery_id": delivery_id}

    async def _dispatch(self, event_name: str, body: bytes) -> str:
        if not event_name:
            raise WebhookParseError(f"Missing {HEADER_EVENT} header")

        by_event = self.stats["by_event"]
        by_event[event_name] = by_event.get(event_name, 0) + 1
        logger.info(f"Webhook received: {event_name}")

        if event_name == PING_EVENT:
            return STATUS_PONG

        if event_name not in EVENT_PARSERS:
            logger.debug(f"Ignoring unsupported event type: {event_name}")
            return STATUS_IGNORED

        event = parse_event(event_name, self._parse_body(body))

        with LogContext(repository=event.repository.full_name):
            try:
                acted = await asyncio.wait_for(
                    self.event_service.backport(event), timeout=self.request_timeout
                )
            except asyncio.TimeoutError as e:
                raise WebhookTimeoutError(
                    f"{event_name} delivery not handled within {self.request_timeout:g}s"
                ) from e

        return STATUS_CREATED if acted else STATUS_OK

    def _parse_body(self, body: bytes) -> Any:
        try:
            return json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise WebhookParseError(f"Invalid JSON payload: {e}") from e

    def _validate_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        """
        Validate webhook signature.

        Uses HMAC-SHA256 with configured secret.

        Args:
            headers: HTTP headers, lower-cased names
            body: Raw request body

        Returns:
            True if signature is valid, False otherwise
        """
        signature_header = headers.get(HEADER_SIGNATURE.lower(), "")

        if not signature_header:
            logger.warning("Missing webhook signature header")
            return False

        if not signature_header.startswith("sha256="):
            logger.warning("Invalid signature format (expected sha256=...)")
            return False

        # Constant-time comparison to prevent timing attacks
        return hmac.compare_digest(compute_signature(self.secret, body), signature_header)

    def _record(
        self, event_name: str, delivery_id: Optional[str], result: str, started: float
    ) -> None:
        duration = time.monotonic() - started
        event_label = event_name or "unknown"
        if self.metrics is not None:
            self.metrics.record_webhook(event_label, result)
            self.metrics.observe_webhook_duration(event_label, duration)
        if self.audit is not None:
            self.audit.log_webhook(delivery_id, event_label, result, duration)

    # =========================================================================
    # STATISTICS AND MONITORING
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """
        Get webhook statistics.

        Returns:
            Statistics dict
        """
        stats = dict(self.stats)
        stats["by_event"] = dict(self.stats["by_event"])
        return stats

    def reset_stats(self) -> None:
        """Reset webhook statistics."""
        self.stats: Dict[str, Any] = {
            "total_received": 0,
            "total_processed": 0,
            "total_ignored": 0,
            "total_errors": 0,
            "by_event": {},
            "last_received": None,
        }


# =============================================================================
# WEBHOOK SERVER
# =============================================================================


class WebhookServer:
    """
    HTTP server for receiving webhooks.

    Uses aiohttp for async HTTP handling.

    Attributes:
        handler: WebhookHandler instance
        host: Host to bind to
        port: Port to listen on
        path: URL path for webhook endpoint
        metrics: Optional MetricsCollector exposed on ``/metrics``
    """

    def __init__(
        self,
        handler: WebhookHandler,
        host: str = "0.0.0.0",
        port: int = 8080,
        path: str = "/events/",
        metrics: Any = None,
    ):
        """
        Initialize webhook server.

        Args:
            handler: WebhookHandler instance
            host: Host to bind to (default: 0.0.0.0)
            port: Port to listen on (default: 8080)
            path: URL path for webhooks (default: /events/)
            metrics: Optional MetricsCollector
        """
        self.handler = handler
        self.host = host
        self.port = port
        self.path = path
        self.metrics = metrics

        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._running = False

        logger.info(f"WebhookServer initialized (will listen on {host}:{port}{path})")

    def create_app(self) -> web.Application:
        """Build the aiohttp application with every route."""
        app = web.Application()
        app.router.add_post(self.path, self._handle_webhook)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/stats", self._handle_stats)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self) -> None:
        """
        Start the webhook server.

        Creates aiohttp application and starts listening for connections.
        """
        if self._running:
            logger.warning("Webhook server already running")
            return

        self._app = self.create_app()

        # Create runner and site
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        self._running = True
        logger.info(f"Webhook server started on http://{self.host}:{self.port}{self.path}")

    async def stop(self) -> None:
        """Stop the webhook server."""
        if not self._running:
            return

        logger.info("Stopping webhook server...")

        if self._site:
            await self._site.stop()

        if self._runner:
            await self._runner.cleanup()

        self._running = False
        self._app = None
        self._runner = None
        self._site = None

        logger.info("Webhook server stopped")

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._running

    # =========================================================================
    # REQUEST HANDLERS
    # =========================================================================

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """
        Handle incoming webhook HTTP request.

        Args:
            request: aiohttp request object

        Returns:
            Plain text response (``Created``, ``OK`` or ``SUCCESS``)
        """
        try:
            body = await request.read()
            result = await self.handler.handle_webhook(request.headers, body)

        except WebhookValidationError as e:
            logger.warning(f"Webhook validation failed: {e}")
            return web.Response(text="Invalid signature", status=401)

        except WebhookParseError as e:
            logger.warning(f"Webhook parse error: {e}")
            return web.Response(text=str(e), status=400)

        except WebhookTimeoutError as e:
            logger.error(f"Webhook timed out: {e}")
            return web.Response(text="Timed out", status=504)

        except Exception as e:
            logger.error(f"Unexpected error handling webhook: {e}", exc_info=True)
            return web.Response(text="Internal server error", status=500)

        status, text = RESPONSES[result["status"]]
        return web.Response(text=text, status=status)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """
        Handle health check request.

        Args:
            request: aiohttp request object (unused, required by aiohttp)

        Returns:
            Health status response
        """
        del request  # Unused but required by aiohttp
        return web.json_response({
            "status": "healthy",
            "server": "webhook",
            "running": self._running,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _handle_stats(self, request: web.Request) -> web.Response:
        """
        Handle stats request.

        Args:
            request: aiohttp request object (unused, required by aiohttp)

        Returns:
            Webhook statistics response
        """
        del request  # Unused but required by aiohttp
        payload: Dict[str, Any] = {
            "status": "ok",
            "stats": self.handler.get_stats(),
        }
        if self.metrics is not None:
            payload["metrics"] = self.metrics.snapshot()
        return web.json_response(payload)

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Prometheus text exposition, 404 when metrics are disabled."""
        del request  # Unused but required by aiohttp
        if self.metrics is None:
            raise web.HTTPNotFound(text="Metrics disabled")
        response = web.Response(body=self.metrics.render())
        # CONTENT_TYPE_LATEST carries a charset parameter, which aiohttp
        # refuses in the content_type argument
        response.headers["Content-Type"] = self.metrics.content_type
        return response


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_webhook_handler(
    secret: str,
    event_service: GitHubEventService,
    config: Optional[Dict[str, Any]] = None,
    metrics: Any = None,
    audit: Any = None,
) -> WebhookHandler:
    """
    Create a configured webhook handler.

    Args:
        secret: Webhook secret for signature validation
        event_service: GitHubEventService instance
        config: Optional ``server`` configuration
        metrics: Optional MetricsCollector
        audit: Optional AuditLogger

    Returns:
        Configured WebhookHandler instance
    """
    return WebhookHandler(
        secret=secret,
        event_service=event_service,
        config=config,
        metrics=metrics,
        audit=audit,
    )


def create_webhook_server(
    handler: WebhookHandler,
    config: Optional[Dict[str, Any]] = None,
    metrics: Any = None,
) -> WebhookServer:
    """
    Create a configured webhook server.

    Args:
        handler: WebhookHandler instance
        config: Optional ``server`` configuration with host, port, path
        metrics: Optional MetricsCollector

    Returns:
        Configured WebhookServer instance
    """
    config = config or {}

    return WebhookServer(
        handler=handler,
        host=config.get("host", "0.0.0.0"),
        port=int(config.get("port", 8080)),
        path=config.get("path", "/events/"),
        metrics=metrics,
    )


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Main classes
    "WebhookHandler",
    "WebhookServer",
    # Factory functions
    "create_webhook_handler",
    "create_webhook_server",
    # Parsing
    "parse_event",
    "compute_signature",
    # Exceptions
    "WebhookError",
    "WebhookValidationError",
    "WebhookParseError",
    "WebhookTimeoutError",
    # Constants
    "HEADER_EVENT",
    "HEADER_SIGNATURE",
    "HEADER_DELIVERY",
    "SUPPORTED_EVENTS",
]
