# =============================================================================
# BACKPORT BOT - MAIN ENTRY POINT
# =============================================================================
"""
Backport Bot Main Module

Entry point for the backport bot. It loads configuration, wires the
components together and runs one of three commands:

1. serve: Receive GitHub webhooks over HTTP until stopped
2. event: Run a single event through the bot, e.g. from a GitHub Actions
   workflow, printing ``Created`` or ``OK``
3. save-hook: Register (or update) the bot's webhook on a repository

Usage:
    backport-bot serve --config config/backport-bot.yaml
    backport-bot event --event-name push --event-path "$GITHUB_EVENT_PATH"
    backport-bot save-hook --repository owner/repo --url https://bot.example.com/events/
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

# Local imports
from backport_bot import __version__
from backport_bot.events.backport_service import BackportService
from backport_bot.events.event_service import GitHubEventService
from backport_bot.github.client import GitHubClient
from backport_bot.github.gateway import GitHubGateway, RestGitHubGateway
from backport_bot.github.models import HookConfig, RepositoryRef, SaveHook
from backport_bot.github.webhook_handler import (
    EVENT_PARSERS,
    WebhookHandler,
    WebhookServer,
    create_webhook_handler,
    create_webhook_server,
    parse_event,
)
from monitoring.logger import AuditLogger, LogContext, setup_logging
from monitoring.metrics import MetricsCollector, create_metrics_collector

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_CONFIG_PATH = "config/backport-bot.yaml"

DEFAULT_HOOK_EVENTS = ("push", "issues", "pull_request")

RESULT_CREATED = "Created"
RESULT_OK = "OK"

ENV_MAPPINGS = {
    # GitHub
    "GITHUB_TOKEN": ("github", "token"),
    "GITHUB_API_URL": ("github", "api_url"),
    "GITHUB_WEBHOOK_SECRET": ("github", "webhook_secret"),
    # Webhook server
    "WEBHOOK_HOST": ("server", "host"),
    "WEBHOOK_PORT": ("server", "port"),
    "WEBHOOK_PATH": ("server", "path"),
    "WEBHOOK_TIMEOUT": ("server", "request_timeout"),
    # Logging
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
    "LOG_DIR": ("logging", "dir"),
    "AUDIT_LOG": ("logging", "audit_log"),
    # Metrics
    "METRICS_PORT": ("metrics", "port"),
}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "github": {
        "token": "",
        "api_url": GitHubClient.DEFAULT_BASE_URL,
        "webhook_secret": "",
        "timeout": GitHubClient.DEFAULT_TIMEOUT,
        "retry_count": GitHubClient.DEFAULT_RETRY_COUNT,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "path": "/events/",
        "request_timeout": 60,
    },
    "logging": {
        "level": "INFO",
        "format": "text",
        "dir": None,
        "audit_log": "",
    },
    "metrics": {
        "enabled": True,
        "port": None,
    },
}


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    """
    Load configuration from YAML file and environment variables.

    Environment variables override YAML values.

    Args:
        config_path: Path to backport-bot.yaml, or None for
            environment and defaults only

    Returns:
        Merged configuration dictionary
    """
    config: Dict[str, Any] = {}

    # Load YAML config if exists
    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file) as f:
                config = yaml.safe_load(f) or {}
            logger.info(f"Loaded config from {config_path}")
        else:
            logger.warning(f"Config file not found: {config_path}, using defaults")

    # Environment variable overrides
    for env_var, (section, key) in ENV_MAPPINGS.items():
        value: Any = os.environ.get(env_var)
        if value is not None:
            if section not in config or config[section] is None:
                config[section] = {}
            # Convert numeric strings
            if value.isdigit():
                value = int(value)
            config[section][key] = value

    # Apply defaults
    for section, section_defaults in DEFAULTS.items():
        if section not in config or config[section] is None:
            config[section] = {}
        for key, default_value in section_defaults.items():
            if key not in config[section]:
                config[section][key] = default_value

    return config


# =============================================================================
# BACKPORT BOT CLASS
# =============================================================================


class BackportBot:
    """
    Wires the backport bot components together.

    Configuration flows in explicitly: client, gateway, services and the
    webhook handler each receive their section of ``config``.

    Attributes:
        config: Merged configuration dictionary
        metrics: MetricsCollector, or None when metrics are disabled
        audit: AuditLogger, or None when no audit log is configured
        client: GitHubClient, or None when a gateway was injected
        gateway: GitHubGateway used by the backport service
        backports: BackportService
        events: GitHubEventService
        handler: WebhookHandler
    """

    def __init__(self, config: Dict[str, Any], gateway: Optional[GitHubGateway] = None):
        """
        Build every component.

        Args:
            config: Merged configuration dictionary (see load_config)
            gateway: GitHubGateway to use instead of the REST gateway

        Raises:
            ValueError: If no GitHub token is configured and no gateway
                was injected
        """
        self.config = config
        self._shutdown_event: Optional[asyncio.Event] = None
        self.server: Optional[WebhookServer] = None

        metrics_config = config.get("metrics", {})
        self.metrics: Optional[MetricsCollector] = None
        if metrics_config.get("enabled", True):
            self.metrics = create_metrics_collector(metrics_config)
            self.metrics.set_system_info(version=__version__)

        audit_log = config.get("logging", {}).get("audit_log")
        self.audit: Optional[AuditLogger] = AuditLogger(audit_log) if audit_log else None

        github_config = config.get("github", {})
        self.client: Optional[GitHubClient] = None
        if gateway is None:
            self.client = GitHubClient(
                token=github_config.get("token"),
                base_url=github_config.get("api_url"),
                timeout=github_config.get("timeout"),
                retry_count=github_config.get("retry_count"),
                metrics=self.metrics,
            )
            gateway = RestGitHubGateway(self.client, audit=self.audit)
        self.gateway = gateway

        self.backports = BackportService(self.gateway, metrics=self.metrics)
        self.events = GitHubEventService(self.backports)
        self.handler: WebhookHandler = create_webhook_handler(
            secret=github_config.get("webhook_secret", ""),
            event_service=self.events,
            config=config.get("server", {}),
            metrics=self.metrics,
            audit=self.audit,
        )

        logger.info("Backport bot components initialized")

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def serve(self) -> None:
        """
        Run the webhook server until stop() is called.
        """
        self._shutdown_event = asyncio.Event()
        self.server = create_webhook_server(
            self.handler, self.config.get("server", {}), metrics=self.metrics
        )
        await self.server.start()

        try:
            await self._shutdown_event.wait()
        finally:
            await self.server.stop()
            self.close()

        logger.info("Backport bot stopped")

    async def stop(self) -> None:
        """Gracefully stop the webhook server."""
        logger.info("Stopping backport bot...")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def handle_event(self, event_name: str, payload: Any) -> bool:
        """
        Run one ``push``, ``issues`` or ``pull_request`` payload through
        the event service.

        Returns:
            True if a backport action was taken

        Raises:
            WebhookParseError: For an unsupported event or malformed payload
        """
        event = parse_event(event_name, payload)
        with LogContext(event=event_name, repository=event.repository.full_name):
            return await self.events.backport(event)

    async def save_hook(
        self,
        repository: str,
        url: str,
        events: Sequence[str] = DEFAULT_HOOK_EVENTS,
    ) -> None:
        """Register the bot's webhook on ``repository``, updating it if present."""
        secret = self.config.get("github", {}).get("webhook_secret", "")
        if not secret:
            logger.warning(f"Saving hook on {repository} without a secret")
        await self.gateway.save_hook(
            SaveHook(
                repository=RepositoryRef(repository),
                config=HookConfig(url=url, secret=secret),
                events=tuple(events),
            )
        )

    def close(self) -> None:
        """Release the HTTP session and the audit log file."""
        if self.client is not None:
            self.client.close()
        if self.audit is not None:
            self.audit.close()


# =============================================================================
# CLI ARGUMENT PARSING
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="backport-bot",
        description="Backport bot for GitHub issues and pull requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    commands.add_parser("serve", help="Receive GitHub webhooks over HTTP")

    event = commands.add_parser("event", help="Run a single event through the bot")
    event.add_argument(
        "--event-name",
        required=True,
        choices=sorted(EVENT_PARSERS),
        help="GitHub event name",
    )
    payload = event.add_mutually_exclusive_group(required=True)
    payload.add_argument("--event", dest="event_json", help="Event payload as JSON")
    payload.add_argument("--event-path", help="File holding the event payload")

    hook = commands.add_parser("save-hook", help="Register the bot's webhook on a repository")
    hook.add_argument("--repository", required=True, help="Repository as owner/repo")
    hook.add_argument("--url", required=True, help="Public URL of the webhook endpoint")
    hook.add_argument(
        "--event",
        dest="events",
        action="append",
        help="Event to subscribe to, repeatable (default: push, issues, pull_request)",
    )

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "event":
        args.payload = _read_payload(parser, args)
    elif args.command == "save-hook" and "/" not in args.repository:
        parser.error(f"--repository must be owner/repo, got '{args.repository}'")

    return args


def _read_payload(parser: argparse.ArgumentParser, args: argparse.Namespace) -> Any:
    source = "--event"
    text = args.event_json
    if args.event_path is not None:
        source = args.event_path
        try:
            text = Path(args.event_path).read_text(encoding="utf-8")
        except OSError as e:
            parser.error(f"cannot read {args.event_path}: {e}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        parser.error(f"invalid JSON in {source}: {e}")


# =============================================================================
# SIGNAL HANDLING
# =============================================================================


def setup_signal_handlers(bot: BackportBot, loop: asyncio.AbstractEventLoop) -> None:
    """Setup signal handlers for graceful shutdown."""

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, initiating shutdown...")
        loop.call_soon_threadsafe(lambda: loop.create_task(bot.stop()))

    # Only set signal handlers if running on Unix-like systems
    if sys.platform != "win32":
        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


async def async_main(args: argparse.Namespace, config: Dict[str, Any]) -> Optional[bool]:
    """Async entry point; returns the event result for the ``event`` command."""
    bot = BackportBot(config)

    if args.command == "serve":
        setup_signal_handlers(bot, asyncio.get_running_loop())
        await bot.serve()
        return None

    try:
        if args.command == "event":
            return await bot.handle_event(args.event_name, args.payload)
        await bot.save_hook(
            args.repository, args.url, args.events or DEFAULT_HOOK_EVENTS
        )
        return None
    finally:
        bot.close()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    config = load_config(args.config)

    logging_config = config["logging"]
    setup_logging(
        level="DEBUG" if args.debug else str(logging_config["level"]),
        fmt=str(logging_config["format"]),
        log_dir=logging_config.get("dir"),
    )

    logger.info(f"Backport bot {__version__}: {args.command}")

    try:
        result = asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logger.info("Backport bot stopped by user")
        return
    except Exception as e:
        logger.critical(f"Backport bot failed: {e}", exc_info=args.debug)
        sys.exit(1)

    if args.command == "event":
        print(RESULT_CREATED if result else RESULT_OK)


if __name__ == "__main__":
    main()
