# =============================================================================
# BACKPORT BOT - STRUCTURED LOGGING
# =============================================================================
"""
Structured Logging Module

Provides consistent, structured logging across all components.

Modules keep using ``logging.getLogger(__name__)``; :func:`setup_logging`
routes every stdlib record through structlog's ``ProcessorFormatter`` so
records carry the bound context (delivery id, event, repository) and are
rendered as JSON or as console text.

Features:
    - JSON or console output
    - Per-delivery context through structlog contextvars
    - Sensitive data masking
    - File output with rotation
    - Audit trail of GitHub mutations
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from structlog.contextvars import bind_contextvars, merge_contextvars, unbind_contextvars


# =============================================================================
# SENSITIVE DATA MASKING
# =============================================================================

# Keys whose values should be masked
SENSITIVE_KEYS = frozenset([
    "token", "password", "secret", "credential",
    "private_key", "access_token", "authorization",
    "github_token", "webhook_secret", "signature",
])


def _is_sensitive(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    return any(s in key_lower for s in SENSITIVE_KEYS)


def _mask_value(value: Any) -> str:
    """Mask a sensitive value, keeping first/last 4 chars if long enough."""
    if not isinstance(value, str):
        return "****"
    if len(value) > 8:
        return value[:4] + "****" + value[-4:]
    return "****"


def mask_sensitive_data(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Structlog processor that masks sensitive data in log events.

    Recursively processes dictionaries to mask values whose keys
    match known sensitive patterns.
    """

    def _process(d: Dict[str, Any]) -> Dict[str, Any]:
        result = {}
        for key, value in d.items():
            if _is_sensitive(key):
                result[key] = _mask_value(value)
            elif isinstance(value, dict):
                result[key] = _process(value)
            else:
                result[key] = value
        return result

    return _process(event_dict)


def mask_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Public helper to mask sensitive data in an arbitrary dict.

    Useful outside the structlog pipeline (e.g. audit events).
    """
    return mask_sensitive_data(None, "", data)


# =============================================================================
# LOGGING SETUP
# =============================================================================


def _shared_processors(mask_sensitive: bool) -> List[Any]:
    processors: List[Any] = [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if mask_sensitive:
        processors.append(mask_sensitive_data)
    return processors


def _formatter(renderer: Any, mask_sensitive: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(mask_sensitive),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Optional[str] = None,
    log_dir: Optional[str] = None,
    mask_sensitive: bool = True,
    max_bytes: int = 50 * 1024 * 1024,  # 50 MB
    backup_count: int = 10,
) -> logging.Logger:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Console output format, ``"json"`` or ``"text"``.
        log_file: Explicit log file path.  Overrides *log_dir*.
        log_dir: Directory for log files.  When set (and *log_file* is
            ``None``), logs are written to ``<log_dir>/backport-bot.log``.
        mask_sensitive: Mask sensitive values in logs.
        max_bytes: Max file size before rotation.
        backup_count: Number of rotated files to keep.

    Returns:
        Root logger instance.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # Resolve log file path
    resolved_log_file: Optional[str] = log_file
    if resolved_log_file is None and log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        resolved_log_file = str(Path(log_dir) / "backport-bot.log")

    # structlog-native loggers hand their event dict to the stdlib handlers
    structlog.configure(
        processors=_shared_processors(mask_sensitive) + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates on re-init
    root.handlers.clear()

    # Console handler
    if fmt == "json":
        console_renderer: Any = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer(colors=False)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(numeric_level)
    console.setFormatter(_formatter(console_renderer, mask_sensitive))
    root.addHandler(console)

    # File handler (with rotation), always JSON
    if resolved_log_file:
        Path(resolved_log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            resolved_log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)  # capture everything to file
        file_handler.setFormatter(
            _formatter(structlog.processors.JSONRenderer(), mask_sensitive)
        )
        root.addHandler(file_handler)

    # Suppress noisy third-party loggers
    for name in ("urllib3", "aiohttp.access"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


# =============================================================================
# LOG CONTEXT MANAGER
# =============================================================================


class LogContext:
    """
    Context manager that binds key-value pairs to all logs emitted
    inside the block.

    The context lives in contextvars, so it follows the current asyncio
    task and the worker threads started with ``asyncio.to_thread``.

    Usage::

        with LogContext(delivery="72d3162e", event="push"):
            logger.info("Handling delivery")
            # All logs include delivery and event
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_contextvars(*self.context.keys())


@contextmanager
def log_context(**kwargs: Any):
    """Functional alias for :class:`LogContext`."""
    ctx = LogContext(**kwargs)
    ctx.__enter__()
    try:
        yield ctx
    finally:
        ctx.__exit__(None, None, None)


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Special logger for audit trail events.

    Records structured events to a JSONL file (one JSON object per line)
    for debugging and post-mortem analysis of what the bot changed on
    GitHub.

    Event categories:
        - ``github_mutation``: Issue creation, close, comment, label and
          hook changes
        - ``webhook``: Handled webhook deliveries
        - ``error``: Failed deliveries

    Usage::

        audit = AuditLogger("./logs/audit.jsonl")
        audit.log_github_mutation("close_issue", "org/repo", issue_number=12)
    """

    def __init__(
        self,
        output_path: str = "./logs/audit.jsonl",
        max_bytes: int = 100 * 1024 * 1024,  # 100 MB
        backup_count: int = 30,
    ):
        self.output_path = output_path
        self._logger = logging.getLogger("backport_bot.audit")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False  # don't echo to root logger

        # Setup rotating file handler for audit log
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        self._handler = logging.handlers.RotatingFileHandler(
            output_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(self._handler)

    def close(self) -> None:
        """Detach and close the file handler."""
        self._logger.removeHandler(self._handler)
        self._handler.close()

    # -----------------------------------------------------------------
    # Event writers
    # -----------------------------------------------------------------

    def _write_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Write a single audit event."""
        event = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "event_type": event_type,
            **mask_dict(data),
        }
        self._logger.info(json.dumps(event, default=str))

    def log_github_mutation(
        self,
        action: str,
        repository: str,
        issue_number: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a change the bot made on GitHub."""
        self._write_event("github_mutation", {
            "action": action,
            "repository": repository,
            "issue_number": issue_number,
            **(details or {}),
        })

    def log_webhook(
        self,
        delivery_id: Optional[str],
        event: str,
        result: str,
        duration: float,
    ) -> None:
        """Log a handled webhook delivery."""
        self._write_event("webhook", {
            "delivery_id": delivery_id,
            "event": event,
            "result": result,
            "duration_seconds": round(duration, 3),
        })

    def log_error(
        self,
        component: str,
        error_type: str,
        message: str,
        delivery_id: Optional[str] = None,
    ) -> None:
        """Log an error event."""
        self._write_event("error", {
            "component": component,
            "error_type": error_type,
            "message": message,
            "delivery_id": delivery_id,
        })


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Setup
    "setup_logging",
    # Data masking
    "mask_sensitive_data",
    "mask_dict",
    # Context
    "LogContext",
    "log_context",
    # Audit
    "AuditLogger",
]
