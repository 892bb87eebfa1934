# =============================================================================
# BACKPORT BOT - MONITORING PACKAGE
# =============================================================================
"""
Monitoring Package

This package provides monitoring, metrics, and logging infrastructure
for the backport bot.

Components:
    - Logger: Structured logging through structlog
    - Metrics: Prometheus metrics collection
    - Audit: Audit trail of GitHub mutations recorded to JSONL

Usage:
    from monitoring import setup_logging, MetricsCollector, AuditLogger

    # Setup logging
    setup_logging(level="INFO", fmt="json", log_dir="./logs")

    # Metrics
    metrics = MetricsCollector()
    metrics.record_webhook("push", "created")

    # Audit trail
    audit = AuditLogger("./logs/audit.jsonl")
    audit.log_github_mutation("close_issue", "org/repo", issue_number=12)
"""

# Logger
from monitoring.logger import (
    setup_logging,
    AuditLogger,
    LogContext,
    log_context,
    mask_sensitive_data,
    mask_dict,
)

# Metrics
from monitoring.metrics import (
    MetricsCollector,
    create_metrics_collector,
)


__all__ = [
    # Logger
    "setup_logging",
    "AuditLogger",
    "LogContext",
    "log_context",
    "mask_sensitive_data",
    "mask_dict",
    # Metrics
    "MetricsCollector",
    "create_metrics_collector",
]
