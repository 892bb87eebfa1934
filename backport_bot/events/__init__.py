# =============================================================================
# BACKPORT BOT - EVENTS PACKAGE
# =============================================================================
"""
Events Package

Webhook event models and the services that turn them into backports.

Components:
    - models: PushEvent, IssueEvent, PullRequestEvent
    - BackportService: Backport operations on the GitHub Gateway
    - GitHubEventService: Decides, per event, whether to backport
"""

from backport_bot.events.models import (
    FIX_COMMIT_PATTERN,
    EventPayloadError,
    Commit,
    PushEvent,
    IssueEvent,
    PullRequestEvent,
)

from backport_bot.events.backport_service import (
    BackportService,
    BackportError,
    BackportNotFoundError,
    MilestoneNotFoundError,
    IssueNotFoundError,
)

from backport_bot.events.event_service import GitHubEventService

__all__ = [
    # Models
    "FIX_COMMIT_PATTERN",
    "EventPayloadError",
    "Commit",
    "PushEvent",
    "IssueEvent",
    "PullRequestEvent",
    # Services
    "BackportService",
    "GitHubEventService",
    # Exceptions
    "BackportError",
    "BackportNotFoundError",
    "MilestoneNotFoundError",
    "IssueNotFoundError",
]
