# =============================================================================
# BACKPORT BOT - GITHUB INTEGRATION PACKAGE
# =============================================================================
"""
GitHub Integration Package

This package provides GitHub API integration for the backport bot.

Components:
    - GitHubClient: Low-level REST v3 client
    - GitHubGateway: Async capability interface used by the backport engine
    - RestGitHubGateway: Gateway implementation on top of GitHubClient
    - WebhookHandler: Process incoming webhooks
      (``backport_bot.github.webhook_handler``)

Features:
    - Issue, label, comment and milestone operations
    - Issue timeline and repository contents
    - Webhook registration
    - Rate limit handling

Usage:
    from backport_bot.github import GitHubClient, RestGitHubGateway

    client = GitHubClient(token="ghp_xxx")
    gateway = RestGitHubGateway(client)
    issue = await gateway.find_issue(IssueRef(RepositoryRef("owner/repo"), 123))
"""

from backport_bot.github.client import (
    GitHubClient,
    GitHubAPIError,
    RateLimitError,
    NotFoundError,
    AuthenticationError,
    ValidationError,
)

from backport_bot.github.gateway import (
    GitHubGateway,
    RestGitHubGateway,
)

from backport_bot.github.models import (
    RepositoryRef,
    BranchRef,
    IssueRef,
    Issue,
    Label,
    Milestone,
    CreateIssue,
    SaveHook,
    HookConfig,
    Permission,
    TimelineEvent,
)

__all__ = [
    # Client
    "GitHubClient",
    # Client Exceptions
    "GitHubAPIError",
    "RateLimitError",
    "NotFoundError",
    "AuthenticationError",
    "ValidationError",
    # Gateway
    "GitHubGateway",
    "RestGitHubGateway",
    # Models
    "RepositoryRef",
    "BranchRef",
    "IssueRef",
    "Issue",
    "Label",
    "Milestone",
    "CreateIssue",
    "SaveHook",
    "HookConfig",
    "Permission",
    "TimelineEvent",
]
