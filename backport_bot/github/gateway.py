# =============================================================================
# BACKPORT BOT - GITHUB GATEWAY
# =============================================================================
"""
GitHub Gateway

The capability interface the backport engine depends on, and its HTTP
implementation on top of :class:`GitHubClient`.

Every operation is a coroutine. The REST adapter runs the blocking client
on a worker thread with ``asyncio.to_thread`` so the event loop serving
webhook deliveries is never blocked while GitHub answers.

Failures propagate as :class:`GitHubAPIError` subclasses. ``find_issue``
and ``find_file`` raise :class:`NotFoundError` for missing resources;
``find_milestone_number_by_title`` returns ``None`` when no milestone
carries the title.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from backport_bot.github.client import GitHubAPIError, GitHubClient, NotFoundError
from backport_bot.github.models import (
    BranchRef,
    CreateIssue,
    Issue,
    IssueRef,
    Label,
    Permission,
    RepositoryRef,
    SaveHook,
    TimelineEvent,
)

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# GATEWAY INTERFACE
# =============================================================================


class GitHubGateway(ABC):
    """Everything the bot needs from GitHub, and nothing more."""

    @abstractmethod
    async def get_permission_for_default_login(
        self, repository: RepositoryRef, access_token: str
    ) -> Permission:
        """Permission of the user owning ``access_token`` on ``repository``."""

    @abstractmethod
    async def is_member_of_team(self, username: str, team_id: int, access_token: str) -> bool:
        """True if ``username`` is an active or pending member of the team."""

    @abstractmethod
    async def find_milestone_number_by_title(
        self, repository: RepositoryRef, title: str
    ) -> Optional[int]:
        """Number of the milestone titled ``title``, or None."""

    @abstractmethod
    async def create_issue(self, issue: CreateIssue) -> IssueRef:
        """Open an issue and return its reference."""

    @abstractmethod
    async def close_issue(self, issue_ref: IssueRef) -> None:
        """Close an issue."""

    @abstractmethod
    async def comment(self, issue_ref: IssueRef, text: str) -> None:
        """Add a comment to an issue."""

    @abstractmethod
    async def find_issue(self, issue_ref: IssueRef) -> Issue:
        """Fetch an issue. Raises NotFoundError if it does not exist."""

    @abstractmethod
    async def find_file(self, branch_ref: BranchRef, path: str) -> bytes:
        """Decoded content of ``path`` on a branch. Raises NotFoundError."""

    @abstractmethod
    async def find_issue_timeline(self, issue_ref: IssueRef) -> List[TimelineEvent]:
        """Every timeline event of an issue, across all pages."""

    @abstractmethod
    async def update_labels(self, issue_ref: IssueRef, labels: List[str]) -> None:
        """Replace the labels of an issue."""

    @abstractmethod
    async def save_hook(self, save_hook: SaveHook) -> None:
        """Edit the hook whose URL matches, or create it."""

    @abstractmethod
    async def find_labels(self, repository: RepositoryRef) -> List[Label]:
        """Every label defined in a repository, across all pages."""


# =============================================================================
# REST IMPLEMENTATION
# =============================================================================


class RestGitHubGateway(GitHubGateway):
    """
    GitHub REST v3 implementation of the gateway.

    Attributes:
        client: Synchronous GitHubClient, called from worker threads
        audit: Optional AuditLogger recording every mutation
    """

    def __init__(self, client: GitHubClient, audit: Any = None):
        self.client = client
        self.audit = audit

    async def get_permission_for_default_login(
        self, repository: RepositoryRef, access_token: str
    ) -> Permission:
        user = await asyncio.to_thread(
            self.client.get_authenticated_user, access_token
        )
        login = user["login"]
        body = await asyncio.to_thread(
            self.client.get_collaborator_permission,
            repository.full_name,
            login,
            access_token,
        )
        return Permission(login=login, permission=str(body["permission"]))

    async def is_member_of_team(self, username: str, team_id: int, access_token: str) -> bool:
        try:
            await asyncio.to_thread(
                self.client.get_team_membership, team_id, username, access_token
            )
        except NotFoundError:
            return False
        except GitHubAPIError as e:
            raise GitHubAPIError(
                f"Failed to determine if {username} is a part of {team_id}: {e}",
                e.status_code,
                e.response,
            ) from e
        return True

    async def find_milestone_number_by_title(
        self, repository: RepositoryRef, title: str
    ) -> Optional[int]:
        def _find() -> Optional[int]:
            # Stop paging as soon as the title is seen
            for milestone in self.client.list_milestones(repository.full_name):
                if milestone.get("title") == title:
                    return milestone["number"]
            return None

        return await asyncio.to_thread(_find)

    async def create_issue(self, issue: CreateIssue) -> IssueRef:
        created = await asyncio.to_thread(
            self.client.create_issue, issue.ref.full_name, **issue.to_payload()
        )
        issue_ref = IssueRef(issue.ref, created["number"])
        logger.info(f"Created issue #{issue_ref.number} in {issue.ref.full_name}")
        self._audit("create_issue", issue_ref, title=issue.title, milestone=issue.milestone)
        return issue_ref

    async def close_issue(self, issue_ref: IssueRef) -> None:
        await asyncio.to_thread(
            self.client.close_issue, issue_ref.repository.full_name, issue_ref.number
        )
        self._audit("close_issue", issue_ref)

    async def comment(self, issue_ref: IssueRef, text: str) -> None:
        await asyncio.to_thread(
            self.client.add_comment,
            issue_ref.repository.full_name,
            issue_ref.number,
            text,
        )
        self._audit("comment", issue_ref, body=text)

    async def find_issue(self, issue_ref: IssueRef) -> Issue:
        data = await asyncio.to_thread(
            self.client.get_issue, issue_ref.repository.full_name, issue_ref.number
        )
        return Issue.from_dict(data)

    async def find_file(self, branch_ref: BranchRef, path: str) -> bytes:
        return await asyncio.to_thread(
            self.client.get_file,
            branch_ref.repository.full_name,
            path,
            branch_ref.ref,
        )

    async def find_issue_timeline(self, issue_ref: IssueRef) -> List[TimelineEvent]:
        def _collect() -> List[TimelineEvent]:
            return [
                TimelineEvent.from_dict(event)
                for event in self.client.list_issue_timeline(
                    issue_ref.repository.full_name, issue_ref.number
                )
            ]

        return await asyncio.to_thread(_collect)

    async def update_labels(self, issue_ref: IssueRef, labels: List[str]) -> None:
        await asyncio.to_thread(
            self.client.set_labels,
            issue_ref.repository.full_name,
            issue_ref.number,
            list(labels),
        )
        self._audit("update_labels", issue_ref, labels=list(labels))

    async def save_hook(self, save_hook: SaveHook) -> None:
        repo = save_hook.repository.full_name
        payload = save_hook.to_payload()

        def _save() -> str:
            for hook in self.client.list_hooks(repo):
                if (hook.get("config") or {}).get("url") == save_hook.config.url:
                    self.client.edit_hook(repo, hook["id"], payload)
                    return "edited"
            self.client.create_hook(repo, payload)
            return "created"

        outcome = await asyncio.to_thread(_save)
        logger.info(f"Webhook for {save_hook.config.url} {outcome} on {repo}")
        if self.audit is not None:
            self.audit.log_github_mutation(
                "save_hook", repo, details={"url": save_hook.config.url, "outcome": outcome}
            )

    async def find_labels(self, repository: RepositoryRef) -> List[Label]:
        def _collect() -> List[Label]:
            return [
                Label.from_dict(label)
                for label in self.client.list_repo_labels(repository.full_name)
            ]

        return await asyncio.to_thread(_collect)

    def _audit(self, action: str, issue_ref: IssueRef, **details: Any) -> None:
        if self.audit is not None:
            self.audit.log_github_mutation(
                action,
                issue_ref.repository.full_name,
                issue_number=issue_ref.number,
                details=details,
            )


__all__ = [
    "GitHubGateway",
    "RestGitHubGateway",
]
