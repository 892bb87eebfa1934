# =============================================================================
# BACKPORT BOT - EVENT SERVICE
# =============================================================================
"""
Event Service

Classifies inbound webhook events and drives the backport service.

Handled events:
    - issues / pull_request ``labeled`` with ``for: backport-to-<branch>``:
      the label is removed and a backport issue is created in the branch
      milestone, unless the issue already targets that milestone
    - push of ``Fixes: gh-<n>`` commits to a backport branch: the backport
      of every fixed issue is found (or created) and closed

Every ``backport`` method returns True when it acted on the event and
False when the event was ignored. Backport service errors are not caught;
they reach the caller, which turns them into a failed delivery that GitHub
redelivers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Union

from backport_bot.events.backport_service import BackportService
from backport_bot.events.models import Commit, IssueEvent, PullRequestEvent, PushEvent
from backport_bot.github.models import BranchRef, IssueRef, RepositoryRef

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logger = logging.getLogger(__name__)


LABELED_ACTION = "labeled"


# =============================================================================
# EVENT SERVICE CLASS
# =============================================================================


class GitHubEventService:
    """
    Backport decisions for push, issues and pull_request events.

    Attributes:
        backports: BackportService performing the GitHub operations
    """

    def __init__(self, backports: BackportService):
        self.backports = backports

    async def backport(self, event: Union[PushEvent, IssueEvent, PullRequestEvent]) -> bool:
        """
        Handle any supported event.

        Returns:
            True if a backport action was taken, False if the event was ignored

        Raises:
            TypeError: For an unsupported event type
        """
        if isinstance(event, PushEvent):
            return await self.backport_push(event)
        if isinstance(event, IssueEvent):
            return await self.backport_issue(event)
        if isinstance(event, PullRequestEvent):
            return await self.backport_pull_request(event)
        raise TypeError(f"Unsupported event: {type(event).__name__}")

    # =========================================================================
    # LABEL EVENTS
    # =========================================================================

    async def backport_issue(self, event: IssueEvent) -> bool:
        """Handle an ``issues`` event."""
        return await self._backport_labeled(
            event.action, event.repository, event.issue_ref, event.label, event.sender
        )

    async def backport_pull_request(self, event: PullRequestEvent) -> bool:
        """Handle a ``pull_request`` event."""
        return await self._backport_labeled(
            event.action, event.repository, event.issue_ref, event.label, event.sender
        )

    async def _backport_labeled(
        self,
        action: str,
        repository: RepositoryRef,
        issue_ref: IssueRef,
        label: Optional[str],
        sender: Optional[str],
    ) -> bool:
        if action != LABELED_ACTION or not label:
            logger.debug(f"Ignoring '{action}' event for #{issue_ref.number}")
            return False

        branch = self.backports.find_branch_name_by_label_name(label)
        if not branch:
            logger.debug(f"Label '{label}' is not a backport request")
            return False

        branch_ref = BranchRef.for_branch(repository, branch)
        logger.info(f"Backport of #{issue_ref.number} to {branch} requested via '{label}'")

        await self.backports.remove_label(issue_ref, label)

        milestone = await self.backports.find_milestone_number(branch_ref)
        if await self.backports.is_issue_for_milestone(issue_ref, milestone):
            logger.info(
                f"#{issue_ref.number} already targets milestone {milestone}, "
                "no backport created"
            )
            return False

        assignees = [sender] if sender else []
        await self.backports.create_backport(issue_ref, milestone, assignees)
        return True

    # =========================================================================
    # PUSH EVENTS
    # =========================================================================

    async def backport_push(self, event: PushEvent) -> bool:
        """
        Handle a ``push`` event.

        Returns True when the push is a backport push (a backport branch
        with at least one fix commit), however many commits it processed.
        """
        if not await self.is_backport_push(event):
            logger.debug(f"Push to {event.ref} is not a backport push")
            return False

        branch_ref = event.branch_ref
        milestone = await self.backports.find_milestone_number(branch_ref)

        # One find/create/close chain per fixed issue; chains run concurrently
        commits_by_issue: Dict[int, List[Commit]] = OrderedDict()
        for commit in event.fix_commits:
            commits_by_issue.setdefault(commit.fix_issue_id, []).append(commit)

        issue_refs = [IssueRef(branch_ref.repository, number) for number in commits_by_issue]
        # Every chain runs to completion before the first failure is raised
        results = await asyncio.gather(
            *(
                self._backport_fixes(ref, commits_by_issue[ref.number], milestone, event.pusher)
                for ref in issue_refs
            ),
            return_exceptions=True,
        )
        failures = [
            (ref, result) for ref, result in zip(issue_refs, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            for ref, error in failures[1:]:
                logger.error(f"Backport of #{ref.number} failed: {error}")
            raise failures[0][1]
        return True

    async def is_backport_push(self, event: PushEvent) -> bool:
        """
        A backport push targets a branch with a ``for: backport-to-<branch>``
        label in the repository and carries at least one fix commit.
        """
        if not event.fix_commits:
            return False
        branches = await self.backports.find_backport_branches(event.repository)
        return event.branch_ref in branches

    async def _backport_fixes(
        self,
        issue_ref: IssueRef,
        commits: List[Commit],
        milestone: int,
        pusher: str,
    ) -> None:
        backport = await self.backports.find_backported_issue_for_milestone_number(
            issue_ref, milestone
        )
        if backport is None:
            assignees = [pusher] if pusher else []
            backport = await self.backports.create_backport(issue_ref, milestone, assignees)

        for commit in commits:
            await self.backports.close_backport(backport, commit.id)


__all__ = [
    "GitHubEventService",
]
