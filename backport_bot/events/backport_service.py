# =============================================================================
# BACKPORT BOT - BACKPORT SERVICE
# =============================================================================
"""
Backport Service

Backport operations on top of the GitHub Gateway:

    - Resolve the milestone of a maintenance branch from its build
      descriptor (``gradle.properties``, else ``pom.xml``)
    - Detect an existing backport through the issue's own milestone or a
      cross-referenced backport issue in its timeline
    - Create a backport issue and tag the original
    - Close a backport once the fix lands on the branch
    - Parse ``for: backport-to-<branch>`` request labels

No state is kept between calls. Each decision re-queries GitHub, which
makes every operation safe to re-drive when a webhook is redelivered.

A backport issue is recognized by its body, which is always exactly
``Backport of gh-<original number>``.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, List, Optional, Sequence

from backport_bot.github.client import NotFoundError
from backport_bot.github.gateway import GitHubGateway
from backport_bot.github.models import BranchRef, CreateIssue, IssueRef, RepositoryRef

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

LABEL_STATUS_BACKPORTED = "status: backported"
LABEL_TYPE_BACKPORT = "type: backport"

BACKPORT_LABEL_PATTERN = re.compile(r"for: backport-to-(?P<branch>.*)")

GRADLE_DESCRIPTOR = "gradle.properties"
MAVEN_DESCRIPTOR = "pom.xml"

# Longest first so ".BUILD-SNAPSHOT" is not left as ".BUILD"
SNAPSHOT_SUFFIXES = (".BUILD-SNAPSHOT", "-SNAPSHOT")

CROSS_REFERENCED_EVENT = "cross-referenced"


def backport_body(issue_number: int) -> str:
    """Body of the backport issue for ``issue_number``."""
    return f"Backport of gh-{issue_number}"


def fixed_comment(commit_id: str) -> str:
    return f"Fixed via {commit_id}"


# =============================================================================
# EXCEPTIONS
# =============================================================================


class BackportError(Exception):
    """Base exception for backport errors."""
    pass


class BackportNotFoundError(BackportError):
    """Something a backport operation requires does not exist on GitHub."""
    pass


class MilestoneNotFoundError(BackportNotFoundError):
    """No milestone can be resolved for a branch."""
    pass


class IssueNotFoundError(BackportNotFoundError):
    """The issue to backport does not exist."""
    pass


# =============================================================================
# BUILD DESCRIPTOR PARSING
# =============================================================================


def parse_gradle_version(content: bytes) -> Optional[str]:
    """
    Read the ``version`` property of a gradle.properties file.

    Accepts the Java properties separators (``=``, ``:`` or whitespace)
    and skips ``#``/``!`` comment lines.
    """
    for raw_line in content.decode("utf-8", errors="replace").splitlines():
        line = raw_line.strip()
        if not line or line[0] in "#!":
            continue
        match = re.match(r"([^=:\s]+)\s*[=:\s]\s*(.*)$", line)
        if match and match.group(1) == "version":
            return match.group(2).strip() or None
    return None


def _strip_namespace(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _strip_namespace(child.tag) == name:
            return (child.text or "").strip() or None
    return None


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _strip_namespace(child.tag) == name:
            return child
    return None


def parse_pom_version(content: bytes) -> Optional[str]:
    """
    Read the version of a Maven pom.xml.

    ``/project/properties/revision`` (CI-friendly versions) wins over
    ``/project/version``. XML namespaces are ignored.
    """
    try:
        project = ET.fromstring(content.strip())
    except ET.ParseError as e:
        logger.warning(f"Ignoring unparseable {MAVEN_DESCRIPTOR}: {e}")
        return None

    if _strip_namespace(project.tag) != "project":
        return None

    properties = _child(project, "properties")
    if properties is not None:
        revision = _child_text(properties, "revision")
        if revision:
            return revision

    return _child_text(project, "version")


def milestone_title(version: str) -> str:
    """Milestone title for a project version (``1.1.0-SNAPSHOT`` -> ``1.1.0``)."""
    for suffix in SNAPSHOT_SUFFIXES:
        version = version.replace(suffix, "")
    return version


# =============================================================================
# BACKPORT SERVICE CLASS
# =============================================================================


class BackportService:
    """
    Backport operations for one GitHub Gateway.

    Attributes:
        github: GitHubGateway used for every read and mutation
        metrics: Optional MetricsCollector
    """

    def __init__(self, github: GitHubGateway, metrics: Any = None):
        self.github = github
        self.metrics = metrics

    # =========================================================================
    # LABELS
    # =========================================================================

    def find_branch_name_by_label_name(self, label_name: str) -> Optional[str]:
        """
        Branch requested by a ``for: backport-to-<branch>`` label.

        Returns:
            The branch name (empty for a bare ``for: backport-to-``), or
            None if the label is not a backport request
        """
        match = BACKPORT_LABEL_PATTERN.fullmatch(label_name or "")
        if match is None:
            return None
        return match.group("branch")

    def is_backport_label(self, label_name: str) -> bool:
        return self.find_branch_name_by_label_name(label_name) is not None

    async def remove_label(self, issue_ref: IssueRef, label_name: str) -> None:
        """
        Remove one label from an issue, keeping the others.

        Succeeds without doing anything if the issue cannot be found.
        """
        try:
            issue = await self.github.find_issue(issue_ref)
        except NotFoundError:
            logger.warning(f"Cannot remove '{label_name}': issue {issue_ref} not found")
            return

        remaining = [name for name in issue.label_names if name != label_name]
        await self.github.update_labels(issue_ref, remaining)
        logger.info(f"Removed label '{label_name}' from #{issue_ref.number}")

    async def find_backport_branches(self, repository: RepositoryRef) -> List[BranchRef]:
        """Branches that have a ``for: backport-to-<branch>`` label in the repository."""
        labels = await self.github.find_labels(repository)
        branches = []
        for label in labels:
            branch = self.find_branch_name_by_label_name(label.name)
            if branch:
                branches.append(BranchRef.for_branch(repository, branch))
        return branches

    # =========================================================================
    # MILESTONES
    # =========================================================================

    async def find_milestone_number(self, branch_ref: BranchRef) -> int:
        """
        Milestone number of a branch.

        The project version is read from the branch's build descriptor,
        snapshot suffixes are stripped and the result is looked up as a
        milestone title.

        Raises:
            MilestoneNotFoundError: If no descriptor declares a version, or
                no milestone has the derived title
        """
        title = await self._find_milestone_title(branch_ref)
        number = await self.github.find_milestone_number_by_title(branch_ref.repository, title)
        if number is None:
            raise MilestoneNotFoundError(
                f"Cannot find a milestone number for {branch_ref}: "
                f"no milestone titled '{title}' in {branch_ref.repository.full_name}"
            )
        logger.debug(f"Milestone for {branch_ref.ref} is '{title}' (#{number})")
        return number

    async def _find_milestone_title(self, branch_ref: BranchRef) -> str:
        version = await self._read_version(branch_ref, GRADLE_DESCRIPTOR, parse_gradle_version)
        if version is None:
            version = await self._read_version(branch_ref, MAVEN_DESCRIPTOR, parse_pom_version)
        if version is None:
            raise MilestoneNotFoundError(
                f"Cannot find a milestone number for {branch_ref}: "
                f"cannot find '{GRADLE_DESCRIPTOR}' or '{MAVEN_DESCRIPTOR}' declaring a version"
            )
        return milestone_title(version)

    async def _read_version(self, branch_ref: BranchRef, path: str, parse) -> Optional[str]:
        try:
            content = await self.github.find_file(branch_ref, path)
        except NotFoundError:
            logger.debug(f"No {path} on {branch_ref.ref}")
            return None
        return parse(content)

    # =========================================================================
    # DUPLICATE DETECTION
    # =========================================================================

    async def is_issue_for_milestone(self, issue_ref: IssueRef, milestone_number: int) -> bool:
        """
        True if the issue already targets the milestone, either directly or
        through a backport issue cross-referenced in its timeline.
        """
        found = await self.find_backported_issue_for_milestone_number(issue_ref, milestone_number)
        return found is not None

    async def find_backported_issue_for_milestone_number(
        self,
        issue_ref: IssueRef,
        milestone_number: int,
    ) -> Optional[IssueRef]:
        """
        Issue that tracks ``issue_ref`` in the milestone.

        That is the issue itself when it carries the milestone, otherwise
        the source of a ``cross-referenced`` timeline event whose milestone
        matches and whose body is exactly the backport body for
        ``issue_ref``. The body check tells a backport apart from any other
        issue that merely links to the original.
        """
        issue = await self.github.find_issue(issue_ref)
        if issue.milestone_number == milestone_number:
            return issue_ref

        expected_body = backport_body(issue_ref.number)
        for event in await self.github.find_issue_timeline(issue_ref):
            if event.event != CROSS_REFERENCED_EVENT:
                continue
            source = event.source_issue
            if source is None or source.milestone is None:
                continue
            if source.milestone.number == milestone_number and source.body == expected_body:
                return IssueRef(issue_ref.repository, source.number)

        return None

    # =========================================================================
    # BACKPORT LIFECYCLE
    # =========================================================================

    async def create_backport(
        self,
        fixed_issue: IssueRef,
        milestone: int,
        assignees: Sequence[str],
    ) -> IssueRef:
        """
        Open the backport issue of ``fixed_issue`` in ``milestone``.

        The original is tagged ``status: backported`` first. The backport
        copies its title and labels, except the backported status and any
        backport request label, and is tagged ``type: backport``.

        Raises:
            IssueNotFoundError: If the original issue does not exist
        """
        try:
            issue = await self.github.find_issue(fixed_issue)
        except NotFoundError as e:
            raise IssueNotFoundError(f"Cannot find issue {fixed_issue}") from e

        original_labels = issue.label_names
        if LABEL_STATUS_BACKPORTED not in original_labels:
            await self.github.update_labels(
                fixed_issue, original_labels + [LABEL_STATUS_BACKPORTED]
            )

        backport_labels = [
            name for name in original_labels
            if name != LABEL_STATUS_BACKPORTED and not self.is_backport_label(name)
        ]
        if LABEL_TYPE_BACKPORT not in backport_labels:
            backport_labels.append(LABEL_TYPE_BACKPORT)

        backport = await self.github.create_issue(
            CreateIssue(
                ref=fixed_issue.repository,
                title=issue.title,
                body=backport_body(fixed_issue.number),
                milestone=milestone,
                labels=tuple(backport_labels),
                assignees=tuple(assignees),
            )
        )

        logger.info(
            f"Created backport #{backport.number} of #{fixed_issue.number} "
            f"for milestone {milestone} in {fixed_issue.repository.full_name}"
        )
        if self.metrics is not None:
            self.metrics.record_backport_created(fixed_issue.repository.full_name)
        return backport

    async def close_backport(self, issue_ref: IssueRef, fixed_commit_id: str) -> None:
        """Comment which commit fixed the backport, then close it."""
        await self.github.comment(issue_ref, fixed_comment(fixed_commit_id))
        await self.github.close_issue(issue_ref)

        logger.info(f"Closed backport #{issue_ref.number} fixed via {fixed_commit_id}")
        if self.metrics is not None:
            self.metrics.record_backport_closed(issue_ref.repository.full_name)


__all__ = [
    "BackportService",
    "BackportError",
    "BackportNotFoundError",
    "MilestoneNotFoundError",
    "IssueNotFoundError",
    "LABEL_STATUS_BACKPORTED",
    "LABEL_TYPE_BACKPORT",
    "BACKPORT_LABEL_PATTERN",
    "backport_body",
    "fixed_comment",
    "milestone_title",
    "parse_gradle_version",
    "parse_pom_version",
]
