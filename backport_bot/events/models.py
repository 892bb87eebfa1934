# =============================================================================
# BACKPORT BOT - WEBHOOK EVENT MODELS
# =============================================================================
"""
Webhook Event Models

Parsed representations of the ``push``, ``issues`` and ``pull_request``
webhook payloads, with the derived accessors the event service relies on:
fix-commit extraction and branch/issue reference derivation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from backport_bot.github.models import BranchRef, Issue, IssueRef, RepositoryRef


# A fix reference on any line of a commit message, e.g.
#   Fixes: gh-123 / closes #123 / Fixes https://github.com/org/repo/issues/123
# Case-insensitive, colon optional, leading whitespace on the line ignored.
FIX_COMMIT_PATTERN = re.compile(
    r"^\s*(?:Fixes|Closes):?\s+"
    r"(?:gh-|#|https://github\.com/[\w.-]+/[\w.-]+/(?:issues|pull)/)"
    r"(?P<id>\d+)",
    re.IGNORECASE | re.MULTILINE,
)


class EventPayloadError(ValueError):
    """Raised when a webhook payload lacks a required field."""
    pass


def _require(payload: Dict[str, Any], key: str, event_name: str) -> Any:
    value = payload.get(key)
    if value is None:
        raise EventPayloadError(f"'{key}' is missing from {event_name} payload")
    return value


def _repository_ref(payload: Dict[str, Any], event_name: str) -> RepositoryRef:
    repository = _require(payload, "repository", event_name)
    full_name = repository.get("full_name")
    if not full_name:
        raise EventPayloadError(f"'repository.full_name' is missing from {event_name} payload")
    try:
        return RepositoryRef(full_name)
    except ValueError as e:
        raise EventPayloadError(str(e)) from e


def _label_name(payload: Dict[str, Any]) -> Optional[str]:
    label = payload.get("label")
    return label.get("name") if label else None


def _sender_login(payload: Dict[str, Any]) -> Optional[str]:
    sender = payload.get("sender")
    return sender.get("login") if sender else None


def _parse_issue(data: Dict[str, Any], key: str, event_name: str) -> Issue:
    try:
        return Issue.from_dict(data)
    except (KeyError, TypeError) as e:
        raise EventPayloadError(f"'{key}' is malformed in {event_name} payload: {e}") from e


# =============================================================================
# PUSH
# =============================================================================


@dataclass(frozen=True)
class Commit:
    id: str
    message: str

    @property
    def fix_issue_id(self) -> Optional[int]:
        """Issue number of the first fix reference in the message, if any."""
        match = FIX_COMMIT_PATTERN.search(self.message)
        if match is None:
            return None
        return int(match.group("id"))


@dataclass(frozen=True)
class PushEvent:
    ref: str
    repository: RepositoryRef
    pusher: str
    commits: Tuple[Commit, ...] = ()

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PushEvent":
        pusher = payload.get("pusher") or {}
        return cls(
            ref=_require(payload, "ref", "push"),
            repository=_repository_ref(payload, "push"),
            pusher=pusher.get("name") or "",
            commits=tuple(
                Commit(id=_require(c, "id", "push commit"), message=c.get("message") or "")
                for c in payload.get("commits") or []
            ),
        )

    @property
    def fix_commits(self) -> List[Commit]:
        return [c for c in self.commits if c.fix_issue_id is not None]

    @property
    def branch_ref(self) -> BranchRef:
        return BranchRef.for_branch(self.repository, self.ref)


# =============================================================================
# ISSUES AND PULL REQUESTS
# =============================================================================


@dataclass(frozen=True)
class IssueEvent:
    action: str
    repository: RepositoryRef
    issue: Issue
    label: Optional[str] = None
    sender: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "IssueEvent":
        return cls(
            action=_require(payload, "action", "issues"),
            repository=_repository_ref(payload, "issues"),
            issue=_parse_issue(_require(payload, "issue", "issues"), "issue", "issues"),
            label=_label_name(payload),
            sender=_sender_login(payload),
        )

    @property
    def issue_ref(self) -> IssueRef:
        return IssueRef(self.repository, self.issue.number)


@dataclass(frozen=True)
class PullRequestEvent:
    action: str
    repository: RepositoryRef
    pull_request: Issue
    label: Optional[str] = None
    sender: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PullRequestEvent":
        return cls(
            action=_require(payload, "action", "pull_request"),
            repository=_repository_ref(payload, "pull_request"),
            pull_request=_parse_issue(
                _require(payload, "pull_request", "pull_request"),
                "pull_request",
                "pull_request",
            ),
            label=_label_name(payload),
            sender=_sender_login(payload),
        )

    @property
    def issue_ref(self) -> IssueRef:
        return IssueRef(self.repository, self.pull_request.number)


__all__ = [
    "FIX_COMMIT_PATTERN",
    "EventPayloadError",
    "Commit",
    "PushEvent",
    "IssueEvent",
    "PullRequestEvent",
]
