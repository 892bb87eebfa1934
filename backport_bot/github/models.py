# =============================================================================
# BACKPORT BOT - GITHUB DATA MODELS
# =============================================================================
"""
GitHub Data Models

Immutable value objects exchanged with the GitHub Gateway.

Nothing here is persisted locally. Every snapshot is re-fetched from GitHub
per operation, GitHub being the system of record for issues, labels,
milestones and timeline cross-references.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


BRANCH_REF_PREFIX = "refs/heads/"


# =============================================================================
# REFERENCES
# =============================================================================


@dataclass(frozen=True)
class RepositoryRef:
    """A repository identified by its "owner/repo" full name."""
    full_name: str

    def __post_init__(self):
        if "/" not in self.full_name:
            raise ValueError(
                f"Invalid repository format: {self.full_name}. "
                "Expected format: owner/repo"
            )


@dataclass(frozen=True)
class BranchRef:
    """
    A branch within a repository.

    ``ref`` is always the fully qualified ``refs/heads/<name>`` form when
    built through :meth:`for_branch`, so two refs to the same branch
    compare equal regardless of where they came from.
    """
    repository: RepositoryRef
    ref: str

    @classmethod
    def for_branch(cls, repository: RepositoryRef, name: str) -> "BranchRef":
        """Build a ref from a short branch name or an already qualified ref."""
        if name.startswith("refs/"):
            return cls(repository, name)
        return cls(repository, f"{BRANCH_REF_PREFIX}{name}")

    @property
    def name(self) -> str:
        """Short branch name (``1.0.x`` for ``refs/heads/1.0.x``)."""
        if self.ref.startswith(BRANCH_REF_PREFIX):
            return self.ref[len(BRANCH_REF_PREFIX):]
        return self.ref


@dataclass(frozen=True)
class IssueRef:
    """An issue or pull request. GitHub shares the numbering between both."""
    repository: RepositoryRef
    number: int


# =============================================================================
# ISSUE SNAPSHOTS
# =============================================================================


@dataclass(frozen=True)
class Label:
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Label":
        return cls(name=data["name"])


@dataclass(frozen=True)
class Milestone:
    number: int
    title: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Milestone"]:
        if not data:
            return None
        return cls(number=data["number"], title=data.get("title") or "")


@dataclass(frozen=True)
class Issue:
    """Snapshot of an issue as returned by ``GET /repos/{repo}/issues/{n}``."""
    number: int
    title: str
    milestone: Optional[Milestone] = None
    labels: Tuple[Label, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            milestone=Milestone.from_dict(data.get("milestone")),
            labels=tuple(Label.from_dict(l) for l in data.get("labels") or []),
        )

    @property
    def label_names(self) -> List[str]:
        return [label.name for label in self.labels]

    @property
    def milestone_number(self) -> Optional[int]:
        return self.milestone.number if self.milestone else None


# =============================================================================
# TIMELINE
# =============================================================================


@dataclass(frozen=True)
class TimelineIssue:
    """The issue on the other side of a cross reference."""
    number: int
    body: Optional[str] = None
    milestone: Optional[Milestone] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TimelineIssue"]:
        if not data:
            return None
        return cls(
            number=data["number"],
            body=data.get("body"),
            milestone=Milestone.from_dict(data.get("milestone")),
        )


@dataclass(frozen=True)
class TimelineSource:
    type: str
    issue: Optional[TimelineIssue] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TimelineSource"]:
        if not data:
            return None
        return cls(
            type=data.get("type", ""),
            issue=TimelineIssue.from_dict(data.get("issue")),
        )


@dataclass(frozen=True)
class TimelineEvent:
    event: str
    source: Optional[TimelineSource] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEvent":
        return cls(
            event=data.get("event", ""),
            source=TimelineSource.from_dict(data.get("source")),
        )

    @property
    def source_issue(self) -> Optional[TimelineIssue]:
        return self.source.issue if self.source else None


# =============================================================================
# COMMANDS
# =============================================================================


@dataclass(frozen=True)
class CreateIssue:
    """Request to open a new issue in ``ref``."""
    ref: RepositoryRef
    title: str
    body: str = ""
    milestone: Optional[int] = None
    labels: Tuple[str, ...] = ()
    assignees: Tuple[str, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "labels": list(self.labels),
            "assignees": list(self.assignees),
        }
        if self.milestone is not None:
            payload["milestone"] = self.milestone
        return payload


@dataclass(frozen=True)
class HookConfig:
    url: str
    secret: str
    content_type: str = "json"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "secret": self.secret,
            "content_type": self.content_type,
        }


@dataclass(frozen=True)
class SaveHook:
    """Webhook registration descriptor."""
    repository: RepositoryRef
    config: HookConfig
    events: Tuple[str, ...] = ("push", "issues", "pull_request")
    name: str = "web"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "config": self.config.to_payload(),
            "events": list(self.events),
            "active": True,
        }


@dataclass(frozen=True)
class Permission:
    login: str
    permission: str


__all__ = [
    "BRANCH_REF_PREFIX",
    "RepositoryRef",
    "BranchRef",
    "IssueRef",
    "Label",
    "Milestone",
    "Issue",
    "TimelineIssue",
    "TimelineSource",
    "TimelineEvent",
    "CreateIssue",
    "HookConfig",
    "SaveHook",
    "Permission",
]
