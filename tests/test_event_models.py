"""Tests for the webhook payload models."""

import pytest

from backport_bot.events.models import (
    Commit,
    EventPayloadError,
    IssueEvent,
    PullRequestEvent,
    PushEvent,
)
from backport_bot.github.models import BranchRef, IssueRef, RepositoryRef

REPOSITORY = RepositoryRef("spring-projects/spring-security")


def push_event(message: str, ref: str = "master") -> PushEvent:
    return PushEvent(ref, REPOSITORY, "rwinch", (Commit("sha", message),))


def fix_issue_ids(event: PushEvent):
    return [c.fix_issue_id for c in event.fix_commits]


# =============================================================================
# FIX COMMITS
# =============================================================================


@pytest.mark.parametrize(
    "message",
    [
        "Fixes: gh-123",
        "Subject\n\nFixes: gh-123",
        "Subject\n\nFixes: #123",
        "Subject\n\nFixes gh-123",
        "Subject\n\nFixes:  gh-123",
        "Subject\n\nFixes:  gh-123\n",
        "Subject\n\nFixes:  gh-123\n\n",
        "Subject\n\nFixes:  gh-123\r\n",
        "Hi\n\nHello\r\n\r\nFixes: gh-123",
        "Subject\n\nCloses gh-123",
        "Subject\n\nfixes: GH-123",
        "Subject\n\n  Fixes: gh-123",
        "Subject\n\nFixes: https://github.com/spring-projects/spring-security/issues/123",
        "Subject\n\nCloses https://github.com/spring-projects/spring-security/pull/123",
        "Subject\n\nFixes: gh-123\n\nSigned-off-by: Rob <rob@example.com>",
    ],
)
def test_fix_issue_id_found(message):
    assert fix_issue_ids(push_event(message)) == [123]


@pytest.mark.parametrize(
    "message",
    [
        "Subject",
        "Subject\n\nSee gh-123",
        "Subject\n\nFixes:gh-123",
        "Subject\n\nFixes: gh-abc",
        "Subject\n\nRelated to Fixes: gh-123",
        "Subject\n\nFixes: https://example.com/org/repo/issues/123",
        "",
    ],
)
def test_fix_issue_id_not_found(message):
    event = push_event(message)

    assert event.fix_commits == []
    assert event.commits[0].fix_issue_id is None


def test_fix_issue_id_uses_first_reference():
    commit = Commit("sha", "Subject\n\nFixes: gh-1\nFixes: gh-2")

    assert commit.fix_issue_id == 1


def test_fix_commits_keeps_only_commits_with_reference():
    event = PushEvent(
        "refs/heads/1.0.x",
        REPOSITORY,
        "rwinch",
        (Commit("a", "Polish"), Commit("b", "Fixes: gh-7"), Commit("c", "Closes #8")),
    )

    assert [c.id for c in event.fix_commits] == ["b", "c"]


# =============================================================================
# PUSH PAYLOADS
# =============================================================================


def push_payload(**overrides):
    payload = {
        "ref": "refs/heads/1.0.x",
        "repository": {"full_name": "rwinch/test"},
        "pusher": {"name": "rwinch", "email": "rwinch@example.com"},
        "commits": [
            {"id": "a1b2c3", "message": "Fix NPE\n\nFixes: gh-42"},
            {"id": "d4e5f6", "message": "Polish"},
        ],
    }
    payload.update(overrides)
    return payload


def test_push_from_payload():
    event = PushEvent.from_payload(push_payload())

    assert event.ref == "refs/heads/1.0.x"
    assert event.repository == RepositoryRef("rwinch/test")
    assert event.pusher == "rwinch"
    assert [c.id for c in event.commits] == ["a1b2c3", "d4e5f6"]
    assert [c.fix_issue_id for c in event.fix_commits] == [42]


def test_push_branch_ref_is_fully_qualified():
    event = PushEvent.from_payload(push_payload())

    assert event.branch_ref == BranchRef(RepositoryRef("rwinch/test"), "refs/heads/1.0.x")
    assert event.branch_ref == BranchRef.for_branch(RepositoryRef("rwinch/test"), "1.0.x")
    assert event.branch_ref.name == "1.0.x"


def test_push_from_payload_without_commits():
    event = PushEvent.from_payload(push_payload(commits=None))

    assert event.commits == ()
    assert event.fix_commits == []


def test_push_from_payload_without_pusher():
    payload = push_payload()
    del payload["pusher"]

    assert PushEvent.from_payload(payload).pusher == ""


@pytest.mark.parametrize("missing", ["ref", "repository"])
def test_push_from_payload_missing_field(missing):
    payload = push_payload()
    del payload[missing]

    with pytest.raises(EventPayloadError, match=missing):
        PushEvent.from_payload(payload)


def test_push_from_payload_invalid_repository():
    with pytest.raises(EventPayloadError, match="owner/repo"):
        PushEvent.from_payload(push_payload(repository={"full_name": "test"}))


def test_push_from_payload_commit_without_id():
    with pytest.raises(EventPayloadError, match="id"):
        PushEvent.from_payload(push_payload(commits=[{"message": "Fixes: gh-1"}]))


# =============================================================================
# ISSUE AND PULL REQUEST PAYLOADS
# =============================================================================


def labeled_payload(kind: str):
    return {
        "action": "labeled",
        "repository": {"full_name": "rwinch/test"},
        kind: {
            "number": 1347,
            "title": "Found a bug",
            "milestone": {"number": 3, "title": "5.0.0"},
            "labels": [{"name": "bug"}, {"name": "for: backport-to-1.0.x"}],
        },
        "label": {"name": "for: backport-to-1.0.x"},
        "sender": {"login": "rwinch"},
    }


def test_issue_event_from_payload():
    event = IssueEvent.from_payload(labeled_payload("issue"))

    assert event.action == "labeled"
    assert event.label == "for: backport-to-1.0.x"
    assert event.sender == "rwinch"
    assert event.issue.milestone_number == 3
    assert event.issue.label_names == ["bug", "for: backport-to-1.0.x"]
    assert event.issue_ref == IssueRef(RepositoryRef("rwinch/test"), 1347)


def test_issue_event_without_label_and_milestone():
    payload = labeled_payload("issue")
    payload["action"] = "opened"
    del payload["label"]
    payload["issue"]["milestone"] = None

    event = IssueEvent.from_payload(payload)

    assert event.label is None
    assert event.issue.milestone is None


def test_issue_event_malformed_issue():
    payload = labeled_payload("issue")
    payload["issue"] = {"title": "no number"}

    with pytest.raises(EventPayloadError, match="issue"):
        IssueEvent.from_payload(payload)


def test_pull_request_event_from_payload():
    event = PullRequestEvent.from_payload(labeled_payload("pull_request"))

    assert event.label == "for: backport-to-1.0.x"
    assert event.sender == "rwinch"
    assert event.issue_ref == IssueRef(RepositoryRef("rwinch/test"), 1347)


def test_pull_request_event_missing_pull_request():
    payload = labeled_payload("pull_request")
    del payload["pull_request"]

    with pytest.raises(EventPayloadError, match="pull_request"):
        PullRequestEvent.from_payload(payload)
