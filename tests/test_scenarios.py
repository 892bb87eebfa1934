"""End-to-end backport flows against the in-memory GitHub Gateway."""

import pytest

from backport_bot.events.backport_service import MilestoneNotFoundError
from backport_bot.events.models import Commit, IssueEvent, PushEvent
from backport_bot.github.models import (
    BranchRef,
    IssueRef,
    Milestone,
    TimelineEvent,
    TimelineIssue,
    TimelineSource,
)


def push(repository, *messages, ref="refs/heads/1.0.x", pusher="rwinch"):
    commits = tuple(Commit(f"sha{i}", m) for i, m in enumerate(messages, 1))
    return PushEvent(ref, repository, pusher, commits)


def labeled(fake_github, issue_ref, label="for: backport-to-1.0.x", sender="jgrandja"):
    issue = fake_github.issues[issue_ref]
    return IssueEvent("labeled", issue_ref.repository, issue, label, sender)


@pytest.fixture
def project(fake_github, repository, branch_ref):
    """A repository with a 1.0.x backport branch at version 1.0.1-SNAPSHOT."""
    fake_github.add_label(repository, "for: backport-to-1.0.x")
    fake_github.add_label(repository, "bug")
    fake_github.add_file(branch_ref, "gradle.properties", "version=1.0.1-SNAPSHOT\n")
    fake_github.add_milestone(repository, "1.0.1", 10)
    fake_github.add_milestone(repository, "1.1.0", 11)
    fake_github.add_issue(
        repository, 42, milestone=11, labels=("bug", "for: backport-to-1.0.x")
    )
    return fake_github


# =============================================================================
# PUSH
# =============================================================================


@pytest.mark.asyncio
async def test_push_creates_and_closes_backport(project, fake_events, repository):
    acted = await fake_events.backport(push(repository, "Fix NPE\n\nFixes: gh-42"))

    assert acted is True
    original = IssueRef(repository, 42)
    [backport] = project.backports_of(original)
    created = project.created[0]
    assert created.title == "Found a bug"
    assert created.milestone == 10
    assert created.labels == ("bug", "type: backport")
    assert created.assignees == ("rwinch",)
    assert project.comments[backport] == ["Fixed via sha1"]
    assert backport in project.closed
    assert "status: backported" in project.label_names(original)


@pytest.mark.asyncio
async def test_push_to_other_branch_is_ignored(project, fake_events, repository):
    acted = await fake_events.backport(push(repository, "Fixes: gh-42", ref="refs/heads/main"))

    assert acted is False
    assert project.created == []


@pytest.mark.asyncio
async def test_push_closes_existing_backport(project, fake_events, fake_backports, repository):
    original = IssueRef(repository, 42)
    existing = await fake_backports.create_backport(original, 10, [])

    assert await fake_events.backport(push(repository, "Fixes: gh-42")) is True

    assert project.backports_of(original) == [existing]
    assert existing in project.closed


@pytest.mark.asyncio
async def test_push_without_descriptor(fake_github, fake_events, repository):
    fake_github.add_label(repository, "for: backport-to-1.0.x")
    fake_github.add_issue(repository, 42)

    with pytest.raises(MilestoneNotFoundError, match="refs/heads/1.0.x"):
        await fake_events.backport(push(repository, "Fixes: gh-42"))

    assert fake_github.created == []


@pytest.mark.asyncio
async def test_push_with_maven_descriptor(fake_github, fake_events, repository, branch_ref):
    fake_github.add_label(repository, "for: backport-to-1.0.x")
    fake_github.add_file(
        branch_ref,
        "pom.xml",
        '<project xmlns="http://maven.apache.org/POM/4.0.0">'
        "<version>1.0.1.BUILD-SNAPSHOT</version></project>",
    )
    fake_github.add_milestone(repository, "1.0.1", 10)
    fake_github.add_issue(repository, 42)

    assert await fake_events.backport(push(repository, "Fixes: gh-42")) is True

    assert fake_github.created[0].milestone == 10


# =============================================================================
# LABEL
# =============================================================================


@pytest.mark.asyncio
async def test_label_creates_backport(project, fake_events, repository):
    original = IssueRef(repository, 42)

    assert await fake_events.backport(labeled(project, original)) is True

    assert project.label_names(original) == ["bug", "status: backported"]
    [backport] = project.backports_of(original)
    assert project.issues[backport].milestone_number == 10
    assert project.created[0].assignees == ("jgrandja",)
    assert backport not in project.closed


@pytest.mark.asyncio
async def test_label_on_issue_already_in_milestone(project, fake_events, repository):
    original = project.add_issue(
        repository, 43, milestone=10, labels=("bug", "for: backport-to-1.0.x")
    )

    assert await fake_events.backport(labeled(project, original)) is False

    assert project.label_names(original) == ["bug"]
    assert project.created == []


@pytest.mark.asyncio
async def test_label_twice_creates_one_backport(project, fake_events, repository):
    original = IssueRef(repository, 42)

    assert await fake_events.backport(labeled(project, original)) is True
    assert await fake_events.backport(labeled(project, original)) is False

    assert len(project.backports_of(original)) == 1
    assert project.label_names(original).count("status: backported") == 1


@pytest.mark.asyncio
async def test_label_then_push_closes_the_same_backport(project, fake_events, repository):
    original = IssueRef(repository, 42)
    await fake_events.backport(labeled(project, original))
    [backport] = project.backports_of(original)

    assert await fake_events.backport(push(repository, "Fixes: gh-42")) is True
    # Redelivered push
    assert await fake_events.backport(push(repository, "Fixes: gh-42")) is True

    assert project.backports_of(original) == [backport]
    assert project.comments[backport] == ["Fixed via sha1", "Fixed via sha1"]
    assert backport in project.closed


@pytest.mark.asyncio
async def test_unrelated_cross_reference_is_not_a_backport(project, fake_backports, repository):
    original = IssueRef(repository, 42)
    project.add_issue(repository, 50, milestone=10, body="See gh-42")
    project.timelines[original].append(
        TimelineEvent(
            "cross-referenced",
            TimelineSource("issue", TimelineIssue(50, "See gh-42", Milestone(10))),
        )
    )

    assert await fake_backports.find_backported_issue_for_milestone_number(original, 10) is None


@pytest.mark.asyncio
async def test_find_backport_branches(project, fake_backports, repository):
    project.add_label(repository, "for: backport-to-2.0.x")

    branches = await fake_backports.find_backport_branches(repository)

    assert branches == [
        BranchRef.for_branch(repository, "1.0.x"),
        BranchRef.for_branch(repository, "2.0.x"),
    ]
