"""Shared fixtures for the backport bot tests."""

from unittest.mock import AsyncMock, Mock

import pytest

from backport_bot.events.backport_service import BackportService
from backport_bot.events.event_service import GitHubEventService
from backport_bot.github.gateway import GitHubGateway
from backport_bot.github.models import BranchRef, IssueRef, RepositoryRef
from tests.fakes import FakeGitHubGateway


@pytest.fixture
def repository():
    return RepositoryRef("rwinch/test")


@pytest.fixture
def branch_ref(repository):
    return BranchRef.for_branch(repository, "1.0.x")


@pytest.fixture
def issue_ref(repository):
    return IssueRef(repository, 1)


@pytest.fixture
def github():
    """Gateway mock; every operation is an AsyncMock."""
    return AsyncMock(spec=GitHubGateway)


@pytest.fixture
def metrics():
    return Mock()


@pytest.fixture
def fake_github():
    return FakeGitHubGateway()


@pytest.fixture
def fake_backports(fake_github):
    return BackportService(fake_github)


@pytest.fixture
def fake_events(fake_backports):
    return GitHubEventService(fake_backports)
