# =============================================================================
# BACKPORT BOT - GITHUB API CLIENT
# =============================================================================
"""
GitHub API Client

Low-level client for GitHub REST API v3 interactions.
Handles authentication, rate limiting, pagination and error handling.

Features:
    - Personal access token authentication, with per-call token override
    - Automatic rate limit handling
    - Retry logic with exponential backoff for idempotent requests
    - RFC 5988 ``Link`` header pagination
    - Request/response logging

The client is synchronous. Async callers run it on worker threads
(see :mod:`backport_bot.github.gateway`).

Usage:
    client = GitHubClient(token="ghp_xxx")
    issue = client.get_issue("owner/repo", 123)
    client.add_comment("owner/repo", 123, "Fixed via 1a2b3c")
"""

import base64
import logging
import os
import threading
import time
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


# Accept header for the issue timeline API while it was in preview
TIMELINE_PREVIEW_ACCEPT = "application/vnd.github.mockingbird-preview"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class GitHubAPIError(Exception):
    """Base exception for GitHub API errors (any unexpected upstream failure)."""

    def __init__(self, message: str, status_code: int = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response if response is not None else {}

    def __str__(self):
        if self.status_code:
            return f"[{self.status_code}] {super().__str__()}"
        return super().__str__()


class RateLimitError(GitHubAPIError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, reset_time: int = None):
        super().__init__(message, status_code=403)
        self.reset_time = reset_time


class NotFoundError(GitHubAPIError):
    """Raised when resource is not found."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class AuthenticationError(GitHubAPIError):
    """Raised when authentication fails."""

    def __init__(self, message: str):
        super().__init__(message, status_code=401)


class ValidationError(GitHubAPIError):
    """Raised when request validation fails."""

    def __init__(self, message: str, errors: list = None):
        super().__init__(message, status_code=422)
        self.errors = errors or []


# =============================================================================
# GITHUB CLIENT CLASS
# =============================================================================

class GitHubClient:
    """
    Low-level GitHub API client.

    Unlike a single-repository client, every repository-scoped method takes
    the ``owner/repo`` full name, since one bot instance serves webhook
    deliveries from any repository it is installed on.

    Safe to share between threads: each thread sends its requests through
    its own ``requests.Session``.

    Attributes:
        token: GitHub API token
        base_url: GitHub API base URL
        metrics: Optional collector notified of every API response
    """

    DEFAULT_BASE_URL = "https://api.github.com"
    DEFAULT_TIMEOUT = 30
    DEFAULT_RETRY_COUNT = 3
    DEFAULT_BACKOFF_FACTOR = 0.5
    DEFAULT_PER_PAGE = 100
    RATE_LIMIT_THRESHOLD = 10  # Wait when remaining requests below this

    def __init__(
        self,
        token: str = None,
        base_url: str = None,
        timeout: int = None,
        retry_count: int = None,
        backoff_factor: float = None,
        metrics: Any = None,
    ):
        """
        Initialize GitHub client.

        Args:
            token: GitHub API token (default: from GITHUB_TOKEN env)
            base_url: API base URL (default: github.com)
            timeout: Request timeout in seconds
            retry_count: Number of retries on failure
            backoff_factor: Backoff multiplier for retries
            metrics: Optional MetricsCollector

        Raises:
            ValueError: If no token is available
        """
        self.token = token or os.environ.get("GITHUB_TOKEN")
        self.base_url = (base_url or os.environ.get("GITHUB_API_URL") or
                         self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.retry_count = retry_count if retry_count is not None else self.DEFAULT_RETRY_COUNT
        self.backoff_factor = backoff_factor or self.DEFAULT_BACKOFF_FACTOR
        self.metrics = metrics

        if not self.token:
            raise ValueError(
                "GitHub token required. Set GITHUB_TOKEN environment variable "
                "or pass token parameter."
            )

        # One session per worker thread, requests.Session is not thread-safe
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()
        self._rate_limit_remaining = None
        self._rate_limit_reset = None

        logger.info(f"GitHubClient initialized for {self.base_url}")

    @property
    def _session(self) -> requests.Session:
        """HTTP session of the calling thread, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._create_session()
            self._session = session
        return session

    @_session.setter
    def _session(self, session: requests.Session) -> None:
        self._local.session = session
        with self._sessions_lock:
            self._sessions.append(session)

    def _create_session(self) -> requests.Session:
        """Create configured HTTP session with retry logic."""
        session = requests.Session()

        session.headers.update({
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "backport-bot/1.0",
        })

        # POST is not retried: a replayed create would open a duplicate issue
        retry_strategy = Retry(
            total=self.retry_count,
            backoff_factor=self.backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "PUT", "PATCH", "DELETE"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    # =========================================================================
    # ISSUE OPERATIONS
    # =========================================================================

    def get_issue(self, repo: str, issue_number: int) -> dict:
        """
        Get issue (or pull request) by number.

        Raises:
            NotFoundError: If issue doesn't exist
            GitHubAPIError: If request fails
        """
        endpoint = f"/repos/{repo}/issues/{issue_number}"
        return self._request("GET", endpoint)

    def create_issue(
        self,
        repo: str,
        title: str,
        body: str = None,
        labels: List[str] = None,
        assignees: List[str] = None,
        milestone: int = None,
    ) -> dict:
        """
        Create a new issue.

        Args:
            repo: Repository in owner/repo format
            title: Issue title
            body: Issue body (markdown)
            labels: List of label names
            assignees: List of GitHub usernames
            milestone: Milestone number

        Returns:
            Created issue data
        """
        endpoint = f"/repos/{repo}/issues"
        data = {"title": title}

        if body is not None:
            data["body"] = body
        if labels:
            data["labels"] = labels
        if assignees:
            data["assignees"] = assignees
        if milestone is not None:
            data["milestone"] = milestone

        return self._request("POST", endpoint, data=data)

    def update_issue(
        self,
        repo: str,
        issue_number: int,
        state: str = None,
        labels: List[str] = None,
    ) -> dict:
        """
        Update an existing issue.

        Args:
            repo: Repository in owner/repo format
            issue_number: Issue to update
            state: New state: "open" or "closed"
            labels: New labels (replaces existing, an empty list clears them)

        Returns:
            Updated issue data
        """
        endpoint = f"/repos/{repo}/issues/{issue_number}"
        data = {}

        if state is not None:
            if state not in ("open", "closed"):
                raise ValueError(f"Invalid state: {state}. Must be 'open' or 'closed'")
            data["state"] = state
        if labels is not None:
            data["labels"] = labels

        if not data:
            raise ValueError("At least one field must be provided for update")

        return self._request("PATCH", endpoint, data=data)

    def close_issue(self, repo: str, issue_number: int) -> dict:
        """Close an issue."""
        return self.update_issue(repo, issue_number, state="closed")

    def set_labels(self, repo: str, issue_number: int, labels: List[str]) -> dict:
        """Replace all labels on an issue."""
        return self.update_issue(repo, issue_number, labels=list(labels))

    def add_comment(self, repo: str, issue_number: int, body: str) -> dict:
        """Add a comment to an issue."""
        endpoint = f"/repos/{repo}/issues/{issue_number}/comments"
        return self._request("POST", endpoint, data={"body": body})

    def list_issue_timeline(self, repo: str, issue_number: int) -> Iterator[dict]:
        """
        Iterate over every timeline event of an issue, following pagination.

        https://docs.github.com/en/rest/issues/timeline
        """
        endpoint = f"/repos/{repo}/issues/{issue_number}/timeline"
        return self._paginate(endpoint, headers={"Accept": TIMELINE_PREVIEW_ACCEPT})

    # =========================================================================
    # MILESTONE AND LABEL OPERATIONS
    # =========================================================================

    def list_milestones(self, repo: str, state: str = "open") -> Iterator[dict]:
        """Iterate over the repository milestones, following pagination."""
        endpoint = f"/repos/{repo}/milestones"
        return self._paginate(endpoint, params={"state": state})

    def list_repo_labels(self, repo: str) -> Iterator[dict]:
        """Iterate over all labels in the repository, following pagination."""
        endpoint = f"/repos/{repo}/labels"
        return self._paginate(endpoint)

    # =========================================================================
    # REPOSITORY OPERATIONS
    # =========================================================================

    def get_contents(self, repo: str, path: str, ref: str = None) -> dict:
        """
        Get contents of a file or directory.

        Args:
            repo: Repository in owner/repo format
            path: Path to file/directory
            ref: Git reference (branch, tag, commit)

        Returns:
            File or directory contents
        """
        endpoint = f"/repos/{repo}/contents/{quote(path)}"
        params = {}
        if ref:
            params["ref"] = ref

        return self._request("GET", endpoint, params=params if params else None)

    def get_file(self, repo: str, path: str, ref: str = None) -> bytes:
        """Fetch a file and return its base64-decoded content."""
        contents = self.get_contents(repo, path, ref=ref)
        if not isinstance(contents, dict) or "content" not in contents:
            raise GitHubAPIError(f"{path} is not a file in {repo} at {ref}")
        return base64.b64decode(contents["content"].replace("\n", ""))

    def list_hooks(self, repo: str) -> Iterator[dict]:
        """Iterate over the repository webhooks, following pagination."""
        return self._paginate(f"/repos/{repo}/hooks")

    def create_hook(self, repo: str, hook: dict) -> dict:
        """Create a repository webhook."""
        return self._request("POST", f"/repos/{repo}/hooks", data=hook)

    def edit_hook(self, repo: str, hook_id: int, hook: dict) -> dict:
        """Edit an existing repository webhook."""
        return self._request("PATCH", f"/repos/{repo}/hooks/{hook_id}", data=hook)

    # =========================================================================
    # USER AND TEAM OPERATIONS
    # =========================================================================

    def get_authenticated_user(self, token: str = None) -> dict:
        """Get the user the (optionally overridden) token belongs to."""
        return self._request("GET", "/user", token=token)

    def get_collaborator_permission(self, repo: str, login: str, token: str = None) -> dict:
        """Get the permission level of ``login`` on ``repo``."""
        endpoint = f"/repos/{repo}/collaborators/{login}/permission"
        return self._request("GET", endpoint, token=token)

    def get_team_membership(self, team_id: int, username: str, token: str = None) -> dict:
        """
        Get the team membership of a user.

        Raises:
            NotFoundError: If the user is not a member of the team
        """
        endpoint = f"/teams/{team_id}/memberships/{username}"
        return self._request("GET", endpoint, token=token)

    # =========================================================================
    # RATE LIMIT HANDLING
    # =========================================================================

    def _update_rate_limit(self, response: requests.Response):
        """Update rate limit info from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return
        try:
            self._rate_limit_remaining = int(remaining)
            self._rate_limit_reset = int(
                response.headers.get("X-RateLimit-Reset", 0)
            )
        except (ValueError, TypeError):
            return
        if self.metrics is not None:
            self.metrics.set_github_rate_limit(self._rate_limit_remaining)

    def _check_rate_limit(self):
        """
        Check rate limit and wait if necessary.

        If remaining requests are low, waits until reset.
        """
        if self._rate_limit_remaining is None:
            return

        if self._rate_limit_remaining <= self.RATE_LIMIT_THRESHOLD:
            if self._rate_limit_reset:
                wait_time = max(0, self._rate_limit_reset - time.time()) + 1
                if wait_time > 0 and wait_time < 3600:  # Don't wait more than 1 hour
                    logger.warning(
                        f"Rate limit low ({self._rate_limit_remaining} remaining). "
                        f"Waiting {wait_time:.0f} seconds..."
                    )
                    time.sleep(wait_time)

    # =========================================================================
    # HTTP METHODS
    # =========================================================================

    def _paginate(
        self,
        endpoint: str,
        params: dict = None,
        headers: dict = None,
    ) -> Iterator[dict]:
        """
        Yield every item of a paginated list endpoint.

        Follows the ``rel="next"`` link of the ``Link`` header. The header is
        parsed per RFC 5988 by requests, so ``prev``/``first``/``last``
        entries in any order are ignored.
        """
        page_params = {"per_page": self.DEFAULT_PER_PAGE, **(params or {})}
        response = self._send("GET", endpoint, params=page_params, headers=headers)

        while True:
            for item in response.json():
                yield item

            next_link = response.links.get("next", {}).get("url")
            if not next_link:
                return

            # The next URL already carries every query parameter
            response = self._send("GET", next_link, headers=headers)

    def _request(
        self,
        method: str,
        endpoint: str,
        data: dict = None,
        params: dict = None,
        headers: dict = None,
        token: str = None,
        check_rate_limit: bool = True,
    ) -> Any:
        """Make an authenticated API request and return the decoded JSON."""
        response = self._send(
            method,
            endpoint,
            data=data,
            params=params,
            headers=headers,
            token=token,
            check_rate_limit=check_rate_limit,
        )

        # Return empty dict for 204 No Content
        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    def _send(
        self,
        method: str,
        endpoint: str,
        data: dict = None,
        params: dict = None,
        headers: dict = None,
        token: str = None,
        check_rate_limit: bool = True,
    ) -> requests.Response:
        """
        Make authenticated API request.

        Handles:
        - Authentication headers (and per-call token override)
        - Rate limit checking
        - Error responses
        - Retry logic
        """
        if check_rate_limit:
            self._check_rate_limit()

        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            url = endpoint
        else:
            url = f"{self.base_url}{endpoint}"

        request_headers = dict(headers or {})
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"GitHub API: {method} {endpoint}")

        try:
            response = self._session.request(
                method=method,
                url=url,
                json=data,
                params=params,
                headers=request_headers or None,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise GitHubAPIError(f"Request timed out: {method} {endpoint}")
        except requests.exceptions.ConnectionError as e:
            raise GitHubAPIError(f"Connection error: {e}")
        except requests.exceptions.RequestException as e:
            raise GitHubAPIError(f"Request failed: {e}")

        self._update_rate_limit(response)

        if self.metrics is not None:
            self.metrics.record_github_request(method, response.status_code)

        if response.status_code >= 400:
            self._handle_error(method, endpoint, response)

        return response

    def _handle_error(self, method: str, endpoint: str, response: requests.Response) -> None:
        """
        Handle error response from API.

        Raises appropriate exception based on status code.
        """
        status_code = response.status_code

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        if not isinstance(error_data, dict):
            error_data = {}
        message = error_data.get("message") or response.text or "<empty body>"
        errors = error_data.get("errors", [])

        description = f"{method} {endpoint} failed: {message}"
        logger.error(f"GitHub API error [{status_code}]: {description}")

        if status_code == 401:
            raise AuthenticationError(
                f"Authentication failed for {method} {endpoint}. Check your GitHub token."
            )

        if status_code == 403:
            if "rate limit" in message.lower():
                raise RateLimitError(
                    description,
                    reset_time=self._rate_limit_reset
                )
            raise GitHubAPIError(description, status_code, error_data)

        if status_code == 404:
            raise NotFoundError(f"Resource not found: {description}")

        if status_code == 422:
            raise ValidationError(description, errors)

        raise GitHubAPIError(description, status_code, error_data or response.text)

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close session."""
        self.close()

    def close(self):
        """Close the HTTP sessions of every thread that used the client."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
            self._local = threading.local()
        for session in sessions:
            session.close()


__all__ = [
    "GitHubClient",
    "GitHubAPIError",
    "RateLimitError",
    "NotFoundError",
    "AuthenticationError",
    "ValidationError",
    "TIMELINE_PREVIEW_ACCEPT",
]
