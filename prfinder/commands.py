"""
Operations exposed to a host UI.

Each function is self-contained: it takes everything it needs as
arguments, performs its own request, and keeps no state. Errors stay
structured (GitHubAPIError subclasses) here; the CLI and HTTP adapters
turn them into text with ``describe_error``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .filtering import ProjectedPullRequest, filter_and_project
from .github import DecodeError, GitHubAPIError, GitHubClient, GitHubUser, HttpStatusError, NetworkError


logger = logging.getLogger(__name__)

# Prefixes by operation, for (network, status, decode) failures
_ERROR_PREFIXES = {
    "sync": ("API call failed", "API response error", "JSON parse failed"),
    "diff": ("Failed to fetch diff", "Diff response error", "Failed to read diff data"),
    "image": ("Failed to fetch image", "Image response error", "Failed to read image data"),
    "user": ("Failed to look up user", "User lookup error", "Failed to read user data"),
    "token": ("Failed to validate token", "Token validation error", "Failed to read user data"),
}


@dataclass
class SyncResult:
    """Filtered pull requests for one repository."""
    prs: list[ProjectedPullRequest] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.prs)

    def to_dict(self) -> dict[str, Any]:
        return {"prs": [pr.to_dict() for pr in self.prs], "count": self.count}


def greet(name: str) -> str:
    return f"Hello, {name}! You've been greeted from Python!"


def sync_pull_requests(
    owner: str,
    repo: str,
    token: str,
    start_date: str,
    end_date: str,
    client: GitHubClient | None = None,
) -> SyncResult:
    """
    Fetch a repository's pull requests and keep those created in range.

    Bounds are inclusive and compared as strings against ``created_at``.
    Nothing is written to the store.
    """
    client = client or GitHubClient()
    records = client.fetch_pull_requests(owner, repo, token)
    prs = filter_and_project(records, start_date, end_date)
    logger.info(
        "%s/%s: %d of %d pull requests created between %s and %s",
        owner, repo, len(prs), len(records), start_date, end_date,
    )
    return SyncResult(prs=prs)


def fetch_github_image(url: str, token: str, client: GitHubClient | None = None) -> bytes:
    client = client or GitHubClient()
    return client.fetch_image_bytes(url, token)


def fetch_pr_diff(
    owner: str,
    repo: str,
    pr_number: int,
    token: str,
    client: GitHubClient | None = None,
) -> str:
    client = client or GitHubClient()
    return client.fetch_diff(owner, repo, pr_number, token)


def lookup_member(username: str, token: str, client: GitHubClient | None = None) -> GitHubUser | None:
    """
    Check that USERNAME is a GitHub user.

    Returns None when GitHub answers 404; any other failure propagates.
    """
    client = client or GitHubClient()
    try:
        return client.fetch_user(username.strip(), token)
    except HttpStatusError as e:
        if e.status_code == 404:
            logger.info("GitHub user %s does not exist", username)
            return None
        raise


def validate_token(token: str, client: GitHubClient | None = None) -> GitHubUser:
    """Return the account a token authenticates as. A rejected token raises HttpStatusError."""
    client = client or GitHubClient()
    return client.fetch_authenticated_user(token.strip())


def describe_error(operation: str, error: GitHubAPIError) -> str:
    """Flatten an API error into the human-readable message shown to users."""
    network, status, decode = _ERROR_PREFIXES.get(operation, _ERROR_PREFIXES["sync"])
    if isinstance(error, NetworkError):
        return f"{network}: {error}"
    if isinstance(error, HttpStatusError):
        return f"{status}: {error}"
    if isinstance(error, DecodeError):
        return f"{decode}: {error}"
    return str(error)
