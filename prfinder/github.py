"""
GitHub REST API client for prfinder.

Independent calls, each authenticated with a caller-supplied token:
- list pull requests (first page only, up to 100, all states)
- unified diff of a single pull request
- raw bytes of an arbitrary URL (avatars and other images)
- a user profile by login, and the user a token belongs to

There is no pagination, retry, or rate limit handling. Repositories with
more than 100 pull requests are truncated to the first page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from .config import GitHubConfig


logger = logging.getLogger(__name__)

PER_PAGE = 100
DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"


@dataclass(frozen=True)
class PullRequestRecord:
    """Pull request as returned by the list endpoint."""
    number: int
    title: str
    body: str | None
    author: str
    state: str
    created_at: str
    updated_at: str
    merged_at: str | None
    html_url: str
    changed_files: int | None = None
    additions: int | None = None
    deletions: int | None = None


@dataclass(frozen=True)
class GitHubUser:
    login: str
    name: str | None = None
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.login


class GitHubAPIError(Exception):
    """Error from a GitHub API call."""


class NetworkError(GitHubAPIError):
    """The request could not be sent or its response could not be read."""


class HttpStatusError(GitHubAPIError):
    """GitHub answered with a non-success status."""
    def __init__(self, status_code: int, reason: str | None = None):
        self.status_code = status_code
        self.reason = reason or ""
        super().__init__(f"{status_code} {self.reason}".strip())


class DecodeError(GitHubAPIError):
    """The response body does not have the expected shape."""


def _require(data: dict[str, Any], key: str, kind: type, optional: bool = False) -> Any:
    if key not in data or data[key] is None:
        if optional:
            return None
        raise DecodeError(f"missing field `{key}`")
    value = data[key]
    # bool is an int subclass; JSON true/false is never a valid count
    if isinstance(value, bool) and kind is int:
        raise DecodeError(f"invalid type for `{key}`: expected integer, got boolean")
    if not isinstance(value, kind):
        raise DecodeError(
            f"invalid type for `{key}`: expected {kind.__name__}, "
            f"got {type(value).__name__}"
        )
    if kind is int and value < 0:
        raise DecodeError(f"invalid value for `{key}`: {value} is negative")
    return value


def parse_pull_request(data: Any) -> PullRequestRecord:
    """Strictly parse one pull request object."""
    if not isinstance(data, dict):
        raise DecodeError(f"expected a pull request object, got {type(data).__name__}")

    user = _require(data, "user", dict)
    return PullRequestRecord(
        number=_require(data, "number", int),
        title=_require(data, "title", str),
        body=_require(data, "body", str, optional=True),
        author=_require(user, "login", str),
        state=_require(data, "state", str),
        created_at=_require(data, "created_at", str),
        updated_at=_require(data, "updated_at", str),
        merged_at=_require(data, "merged_at", str, optional=True),
        html_url=_require(data, "html_url", str),
        changed_files=_require(data, "changed_files", int, optional=True),
        additions=_require(data, "additions", int, optional=True),
        deletions=_require(data, "deletions", int, optional=True),
    )


def parse_pull_requests(payload: Any) -> list[PullRequestRecord]:
    """Parse a list payload. One malformed record fails the whole list."""
    if not isinstance(payload, list):
        raise DecodeError(f"expected a list of pull requests, got {type(payload).__name__}")
    records = []
    for index, item in enumerate(payload):
        try:
            records.append(parse_pull_request(item))
        except DecodeError as e:
            raise DecodeError(f"pull request at index {index}: {e}") from e
    return records


def parse_user(data: Any) -> GitHubUser:
    if not isinstance(data, dict):
        raise DecodeError(f"expected a user object, got {type(data).__name__}")
    return GitHubUser(
        login=_require(data, "login", str),
        name=_require(data, "name", str, optional=True),
        avatar_url=_require(data, "avatar_url", str, optional=True),
    )


class GitHubClient:
    """Stateless GitHub REST client; every call opens its own request."""

    def __init__(self, config: GitHubConfig | None = None):
        self.config = config or GitHubConfig()

    def _headers(self, token: str, accept: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "User-Agent": self.config.user_agent,
        }
        if accept:
            headers["Accept"] = accept
        return headers

    def _get(self, url: str, token: str, accept: str | None = None) -> requests.Response:
        """Issue a GET and map transport and status failures."""
        logger.debug("GET %s", url)
        try:
            response = requests.get(
                url,
                headers=self._headers(token, accept),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e

        if not 200 <= response.status_code < 300:
            raise HttpStatusError(response.status_code, response.reason)
        return response

    def pulls_url(self, owner: str, repo: str) -> str:
        return f"{self.config.api_base}/repos/{owner}/{repo}/pulls?state=all&per_page={PER_PAGE}"

    def pull_url(self, owner: str, repo: str, pr_number: int) -> str:
        return f"{self.config.api_base}/repos/{owner}/{repo}/pulls/{pr_number}"

    def fetch_pull_requests(self, owner: str, repo: str, token: str) -> list[PullRequestRecord]:
        """
        List pull requests of a repository, all states, first page only.

        Returns:
            Up to 100 PullRequestRecord objects in API order

        Raises:
            NetworkError, HttpStatusError, DecodeError
        """
        response = self._get(self.pulls_url(owner, repo), token)
        try:
            payload = response.json()
        except ValueError as e:
            raise DecodeError(f"invalid JSON: {e}") from e

        records = parse_pull_requests(payload)
        logger.info("Fetched %d pull requests for %s/%s", len(records), owner, repo)
        return records

    def fetch_diff(self, owner: str, repo: str, pr_number: int, token: str) -> str:
        """
        Get the unified diff of a pull request.

        Undecodable bytes become U+FFFD instead of failing the call. Without
        a charset in the response the body is read as UTF-8.
        """
        response = self._get(self.pull_url(owner, repo, pr_number), token, accept=DIFF_MEDIA_TYPE)
        if "charset=" not in response.headers.get("Content-Type", "").lower():
            response.encoding = "utf-8"
        return response.text

    def fetch_image_bytes(self, url: str, token: str) -> bytes:
        """Fetch raw bytes from any URL with the same authentication."""
        return self._get(url, token).content

    def _fetch_user(self, url: str, token: str) -> GitHubUser:
        response = self._get(url, token)
        try:
            payload = response.json()
        except ValueError as e:
            raise DecodeError(f"invalid JSON: {e}") from e
        return parse_user(payload)

    def fetch_user(self, username: str, token: str) -> GitHubUser:
        """Look up a public user profile. A missing user raises HttpStatusError(404)."""
        return self._fetch_user(f"{self.config.api_base}/users/{username}", token)

    def fetch_authenticated_user(self, token: str) -> GitHubUser:
        """Return the user the token belongs to; an invalid token raises HttpStatusError(401)."""
        return self._fetch_user(f"{self.config.api_base}/user", token)
