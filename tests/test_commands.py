from __future__ import annotations

from unittest.mock import Mock

import pytest

from conftest import pr_record
from prfinder.commands import (
    SyncResult,
    describe_error,
    fetch_github_image,
    fetch_pr_diff,
    greet,
    lookup_member,
    sync_pull_requests,
    validate_token,
)
from prfinder.github import DecodeError, GitHubClient, GitHubUser, HttpStatusError, NetworkError


def _client(**methods) -> Mock:
    client = Mock(spec=GitHubClient)
    for name, value in methods.items():
        setattr(client, name, value)
    return client


def test_greet():
    assert greet("Ada") == "Hello, Ada! You've been greeted from Python!"


def test_sync_pull_requests_filters_and_counts():
    records = [
        pr_record(1, "2024-01-01T00:00:00Z"),
        pr_record(2, "2024-06-15T10:00:00Z"),
    ]
    client = _client(fetch_pull_requests=Mock(return_value=records))

    result = sync_pull_requests(
        "octo", "hello", "secret", "2024-01-01T00:00:00Z", "2024-03-01T00:00:00Z", client=client
    )

    client.fetch_pull_requests.assert_called_once_with("octo", "hello", "secret")
    assert result.count == 1
    data = result.to_dict()
    assert data["count"] == 1
    assert data["prs"][0]["number"] == 1
    assert data["prs"][0]["diff_url"] == "https://github.com/octo/hello/pull/1.diff"


def test_sync_pull_requests_empty():
    client = _client(fetch_pull_requests=Mock(return_value=[]))
    result = sync_pull_requests("octo", "hello", "secret", "2024-01-01", "2024-12-31", client=client)
    assert result.to_dict() == {"prs": [], "count": 0}


def test_sync_pull_requests_propagates_errors():
    client = _client(fetch_pull_requests=Mock(side_effect=HttpStatusError(404, "Not Found")))
    with pytest.raises(HttpStatusError):
        sync_pull_requests("octo", "hello", "secret", "2024-01-01", "2024-12-31", client=client)


def test_fetch_pr_diff_and_image_delegate():
    client = _client(
        fetch_diff=Mock(return_value="diff text"),
        fetch_image_bytes=Mock(return_value=b"img"),
    )
    assert fetch_pr_diff("octo", "hello", 3, "secret", client=client) == "diff text"
    client.fetch_diff.assert_called_once_with("octo", "hello", 3, "secret")
    assert fetch_github_image("https://x/y.png", "secret", client=client) == b"img"
    client.fetch_image_bytes.assert_called_once_with("https://x/y.png", "secret")


def test_sync_result_count_tracks_prs():
    assert SyncResult().count == 0


@pytest.mark.parametrize(
    "operation, error, expected",
    [
        ("sync", NetworkError("connection refused"), "API call failed: connection refused"),
        ("sync", HttpStatusError(401, "Unauthorized"), "API response error: 401 Unauthorized"),
        ("sync", DecodeError("missing field `title`"), "JSON parse failed: missing field `title`"),
        ("diff", HttpStatusError(404, "Not Found"), "Diff response error: 404 Not Found"),
        ("diff", NetworkError("timeout"), "Failed to fetch diff: timeout"),
        ("image", HttpStatusError(403, "Forbidden"), "Image response error: 403 Forbidden"),
        ("image", DecodeError("bad"), "Failed to read image data: bad"),
    ],
)
def test_describe_error(operation, error, expected):
    assert describe_error(operation, error) == expected


def test_lookup_member_found():
    user = GitHubUser(login="alice", name="Alice Liddell")
    client = _client(fetch_user=Mock(return_value=user))

    assert lookup_member(" alice ", "secret", client=client) == user
    client.fetch_user.assert_called_once_with("alice", "secret")


def test_lookup_member_missing_user_is_none():
    client = _client(fetch_user=Mock(side_effect=HttpStatusError(404, "Not Found")))
    assert lookup_member("ghost", "secret", client=client) is None


def test_lookup_member_other_errors_propagate():
    client = _client(fetch_user=Mock(side_effect=HttpStatusError(403, "Forbidden")))
    with pytest.raises(HttpStatusError):
        lookup_member("alice", "secret", client=client)


def test_validate_token():
    client = _client(fetch_authenticated_user=Mock(return_value=GitHubUser(login="bob")))
    assert validate_token(" secret ", client=client).login == "bob"
    client.fetch_authenticated_user.assert_called_once_with("secret")

    client = _client(fetch_authenticated_user=Mock(side_effect=HttpStatusError(401, "Unauthorized")))
    with pytest.raises(HttpStatusError) as exc_info:
        validate_token("bad", client=client)
    assert describe_error("token", exc_info.value) == "Token validation error: 401 Unauthorized"
    assert describe_error("user", NetworkError("timed out")) == "Failed to look up user: timed out"
