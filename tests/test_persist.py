from __future__ import annotations

from unittest.mock import Mock

import pytest

from conftest import pr_record
from prfinder.commands import SyncResult
from prfinder.filtering import ProjectedPullRequest
from prfinder.github import GitHubClient, HttpStatusError
from prfinder.persist import save_sync_result
from prfinder.store import StoreError


def _result(*records) -> SyncResult:
    return SyncResult(prs=[ProjectedPullRequest.from_record(r) for r in records])


def test_save_sync_result_stores_prs_members_and_diffs(store):
    repo = store.add_repository("octo", "hello")
    result = _result(
        pr_record(1, "2024-01-01T00:00:00Z", author="alice", additions=10, deletions=5),
        pr_record(2, "2024-01-02T00:00:00Z", author="bob", body="hello", merged_at="2024-01-03T00:00:00Z"),
        pr_record(3, "2024-01-03T00:00:00Z", author="alice"),
    )
    client = Mock(spec=GitHubClient)
    client.fetch_diff.side_effect = lambda owner, repo_name, number, token: f"diff {number}"
    progress = Mock()

    saved = save_sync_result(store, client, "octo", "hello", result, "secret", progress_callback=progress)

    assert saved == 3
    assert [m.username for m in store.list_members()] == ["alice", "bob"]
    assert progress.call_args_list[-1].args == (3, 3)

    first = store.get_pull_request(repo.id, 1)
    assert first.diff_content == "diff 1"
    assert first.diff_url == "https://github.com/octo/hello/pull/1.diff"
    assert first.body == ""
    assert first.additions == 10

    second = store.get_pull_request(repo.id, 2)
    assert second.body == "hello"
    assert second.merged_at == "2024-01-03T00:00:00Z"


def test_large_prs_are_saved_without_diff(store):
    repo = store.add_repository("octo", "hello")
    result = _result(
        pr_record(1, "2024-01-01T00:00:00Z", additions=1500, deletions=500),
        pr_record(2, "2024-01-01T00:00:00Z", additions=1500, deletions=501),
    )
    client = Mock(spec=GitHubClient)
    client.fetch_diff.return_value = "small diff"

    save_sync_result(store, client, "octo", "hello", result, "secret", max_diff_changes=2000)

    client.fetch_diff.assert_called_once_with("octo", "hello", 1, "secret")
    assert store.get_pull_request(repo.id, 1).diff_content == "small diff"
    assert store.get_pull_request(repo.id, 2).diff_content == ""


def test_diff_failure_does_not_abort_save(store):
    repo = store.add_repository("octo", "hello")
    result = _result(pr_record(1, "2024-01-01T00:00:00Z"))
    client = Mock(spec=GitHubClient)
    client.fetch_diff.side_effect = HttpStatusError(500, "Internal Server Error")

    assert save_sync_result(store, client, "octo", "hello", result, "secret") == 1
    assert store.get_pull_request(repo.id, 1).diff_content == ""


def test_unregistered_repository_is_rejected(store):
    client = Mock(spec=GitHubClient)
    with pytest.raises(StoreError, match="not registered"):
        save_sync_result(store, client, "octo", "hello", _result(), "secret")
    client.fetch_diff.assert_not_called()
