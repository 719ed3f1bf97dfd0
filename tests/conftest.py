from __future__ import annotations

from typing import Any

import pytest

from prfinder.github import PullRequestRecord
from prfinder.store import Store


def pr_payload(number: int, created_at: str, **overrides: Any) -> dict[str, Any]:
    """A pull request object shaped like the GitHub list endpoint returns."""
    data = {
        "number": number,
        "title": f"PR {number}",
        "body": None,
        "user": {"login": "alice"},
        "state": "open",
        "created_at": created_at,
        "updated_at": created_at,
        "merged_at": None,
        "html_url": f"https://github.com/octo/hello/pull/{number}",
    }
    data.update(overrides)
    return data


def pr_record(number: int, created_at: str, **overrides: Any) -> PullRequestRecord:
    fields = {
        "number": number,
        "title": f"PR {number}",
        "body": None,
        "author": "alice",
        "state": "open",
        "created_at": created_at,
        "updated_at": created_at,
        "merged_at": None,
        "html_url": f"https://github.com/octo/hello/pull/{number}",
    }
    fields.update(overrides)
    return PullRequestRecord(**fields)


@pytest.fixture
def store(tmp_path) -> Store:
    return Store(tmp_path / "github_pr_finder.db")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("PRFINDER_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
