from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import pr_record
from prfinder.config import PrfinderConfig
from prfinder.github import GitHubClient, GitHubUser, HttpStatusError, NetworkError
from prfinder.store import GITHUB_TOKEN_KEY, reset_store
from prfinder.web.api import create_app


@pytest.fixture
def client(tmp_path, store):
    app = create_app(PrfinderConfig(data_dir=tmp_path), store=store)
    return TestClient(app)


SYNC_BODY = {
    "owner": "octo",
    "repo": "hello",
    "start_date": "2024-01-01T00:00:00Z",
    "end_date": "2024-03-01T00:00:00Z",
    "token": "secret",
}


def test_greet(client):
    response = client.post("/api/greet", json={"name": "Ada"})
    assert response.status_code == 200
    assert response.json() == {"message": "Hello, Ada! You've been greeted from Python!"}


def test_sync_returns_prs_and_count(client):
    records = [
        pr_record(1, "2024-01-01T00:00:00Z"),
        pr_record(2, "2024-06-15T10:00:00Z"),
    ]
    with patch.object(GitHubClient, "fetch_pull_requests", return_value=records):
        response = client.post("/api/sync", json=SYNC_BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["prs"][0]["number"] == 1
    assert data["prs"][0]["diff_url"].endswith("/pull/1.diff")


def test_sync_upstream_error_is_flattened(client):
    with patch.object(GitHubClient, "fetch_pull_requests", side_effect=HttpStatusError(401, "Unauthorized")):
        response = client.post("/api/sync", json=SYNC_BODY)

    assert response.status_code == 502
    assert response.json() == {"detail": "API response error: 401 Unauthorized"}


def test_sync_without_token(client):
    body = {k: v for k, v in SYNC_BODY.items() if k != "token"}
    response = client.post("/api/sync", json=body)
    assert response.status_code == 400


def test_sync_uses_stored_token(client, store):
    store.set_setting(GITHUB_TOKEN_KEY, "stored")
    body = {k: v for k, v in SYNC_BODY.items() if k != "token"}
    with patch.object(GitHubClient, "fetch_pull_requests", return_value=[]) as mock_fetch:
        response = client.post("/api/sync", json=body)

    assert response.status_code == 200
    assert response.json() == {"prs": [], "count": 0}
    mock_fetch.assert_called_once_with("octo", "hello", "stored")


def test_sync_save_persists(client, store):
    repo = store.add_repository("octo", "hello")
    records = [pr_record(1, "2024-01-10T00:00:00Z", additions=1, deletions=1)]
    with patch.object(GitHubClient, "fetch_pull_requests", return_value=records), \
            patch.object(GitHubClient, "fetch_diff", return_value="diff"):
        response = client.post("/api/sync/save", json=SYNC_BODY)

    assert response.status_code == 200
    assert response.json()["saved"] == 1
    assert store.get_pull_request(repo.id, 1).diff_content == "diff"

    listed = client.get("/api/pull-requests", params={"author": "alice", "month": "2024-01"})
    assert listed.json()["count"] == 1
    assert "diff_content" not in listed.json()["items"][0]


def test_sync_save_unregistered_repository(client):
    response = client.post("/api/sync/save", json=SYNC_BODY)
    assert response.status_code == 404


def test_image_returns_bytes(client):
    with patch.object(GitHubClient, "fetch_image_bytes", return_value=b"\x89PNG"):
        response = client.post("/api/image", json={"url": "https://avatars.example.com/u/1", "token": "secret"})

    assert response.status_code == 200
    assert response.content == b"\x89PNG"


def test_image_network_error(client):
    with patch.object(GitHubClient, "fetch_image_bytes", side_effect=NetworkError("dns failure")):
        response = client.post("/api/image", json={"url": "https://avatars.example.com/u/1", "token": "secret"})

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to fetch image: dns failure"


def test_diff_returns_text(client):
    with patch.object(GitHubClient, "fetch_diff", return_value="diff --git a b\n") as mock_diff:
        response = client.post(
            "/api/diff", json={"owner": "octo", "repo": "hello", "pr_number": 4, "token": "secret"}
        )

    assert response.status_code == 200
    assert response.text == "diff --git a b\n"
    mock_diff.assert_called_once_with("octo", "hello", 4, "secret")


def test_repositories_members_settings(client):
    created = client.post("/api/repositories", json={"owner": "octo", "name": "hello"})
    repo_id = created.json()["repository"]["id"]
    assert client.get("/api/repositories").json()["items"][0]["owner"] == "octo"
    assert client.delete(f"/api/repositories/{repo_id}").status_code == 200
    assert client.delete(f"/api/repositories/{repo_id}").status_code == 404

    assert client.post("/api/members", json={"username": "alice"}).status_code == 200
    assert client.post("/api/members", json={"username": "alice"}).status_code == 409
    assert [m["username"] for m in client.get("/api/members").json()["items"]] == ["alice"]

    client.put(f"/api/settings/{GITHUB_TOKEN_KEY}", json={"value": " ghp_x "})
    assert client.get(f"/api/settings/{GITHUB_TOKEN_KEY}").json() == {"key": GITHUB_TOKEN_KEY, "configured": True}
    client.put("/api/settings/theme", json={"value": "dark"})
    assert client.get("/api/settings/theme").json() == {"key": "theme", "value": "dark"}


def test_pull_requests_bad_month(client):
    response = client.get("/api/pull-requests", params={"month": "2024-13"})
    assert response.status_code == 400


def test_validate_member(client):
    user = GitHubUser(login="alice", name="Alice Liddell")
    with patch.object(GitHubClient, "fetch_user", return_value=user):
        response = client.post("/api/members/validate", json={"username": "alice", "token": "secret"})

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["user"]["name"] == "Alice Liddell"

    with patch.object(GitHubClient, "fetch_user", side_effect=HttpStatusError(404, "Not Found")):
        response = client.post("/api/members/validate", json={"username": "ghost", "token": "secret"})
    assert response.status_code == 200
    assert response.json()["valid"] is False


def test_validate_token(client):
    with patch.object(GitHubClient, "fetch_authenticated_user", return_value=GitHubUser(login="bob")):
        response = client.post("/api/token/validate", json={"token": "secret"})
    assert response.json() == {"valid": True, "login": "bob", "message": "Authenticated as bob"}

    with patch.object(GitHubClient, "fetch_authenticated_user", side_effect=HttpStatusError(401, "Unauthorized")):
        response = client.post("/api/token/validate", json={"token": "bad"})
    assert response.status_code == 200
    assert response.json()["valid"] is False

    with patch.object(GitHubClient, "fetch_authenticated_user", side_effect=NetworkError("dns failure")):
        response = client.post("/api/token/validate", json={"token": "secret"})
    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to validate token: dns failure"


def test_apps_with_different_configs_use_their_own_database(tmp_path):
    reset_store()
    try:
        first = TestClient(create_app(PrfinderConfig(data_dir=tmp_path / "a")))
        second = TestClient(create_app(PrfinderConfig(data_dir=tmp_path / "b")))
        first.post("/api/repositories", json={"owner": "octo", "name": "hello"})

        assert len(first.get("/api/repositories").json()["items"]) == 1
        assert second.get("/api/repositories").json()["items"] == []
    finally:
        reset_store()
