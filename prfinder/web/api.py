"""
FastAPI transport layer for prfinder.

Upstream calls are declared as plain ``def`` handlers so FastAPI runs
them on its thread pool; concurrent requests share no state.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field
from loguru import logger

from .. import __version__
from ..commands import (
    describe_error,
    fetch_github_image,
    fetch_pr_diff,
    greet,
    lookup_member,
    sync_pull_requests,
    validate_token,
)
from ..config import PrfinderConfig
from ..github import GitHubAPIError, GitHubClient, HttpStatusError
from ..persist import save_sync_result
from ..store import GITHUB_TOKEN_KEY, Store, StoreError, get_store, resolve_token


class GreetRequest(BaseModel):
    name: str


class SyncRequest(BaseModel):
    owner: str
    repo: str
    start_date: str
    end_date: str
    token: Optional[str] = None


class SyncSaveRequest(SyncRequest):
    max_diff_changes: Optional[int] = Field(default=None, ge=0)


class ImageRequest(BaseModel):
    url: str
    token: Optional[str] = None


class DiffRequest(BaseModel):
    owner: str
    repo: str
    pr_number: int = Field(ge=0)
    token: Optional[str] = None


class RepositoryRequest(BaseModel):
    owner: str
    name: str
    url: Optional[str] = None


class MemberRequest(BaseModel):
    username: str
    display_name: Optional[str] = None


class SettingRequest(BaseModel):
    value: str


class UserLookupRequest(BaseModel):
    username: str
    token: Optional[str] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


def create_app(config: PrfinderConfig | None = None, store: Store | None = None) -> FastAPI:
    """Build the API. Opening the store applies migrations; failures propagate."""
    config = config or PrfinderConfig.load()
    store = store or get_store(config)
    client = GitHubClient(config.github)

    app = FastAPI(title="prfinder", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _token(explicit: Optional[str]) -> str:
        token = resolve_token(store, explicit)
        if not token:
            raise HTTPException(status_code=400, detail="GitHub token is not configured")
        return token

    def _upstream_error(operation: str, exc: GitHubAPIError) -> HTTPException:
        message = describe_error(operation, exc)
        logger.warning("api.{} failed: {}", operation, message)
        return HTTPException(status_code=502, detail=message)

    @app.post("/api/greet")
    def api_greet(payload: GreetRequest) -> dict[str, str]:
        return {"message": greet(payload.name)}

    @app.post("/api/sync")
    def api_sync(payload: SyncRequest) -> dict[str, Any]:
        try:
            result = sync_pull_requests(
                payload.owner,
                payload.repo,
                _token(payload.token),
                payload.start_date,
                payload.end_date,
                client=client,
            )
        except GitHubAPIError as exc:
            raise _upstream_error("sync", exc) from exc
        return result.to_dict()

    @app.post("/api/sync/save")
    def api_sync_save(payload: SyncSaveRequest) -> dict[str, Any]:
        token = _token(payload.token)
        if store.get_repository(payload.owner, payload.repo) is None:
            raise HTTPException(
                status_code=404,
                detail=f"Repository {payload.owner}/{payload.repo} is not registered",
            )
        try:
            result = sync_pull_requests(
                payload.owner, payload.repo, token, payload.start_date, payload.end_date,
                client=client,
            )
        except GitHubAPIError as exc:
            raise _upstream_error("sync", exc) from exc

        max_changes = payload.max_diff_changes
        if max_changes is None:
            max_changes = config.sync.max_diff_changes
        try:
            saved = save_sync_result(
                store, client, payload.owner, payload.repo, result, token,
                max_diff_changes=max_changes,
            )
        except StoreError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        logger.info("api.sync.save {}/{} saved={}", payload.owner, payload.repo, saved)
        return {**result.to_dict(), "saved": saved}

    @app.post("/api/image")
    def api_image(payload: ImageRequest) -> Response:
        try:
            data = fetch_github_image(payload.url, _token(payload.token), client=client)
        except GitHubAPIError as exc:
            raise _upstream_error("image", exc) from exc
        return Response(content=data, media_type="application/octet-stream")

    @app.post("/api/diff")
    def api_diff(payload: DiffRequest) -> Response:
        try:
            diff = fetch_pr_diff(
                payload.owner, payload.repo, payload.pr_number, _token(payload.token),
                client=client,
            )
        except GitHubAPIError as exc:
            raise _upstream_error("diff", exc) from exc
        return Response(content=diff, media_type="text/plain; charset=utf-8")

    # Local store ----------------------------------------------------------

    @app.get("/api/repositories")
    def list_repositories() -> dict[str, Any]:
        return {"items": [asdict(r) for r in store.list_repositories()]}

    @app.post("/api/repositories")
    def add_repository(payload: RepositoryRequest) -> dict[str, Any]:
        repo = store.add_repository(payload.owner, payload.name, payload.url)
        return {"repository": asdict(repo)}

    @app.delete("/api/repositories/{repository_id}")
    def delete_repository(repository_id: int) -> dict[str, bool]:
        if not store.delete_repository(repository_id):
            raise HTTPException(status_code=404, detail="repository not found")
        return {"deleted": True}

    @app.get("/api/members")
    def list_members() -> dict[str, Any]:
        return {"items": [asdict(m) for m in store.list_members()]}

    @app.post("/api/members")
    def add_member(payload: MemberRequest) -> dict[str, Any]:
        try:
            member = store.add_member(payload.username, payload.display_name)
        except StoreError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"member": asdict(member)}

    @app.post("/api/members/validate")
    def validate_member(payload: UserLookupRequest) -> dict[str, Any]:
        try:
            user = lookup_member(payload.username, _token(payload.token), client=client)
        except GitHubAPIError as exc:
            raise _upstream_error("user", exc) from exc
        if user is None:
            return {"valid": False, "message": f"GitHub user does not exist: {payload.username}"}
        return {"valid": True, "user": asdict(user), "message": f"Valid GitHub user: {user.display_name}"}

    @app.post("/api/token/validate")
    def api_validate_token(payload: TokenRequest) -> dict[str, Any]:
        try:
            user = validate_token(_token(payload.token), client=client)
        except HttpStatusError as exc:
            if exc.status_code == 401:
                return {"valid": False, "message": "Invalid token"}
            raise _upstream_error("token", exc) from exc
        except GitHubAPIError as exc:
            raise _upstream_error("token", exc) from exc
        return {"valid": True, "login": user.login, "message": f"Authenticated as {user.display_name}"}

    @app.delete("/api/members/{member_id}")
    def delete_member(member_id: int) -> dict[str, bool]:
        if not store.delete_member(member_id):
            raise HTTPException(status_code=404, detail="member not found")
        return {"deleted": True}

    @app.get("/api/settings/{key}")
    def get_setting(key: str) -> dict[str, Any]:
        value = store.get_setting(key)
        if key == GITHUB_TOKEN_KEY and value:
            # Never echo the token back
            return {"key": key, "configured": True}
        return {"key": key, "value": value}

    @app.put("/api/settings/{key}")
    def put_setting(key: str, payload: SettingRequest) -> dict[str, str]:
        store.set_setting(key, payload.value.strip())
        return {"key": key}

    @app.get("/api/pull-requests")
    def list_pull_requests(
        author: Optional[str] = Query(default=None),
        month: Optional[str] = Query(default=None, description="YYYY-MM"),
        repository_id: Optional[int] = Query(default=None),
        include_diff: bool = Query(default=False),
    ) -> dict[str, Any]:
        try:
            prs = store.list_pull_requests(author=author, month=month, repository_id=repository_id)
        except StoreError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        items = []
        for pr in prs:
            item = asdict(pr)
            if not include_diff:
                item.pop("diff_content", None)
            items.append(item)
        return {"items": items, "count": len(items)}

    return app
