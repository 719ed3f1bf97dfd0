"""
Saving a sync result into the local store.

This is an explicit step the caller opts into; sync_pull_requests never
writes. It registers authors as members, stores each pull request, and
attaches its diff when the change is small enough.
"""

from __future__ import annotations

import logging
from typing import Callable

from .commands import SyncResult
from .github import GitHubAPIError, GitHubClient
from .store import Store, StoreError


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def save_sync_result(
    store: Store,
    client: GitHubClient,
    owner: str,
    repo: str,
    result: SyncResult,
    token: str,
    max_diff_changes: int = 2000,
    progress_callback: ProgressCallback | None = None,
) -> int:
    """
    Persist the pull requests of a sync result.

    Args:
        store: Target store
        client: Client used to fetch diffs
        owner, repo: Repository the result came from; must be registered
        result: Output of sync_pull_requests
        token: GitHub token for the diff requests
        max_diff_changes: PRs with more added+deleted lines are stored
            without a diff
        progress_callback: Called with (saved, total) after each PR

    Returns:
        Number of pull requests saved

    Raises:
        StoreError: if the repository is not registered
    """
    repository = store.get_repository(owner, repo)
    if repository is None:
        raise StoreError(
            f"Repository {owner}/{repo} is not registered. Add it first with `prfinder repos add`."
        )

    authors = list(dict.fromkeys(pr.author for pr in result.prs))
    added = store.ensure_members(authors)
    if added:
        logger.info("Added %d new members", added)

    saved = 0
    for pr in result.prs:
        diff_content = ""
        if pr.total_changes <= max_diff_changes:
            try:
                diff_content = client.fetch_diff(owner, repo, pr.number, token)
            except GitHubAPIError as e:
                logger.error("PR #%d: failed to fetch diff: %s", pr.number, e)
        else:
            logger.info(
                "PR #%d: %d changed lines exceed %d, skipping diff",
                pr.number, pr.total_changes, max_diff_changes,
            )

        store.upsert_pull_request(
            repository_id=repository.id,
            pr_number=pr.number,
            title=pr.title,
            body=pr.body or "",
            author=pr.author,
            state=pr.state,
            created_at=pr.created_at,
            updated_at=pr.updated_at,
            merged_at=pr.merged_at,
            html_url=pr.html_url,
            diff_url=pr.diff_url,
            diff_content=diff_content,
            changed_files=pr.changed_files,
            additions=pr.additions,
            deletions=pr.deletions,
        )
        saved += 1
        if progress_callback:
            progress_callback(saved, result.count)

    return saved
