"""
SQLite storage for prfinder.

The schema itself lives in migrations.py; opening a Store applies any
pending migration before the first query.
"""

from __future__ import annotations

import calendar
import logging
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generator

from .config import PrfinderConfig
from .migrations import MigrationRunner


logger = logging.getLogger(__name__)

GITHUB_TOKEN_KEY = "github_access_token"


class StoreError(Exception):
    """Invalid store operation."""


@dataclass
class Repository:
    """Registered repository."""
    id: int | None
    name: str
    owner: str
    url: str
    created_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class Member:
    """Known PR author."""
    id: int | None
    username: str
    display_name: str | None = None
    created_at: str | None = None


@dataclass
class StoredPullRequest:
    """Stored pull request row."""
    id: int | None
    pr_number: int
    title: str
    body: str | None
    author: str
    repository_id: int
    state: str
    created_at: str
    updated_at: str
    merged_at: str | None
    html_url: str
    diff_url: str
    diff_content: str | None = None
    changed_files: int | None = None
    additions: int | None = None
    deletions: int | None = None


def parse_full_name(full_name: str) -> tuple[str, str]:
    """Split "owner/repo" into its parts."""
    parts = full_name.strip().strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise StoreError(f"Expected owner/repo, got: {full_name!r}")
    return parts[0], parts[1]


def month_bounds(month: str) -> tuple[str, str]:
    """First and last day (YYYY-MM-DD) of a YYYY-MM month."""
    match = re.fullmatch(r"(\d{4})-(\d{2})", month)
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise StoreError(f"Expected YYYY-MM, got: {month!r}")
    year, mon = int(match.group(1)), int(match.group(2))
    last_day = calendar.monthrange(year, mon)[1]
    return f"{year:04d}-{mon:02d}-01", f"{year:04d}-{mon:02d}-{last_day:02d}"


class Store:
    """SQLite storage manager for prfinder."""

    def __init__(self, db_path: Path, runner: MigrationRunner | None = None):
        self.db_path = Path(db_path)
        self.runner = runner or MigrationRunner()
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Apply pending migrations. MigrationError propagates."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            applied = self.runner.run(conn)
        if applied:
            logger.info("Database %s migrated to version %d", self.db_path, applied[-1])

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def schema_version(self) -> int:
        with self._connect() as conn:
            applied = self.runner.applied_versions(conn)
            return max(applied) if applied else 0

    # =========================================================================
    # Repositories
    # =========================================================================

    def add_repository(self, owner: str, name: str, url: str | None = None) -> Repository:
        """Register a repository. Re-adding an existing one keeps it as is."""
        url = url or f"https://github.com/{owner}/{name}"
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO repositories (name, owner, url) VALUES (?, ?, ?)",
                (name, owner, url),
            )
            row = conn.execute(
                "SELECT * FROM repositories WHERE owner = ? AND name = ?",
                (owner, name),
            ).fetchone()
            return Repository(**dict(row))

    def get_repository(self, owner: str, name: str) -> Repository | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM repositories WHERE owner = ? AND name = ?",
                (owner, name),
            ).fetchone()
            return Repository(**dict(row)) if row else None

    def list_repositories(self) -> list[Repository]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM repositories ORDER BY name").fetchall()
            return [Repository(**dict(row)) for row in rows]

    def delete_repository(self, repository_id: int) -> bool:
        """Delete a repository and its stored pull requests."""
        with self._connect() as conn:
            conn.execute("DELETE FROM pull_requests WHERE repository_id = ?", (repository_id,))
            cursor = conn.execute("DELETE FROM repositories WHERE id = ?", (repository_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # Members
    # =========================================================================

    def add_member(self, username: str, display_name: str | None = None) -> Member:
        with self._connect() as conn:
            try:
                conn.execute(
                    "INSERT INTO members (username, display_name) VALUES (?, ?)",
                    (username, display_name or None),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Member already exists: {username}") from e
            row = conn.execute("SELECT * FROM members WHERE username = ?", (username,)).fetchone()
            return Member(**dict(row))

    def ensure_members(self, usernames: list[str]) -> int:
        """Insert unknown authors (display name = username). Returns rows added."""
        added = 0
        with self._connect() as conn:
            for username in usernames:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO members (username, display_name) VALUES (?, ?)",
                    (username, username),
                )
                added += cursor.rowcount
        return added

    def list_members(self) -> list[Member]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM members ORDER BY username").fetchall()
            return [Member(**dict(row)) for row in rows]

    def delete_member(self, member_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # Settings
    # =========================================================================

    def get_setting(self, key: str) -> str | None:
        """Get a setting; empty values read as unset."""
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            if row and row["value"]:
                return row["value"]
            return None

    def set_setting(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    # =========================================================================
    # Pull Requests
    # =========================================================================

    def upsert_pull_request(
        self,
        repository_id: int,
        pr_number: int,
        title: str,
        author: str,
        state: str,
        created_at: str,
        updated_at: str,
        html_url: str,
        diff_url: str,
        body: str | None = None,
        merged_at: str | None = None,
        diff_content: str | None = None,
        changed_files: int | None = None,
        additions: int | None = None,
        deletions: int | None = None,
    ) -> StoredPullRequest:
        """Insert or update a pull request."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO pull_requests
                    (pr_number, title, body, author, repository_id, state, created_at,
                     updated_at, merged_at, html_url, diff_url, diff_content,
                     changed_files, additions, deletions)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(repository_id, pr_number) DO UPDATE SET
                    title = excluded.title,
                    body = excluded.body,
                    author = excluded.author,
                    state = excluded.state,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    merged_at = excluded.merged_at,
                    html_url = excluded.html_url,
                    diff_url = excluded.diff_url,
                    diff_content = excluded.diff_content,
                    changed_files = excluded.changed_files,
                    additions = excluded.additions,
                    deletions = excluded.deletions
                """,
                (pr_number, title, body, author, repository_id, state, created_at,
                 updated_at, merged_at, html_url, diff_url, diff_content,
                 changed_files, additions, deletions),
            )
            row = conn.execute(
                "SELECT * FROM pull_requests WHERE repository_id = ? AND pr_number = ?",
                (repository_id, pr_number),
            ).fetchone()
            return StoredPullRequest(**dict(row))

    def get_pull_request(self, repository_id: int, pr_number: int) -> StoredPullRequest | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM pull_requests WHERE repository_id = ? AND pr_number = ?",
                (repository_id, pr_number),
            ).fetchone()
            return StoredPullRequest(**dict(row)) if row else None

    def list_pull_requests(
        self,
        author: str | None = None,
        month: str | None = None,
        repository_id: int | None = None,
        limit: int | None = None,
    ) -> list[StoredPullRequest]:
        """List stored PRs, newest first, optionally for one author and month."""
        query = "SELECT * FROM pull_requests WHERE 1=1"
        params: list[Any] = []

        if author is not None:
            query += " AND author = ?"
            params.append(author)
        if month is not None:
            first, last = month_bounds(month)
            query += " AND date(created_at) >= ? AND date(created_at) <= ?"
            params.extend([first, last])
        if repository_id is not None:
            query += " AND repository_id = ?"
            params.append(repository_id)

        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [StoredPullRequest(**dict(row)) for row in rows]


_store: Store | None = None
_store_lock = threading.Lock()


def get_store(config: PrfinderConfig | None = None) -> Store:
    """
    Process-wide store, opened and migrated on first use.

    Without a config the current store is returned as is. A config that
    points at a different database replaces it.
    """
    global _store
    with _store_lock:
        if _store is None or (config is not None and _store.db_path != config.db_path):
            config = config or PrfinderConfig.load()
            _store = Store(config.db_path)
        return _store


def reset_store() -> None:
    """Forget the process-wide store (tests, config changes)."""
    global _store
    with _store_lock:
        _store = None


def resolve_token(store: Store | None, explicit: str | None = None) -> str | None:
    """GitHub token from the argument, $GITHUB_TOKEN, or the stored setting."""
    if explicit:
        return explicit
    env_token = os.environ.get("GITHUB_TOKEN")
    if env_token:
        return env_token
    if store is not None:
        return store.get_setting(GITHUB_TOKEN_KEY)
    return None
