"""
Versioned SQLite schema for prfinder.

Schema:
- repositories: Registered GitHub repositories (unique owner + name)
- members: Known PR authors
- pull_requests: Stored PR metadata and diffs
- settings: Key/value settings (GitHub token, ...)

MIGRATIONS is append-only. The runner records applied versions by number
alone, so the SQL of a shipped migration must never be edited; add a new
version instead.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Sequence


logger = logging.getLogger(__name__)

BOOKKEEPING_TABLE = "_migrations"


class MigrationKind(str, Enum):
    UP = "up"


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    sql: str
    kind: MigrationKind = MigrationKind.UP


class MigrationError(Exception):
    """A migration could not be applied. Fatal at startup."""
    def __init__(self, message: str, version: int | None = None):
        super().__init__(message)
        self.version = version


MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="create_initial_tables",
        sql="""
        CREATE TABLE IF NOT EXISTS repositories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            owner TEXT NOT NULL,
            url TEXT NOT NULL,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(owner, name)
        );

        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            display_name TEXT,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS pull_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            pr_number INTEGER NOT NULL,
            title TEXT NOT NULL,
            body TEXT,
            author TEXT NOT NULL,
            repository_id INTEGER NOT NULL,
            state TEXT NOT NULL,
            created_at DATETIME NOT NULL,
            updated_at DATETIME NOT NULL,
            merged_at DATETIME,
            html_url TEXT NOT NULL,
            diff_url TEXT NOT NULL,
            FOREIGN KEY (repository_id) REFERENCES repositories (id),
            UNIQUE(repository_id, pr_number)
        );

        CREATE TABLE IF NOT EXISTS settings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            key TEXT NOT NULL UNIQUE,
            value TEXT NOT NULL,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        );
        """,
    ),
    Migration(
        version=2,
        description="add_diff_content_to_pull_requests",
        sql="ALTER TABLE pull_requests ADD COLUMN diff_content TEXT;",
    ),
    Migration(
        version=3,
        description="add_change_stats_to_pull_requests",
        sql="""
        ALTER TABLE pull_requests ADD COLUMN changed_files INTEGER;
        ALTER TABLE pull_requests ADD COLUMN additions INTEGER;
        ALTER TABLE pull_requests ADD COLUMN deletions INTEGER;
        """,
    ),
]


class MigrationRunner:
    """Applies pending migrations once each, in increasing version order."""

    def __init__(self, migrations: Sequence[Migration] = MIGRATIONS):
        self.migrations = list(migrations)
        self._validate()

    def _validate(self) -> None:
        previous = 0
        for migration in self.migrations:
            if migration.version <= previous:
                raise MigrationError(
                    f"Migration versions must strictly increase: "
                    f"{migration.version} follows {previous}",
                    migration.version,
                )
            previous = migration.version

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def _ensure_bookkeeping(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {BOOKKEEPING_TABLE} (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """
        )

    def applied_versions(self, conn: sqlite3.Connection) -> set[int]:
        self._ensure_bookkeeping(conn)
        rows = conn.execute(f"SELECT version FROM {BOOKKEEPING_TABLE}").fetchall()
        return {int(row[0]) for row in rows}

    def pending(self, conn: sqlite3.Connection) -> list[Migration]:
        applied = self.applied_versions(conn)
        return [m for m in self.migrations if m.version not in applied]

    def _apply(self, conn: sqlite3.Connection, migration: Migration) -> None:
        try:
            # executescript does not open a transaction on its own
            conn.executescript(f"BEGIN;\n{migration.sql}")
            conn.execute(
                f"INSERT INTO {BOOKKEEPING_TABLE} (version, description, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.description,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise MigrationError(
                f"Migration {migration.version} ({migration.description}) failed: {e}",
                migration.version,
            ) from e

    def run(self, conn: sqlite3.Connection) -> list[int]:
        """
        Bring the database up to date.

        Returns:
            Versions applied by this call; empty if already current.

        Raises:
            MigrationError: if any migration fails. Earlier migrations
            of the same call stay applied.
        """
        previous_isolation = conn.isolation_level
        if conn.in_transaction:
            conn.commit()
        conn.isolation_level = None
        try:
            applied = self.applied_versions(conn)
            unknown = sorted(v for v in applied if v > self.latest_version)
            if unknown:
                logger.warning(
                    "Database has migrations newer than this build: %s", unknown
                )

            done = []
            for migration in self.migrations:
                if migration.version in applied:
                    continue
                logger.info(
                    "Applying migration %d: %s", migration.version, migration.description
                )
                self._apply(conn, migration)
                done.append(migration.version)
            return done
        finally:
            conn.isolation_level = previous_isolation
