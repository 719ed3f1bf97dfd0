"""
Date-range filtering and projection of fetched pull requests.

Bounds are compared to ``created_at`` as plain strings. That is only
correct when the bounds use the same ISO-8601 shape the API returns
(``YYYY-MM-DDTHH:MM:SSZ``); a bare date such as ``2024-03-01`` sorts
before every timestamp on that day. Use ``day_bounds`` to build bounds
from calendar days.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable, Protocol

from .github import PullRequestRecord


class RangeComparator(Protocol):
    def contains(self, value: str, start: str, end: str) -> bool:
        ...


class LexicalRange:
    """Inclusive range test by string ordering."""

    def contains(self, value: str, start: str, end: str) -> bool:
        return start <= value <= end


LEXICAL = LexicalRange()


@dataclass(frozen=True)
class ProjectedPullRequest:
    """A fetched pull request plus its derived diff URL."""
    number: int
    title: str
    body: str | None
    author: str
    state: str
    created_at: str
    updated_at: str
    merged_at: str | None
    html_url: str
    diff_url: str
    changed_files: int | None = None
    additions: int | None = None
    deletions: int | None = None

    @classmethod
    def from_record(cls, record: PullRequestRecord) -> "ProjectedPullRequest":
        return cls(
            number=record.number,
            title=record.title,
            body=record.body,
            author=record.author,
            state=record.state,
            created_at=record.created_at,
            updated_at=record.updated_at,
            merged_at=record.merged_at,
            html_url=record.html_url,
            diff_url=f"{record.html_url}.diff",
            changed_files=record.changed_files,
            additions=record.additions,
            deletions=record.deletions,
        )

    @property
    def total_changes(self) -> int:
        return (self.additions or 0) + (self.deletions or 0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def filter_and_project(
    records: Iterable[PullRequestRecord],
    start_date: str,
    end_date: str,
    comparator: RangeComparator = LEXICAL,
) -> list[ProjectedPullRequest]:
    """
    Keep records created within [start_date, end_date] and project them.

    Input order is preserved. No match gives an empty list.
    """
    return [
        ProjectedPullRequest.from_record(record)
        for record in records
        if comparator.contains(record.created_at, start_date, end_date)
    ]


def day_bounds(start_day: str, end_day: str) -> tuple[str, str]:
    """Turn YYYY-MM-DD days into inclusive timestamp bounds covering both days."""
    return f"{start_day}T00:00:00Z", f"{end_day}T23:59:59Z"
