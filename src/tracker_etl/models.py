"""tracker_etl.models

Canonical ticket shape, issue-type table mapping, and the exception
taxonomy shared by the import and aggregation pipelines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Issue types
# ---------------------------------------------------------------------------

EPIC = "Epic"
STORY = "Story"
BUG = "Bug"
SUBTASK = "Subtask"

ISSUE_TABLES: dict[str, str] = {
    EPIC: "epics",
    STORY: "stories",
    BUG: "bugs",
    SUBTASK: "subtasks",
}

# Tables that carry sprint membership, in the order statistics report them.
SPRINT_TABLES: dict[str, str] = {
    STORY: "stories",
    BUG: "bugs",
    SUBTASK: "subtasks",
}

# Never overwritten on update.
IDENTITY_FIELDS = ("issue_key", "issue_id", "issue_type", "project_key")

REQUIRED_FIELDS = (
    "issue_key", "issue_id", "summary", "status",
    "created", "updated", "project_key",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class UnknownIssueTypeError(ValueError):
    """Raised when an issue type is not one of Epic, Story, Bug, Subtask."""


class InvalidRowError(Exception):
    """Raised by the normalizer for a row that cannot become a ticket.

    Data-quality failure: recoverable per row, never aborts a batch.
    """

    def __init__(self, reason: str, missing_fields: list[str] | None = None) -> None:
        self.reason = reason
        self.missing_fields = list(missing_fields or [])
        detail = f"{reason}: {', '.join(self.missing_fields)}" if self.missing_fields else reason
        super().__init__(detail)


class IssueIdConflictError(Exception):
    """issue_id already belongs to a row with a different issue_key.

    Skipped by commit and counted invalid by preview, with the same reason.
    """

    def __init__(self, issue_id: str) -> None:
        self.issue_id = issue_id
        super().__init__(
            f"issue_id_conflict: issue_id={issue_id!r} already stored under another issue key"
        )


class StorageUnavailable(Exception):
    """Raised when the database cannot be reached mid-operation.

    Fatal for the in-flight batch; the caller may retry the whole batch.
    """


def table_for(issue_type: str) -> str:
    try:
        return ISSUE_TABLES[issue_type]
    except KeyError:
        raise UnknownIssueTypeError(
            f"Unknown issue type {issue_type!r}. Must be one of {sorted(ISSUE_TABLES)}."
        ) from None


# ---------------------------------------------------------------------------
# Canonical record
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PersonRef:
    """Loose reference to a person in the tracker's identity system."""

    display_name: str
    external_id: str | None = None


@dataclass
class CanonicalTicket:
    issue_key: str
    issue_id: str
    issue_type: str
    project_key: str
    summary: str
    status: str
    created: datetime
    updated: datetime
    status_category: str | None = None
    priority: str | None = None
    resolution: str | None = None
    assignee: PersonRef | None = None
    reporter: PersonRef | None = None
    creator: PersonRef | None = None
    resolved: datetime | None = None
    due_date: datetime | None = None
    parent_key: str | None = None
    sprint_names: list[str] = field(default_factory=list)
    story_points: Decimal | None = None
    original_estimate: Decimal | None = None
    remaining_estimate: Decimal | None = None
    time_spent: Decimal | None = None
    team: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Batch + results
# ---------------------------------------------------------------------------

@dataclass
class ImportBatch:
    """Raw rows of one upload plus the declared issue type and context."""

    rows: list[dict[str, Any]]
    issue_type: str
    project_key: str | None = None
    team_name: str | None = None


@dataclass
class RowError:
    row_index: int
    issue_key: str | None
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "issue_key": self.issue_key,
            "reason": self.reason,
        }


@dataclass
class PreviewRecord:
    issue_key: str
    summary: str
    status: str
    assignee: str | None
    story_points: Decimal | None
    sprint_names: list[str]
    is_duplicate: bool
    is_valid: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_key": self.issue_key,
            "summary": self.summary,
            "status": self.status,
            "assignee": self.assignee,
            "story_points": self.story_points,
            "sprint_names": self.sprint_names,
            "is_duplicate": self.is_duplicate,
            "is_valid": self.is_valid,
        }


@dataclass
class PreviewResult:
    total_records: int = 0
    new_count: int = 0
    duplicate_count: int = 0
    invalid_count: int = 0
    sample_records: list[PreviewRecord] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "new_count": self.new_count,
            "duplicate_count": self.duplicate_count,
            "invalid_count": self.invalid_count,
            "sample_records": [r.to_dict() for r in self.sample_records],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class CommitResult:
    total_records: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: list[RowError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "errors": [e.to_dict() for e in self.errors],
        }
