"""tracker_etl.sprint_stats

Cross-table sprint statistics over stories, bugs, and subtasks.

Epics carry no sprint membership and are not scanned. A ticket belongs to a
sprint when the sprint name is an element of its sprint_names array (exact,
case-sensitive match). The three tables are read with one UNION ALL
statement so the result reflects a single snapshot and never a half-applied
commit.

Breakdowns omit tickets whose grouping value is null or empty; there is no
synthetic "Unassigned" / "No Team" bucket.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

import psycopg
from psycopg.rows import dict_row

from tracker_etl.models import BUG, SPRINT_TABLES, STORY, SUBTASK, StorageUnavailable

# Matches the NUMERIC(10, 2) story_points column.
STORY_POINT_PRECISION = Decimal("0.01")

TICKET_FIELDS = ("issue_key", "summary", "status", "assignee", "story_points", "priority")
BUG_FIELDS = TICKET_FIELDS + ("resolution",)

_TYPE_LABELS = {STORY: "stories", BUG: "bugs", SUBTASK: "subtasks"}


@dataclass
class SprintStatistics:
    sprint_name: str
    total_tickets: int = 0
    type_breakdown: dict[str, int] = field(
        default_factory=lambda: {"stories": 0, "bugs": 0, "subtasks": 0}
    )
    status_breakdown: dict[str, int] = field(default_factory=dict)
    priority_breakdown: dict[str, int] = field(default_factory=dict)
    assignee_breakdown: dict[str, int] = field(default_factory=dict)
    team_breakdown: dict[str, int] = field(default_factory=dict)
    resolution_breakdown: dict[str, int] = field(default_factory=dict)
    total_story_points: Decimal = Decimal("0.00")
    earliest_created: datetime | None = None
    latest_created: datetime | None = None
    earliest_resolved: datetime | None = None
    latest_resolved: datetime | None = None
    tickets: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: {"stories": [], "bugs": [], "subtasks": []}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sprint_name": self.sprint_name,
            "total_tickets": self.total_tickets,
            "type_breakdown": dict(self.type_breakdown),
            "status_breakdown": dict(self.status_breakdown),
            "priority_breakdown": dict(self.priority_breakdown),
            "assignee_breakdown": dict(self.assignee_breakdown),
            "team_breakdown": dict(self.team_breakdown),
            "resolution_breakdown": dict(self.resolution_breakdown),
            "total_story_points": self.total_story_points,
            "dates": {
                "earliest_created": self.earliest_created,
                "latest_created": self.latest_created,
                "earliest_resolved": self.earliest_resolved,
                "latest_resolved": self.latest_resolved,
            },
            "tickets": {k: list(v) for k, v in self.tickets.items()},
        }


def _sprint_query() -> str:
    selects = [
        f"""
        SELECT '{issue_type}' AS issue_type, issue_key, summary, status,
               priority, assignee, team, resolution, story_points,
               created, resolved
        FROM {table}
        WHERE sprint_names @> ARRAY[%(sprint_name)s]::text[]
        """
        for issue_type, table in SPRINT_TABLES.items()
    ]
    return "\nUNION ALL\n".join(selects) + "\nORDER BY issue_type, issue_key"


def breakdown(values: Iterable[str | None]) -> dict[str, int]:
    """Count occurrences of each non-empty value."""
    return dict(Counter(v for v in values if v is not None and v.strip()))


def _extrema(values: Iterable[datetime | None]) -> tuple[datetime | None, datetime | None]:
    present = [v for v in values if v is not None]
    if not present:
        return None, None
    return min(present), max(present)


def build_statistics(sprint_name: str, rows: list[dict[str, Any]]) -> SprintStatistics:
    """Aggregate matched ticket rows (each tagged with issue_type)."""
    stats = SprintStatistics(sprint_name=sprint_name, total_tickets=len(rows))

    for row in rows:
        label = _TYPE_LABELS[row["issue_type"]]
        stats.type_breakdown[label] += 1
        fields = BUG_FIELDS if row["issue_type"] == BUG else TICKET_FIELDS
        stats.tickets[label].append({f: row[f] for f in fields})

    stats.status_breakdown = breakdown(r["status"] for r in rows)
    stats.priority_breakdown = breakdown(r["priority"] for r in rows)
    stats.assignee_breakdown = breakdown(r["assignee"] for r in rows)
    stats.team_breakdown = breakdown(r["team"] for r in rows)
    stats.resolution_breakdown = breakdown(
        r["resolution"] for r in rows if r["issue_type"] == BUG
    )

    total = sum((r["story_points"] or Decimal(0) for r in rows), Decimal(0))
    stats.total_story_points = Decimal(total).quantize(STORY_POINT_PRECISION)

    stats.earliest_created, stats.latest_created = _extrema(r["created"] for r in rows)
    stats.earliest_resolved, stats.latest_resolved = _extrema(r["resolved"] for r in rows)
    return stats


def aggregate_sprint(conn: psycopg.Connection, sprint_name: str) -> SprintStatistics:
    """Compute statistics for every story, bug, and subtask in sprint_name.

    A sprint matching no tickets yields empty breakdowns, zero story points,
    and null date extrema.
    """
    try:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(_sprint_query(), {"sprint_name": sprint_name})
            rows = cur.fetchall()
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        raise StorageUnavailable(f"sprint statistics query failed: {exc}") from exc
    return build_statistics(sprint_name, rows)


def list_sprints(conn: psycopg.Connection) -> list[str]:
    """Distinct sprint names referenced by any story, bug, or subtask."""
    unions = "\nUNION\n".join(
        f"SELECT unnest(sprint_names) AS sprint_name FROM {table}"
        for table in SPRINT_TABLES.values()
    )
    try:
        rows = conn.execute(
            f"SELECT sprint_name FROM ({unions}) s WHERE btrim(sprint_name) <> ''"
        ).fetchall()
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        raise StorageUnavailable(f"sprint list query failed: {exc}") from exc
    return sorted({r[0].strip() for r in rows})
