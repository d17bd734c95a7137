"""tracker_etl.storage

Row-level CRUD over the four issue-type tables, plus the per-type ticket listing.

Each helper is a single statement and is atomic on its own. The caller
manages the transaction (and any savepoint around a call). insert_ticket
lets psycopg.errors.UniqueViolation propagate so the commit engine can tell
a natural-key collision apart from other failures.
"""

from __future__ import annotations

from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from tracker_etl.models import IDENTITY_FIELDS, CanonicalTicket, table_for

# Column order for INSERT; the UPDATE list is the same minus identity fields.
TICKET_COLUMNS = (
    "issue_key", "issue_id", "issue_type", "project_key",
    "summary", "status", "status_category", "priority", "resolution",
    "assignee", "assignee_external_id",
    "reporter", "reporter_external_id",
    "creator", "creator_external_id",
    "created", "updated", "resolved", "due_date",
    "parent_key", "sprint_names",
    "story_points", "original_estimate", "remaining_estimate", "time_spent",
    "team", "metadata",
)

MUTABLE_COLUMNS = tuple(c for c in TICKET_COLUMNS if c not in IDENTITY_FIELDS)

_CASTS = {"sprint_names": "::text[]"}

DEFAULT_TICKET_LIMIT = 1000


def ticket_params(ticket: CanonicalTicket) -> dict[str, Any]:
    """Flatten a CanonicalTicket into column -> value query parameters."""
    def name(p):
        return p.display_name if p else None

    def ext(p):
        return p.external_id if p else None

    return {
        "issue_key": ticket.issue_key,
        "issue_id": ticket.issue_id,
        "issue_type": ticket.issue_type,
        "project_key": ticket.project_key,
        "summary": ticket.summary,
        "status": ticket.status,
        "status_category": ticket.status_category,
        "priority": ticket.priority,
        "resolution": ticket.resolution,
        "assignee": name(ticket.assignee),
        "assignee_external_id": ext(ticket.assignee),
        "reporter": name(ticket.reporter),
        "reporter_external_id": ext(ticket.reporter),
        "creator": name(ticket.creator),
        "creator_external_id": ext(ticket.creator),
        "created": ticket.created,
        "updated": ticket.updated,
        "resolved": ticket.resolved,
        "due_date": ticket.due_date,
        "parent_key": ticket.parent_key,
        "sprint_names": list(ticket.sprint_names),
        "story_points": ticket.story_points,
        "original_estimate": ticket.original_estimate,
        "remaining_estimate": ticket.remaining_estimate,
        "time_spent": ticket.time_spent,
        "team": ticket.team,
        "metadata": Jsonb(ticket.metadata),
    }


def find_by_key(
    conn: psycopg.Connection,
    issue_type: str,
    issue_key: str,
) -> dict[str, Any] | None:
    table = table_for(issue_type)
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(f"SELECT * FROM {table} WHERE issue_key = %s", (issue_key,))
        return cur.fetchone()


def find_by_issue_id(
    conn: psycopg.Connection,
    issue_type: str,
    issue_id: str,
) -> dict[str, Any] | None:
    table = table_for(issue_type)
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(f"SELECT * FROM {table} WHERE issue_id = %s", (issue_id,))
        return cur.fetchone()


def insert_ticket(conn: psycopg.Connection, ticket: CanonicalTicket) -> str:
    """INSERT a new ticket and return its surrogate id.

    Raises psycopg.errors.UniqueViolation when issue_key or issue_id already
    exists (possibly inserted by a concurrent commit).
    """
    table = table_for(ticket.issue_type)
    cols = ", ".join(TICKET_COLUMNS)
    placeholders = ", ".join(f"%({c})s{_CASTS.get(c, '')}" for c in TICKET_COLUMNS)
    row = conn.execute(
        f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) RETURNING id",
        ticket_params(ticket),
    ).fetchone()
    return str(row[0])


def update_ticket(conn: psycopg.Connection, ticket: CanonicalTicket) -> str | None:
    """Overwrite every mutable column of the row with ticket.issue_key.

    Identity columns (issue_key, issue_id, issue_type, project_key) are
    never written. Returns the row id, or None when no row has that key.
    """
    table = table_for(ticket.issue_type)
    assignments = ", ".join(
        f"{c} = %({c})s{_CASTS.get(c, '')}" for c in MUTABLE_COLUMNS
    )
    row = conn.execute(
        f"""
        UPDATE {table}
        SET {assignments}, last_imported_at = now()
        WHERE issue_key = %(issue_key)s
        RETURNING id
        """,
        ticket_params(ticket),
    ).fetchone()
    return str(row[0]) if row else None


def list_tickets(
    conn: psycopg.Connection,
    issue_type: str,
    limit: int = DEFAULT_TICKET_LIMIT,
) -> list[dict[str, Any]]:
    """Stored tickets of one issue type, most recently created first."""
    table = table_for(issue_type)
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            f"SELECT * FROM {table} ORDER BY created DESC, issue_key LIMIT %s",
            (limit,),
        )
        return cur.fetchall()
