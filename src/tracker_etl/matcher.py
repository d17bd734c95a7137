"""tracker_etl.matcher

Natural-key matching of canonical tickets against their issue-type table.

The lookup is a plain SELECT on issue_key, falling back to issue_id when no
row has the key: no locks, no reservation. Preview relies on it being
read-only; commit calls it again immediately before each write and still
tolerates a concurrent insert slipping in between (see import_commit).
"""

from __future__ import annotations

from dataclasses import dataclass

import psycopg

from tracker_etl.models import CanonicalTicket
from tracker_etl.storage import find_by_issue_id, find_by_key

NEW = "new"
DUPLICATE = "duplicate"
CONFLICT = "issue_id_conflict"


@dataclass(frozen=True)
class MatchOutcome:
    status: str
    existing_id: str | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.status == DUPLICATE

    @property
    def is_conflict(self) -> bool:
        return self.status == CONFLICT


def match_ticket(conn: psycopg.Connection, ticket: CanonicalTicket) -> MatchOutcome:
    """Classify ticket as new, a duplicate, or an issue_id conflict.

    A persisted row sharing issue_key is a duplicate regardless of any other
    field difference. With no such row, a persisted row holding the same
    issue_id under another key makes the ticket a conflict: it can be
    neither inserted nor applied as an update.
    """
    existing = find_by_key(conn, ticket.issue_type, ticket.issue_key)
    if existing is not None:
        return MatchOutcome(DUPLICATE, str(existing["id"]))
    clash = find_by_issue_id(conn, ticket.issue_type, ticket.issue_id)
    if clash is not None:
        return MatchOutcome(CONFLICT, str(clash["id"]))
    return MatchOutcome(NEW)
