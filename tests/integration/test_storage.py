"""Integration tests for tracker_etl.storage lookups and listing."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from tracker_etl.import_commit import commit_batch
from tracker_etl.models import ImportBatch, UnknownIssueTypeError
from tracker_etl.storage import find_by_issue_id, list_tickets


def _commit(conn, rows, issue_type="Story"):
    return commit_batch(conn, ImportBatch(rows=rows, issue_type=issue_type))


class TestFindByIssueId:
    def test_found(self, db_conn, make_row):
        conn, _ = db_conn
        _commit(conn, [make_row(1), make_row(2)])
        assert find_by_issue_id(conn, "Story", "10002")["issue_key"] == "PROJ-2"

    def test_scoped_to_issue_type(self, db_conn, make_row):
        conn, _ = db_conn
        _commit(conn, [make_row(1)], issue_type="Bug")
        assert find_by_issue_id(conn, "Story", "10001") is None


class TestListTickets:
    def test_newest_created_first(self, db_conn, make_row):
        conn, _ = db_conn
        _commit(conn, [
            make_row(1, Created="10/Mar/24 09:00 AM"),
            make_row(2, Created="14/Mar/24 09:00 AM"),
            make_row(3, Created="12/Mar/24 09:00 AM"),
        ])
        tickets = list_tickets(conn, "Story")
        assert [t["issue_key"] for t in tickets] == ["PROJ-2", "PROJ-3", "PROJ-1"]
        assert tickets[0]["created"] == datetime(2024, 3, 14, 9, 0)

    def test_limit(self, db_conn, make_row):
        conn, _ = db_conn
        _commit(conn, [make_row(n, Created=f"1{n}/Mar/24 09:00 AM") for n in range(1, 5)])
        tickets = list_tickets(conn, "Story", limit=2)
        assert [t["issue_key"] for t in tickets] == ["PROJ-4", "PROJ-3"]

    def test_stored_columns_returned(self, db_conn, make_row):
        conn, _ = db_conn
        _commit(conn, [make_row(1, Sprint=["Sprint 1", "Sprint 2"])])
        ticket = list_tickets(conn, "Story")[0]
        assert ticket["sprint_names"] == ["Sprint 1", "Sprint 2"]
        assert ticket["story_points"] == Decimal("3.00")
        assert ticket["assignee"] == "Alice Smith"

    def test_only_requested_type(self, db_conn, make_row):
        conn, _ = db_conn
        _commit(conn, [make_row(1)])
        _commit(conn, [make_row(2)], issue_type="Epic")
        assert [t["issue_key"] for t in list_tickets(conn, "Epic")] == ["PROJ-2"]

    def test_empty_table(self, db_conn):
        conn, _ = db_conn
        assert list_tickets(conn, "Bug") == []

    def test_unknown_issue_type(self, db_conn):
        conn, _ = db_conn
        with pytest.raises(UnknownIssueTypeError):
            list_tickets(conn, "Task")
