"""Integration tests for tracker_etl.import_preview.preview_batch."""

from __future__ import annotations

from decimal import Decimal

import psycopg
import pytest

from tracker_etl.import_commit import commit_batch
from tracker_etl.import_preview import preview_batch
from tracker_etl.models import ImportBatch, StorageUnavailable, UnknownIssueTypeError


def _batch(rows, issue_type="Story") -> ImportBatch:
    return ImportBatch(rows=rows, issue_type=issue_type)


class TestClassification:
    def test_all_new_on_empty_storage(self, db_conn, make_row):
        conn, _ = db_conn
        result = preview_batch(conn, _batch([make_row(1), make_row(2)]))
        assert (result.total_records, result.new_count, result.duplicate_count) == (2, 2, 0)
        assert result.invalid_count == 0
        assert result.errors == []

    def test_committed_batch_previews_as_duplicates(self, db_conn, make_row):
        conn, _ = db_conn
        rows = [make_row(1), make_row(2), make_row(3)]
        commit_batch(conn, _batch(rows))
        result = preview_batch(conn, _batch(rows))
        assert (result.new_count, result.duplicate_count) == (0, 3)
        assert all(r.is_duplicate for r in result.sample_records)

    def test_duplicate_matched_by_key_only(self, db_conn, make_row):
        conn, _ = db_conn
        commit_batch(conn, _batch([make_row(1)]))
        result = preview_batch(conn, _batch([make_row(1, Summary="Renamed", Status="Done")]))
        assert result.duplicate_count == 1

    def test_other_table_not_a_duplicate(self, db_conn, make_row):
        conn, _ = db_conn
        commit_batch(conn, _batch([make_row(1)], issue_type="Bug"))
        result = preview_batch(conn, _batch([make_row(1)], issue_type="Story"))
        assert result.new_count == 1

    def test_repeated_key_counted_as_duplicate(self, db_conn, make_row):
        conn, _ = db_conn
        result = preview_batch(conn, _batch([make_row(1), make_row(1)]))
        assert (result.new_count, result.duplicate_count) == (1, 1)

    def test_invalid_rows_reported(self, db_conn, make_row):
        conn, _ = db_conn
        rows = [make_row(1), make_row(2, Status=""), make_row(3, Updated="garbage")]
        result = preview_batch(conn, _batch(rows))
        assert (result.new_count, result.invalid_count) == (1, 2)
        assert [e.row_index for e in result.errors] == [1, 2]
        assert result.errors[0].reason == "missing_required_fields: status"
        assert result.errors[1].issue_key == "PROJ-3"
        assert [r.issue_key for r in result.sample_records] == ["PROJ-1"]

    def test_stored_issue_id_under_new_key_is_invalid(self, db_conn, make_row):
        conn, _ = db_conn
        commit_batch(conn, _batch([make_row(1)]))
        result = preview_batch(conn, _batch([make_row(2, **{"Issue id": "10001"}), make_row(3)]))
        assert (result.new_count, result.duplicate_count, result.invalid_count) == (1, 0, 1)
        assert result.errors[0].issue_key == "PROJ-2"
        assert result.errors[0].reason == (
            "issue_id_conflict: issue_id='10001' already stored under another issue key"
        )
        assert [r.issue_key for r in result.sample_records] == ["PROJ-3"]

    def test_issue_id_repeated_in_batch_is_invalid(self, db_conn, make_row):
        conn, _ = db_conn
        rows = [make_row(1), make_row(2, **{"Issue id": "10001"}), make_row(1, Status="Done")]
        result = preview_batch(conn, _batch(rows))
        assert (result.new_count, result.duplicate_count, result.invalid_count) == (1, 1, 1)
        assert result.errors[0].row_index == 1
        assert result.errors[0].reason.startswith("issue_id_conflict")

    def test_zero_rows(self, db_conn):
        conn, _ = db_conn
        result = preview_batch(conn, _batch([]))
        assert result.to_dict() == {
            "total_records": 0, "new_count": 0, "duplicate_count": 0,
            "invalid_count": 0, "sample_records": [], "errors": [],
        }

    def test_unknown_issue_type(self, db_conn, make_row):
        conn, _ = db_conn
        with pytest.raises(UnknownIssueTypeError):
            preview_batch(conn, _batch([make_row(1)], issue_type="Task"))


class TestSample:
    def test_sample_limited_in_file_order(self, db_conn, make_row):
        conn, _ = db_conn
        rows = [make_row(n) for n in range(1, 8)]
        result = preview_batch(conn, _batch(rows), sample_size=5)
        assert [r.issue_key for r in result.sample_records] == [f"PROJ-{n}" for n in range(1, 6)]
        assert result.new_count == 7

    def test_record_fields(self, db_conn, make_row):
        conn, _ = db_conn
        row = make_row(1, Sprint=["Sprint 1", "Sprint 2"], **{"Story Points": "5"})
        record = preview_batch(conn, _batch([row])).sample_records[0]
        assert record.summary == "Ticket 1"
        assert record.status == "To Do"
        assert record.assignee == "Alice Smith"
        assert record.story_points == Decimal("5")
        assert record.sprint_names == ["Sprint 1", "Sprint 2"]
        assert record.is_duplicate is False
        assert record.is_valid is True

    def test_long_summary_truncated(self, db_conn, make_row):
        conn, _ = db_conn
        record = preview_batch(conn, _batch([make_row(1, Summary="x" * 150)])).sample_records[0]
        assert record.summary == "x" * 100 + "..."


class TestReadOnly:
    def test_preview_writes_nothing(self, db_conn, make_row):
        conn, _ = db_conn
        preview_batch(conn, _batch([make_row(1), make_row(2)]))
        conn.commit()
        assert conn.execute("SELECT count(*) FROM stories").fetchone()[0] == 0
        assert conn.execute("SELECT count(*) FROM import_log").fetchone()[0] == 0

    def test_repeatable(self, db_conn, make_row):
        conn, _ = db_conn
        commit_batch(conn, _batch([make_row(1)]))
        batch = _batch([make_row(1), make_row(2), make_row(3, Summary="")])
        assert preview_batch(conn, batch).to_dict() == preview_batch(conn, batch).to_dict()

    def test_closed_connection_raises_storage_unavailable(self, db_conn, make_row):
        _, dsn = db_conn
        conn = psycopg.connect(dsn)
        conn.close()
        with pytest.raises(StorageUnavailable):
            preview_batch(conn, _batch([make_row(1)]))
