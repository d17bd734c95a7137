"""Integration tests for tracker_etl.import_log."""

from __future__ import annotations

import threading

from tracker_etl.import_commit import commit_batch
from tracker_etl.import_log import import_history
from tracker_etl.models import ImportBatch


def test_commit_records_run(db_conn, make_row):
    conn, _ = db_conn
    batch = ImportBatch(
        rows=[make_row(1), make_row(2), make_row(3, Summary="")],
        issue_type="Story", project_key="PROJ", team_name="Platform",
    )
    commit_batch(conn, batch, run_id="run-1")

    history = import_history(conn)
    assert len(history) == 1
    entry = history[0]
    assert entry["run_id"] == "run-1"
    assert entry["issue_type"] == "Story"
    assert entry["status"] == "completed"
    assert (entry["rows_read"], entry["rows_created"], entry["rows_skipped"]) == (3, 2, 1)
    assert entry["team_name"] == "Platform"
    assert entry["error_message"] is None


def test_cancelled_run_recorded(db_conn, make_row):
    conn, _ = db_conn
    event = threading.Event()
    event.set()
    commit_batch(conn, ImportBatch(rows=[make_row(1)], issue_type="Bug"), cancel_event=event)
    assert import_history(conn)[0]["status"] == "cancelled"


def test_history_filters_and_order(db_conn, make_row):
    conn, _ = db_conn
    commit_batch(conn, ImportBatch([make_row(1)], "Story", "PROJ", "Platform"), run_id="a")
    commit_batch(conn, ImportBatch([make_row(2)], "Story", "PROJ", "Mobile"), run_id="b")
    commit_batch(conn, ImportBatch([make_row(3)], "Bug", "OPS", "Platform"), run_id="c")

    assert [h["run_id"] for h in import_history(conn)] == ["c", "b", "a"]
    assert [h["run_id"] for h in import_history(conn, project_key="PROJ")] == ["b", "a"]
    assert [h["run_id"] for h in import_history(conn, team_name="Platform")] == ["c", "a"]
    assert [h["run_id"] for h in import_history(conn, "PROJ", "Mobile")] == ["b"]
    assert len(import_history(conn, limit=1)) == 1
