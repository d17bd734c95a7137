"""tracker_etl.import_log

Import run history: one import_log row per commit run.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import psycopg
from psycopg.rows import dict_row

from tracker_etl.models import CommitResult, ImportBatch

DEFAULT_HISTORY_LIMIT = 50


def record_import_log(
    conn: psycopg.Connection,
    run_id: str,
    batch: ImportBatch,
    status: str,
    started_at: datetime,
    result: CommitResult,
    error_message: str | None = None,
) -> str:
    """Insert a run summary. Caller manages transaction."""
    row = conn.execute(
        """
        INSERT INTO import_log
          (run_id, issue_type, project_key, team_name, status, started_at,
           rows_read, rows_created, rows_updated, rows_skipped, error_message)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (run_id, batch.issue_type, batch.project_key, batch.team_name, status,
         started_at, result.total_records, result.created, result.updated,
         result.skipped, error_message),
    ).fetchone()
    return str(row[0])


def import_history(
    conn: psycopg.Connection,
    project_key: str | None = None,
    team_name: str | None = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[dict[str, Any]]:
    """Most recent runs first, optionally filtered by project and/or team."""
    clauses: list[str] = []
    params: list[Any] = []
    if project_key:
        clauses.append("project_key = %s")
        params.append(project_key)
    if team_name:
        clauses.append("team_name = %s")
        params.append(team_name)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(limit)
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            f"""
            SELECT run_id, issue_type, project_key, team_name, status,
                   started_at, finished_at, rows_read, rows_created,
                   rows_updated, rows_skipped, error_message
            FROM import_log
            {where}
            ORDER BY started_at DESC, finished_at DESC
            LIMIT %s
            """,
            params,
        )
        return cur.fetchall()
