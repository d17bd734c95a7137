"""tracker_etl.import_tracker_csv

Unified CLI entrypoint for issue-tracker CSV imports and sprint reporting.

Modes (--mode):
  preview            dry-run classification of a CSV export (default)
  commit             upsert a CSV export into its issue-type table
  sprint_statistics  aggregate stories, bugs, and subtasks of one sprint
  sprints            list every distinct sprint name
  import_history     most recent commit runs
  tickets            stored tickets of one issue type, newest first

Usage (preview / commit):
    python -m tracker_etl.import_tracker_csv \\
        --mode commit \\
        --db-dsn "$TRACKER_DB_DSN" \\
        --csv-path "exports/stories.csv" \\
        --issue-type Story \\
        --project-key PROJ \\
        --team-name "Platform" \\
        --rejects-path "artifacts/rejects/stories_rejects.csv"

Usage (sprint_statistics):
    python -m tracker_etl.import_tracker_csv \\
        --mode sprint_statistics \\
        --db-dsn "$TRACKER_DB_DSN" \\
        --sprint-name "Sprint 12"

Usage (tickets):
    python -m tracker_etl.import_tracker_csv \\
        --mode tickets \\
        --db-dsn "$TRACKER_DB_DSN" \\
        --issue-type Bug \\
        --ticket-limit 200
"""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click
import psycopg

from tracker_etl.csv_source import missing_required_columns, read_csv_headers, read_csv_rows
from tracker_etl.import_commit import commit_batch
from tracker_etl.import_log import DEFAULT_HISTORY_LIMIT, import_history
from tracker_etl.import_preview import DEFAULT_SAMPLE_SIZE, preview_batch
from tracker_etl.issue_columns import ColumnSchemaError, default_column_schema, load_column_schema
from tracker_etl.models import ISSUE_TABLES, ImportBatch, StorageUnavailable
from tracker_etl.shared import RejectWriter, write_run_report
from tracker_etl.sprint_stats import aggregate_sprint, list_sprints
from tracker_etl.storage import DEFAULT_TICKET_LIMIT, list_tickets

IMPORT_MODES = ("preview", "commit")


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _validate_import_flags(csv_path: str | None, issue_type: str | None, run_id: str) -> None:
    missing = []
    if not csv_path:
        missing.append("--csv-path")
    if not issue_type:
        missing.append("--issue-type")
    if missing:
        click.echo(
            f"[{run_id}] ERROR: import modes require: {', '.join(missing)}",
            err=True,
        )
        sys.exit(1)
    if not Path(csv_path).exists():  # type: ignore[arg-type]
        click.echo(f"[{run_id}] ERROR: CSV file not found: {csv_path}", err=True)
        sys.exit(1)


_CANCEL_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def _install_cancel_handler(cancel_event: threading.Event, run_id: str) -> dict:
    """SIGINT/SIGTERM stop the commit between rows instead of killing it.

    Returns the previous handlers for _restore_handlers.
    """

    def _handler(signum, frame):
        click.echo(f"[{run_id}] Signal {signum} received; stopping after current row", err=True)
        cancel_event.set()

    return {sig: signal.signal(sig, _handler) for sig in _CANCEL_SIGNALS}


def _restore_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_import(
    mode: str,
    run_id: str,
    started_at: str,
    db_dsn: str,
    csv_path: str,
    batch_kwargs: dict[str, Any],
    column_schema: str | None,
    sample_size: int,
    rejects_path: str,
) -> None:
    try:
        schema = load_column_schema(Path(column_schema)) if column_schema else default_column_schema()
    except (ColumnSchemaError, OSError) as exc:
        click.echo(f"[{run_id}] ERROR: column schema: {exc}", err=True)
        sys.exit(1)

    csv_file = Path(csv_path)
    issue_type = batch_kwargs["issue_type"]
    gaps = missing_required_columns(read_csv_headers(csv_file), issue_type, schema)
    if gaps:
        click.echo(
            f"[{run_id}] WARNING: no column found for required fields: {', '.join(gaps)}; "
            "every row will be reported invalid",
            err=True,
        )

    batch = ImportBatch(rows=read_csv_rows(csv_file), **batch_kwargs)
    click.echo(f"[{run_id}] Read {len(batch.rows)} rows from {csv_file} ({issue_type})")

    rejects = RejectWriter(Path(rejects_path))
    previous_handlers: dict = {}
    try:
        conn = psycopg.connect(db_dsn, autocommit=False)
    except psycopg.OperationalError as exc:
        click.echo(f"[{run_id}] FATAL: storage unavailable: {exc}", err=True)
        sys.exit(1)
    try:
        if mode == "preview":
            result = preview_batch(conn, batch, schema, sample_size=sample_size)
            conn.rollback()
        else:
            cancel_event = threading.Event()
            previous_handlers = _install_cancel_handler(cancel_event, run_id)
            result = commit_batch(
                conn, batch, schema,
                cancel_event=cancel_event, rejects=rejects, run_id=run_id,
            )
    except StorageUnavailable as exc:
        click.echo(f"[{run_id}] FATAL: storage unavailable: {exc}", err=True)
        sys.exit(1)
    finally:
        _restore_handlers(previous_handlers)
        rejects.close()
        conn.close()

    payload = result.to_dict()
    _emit(payload)
    counters = {k: v for k, v in payload.items() if isinstance(v, (int, bool))}
    report_path = write_run_report(
        run_id, started_at, mode,
        {"csv_path": str(csv_file), "issue_type": issue_type,
         "rejects_path": str(rejects.path),
         "column_schema_version": schema.version,
         "column_schema_hash": schema.yaml_hash},
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if mode == "commit" and result.skipped:
        click.echo(f"[{run_id}] {result.skipped} rejected rows written to {rejects.path}")
    if mode == "commit" and getattr(result, "cancelled", False):
        click.echo(f"[{run_id}] Commit cancelled; processed rows were committed", err=True)
        sys.exit(1)


def _run_query(
    mode: str,
    run_id: str,
    db_dsn: str,
    sprint_name: str | None,
    project_key: str | None,
    team_name: str | None,
    history_limit: int,
    issue_type: str | None,
    ticket_limit: int,
) -> None:
    if mode == "sprint_statistics" and not sprint_name:
        click.echo(f"[{run_id}] ERROR: sprint_statistics requires --sprint-name", err=True)
        sys.exit(1)
    if mode == "tickets" and not issue_type:
        click.echo(f"[{run_id}] ERROR: tickets requires --issue-type", err=True)
        sys.exit(1)

    try:
        with psycopg.connect(db_dsn) as conn:
            if mode == "sprint_statistics":
                _emit(aggregate_sprint(conn, sprint_name).to_dict())  # type: ignore[arg-type]
            elif mode == "sprints":
                _emit(list_sprints(conn))
            elif mode == "tickets":
                _emit(list_tickets(conn, issue_type, ticket_limit))  # type: ignore[arg-type]
            else:
                _emit(import_history(conn, project_key, team_name, history_limit))
    except (StorageUnavailable, psycopg.OperationalError, psycopg.InterfaceError) as exc:
        click.echo(f"[{run_id}] FATAL: storage unavailable: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="preview",
    type=click.Choice([
        "preview", "commit", "sprint_statistics", "sprints", "import_history", "tickets",
    ]),
    show_default=True,
)
@click.option("--db-dsn", required=True, envvar="TRACKER_DB_DSN", help="PostgreSQL DSN")
@click.option("--csv-path", default=None, type=click.Path(), help="[preview|commit] Tracker CSV export")
@click.option(
    "--issue-type",
    default=None,
    type=click.Choice(list(ISSUE_TABLES)),
    help="[preview|commit|tickets] Issue type of the CSV rows, or of the tickets listed",
)
@click.option("--project-key", default=None, help="[preview|commit|import_history] Project context")
@click.option("--team-name", default=None, help="[preview|commit|import_history] Team context; fills rows without a team")
@click.option("--sprint-name", default=None, help="[sprint_statistics] Exact sprint name")
@click.option("--column-schema", default=None, type=click.Path(), help="Override issue_columns.yml")
@click.option("--sample-size", default=DEFAULT_SAMPLE_SIZE, type=int, show_default=True, help="[preview] Sample records returned")
@click.option("--history-limit", default=DEFAULT_HISTORY_LIMIT, type=int, show_default=True, help="[import_history] Runs returned")
@click.option("--ticket-limit", default=DEFAULT_TICKET_LIMIT, type=int, show_default=True, help="[tickets] Tickets returned")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/tracker_rejects.csv",
    type=click.Path(),
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str,
    csv_path: str | None,
    issue_type: str | None,
    project_key: str | None,
    team_name: str | None,
    sprint_name: str | None,
    column_schema: str | None,
    sample_size: int,
    history_limit: int,
    ticket_limit: int,
    rejects_path: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Tracker CSV import and sprint statistics CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    if mode in IMPORT_MODES:
        click.echo(f"[{run_id}] Starting {mode} run")
        _validate_import_flags(csv_path, issue_type, run_id)
        _run_import(
            mode, run_id, started_at, db_dsn,
            csv_path=csv_path,  # type: ignore[arg-type]
            batch_kwargs={
                "issue_type": issue_type,
                "project_key": project_key,
                "team_name": team_name,
            },
            column_schema=column_schema,
            sample_size=sample_size,
            rejects_path=rejects_path,
        )
    else:
        _run_query(
            mode, run_id, db_dsn, sprint_name, project_key, team_name,
            history_limit, issue_type, ticket_limit,
        )


if __name__ == "__main__":
    main()
