"""tracker_etl.import_commit

Commits an import batch: idempotent upsert by natural key (issue_key).

Transaction layout:
  - one transaction for the whole batch, committed once at the end
  - SAVEPOINT row_{idx} around each row so a row-level database error only
    discards that row
  - SAVEPOINT row_{idx}_insert around the INSERT so a uniqueness violation
    (another commit inserted the same key after our lookup) can be rolled
    back and retried as an UPDATE

Row outcomes:
  invalid row (normalizer)            → skipped, reason recorded
  new at write time                   → INSERT   (created)
  duplicate / insert collided on key  → UPDATE of mutable columns (updated)
  issue_id held by another key        → skipped (issue_id_conflict)
  other integrity/data error          → skipped (db_constraint_error)

Connection-level failures roll back the entire batch and raise
StorageUnavailable. Re-running the batch is safe.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

import psycopg

from tracker_etl.import_log import record_import_log
from tracker_etl.issue_columns import ColumnSchema, default_column_schema
from tracker_etl.matcher import match_ticket
from tracker_etl.models import (
    CanonicalTicket,
    CommitResult,
    ImportBatch,
    InvalidRowError,
    IssueIdConflictError,
    RowError,
    StorageUnavailable,
    table_for,
)
from tracker_etl.shared import RejectWriter
from tracker_etl.storage import insert_ticket, update_ticket
from tracker_etl.ticket_normalizer import extract_issue_key, normalize_ticket

log = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"

INFRA_ERRORS = (psycopg.OperationalError, psycopg.InterfaceError)


# ---------------------------------------------------------------------------
# Per-row processing
# ---------------------------------------------------------------------------

def _upsert_ticket(conn: psycopg.Connection, ticket: CanonicalTicket, sp_name: str) -> str:
    """Insert or update one ticket. Caller manages the row savepoint."""
    outcome = match_ticket(conn, ticket)
    if outcome.is_conflict:
        raise IssueIdConflictError(ticket.issue_id)
    if outcome.is_duplicate:
        if update_ticket(conn, ticket) is not None:
            return UPDATED
        # Row vanished between lookup and update; fall through to insert.

    conn.execute(f"SAVEPOINT {sp_name}_insert")
    try:
        insert_ticket(conn, ticket)
    except psycopg.errors.UniqueViolation:
        conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}_insert")
        if update_ticket(conn, ticket) is None:
            raise IssueIdConflictError(ticket.issue_id) from None
        log.debug("insert of %s collided; applied as update", ticket.issue_key)
        return UPDATED
    conn.execute(f"RELEASE SAVEPOINT {sp_name}_insert")
    return CREATED


def _skip(
    result: CommitResult,
    rejects: RejectWriter | None,
    idx: int,
    row: Mapping[str, Any],
    issue_key: str | None,
    reason: str,
) -> None:
    result.skipped += 1
    result.errors.append(RowError(idx, issue_key, reason))
    if rejects is not None:
        rejects.write(row, reason)


def _process_row(
    conn: psycopg.Connection,
    idx: int,
    row: Mapping[str, Any],
    batch: ImportBatch,
    schema: ColumnSchema,
    result: CommitResult,
    rejects: RejectWriter | None,
) -> None:
    try:
        ticket = normalize_ticket(row, batch.issue_type, schema, default_team=batch.team_name)
    except InvalidRowError as exc:
        _skip(result, rejects, idx, row,
              extract_issue_key(row, batch.issue_type, schema), str(exc))
        return

    sp_name = f"row_{idx}"
    conn.execute(f"SAVEPOINT {sp_name}")
    try:
        outcome = _upsert_ticket(conn, ticket, sp_name)
        conn.execute(f"RELEASE SAVEPOINT {sp_name}")
    except IssueIdConflictError as exc:
        conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
        _skip(result, rejects, idx, row, ticket.issue_key, str(exc))
        return
    except (psycopg.IntegrityError, psycopg.DataError) as exc:
        conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
        log.warning("row %d (%s) rejected by database: %s", idx, ticket.issue_key, exc)
        _skip(result, rejects, idx, row, ticket.issue_key,
              f"db_constraint_error: {type(exc).__name__}")
        return

    if outcome == CREATED:
        result.created += 1
    else:
        result.updated += 1


# ---------------------------------------------------------------------------
# Batch entry point
# ---------------------------------------------------------------------------

def _rollback(conn: psycopg.Connection) -> None:
    if conn.closed:
        return
    try:
        conn.rollback()
    except psycopg.Error as exc:
        log.warning("rollback after failure also failed: %s", exc)


def commit_batch(
    conn: psycopg.Connection,
    batch: ImportBatch,
    schema: ColumnSchema | None = None,
    cancel_event: threading.Event | None = None,
    rejects: RejectWriter | None = None,
    run_id: str | None = None,
) -> CommitResult:
    """Upsert every valid row of batch and commit the transaction.

    Args:
        conn: Connection with autocommit disabled; committed on success.
        batch: Rows plus declared issue type and project/team context.
        schema: Column schema; defaults to the packaged issue_columns.yml.
        cancel_event: When set, no further rows are processed; rows already
            processed are committed and the result is marked cancelled.
        rejects: Optional writer receiving every skipped row.
        run_id: Identifier recorded in import_log.

    Raises:
        UnknownIssueTypeError: If the batch declares an unknown issue type.
        StorageUnavailable: On connection failure; nothing from this batch
            is committed.
    """
    table_for(batch.issue_type)
    schema = schema or default_column_schema()
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc)
    result = CommitResult(total_records=len(batch.rows))

    try:
        for idx, row in enumerate(batch.rows):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                log.warning(
                    "[%s] commit cancelled after %d of %d rows",
                    run_id, idx, len(batch.rows),
                )
                break
            _process_row(conn, idx, row, batch, schema, result, rejects)

        status = "cancelled" if result.cancelled else "completed"
        record_import_log(conn, run_id, batch, status, started_at, result)
        conn.commit()
    except INFRA_ERRORS as exc:
        _rollback(conn)
        raise StorageUnavailable(f"commit of {batch.issue_type} batch failed: {exc}") from exc
    except Exception as exc:
        _rollback(conn)
        _record_failure(conn, run_id, batch, started_at, exc)
        raise

    log.info(
        "[%s] commit %s: %d created, %d updated, %d skipped%s",
        run_id, batch.issue_type, result.created, result.updated, result.skipped,
        " (cancelled)" if result.cancelled else "",
    )
    return result


def _record_failure(
    conn: psycopg.Connection,
    run_id: str,
    batch: ImportBatch,
    started_at: datetime,
    exc: Exception,
) -> None:
    """Best-effort import_log entry for a run that raised; never masks exc."""
    if conn.closed:
        return
    try:
        record_import_log(
            conn, run_id, batch, "failed", started_at, CommitResult(total_records=len(batch.rows)),
            error_message=f"{type(exc).__name__}: {exc}",
        )
        conn.commit()
    except psycopg.Error as log_exc:
        _rollback(conn)
        log.warning("[%s] could not record failed run: %s", run_id, log_exc)
