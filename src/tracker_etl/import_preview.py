"""tracker_etl.import_preview

Read-only dry run of an import batch.

Every row is normalized and matched exactly as commit would do it, and the
outcome is tallied without writing anything:
  - invalid rows   → counted, reason kept in `errors`
  - valid rows     → matched by issue_key; a key repeated later in the same
                     batch counts as a duplicate, since commit would insert
                     the first occurrence and update on the second
  - issue_id taken → a new key whose issue_id is already stored, or already
                     claimed by an earlier new row of the batch, counts as
                     invalid with reason issue_id_conflict, as commit skips it
  - first N valid rows (file order) are returned as the sample

Repeated calls on unchanged storage yield identical results.
"""

from __future__ import annotations

import logging

import psycopg

from tracker_etl.issue_columns import ColumnSchema, default_column_schema
from tracker_etl.matcher import match_ticket
from tracker_etl.models import (
    CanonicalTicket,
    ImportBatch,
    InvalidRowError,
    IssueIdConflictError,
    PreviewRecord,
    PreviewResult,
    RowError,
    StorageUnavailable,
    table_for,
)
from tracker_etl.ticket_normalizer import extract_issue_key, normalize_ticket

log = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 50
SUMMARY_PREVIEW_CHARS = 100


def _preview_record(ticket: CanonicalTicket, is_duplicate: bool) -> PreviewRecord:
    summary = ticket.summary
    if len(summary) > SUMMARY_PREVIEW_CHARS:
        summary = summary[:SUMMARY_PREVIEW_CHARS] + "..."
    return PreviewRecord(
        issue_key=ticket.issue_key,
        summary=summary,
        status=ticket.status,
        assignee=ticket.assignee.display_name if ticket.assignee else None,
        story_points=ticket.story_points,
        sprint_names=list(ticket.sprint_names),
        is_duplicate=is_duplicate,
    )


def preview_batch(
    conn: psycopg.Connection,
    batch: ImportBatch,
    schema: ColumnSchema | None = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> PreviewResult:
    """Classify every row of batch as new, duplicate, or invalid.

    Raises:
        UnknownIssueTypeError: If the batch declares an unknown issue type.
        StorageUnavailable: If the database connection fails.
    """
    table_for(batch.issue_type)
    schema = schema or default_column_schema()
    result = PreviewResult(total_records=len(batch.rows))
    pending_keys: set[str] = set()
    pending_ids: set[str] = set()

    for idx, row in enumerate(batch.rows):
        try:
            ticket = normalize_ticket(
                row, batch.issue_type, schema, default_team=batch.team_name,
            )
        except InvalidRowError as exc:
            result.invalid_count += 1
            result.errors.append(
                RowError(idx, extract_issue_key(row, batch.issue_type, schema), str(exc))
            )
            continue

        if ticket.issue_key in pending_keys:
            is_duplicate = True
        else:
            try:
                outcome = match_ticket(conn, ticket)
            except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
                raise StorageUnavailable(f"preview lookup failed: {exc}") from exc
            if outcome.is_conflict or (
                not outcome.is_duplicate and ticket.issue_id in pending_ids
            ):
                result.invalid_count += 1
                result.errors.append(
                    RowError(idx, ticket.issue_key, str(IssueIdConflictError(ticket.issue_id)))
                )
                continue
            is_duplicate = outcome.is_duplicate
            if not is_duplicate:
                pending_keys.add(ticket.issue_key)
                pending_ids.add(ticket.issue_id)

        if is_duplicate:
            result.duplicate_count += 1
        else:
            result.new_count += 1

        if len(result.sample_records) < sample_size:
            result.sample_records.append(_preview_record(ticket, is_duplicate))

    log.info(
        "preview %s: %d rows, %d new, %d duplicate, %d invalid",
        batch.issue_type, result.total_records, result.new_count,
        result.duplicate_count, result.invalid_count,
    )
    return result
