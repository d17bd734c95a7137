"""tracker_etl.ticket_normalizer

Turns one raw CSV row into a CanonicalTicket for a declared issue type.

Header spellings differ per issue type; they are resolved through the
column schema (issue_columns.yml), never by position. Identity and required
fields are strict: a missing value or an unparseable created/updated date
raises InvalidRowError. Everything else is lenient: unparseable optional
dates and non-numeric estimates become None without invalidating the row.
Headers the schema does not map are carried through in `metadata`.

Pure function: no I/O, no database access.
"""

from __future__ import annotations

from typing import Any, Mapping

from tracker_etl.issue_columns import COLUMN_FIELDS, ColumnSchema, default_column_schema
from tracker_etl.models import (
    REQUIRED_FIELDS,
    CanonicalTicket,
    InvalidRowError,
    PersonRef,
    table_for,
)
from tracker_etl.normalize import (
    normalize_space,
    parse_numeric,
    parse_sprint_names,
    parse_ts,
    trim,
)
from tracker_etl.shared import normalize_headers


def _cell(value: Any) -> str | None:
    """Trim a cell; for repeated headers take the first non-empty element."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        for item in value:
            v = _cell(item)
            if v is not None:
                return v
        return None
    return trim(str(value))


def _first_value(row: Mapping[str, Any], aliases: list[str]) -> str | None:
    for header in aliases:
        v = _cell(row.get(header))
        if v is not None:
            return v
    return None


def _person(name: str | None, external_id: str | None) -> PersonRef | None:
    display = normalize_space(name)
    if display is None:
        return None
    return PersonRef(display_name=display, external_id=external_id)


def _metadata(row: Mapping[str, Any], consumed: set[str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for header, value in row.items():
        if not header or header in consumed:
            continue
        if isinstance(value, (list, tuple)):
            items = [v for v in (_cell(i) for i in value) if v is not None]
            if items:
                out[header] = items
            continue
        v = _cell(value)
        if v is not None:
            out[header] = v
    return out


def extract_issue_key(
    raw_row: Mapping[str, Any],
    issue_type: str,
    schema: ColumnSchema | None = None,
) -> str | None:
    """Best-effort issue key for error reporting on rows that fail to normalize."""
    schema = schema or default_column_schema()
    return _first_value(normalize_headers(raw_row), schema.aliases(issue_type, "issue_key"))


def normalize_ticket(
    raw_row: Mapping[str, Any],
    issue_type: str,
    schema: ColumnSchema | None = None,
    default_team: str | None = None,
) -> CanonicalTicket:
    """Normalize one raw row into a CanonicalTicket.

    Args:
        raw_row: Header -> cell mapping. A header repeated in the source file
            (e.g. several "Sprint" columns) may map to a list of cells.
        issue_type: One of Epic, Story, Bug, Subtask.
        schema: Column schema; defaults to the packaged issue_columns.yml.
        default_team: Team to use when the row carries none (batch context).

    Raises:
        UnknownIssueTypeError: If issue_type is not a known type.
        InvalidRowError: If a required field is missing or a required date
            cannot be parsed.
    """
    table_for(issue_type)
    schema = schema or default_column_schema()
    row = normalize_headers(raw_row)

    values = {f: _first_value(row, schema.aliases(issue_type, f)) for f in COLUMN_FIELDS}

    missing = [f for f in REQUIRED_FIELDS if values[f] is None]
    if missing:
        raise InvalidRowError("missing_required_fields", missing)

    created = parse_ts(values["created"])
    updated = parse_ts(values["updated"])
    unparseable = [
        name for name, ts in (("created", created), ("updated", updated)) if ts is None
    ]
    if unparseable:
        raise InvalidRowError("unparseable_required_date", unparseable)

    # Each sprint column decodes on its own; names then merge across columns.
    sprint_names: list[str] = []
    for header in schema.sprint_columns(issue_type):
        if header in row:
            sprint_names.extend(parse_sprint_names(row[header]))

    return CanonicalTicket(
        issue_key=values["issue_key"],
        issue_id=values["issue_id"],
        issue_type=issue_type,
        project_key=values["project_key"],
        summary=values["summary"],
        status=values["status"],
        created=created,
        updated=updated,
        status_category=values["status_category"],
        priority=values["priority"],
        resolution=values["resolution"],
        assignee=_person(values["assignee"], values["assignee_id"]),
        reporter=_person(values["reporter"], values["reporter_id"]),
        creator=_person(values["creator"], values["creator_id"]),
        resolved=parse_ts(values["resolved"]),
        due_date=parse_ts(values["due_date"]),
        parent_key=values["parent_key"],
        sprint_names=parse_sprint_names(sprint_names),
        story_points=parse_numeric(values["story_points"]),
        original_estimate=parse_numeric(values["original_estimate"]),
        remaining_estimate=parse_numeric(values["remaining_estimate"]),
        time_spent=parse_numeric(values["time_spent"]),
        team=values["team"] or trim(default_team),
        metadata=_metadata(row, schema.consumed_headers(issue_type)),
    )
