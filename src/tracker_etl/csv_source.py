"""tracker_etl.csv_source

Reads tracker CSV exports into raw row mappings.

Tracker exports repeat a header once per value for multi-valued fields
(several "Sprint" or "Labels" columns). csv.DictReader would keep only the
last of them, so rows are built from csv.reader instead: a header seen once
maps to its cell string, a header seen more than once maps to the list of
its cells in column order.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any, Iterable

from tracker_etl.issue_columns import ColumnSchema, default_column_schema
from tracker_etl.models import REQUIRED_FIELDS, table_for


def _rows_from_reader(reader: Iterable[list[str]]) -> list[dict[str, Any]]:
    it = iter(reader)
    try:
        header = [h.strip() for h in next(it)]
    except StopIteration:
        return []

    counts: dict[str, int] = {}
    for h in header:
        counts[h] = counts.get(h, 0) + 1

    rows: list[dict[str, Any]] = []
    for cells in it:
        if not any(c.strip() for c in cells):
            continue
        row: dict[str, Any] = {}
        for idx, h in enumerate(header):
            if not h:
                continue
            value = cells[idx] if idx < len(cells) else ""
            if counts[h] > 1:
                row.setdefault(h, []).append(value)
            else:
                row[h] = value
        rows.append(row)
    return rows


def parse_csv_text(text: str) -> list[dict[str, Any]]:
    """Parse CSV content already held in memory (e.g. an uploaded file)."""
    if text.startswith("\ufeff"):
        text = text[1:]
    return _rows_from_reader(csv.reader(io.StringIO(text)))


def read_csv_rows(csv_path: Path) -> list[dict[str, Any]]:
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        return _rows_from_reader(csv.reader(fh))


def read_csv_headers(csv_path: Path) -> list[str]:
    """Open the file just far enough to read the header row."""
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        try:
            return [h.strip() for h in next(csv.reader(fh))]
        except StopIteration:
            return []


def missing_required_columns(
    headers: Iterable[str],
    issue_type: str,
    schema: ColumnSchema | None = None,
) -> list[str]:
    """Return required fields for which none of the header aliases is present."""
    table_for(issue_type)
    schema = schema or default_column_schema()
    present = {h.strip() for h in headers}
    return [
        f for f in REQUIRED_FIELDS
        if not present.intersection(schema.aliases(issue_type, f))
    ]
