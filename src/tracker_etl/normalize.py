"""Normalization functions for tracker CSV ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import csv
import io
import json
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

# Tracker export format first ("12/Mar/24 10:15 AM"), then the common
# machine formats seen in re-exported or hand-edited files.
_TS_FORMATS = (
    "%d/%b/%y %I:%M %p",
    "%d/%b/%Y %I:%M %p",
    "%d/%b/%y %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d/%b/%y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: parse_ts
# ---------------------------------------------------------------------------

def parse_ts(value: str | None) -> datetime | None:
    """Parse a tracker timestamp into a naive UTC datetime, or None.

    Offset-aware ISO values are converted to UTC before the offset is dropped
    so that every stored timestamp compares on the same clock.
    """
    v = trim(value)
    if v is None:
        return None
    for fmt in _TS_FORMATS:
        try:
            return datetime.strptime(v, fmt)
        except ValueError:
            continue
    iso = v[:-1] + "+00:00" if v.endswith("Z") else v
    # "+0100" style offsets are not accepted by fromisoformat on older 3.x
    iso = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", iso)
    try:
        ts = datetime.fromisoformat(iso)
    except ValueError:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


# ---------------------------------------------------------------------------
# Rule 4: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a decimal number from a string, returning None on failure.

    A lone comma is accepted as the decimal separator ("2,5").
    """
    v = trim(value)
    if v is None:
        return None
    if "," in v and "." not in v and v.count(",") == 1:
        v = v.replace(",", ".")
    try:
        d = Decimal(v)
    except InvalidOperation:
        return None
    if not d.is_finite():
        return None
    return d


# ---------------------------------------------------------------------------
# Rule 5: parse_sprint_names
# ---------------------------------------------------------------------------

def _dedupe(names: list[Any]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        if name is None:
            continue
        t = str(name).strip()
        if not t or t in seen:
            continue
        seen.add(t)
        out.append(t)
    return out


def _parse_pg_array(v: str) -> list[str] | None:
    """Parse a PostgreSQL text[] literal such as '{"Sprint 1",Sprint 2}'."""
    inner = v[1:-1]
    if not inner.strip():
        return []
    try:
        tokens = next(csv.reader(io.StringIO(inner), skipinitialspace=True))
    except (csv.Error, StopIteration):
        return None
    return [t for t in tokens if t.upper() != "NULL"]


def _parse_sprint_string(v: str) -> list[str]:
    if v.startswith("[") and v.endswith("]"):
        try:
            parsed = json.loads(v)
        except ValueError:
            return [v]
        if isinstance(parsed, list):
            return _dedupe(parsed)
        return [v]
    if v.startswith("{") and v.endswith("}"):
        tokens = _parse_pg_array(v)
        if tokens is None:
            return [v]
        return _dedupe(tokens)
    if v[0] in "[{":
        # Array-shaped but truncated or malformed: keep the raw value.
        return [v]
    return _dedupe(v.split(","))


def parse_sprint_names(value: str | list[str] | None) -> list[str]:
    """Return an ordered, de-duplicated list of sprint names.

    Accepted encodings:
      - list of strings (repeated "Sprint" columns); each element is one
        name taken as written, commas included
      - JSON array string:  '["Sprint 1", "Sprint 2"]'
      - PostgreSQL array literal: '{"Sprint 1","Sprint 2"}'
      - comma-separated string: 'Sprint 1, Sprint 2'

    First-seen order is kept and exact duplicates are dropped. A value that
    looks like an array but cannot be parsed is returned as a single name
    (the raw trimmed string). Empty input gives [].
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return _dedupe(list(value))
    v = trim(str(value))
    if v is None:
        return []
    return _parse_sprint_string(v)
