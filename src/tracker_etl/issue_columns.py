"""tracker_etl.issue_columns

Per-issue-type column schema for tracker CSV exports.

Responsibilities:
  - Load and validate the YAML column schema (issue_columns.yml by default)
  - Merge the `common` header aliases with issue-type overrides
  - Hash YAML content so run reports record which schema was applied
    (column_schema_version / column_schema_hash)

Usage:
    from tracker_etl.issue_columns import load_column_schema

    schema = load_column_schema()
    schema.aliases("Story", "issue_key")   # ["Issue key", "Issue Key", "Issue_key"]
    schema.sprint_columns("Bug")           # ["Sprint", "Sprints"]
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from tracker_etl.models import ISSUE_TABLES, REQUIRED_FIELDS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SCHEMA_PATH = Path(__file__).with_name("issue_columns.yml")

REQUIRED_YAML_KEYS = frozenset({"version", "common", "issue_types"})

COLUMN_FIELDS = frozenset({
    "issue_key", "issue_id", "summary", "status", "status_category",
    "priority", "resolution", "project_key",
    "assignee", "assignee_id", "reporter", "reporter_id",
    "creator", "creator_id",
    "created", "updated", "resolved", "due_date",
    "parent_key", "story_points",
    "original_estimate", "remaining_estimate", "time_spent",
    "team",
})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ColumnSchemaError(ValueError):
    """Raised when a YAML column schema fails validation."""


# ---------------------------------------------------------------------------
# ColumnSchema dataclass
# ---------------------------------------------------------------------------

@dataclass
class ColumnSchema:
    """Validated header aliases per issue type."""

    version: str
    yaml_hash: str
    columns: dict[str, dict[str, list[str]]]
    sprint_headers: dict[str, list[str]]

    def aliases(self, issue_type: str, field_name: str) -> list[str]:
        return self.columns[issue_type].get(field_name, [])

    def sprint_columns(self, issue_type: str) -> list[str]:
        return self.sprint_headers[issue_type]

    def consumed_headers(self, issue_type: str) -> set[str]:
        """Every header the normalizer maps to a canonical field."""
        used = {h for aliases in self.columns[issue_type].values() for h in aliases}
        used.update(self.sprint_headers[issue_type])
        return used


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_column_schema(yaml_path: Path | None = None) -> ColumnSchema:
    """Load, validate, and return a ColumnSchema.

    Args:
        yaml_path: Path to a schema file. Defaults to the packaged
            issue_columns.yml.

    Raises:
        ColumnSchemaError: If the document does not match the schema shape.
        FileNotFoundError: If the YAML file does not exist.
    """
    path = yaml_path or DEFAULT_SCHEMA_PATH
    raw = path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_column_schema(data)

    common = data["common"] or {}
    columns: dict[str, dict[str, list[str]]] = {}
    sprint_headers: dict[str, list[str]] = {}
    for issue_type, type_cfg in data["issue_types"].items():
        type_cfg = type_cfg or {}
        merged = {k: list(v) for k, v in common.items()}
        merged.update({k: list(v) for k, v in (type_cfg.get("columns") or {}).items()})
        columns[issue_type] = merged
        sprint_headers[issue_type] = list(type_cfg.get("sprint_columns") or [])

    return ColumnSchema(
        version=str(data["version"]),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        columns=columns,
        sprint_headers=sprint_headers,
    )


@lru_cache(maxsize=1)
def default_column_schema() -> ColumnSchema:
    return load_column_schema(DEFAULT_SCHEMA_PATH)


def _validate_alias_map(where: str, mapping: Any) -> None:
    if not isinstance(mapping, dict):
        raise ColumnSchemaError(f"'{where}' must be a mapping of field -> header list.")
    for field_name, aliases in mapping.items():
        if field_name not in COLUMN_FIELDS:
            raise ColumnSchemaError(f"Unknown field '{field_name}' in '{where}'.")
        if (
            not isinstance(aliases, list)
            or not aliases
            or not all(isinstance(a, str) and a.strip() for a in aliases)
        ):
            raise ColumnSchemaError(
                f"'{where}.{field_name}' must be a non-empty list of header names."
            )


def validate_column_schema(data: dict[str, Any]) -> None:
    """Raise ColumnSchemaError if data does not match the required shape.

    Validates:
      - Required top-level keys present
      - every known issue type is described, and no others
      - alias lists are non-empty lists of strings for known fields
      - every required field resolves to at least one header per issue type
    """
    if not isinstance(data, dict):
        raise ColumnSchemaError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ColumnSchemaError(f"Missing required YAML keys: {sorted(missing_keys)}")

    common = data.get("common") or {}
    _validate_alias_map("common", common)

    issue_types = data.get("issue_types")
    if not isinstance(issue_types, dict):
        raise ColumnSchemaError("'issue_types' must be a mapping.")
    unknown = set(issue_types) - set(ISSUE_TABLES)
    if unknown:
        raise ColumnSchemaError(f"Unknown issue types: {sorted(unknown)}")
    absent = set(ISSUE_TABLES) - set(issue_types)
    if absent:
        raise ColumnSchemaError(f"Issue types not described: {sorted(absent)}")

    for issue_type, type_cfg in issue_types.items():
        type_cfg = type_cfg or {}
        if not isinstance(type_cfg, dict):
            raise ColumnSchemaError(f"'issue_types.{issue_type}' must be a mapping.")
        overrides = type_cfg.get("columns") or {}
        _validate_alias_map(f"issue_types.{issue_type}.columns", overrides)
        sprint_columns = type_cfg.get("sprint_columns") or []
        if not isinstance(sprint_columns, list) or not all(
            isinstance(c, str) for c in sprint_columns
        ):
            raise ColumnSchemaError(
                f"'issue_types.{issue_type}.sprint_columns' must be a list of header names."
            )
        resolved = set(common) | set(overrides)
        missing_required = [f for f in REQUIRED_FIELDS if f not in resolved]
        if missing_required:
            raise ColumnSchemaError(
                f"Issue type '{issue_type}' has no headers for required fields: "
                f"{missing_required}"
            )
