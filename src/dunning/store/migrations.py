from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from dunning.store.base import COLLECTIONS

COLUMN_TYPES = {
    "text": "TEXT",
    "json": "TEXT",
    "datetime": "TEXT",
    "integer": "INTEGER",
}


@dataclass(frozen=True)
class Schema:
    version: int
    tables: dict[str, Any]


class SchemaError(RuntimeError):
    pass


def load_schema(schema_path: Path) -> Schema:
    try:
        data = yaml.safe_load(Path(schema_path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SchemaError(f"Cannot read schema {schema_path}: {exc}") from exc
    tables = data.get("tables", {})
    if not isinstance(tables, dict):
        raise SchemaError("Schema tables must be a mapping.")
    missing = [name for name in COLLECTIONS if name not in tables]
    if missing:
        raise SchemaError(f"Schema is missing collections: {', '.join(missing)}")
    return Schema(version=int(data.get("version", 1)), tables=tables)


def apply_schema(conn: sqlite3.Connection, schema_path: Path) -> Schema:
    schema = load_schema(schema_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS __schema_meta (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    for table_name, table_def in schema.tables.items():
        conn.execute(_table_ddl(table_name, table_def))
        for statement in _index_ddl(table_name, table_def):
            conn.execute(statement)
    conn.execute(
        "INSERT OR REPLACE INTO __schema_meta (version, applied_at) VALUES (?, datetime('now'))",
        (schema.version,),
    )
    return schema


def applied_version(conn: sqlite3.Connection) -> int | None:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = '__schema_meta'"
    ).fetchone()
    if row is None:
        return None
    row = conn.execute("SELECT MAX(version) FROM __schema_meta").fetchone()
    return row[0] if row else None


def _table_ddl(table_name: str, table_def: Any) -> str:
    if not isinstance(table_def, dict) or not isinstance(table_def.get("fields"), dict):
        raise SchemaError(f"Table {table_name} fields must be a mapping.")
    primary_key = table_def.get("primary_key")
    columns = []
    for field_name, spec in table_def["fields"].items():
        spec = spec or {}
        column_type = COLUMN_TYPES.get(spec.get("type"))
        if column_type is None:
            raise SchemaError(f"Unknown field type {spec.get('type')} for {table_name}.{field_name}.")
        parts = [field_name, column_type]
        if field_name == primary_key:
            parts.append("PRIMARY KEY")
        elif spec.get("required", False):
            parts.append("NOT NULL")
        columns.append(" ".join(parts))
    return f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(columns)});"


def _index_ddl(table_name: str, table_def: dict[str, Any]) -> list[str]:
    statements = []
    for index_fields in table_def.get("indexes") or []:
        if not isinstance(index_fields, list) or not index_fields:
            continue
        name = f"idx_{table_name}_{'_'.join(index_fields)}"
        statements.append(
            f"CREATE INDEX IF NOT EXISTS {name} ON {table_name} ({', '.join(index_fields)});"
        )
    return statements
