from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from dunning.services.utils import utc_now_iso
from dunning.store.base import LIBRARY, TIMELINES, StorageError, record_id, require_collection
from dunning.store.migrations import Schema, apply_schema

# Columns copied out of the JSON payload so they can be indexed.
PROJECTED_COLUMNS = {
    TIMELINES: {"name": "name", "created_at": "createdAt"},
    LIBRARY: {"name": "name"},
}


class SqliteStore:
    """Keyed document store: one table per collection, JSON payload per row."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def apply_schema(self, schema_path: Path) -> Schema:
        with self.connect() as conn:
            return apply_schema(conn, schema_path)

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        require_collection(collection)
        with self.connect() as conn:
            rows = conn.execute(f"SELECT id, payload FROM {collection} ORDER BY rowid").fetchall()
        return [_decode(row) for row in rows]

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        require_collection(collection)
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT id, payload FROM {collection} WHERE id = ?", (record_id,)
            ).fetchone()
        return _decode(row) if row else None

    def put(self, collection: str, record: dict[str, Any]) -> None:
        require_collection(collection)
        key = record_id(record)
        try:
            payload = json.dumps(record, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Cannot serialize {collection}/{key}: {exc}") from exc
        projected = PROJECTED_COLUMNS[collection]
        columns = ["id", *projected, "payload", "updated_at"]
        params = [key, *(record.get(src) for src in projected.values()), payload, utc_now_iso()]
        assignments = ", ".join(f"{col}=excluded.{col}" for col in columns[1:])
        query = (
            f"INSERT INTO {collection} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT(id) DO UPDATE SET {assignments}"
        )
        with self.connect() as conn:
            conn.execute(query, params)

    def delete(self, collection: str, record_id: str) -> None:
        require_collection(collection)
        with self.connect() as conn:
            conn.execute(f"DELETE FROM {collection} WHERE id = ?", (record_id,))


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    try:
        return json.loads(row["payload"])
    except ValueError as exc:
        raise StorageError(f"Corrupt payload for record {row['id']}: {exc}") from exc
