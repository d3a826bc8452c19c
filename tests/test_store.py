import sqlite3
from pathlib import Path

import pytest

from dunning.store.base import LIBRARY, TIMELINES, StorageError
from dunning.store.memory import MemoryStore
from dunning.store.migrations import SchemaError, applied_version, load_schema
from dunning.store.sqlite import SqliteStore

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "test.sqlite")
    store.apply_schema(SCHEMA_PATH)
    return store


def test_apply_schema_creates_tables(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with store.connect() as conn:
        names = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        version = applied_version(conn)

    assert {"timelines", "library", "__schema_meta"} <= names
    assert version == 1


def test_apply_schema_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.put(LIBRARY, {"id": "a", "name": "Bureau"})

    store.apply_schema(SCHEMA_PATH)

    assert store.get(LIBRARY, "a") == {"id": "a", "name": "Bureau"}


def test_put_upserts_and_projects_columns(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.put(TIMELINES, {"id": "t1", "name": "Old", "createdAt": 1, "days": []})
    store.put(TIMELINES, {"id": "t1", "name": "New", "createdAt": 1, "days": []})

    assert store.get(TIMELINES, "t1")["name"] == "New"
    assert len(store.get_all(TIMELINES)) == 1
    with store.connect() as conn:
        row = conn.execute("SELECT name FROM timelines WHERE id = 't1'").fetchone()
    assert row["name"] == "New"


def test_get_all_keeps_insertion_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    for key in ("b", "a", "c"):
        store.put(LIBRARY, {"id": key, "name": key})

    assert [r["id"] for r in store.get_all(LIBRARY)] == ["b", "a", "c"]


def test_delete_missing_record_is_a_no_op(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.put(LIBRARY, {"id": "a", "name": "Bureau"})

    store.delete(LIBRARY, "a")
    store.delete(LIBRARY, "a")

    assert store.get(LIBRARY, "a") is None


def test_unknown_collection_is_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(StorageError, match="Unknown collection"):
        store.put("leads", {"id": "x"})


def test_record_without_id_is_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(StorageError, match="no id"):
        store.put(LIBRARY, {"name": "nameless"})


def test_missing_tables_surface_as_storage_error(tmp_path: Path) -> None:
    store = SqliteStore(tmp_path / "empty.sqlite")
    with pytest.raises(StorageError):
        store.get_all(TIMELINES)


def test_corrupt_payload_surfaces_as_storage_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with sqlite3.connect(store.db_path) as conn:
        conn.execute(
            "INSERT INTO library (id, name, payload, updated_at) "
            "VALUES ('a', 'Bureau', '{not json', '2026-01-01T00:00:00Z')"
        )

    with pytest.raises(StorageError, match="Corrupt payload"):
        store.get(LIBRARY, "a")


def test_schema_requires_both_collections(tmp_path: Path) -> None:
    schema_path = tmp_path / "schema.yaml"
    schema_path.write_text(
        "version: 1\ntables:\n  timelines:\n    primary_key: id\n    fields:\n      id: {type: text}\n",
        encoding="utf-8",
    )
    with pytest.raises(SchemaError, match="library"):
        load_schema(schema_path)


def test_memory_store_copies_records() -> None:
    store = MemoryStore()
    record = {"id": "a", "conditions": []}
    store.put(LIBRARY, record)
    record["conditions"].append("changed")

    fetched = store.get(LIBRARY, "a")
    fetched["name"] = "also changed"

    assert store.get(LIBRARY, "a") == {"id": "a", "conditions": []}
