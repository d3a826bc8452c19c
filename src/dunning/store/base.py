from __future__ import annotations

from typing import Any, Protocol

TIMELINES = "timelines"
LIBRARY = "library"
COLLECTIONS = (TIMELINES, LIBRARY)


class StorageError(RuntimeError):
    pass


class KeyedStore(Protocol):
    def get_all(self, collection: str) -> list[dict[str, Any]]: ...

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None: ...

    def put(self, collection: str, record: dict[str, Any]) -> None: ...

    def delete(self, collection: str, record_id: str) -> None: ...


def require_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise StorageError(f"Unknown collection: {collection}")


def record_id(record: dict[str, Any]) -> str:
    value = record.get("id")
    if not value:
        raise StorageError("Record has no id.")
    return str(value)
