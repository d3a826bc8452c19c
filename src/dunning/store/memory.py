from __future__ import annotations

import copy
from typing import Any

from dunning.store.base import COLLECTIONS, record_id, require_collection


class MemoryStore:
    """Non-durable keyed store. Records are copied in and out."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {
            name: {} for name in COLLECTIONS
        }

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        require_collection(collection)
        return [copy.deepcopy(r) for r in self._collections[collection].values()]

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        require_collection(collection)
        record = self._collections[collection].get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def put(self, collection: str, record: dict[str, Any]) -> None:
        require_collection(collection)
        self._collections[collection][record_id(record)] = copy.deepcopy(record)

    def delete(self, collection: str, record_id: str) -> None:
        require_collection(collection)
        self._collections[collection].pop(record_id, None)
