"""Write-behind persistence for timeline and library aggregates.

Edits happen in memory; each edit marks its aggregate dirty with a freshly
serialized record. ``flush`` pushes the pending records to the store while
holding a per-aggregate lock, so two saves of the same aggregate never
interleave. Failed writes stay pending until a later flush succeeds.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dunning.store.base import KeyedStore, StorageError, record_id

PUT = "put"
DELETE = "delete"


@dataclass(frozen=True)
class PendingWrite:
    collection: str
    record_id: str
    op: str
    record: dict[str, Any] | None = None


class WriteQueue:
    def __init__(self, store: KeyedStore) -> None:
        self._store = store
        self._pending: dict[tuple[str, str], PendingWrite] = {}
        self._pending_lock = threading.Lock()
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}

    def mark_put(self, collection: str, record: dict[str, Any]) -> None:
        key = (collection, record_id(record))
        self._set(key, PendingWrite(collection, key[1], PUT, record))

    def mark_delete(self, collection: str, record_id: str) -> None:
        self._set((collection, record_id), PendingWrite(collection, record_id, DELETE))

    def pending(self) -> list[tuple[str, str]]:
        with self._pending_lock:
            return list(self._pending)

    def has_pending(self) -> bool:
        with self._pending_lock:
            return bool(self._pending)

    def flush(self) -> int:
        """Write every pending record. Returns how many writes succeeded."""
        with self._pending_lock:
            keys = list(self._pending)

        written = 0
        failures: list[str] = []
        for key in keys:
            with self._lock_for(key):
                with self._pending_lock:
                    write = self._pending.get(key)
                # Another flush already wrote this key, or a newer mark replaced it.
                if write is None:
                    continue
                try:
                    if write.op == PUT:
                        self._store.put(write.collection, write.record)
                    else:
                        self._store.delete(write.collection, write.record_id)
                except StorageError as exc:
                    failures.append(f"{write.collection}/{write.record_id} ({exc})")
                    continue
            with self._pending_lock:
                # A newer edit queued during the write stays pending.
                if self._pending.get(key) is write:
                    del self._pending[key]
            written += 1

        if failures:
            raise StorageError(f"Failed to persist: {'; '.join(failures)}")
        return written

    def _set(self, key: tuple[str, str], write: PendingWrite) -> None:
        with self._pending_lock:
            self._pending[key] = write

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._pending_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock


class Autosaver:
    """Debounced flush: each ``touch`` restarts the quiet-period timer."""

    def __init__(
        self,
        flush: Callable[[], int],
        debounce_seconds: float,
        on_error: Callable[[StorageError], None] | None = None,
    ) -> None:
        self._flush = flush
        self.debounce_seconds = debounce_seconds
        self._on_error = on_error
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()
        self.last_error: StorageError | None = None

    @property
    def enabled(self) -> bool:
        return self.debounce_seconds > 0

    def touch(self) -> None:
        if not self.enabled:
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.run)
            self._timer.daemon = True
            self._timer.start()

    def run(self) -> None:
        try:
            self._flush()
        except StorageError as exc:
            self.last_error = exc
            if self._on_error is not None:
                self._on_error(exc)
        else:
            self.last_error = None

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
