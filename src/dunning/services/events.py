from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


@dataclass
class EventLogger:
    """Append-only ndjson log of editing events, one object per line."""

    path: Path | None
    workspace: str
    enabled: bool = True

    def log(
        self,
        *,
        event_type: str,
        entity_type: str,
        entity_id: str,
        timeline_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if not self.enabled or self.path is None:
            return
        payload = {
            "ts": datetime.now(UTC).replace(microsecond=0).isoformat(),
            "workspace": self.workspace,
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "timeline_id": timeline_id,
            "details": details or {},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, sort_keys=True) + "\n")


def disabled_logger(workspace: str = "") -> EventLogger:
    return EventLogger(path=None, workspace=workspace, enabled=False)
