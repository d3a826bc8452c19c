from __future__ import annotations

import time
from datetime import UTC, datetime
from uuid import uuid4


def utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def now_millis() -> int:
    return time.time_ns() // 1_000_000


def new_id() -> str:
    return str(uuid4())
