from __future__ import annotations

import re
from collections.abc import Iterable

from dunning.domain.stages import MESSAGE_TYPES, ActionType

SEND_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


class ValidationError(ValueError):
    pass


class NotFoundError(LookupError):
    pass


class ConflictError(RuntimeError):
    def __init__(self, message: str, references: Iterable[tuple[str, str]] = ()) -> None:
        super().__init__(message)
        self.references = list(references)


def require(value: str | None, field: str) -> None:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required.")


def validate_enum(value: str | None, allowed: Iterable[str], field: str) -> None:
    if value is None:
        return
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")


def validate_send_time(value: str | None) -> None:
    if value is None:
        return
    if not SEND_TIME_RE.match(value):
        raise ValidationError("send_time must be HH:MM (24h).")


def validate_action_fields(
    action_type: str,
    name: str | None,
    subject: str | None,
    message: str | None,
    send_time: str | None = None,
) -> None:
    require(action_type, "type")
    validate_enum(action_type, [t.value for t in ActionType], "type")
    require(name, "name")
    if ActionType(action_type) in MESSAGE_TYPES:
        require(subject, "subject")
        require(message, "message")
    validate_send_time(send_time)
