from __future__ import annotations

from enum import Enum


class ActionType(str, Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SMS = "sms"
    NEGATIVAR = "negativar"


class ConditionType(str, Enum):
    DELIVERED = "delivered"
    NOT_DELIVERED = "not_delivered"
    OPENED = "opened"
    NOT_OPENED = "not_opened"
    CLICKED = "clicked"
    NOT_CLICKED = "not_clicked"


# Outcomes a previous action can report, by its type. negativar reports none.
ELIGIBLE_OUTCOMES: dict[ActionType, tuple[ConditionType, ...]] = {
    ActionType.EMAIL: tuple(ConditionType),
    ActionType.WHATSAPP: (ConditionType.DELIVERED, ConditionType.NOT_DELIVERED),
    ActionType.SMS: (ConditionType.DELIVERED, ConditionType.NOT_DELIVERED),
    ActionType.NEGATIVAR: (),
}

MESSAGE_TYPES = frozenset({ActionType.EMAIL, ActionType.WHATSAPP, ActionType.SMS})

FIRST_DAY = -10
LAST_DAY = 90
DEFAULT_TIMELINE_NAME = "Untitled Timeline"


def eligible_outcomes(action_type: str) -> tuple[str, ...]:
    return tuple(outcome.value for outcome in ELIGIBLE_OUTCOMES[ActionType(action_type)])


def day_id_for(offset: int) -> str:
    return f"day-{offset}"


def day_label(offset: int) -> str:
    if offset == 0:
        return "Due Date"
    if offset > 0:
        return f"D+{offset}"
    return f"D{offset}"
