"""Record <-> model conversion at the storage boundary.

Records are camelCase documents. Older library records used Portuguese field
names (``nome``, ``tipo``, ...) or ``title`` for the name; those are folded
into the canonical fields here and nowhere else.
"""

from __future__ import annotations

from typing import Any

from dunning.domain.models import Action, Condition, Day, Timeline
from dunning.domain.rules import ValidationError

LEGACY_ACTION_FIELDS = {
    "name": ("nome", "title"),
    "type": ("tipo",),
    "subject": ("assunto_email",),
    "message": ("conteudo_mensagem",),
    "sendTime": ("horario_envio",),
}


def action_to_record(action: Action) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": action.id,
        "type": action.type,
        "name": action.name,
        "subject": action.subject,
        "message": action.message,
        "conditions": [condition_to_record(c) for c in action.conditions],
    }
    if action.send_time is not None:
        record["sendTime"] = action.send_time
    if action.day_id is not None:
        record["dayId"] = action.day_id
    return record


def condition_to_record(condition: Condition) -> dict[str, Any]:
    return {
        "id": condition.id,
        "type": condition.type,
        "previousActionId": condition.previous_action_id,
        "action": action_to_record(condition.action),
    }


def day_to_record(day: Day) -> dict[str, Any]:
    return {
        "id": day.id,
        "day": day.day,
        "actions": [action_to_record(a) for a in day.actions],
        "active": day.active,
    }


def timeline_to_record(timeline: Timeline) -> dict[str, Any]:
    return {
        "id": timeline.id,
        "name": timeline.name,
        "days": [day_to_record(d) for d in timeline.days],
        "createdAt": timeline.created_at,
    }


def action_from_record(record: Any) -> Action:
    if not isinstance(record, dict):
        raise ValidationError("Action record must be a mapping.")
    data = _canonical_action_fields(record)
    action_id = data.get("id")
    if not action_id:
        raise ValidationError("Action record is missing id.")
    conditions = data.get("conditions") or []
    if not isinstance(conditions, list):
        raise ValidationError(f"Action {action_id} conditions must be a list.")
    return Action(
        id=str(action_id),
        type=data.get("type") or "",
        name=data.get("name") or "",
        subject=data.get("subject") or "",
        message=data.get("message") or "",
        send_time=data.get("sendTime") or None,
        conditions=[condition_from_record(c) for c in conditions],
        day_id=data.get("dayId") or None,
    )


def condition_from_record(record: Any) -> Condition:
    if not isinstance(record, dict):
        raise ValidationError("Condition record must be a mapping.")
    condition_id = record.get("id")
    if not condition_id:
        raise ValidationError("Condition record is missing id.")
    if "action" not in record:
        raise ValidationError(f"Condition {condition_id} is missing its then-action.")
    return Condition(
        id=str(condition_id),
        type=record.get("type") or "",
        previous_action_id=record.get("previousActionId") or "",
        action=action_from_record(record["action"]),
    )


def day_from_record(record: Any) -> Day:
    if not isinstance(record, dict):
        raise ValidationError("Day record must be a mapping.")
    offset = record.get("day")
    if not isinstance(offset, int) or isinstance(offset, bool):
        raise ValidationError("Day record offset must be an integer.")
    actions = record.get("actions") or []
    if not isinstance(actions, list):
        raise ValidationError(f"Day {offset} actions must be a list.")
    return Day(
        id=record.get("id") or f"day-{offset}",
        day=offset,
        actions=[action_from_record(a) for a in actions],
        active=bool(record.get("active", False)),
    )


def timeline_from_record(record: Any) -> Timeline:
    if not isinstance(record, dict):
        raise ValidationError("Timeline record must be a mapping.")
    timeline_id = record.get("id")
    if not timeline_id:
        raise ValidationError("Timeline record is missing id.")
    days = record.get("days") or []
    if not isinstance(days, list):
        raise ValidationError(f"Timeline {timeline_id} days must be a list.")
    return Timeline(
        id=str(timeline_id),
        name=record.get("name") or "",
        days=[day_from_record(d) for d in days],
        created_at=record.get("createdAt") or "",
    )


def _canonical_action_fields(record: dict[str, Any]) -> dict[str, Any]:
    data = dict(record)
    for canonical, aliases in LEGACY_ACTION_FIELDS.items():
        if data.get(canonical):
            continue
        for alias in aliases:
            if data.get(alias):
                data[canonical] = data[alias]
                break
    return data
