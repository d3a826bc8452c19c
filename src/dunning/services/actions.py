from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import replace

from dunning.domain import rules
from dunning.domain.models import Action, ActionDraft
from dunning.domain.rules import ConflictError
from dunning.services.utils import new_id

COPY_SUFFIX = " (Copy)"


def new_action(draft: ActionDraft, day_id: str | None = None) -> Action:
    validate_draft(draft)
    return Action(
        id=new_id(),
        type=draft.type,
        name=draft.name.strip(),
        subject=draft.subject,
        message=draft.message,
        send_time=draft.send_time,
        day_id=day_id,
    )


def apply_draft(action: Action, draft: ActionDraft) -> Action:
    validate_draft(draft)
    action.type = draft.type
    action.name = draft.name.strip()
    action.subject = draft.subject
    action.message = draft.message
    action.send_time = draft.send_time
    return action


def clone_action(action: Action) -> Action:
    # Conditions point at actions that may not exist where the clone ends up.
    return replace(
        copy.deepcopy(action),
        id=new_id(),
        name=f"{action.name}{COPY_SUFFIX}",
        conditions=[],
    )


def snapshot(action: Action) -> Action:
    return replace(copy.deepcopy(action), conditions=[])


def validate_draft(draft: ActionDraft) -> None:
    rules.validate_action_fields(
        draft.type, draft.name, draft.subject, draft.message, draft.send_time
    )


def validate_action(action: Action) -> None:
    rules.require(action.id, "id")
    try:
        rules.validate_action_fields(
            action.type, action.name, action.subject, action.message, action.send_time
        )
    except rules.ValidationError as exc:
        raise rules.ValidationError(f"Action {action.id}: {exc}") from exc


def find_references(action_id: str, actions: Iterable[Action]) -> list[tuple[str, str]]:
    """Return (holder_id, condition_id) for every condition that uses ``action_id``."""
    references = []
    for holder in actions:
        if holder.id == action_id:
            continue
        for condition in holder.conditions:
            if condition.previous_action_id == action_id or condition.action.id == action_id:
                references.append((holder.id, condition.id))
    return references


def ensure_unreferenced(action_id: str, actions: Iterable[Action]) -> None:
    references = find_references(action_id, actions)
    if references:
        holders = ", ".join(sorted({holder for holder, _ in references}))
        raise ConflictError(
            f"Action {action_id} is referenced by conditions on: {holders}. "
            "Remove those conditions first.",
            references,
        )


def refresh_snapshots(updated: Action, actions: Iterable[Action]) -> int:
    refreshed = 0
    for holder in actions:
        for condition in holder.conditions:
            if condition.action.id == updated.id:
                condition.action = snapshot(updated)
                refreshed += 1
    return refreshed
