from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum

from dunning.domain.models import Action, Day, Library, Timeline
from dunning.domain.rules import ConflictError, NotFoundError
from dunning.services import conditions
from dunning.services.utils import new_id, now_millis


class PlacementKind(str, Enum):
    MOVED = "moved"
    COPIED_FROM_LIBRARY = "copied_from_library"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class Placement:
    kind: PlacementKind
    action: Action
    source_day_id: str | None
    target_day_id: str


def require_day(timeline: Timeline, day_id: str) -> Day:
    day = timeline.find_day(day_id)
    if day is None:
        raise NotFoundError(f"Day not found in timeline {timeline.id}: {day_id}")
    return day


def require_action(timeline: Timeline, action_id: str) -> tuple[Day, Action]:
    located = timeline.locate(action_id)
    if located is None:
        raise NotFoundError(f"Action not found in timeline {timeline.id}: {action_id}")
    return located


def add_action_to_day(timeline: Timeline, day_id: str, action: Action) -> bool:
    """Append ``action`` to the day, or replace it in place if already there.

    Returns True when the action was appended.
    """
    day = require_day(timeline, day_id)
    located = timeline.locate(action.id)
    if located is not None and located[0].id != day.id:
        raise ConflictError(
            f"Action {action.id} is already placed on {located[0].id}; move it instead."
        )
    action.day_id = day.id
    for index, existing in enumerate(day.actions):
        if existing.id == action.id:
            day.actions[index] = action
            return False
    day.actions.append(action)
    return True


def remove_action(timeline: Timeline, action_id: str) -> Action:
    day, action = require_action(timeline, action_id)
    day.actions.remove(action)
    return action


def toggle_day_active(timeline: Timeline, day_id: str) -> Day:
    day = require_day(timeline, day_id)
    day.active = not day.active
    return day


def move_action(
    timeline: Timeline,
    library: Library,
    source_day_id: str | None,
    target_day_id: str,
    action_id: str,
) -> Placement:
    """Drop an action onto ``target_day_id``.

    From the library (``source_day_id`` is None) the action is copied under a
    derived id and the library entry is left alone. From another day the
    action is relocated and keeps its id.
    """
    target = require_day(timeline, target_day_id)
    if source_day_id == target_day_id:
        action = target.find_action(action_id)
        if action is None:
            raise NotFoundError(f"Action {action_id} is not on {source_day_id}.")
        return Placement(PlacementKind.UNCHANGED, action, source_day_id, target_day_id)

    if source_day_id is None:
        original = library.find(action_id)
        if original is None:
            raise NotFoundError(f"Library action not found: {action_id}")
        copied = copy.deepcopy(original)
        copied.id = _copy_id(timeline, library, original.id)
        copied.day_id = target.id
        for condition in copied.conditions:
            condition.id = f"condition-{new_id()}"
        target.actions.append(copied)
        return Placement(PlacementKind.COPIED_FROM_LIBRARY, copied, None, target.id)

    source = require_day(timeline, source_day_id)
    action = source.find_action(action_id)
    if action is None:
        raise NotFoundError(f"Action {action_id} is not on {source_day_id}.")
    conditions.ensure_move_allowed(timeline, action_id, target.day)
    source.actions.remove(action)
    action.day_id = target.id
    target.actions.append(action)
    return Placement(PlacementKind.MOVED, action, source.id, target.id)


def _copy_id(timeline: Timeline, library: Library, original_id: str) -> str:
    stamp = now_millis()
    candidate = f"{original_id}-copy-{stamp}"
    while timeline.locate(candidate) is not None or library.find(candidate) is not None:
        stamp += 1
        candidate = f"{original_id}-copy-{stamp}"
    return candidate
