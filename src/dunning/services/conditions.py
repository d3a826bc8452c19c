"""Conditional branching between actions.

A condition on a *holder* action reads: "if the previous action reached
outcome O, perform the then-action". The previous action must be visible
from the holder and placed no later than it: library actions are visible
everywhere, day actions only inside their own timeline and only from the
same or a later day. Library holders may only point at library actions.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from dunning.domain.models import Action, Condition, Library, Timeline
from dunning.domain.rules import ConflictError, NotFoundError, ValidationError
from dunning.domain.stages import eligible_outcomes
from dunning.services.actions import snapshot
from dunning.services.utils import new_id


class EditorState(str, Enum):
    SELECTING_PREVIOUS_ACTION = "selecting_previous_action"
    SELECTING_OUTCOME_TYPE = "selecting_outcome_type"
    SELECTING_THEN_ACTION = "selecting_then_action"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ConditionScope:
    """The actions a holder can see, with their day offsets (None = library)."""

    def __init__(self, library: Library, timeline: Timeline | None = None) -> None:
        self.library = library
        self.timeline = timeline
        self.offsets: dict[str, int | None] = {a.id: None for a in library.actions}
        self.actions: dict[str, Action] = {a.id: a for a in library.actions}
        if timeline is not None:
            for day, action in timeline.iter_actions():
                self.offsets[action.id] = day.day
                self.actions[action.id] = action

    def holder(self, action_id: str) -> Action:
        action = self.actions.get(action_id)
        if action is None:
            raise NotFoundError(f"Action not found: {action_id}")
        return action

    def visible_from(self, holder_id: str) -> list[Action]:
        holder_offset = self.offsets[holder_id]
        visible = []
        for action_id, action in self.actions.items():
            if action_id == holder_id:
                continue
            offset = self.offsets[action_id]
            if holder_offset is None and offset is not None:
                continue
            visible.append(action)
        return visible

    def precedes(self, candidate_id: str, holder_id: str) -> bool:
        candidate_offset = self.offsets.get(candidate_id)
        holder_offset = self.offsets.get(holder_id)
        if candidate_offset is None:
            return candidate_id in self.actions
        return holder_offset is not None and candidate_offset <= holder_offset

    def previous_candidates(self, holder_id: str) -> list[Action]:
        return [
            action
            for action in self.visible_from(holder_id)
            if self.precedes(action.id, holder_id) and _has_outcomes(action)
        ]

    def all_actions(self) -> list[Action]:
        return list(self.actions.values())


class ConditionEditor:
    """Step-by-step builder for one condition on one holder action.

    Nothing on the holder changes until the caller saves the finished
    condition through the workspace; cancelling just drops the editor.
    """

    def __init__(
        self,
        scope: ConditionScope,
        holder_id: str,
        condition: Condition | None = None,
        timeline_id: str | None = None,
    ) -> None:
        self.scope = scope
        self.holder = scope.holder(holder_id)
        self.timeline_id = timeline_id
        self.condition_id = condition.id if condition else None
        self.previous_action_id: str | None = None
        self.outcome: str | None = None
        self.then_action_id: str | None = None
        self.state = EditorState.SELECTING_PREVIOUS_ACTION
        if condition is not None:
            self.previous_action_id = condition.previous_action_id
            self.outcome = condition.type
            self.then_action_id = condition.action.id
            self.state = EditorState.COMPLETE

    @property
    def is_new(self) -> bool:
        return self.condition_id is None

    def previous_candidates(self) -> list[Action]:
        return self.scope.previous_candidates(self.holder.id)

    def then_candidates(self) -> list[Action]:
        candidates = self.scope.visible_from(self.holder.id)
        if self.previous_action_id:
            candidates = [a for a in candidates if a.id != self.previous_action_id]
        return candidates

    def offered_outcomes(self) -> tuple[str, ...]:
        if self.previous_action_id is None:
            return ()
        return eligible_outcomes(self.scope.actions[self.previous_action_id].type)

    def choose_previous(self, action_id: str) -> None:
        self._ensure_open()
        if action_id == self.holder.id:
            raise ValidationError("An action cannot condition on itself.")
        if action_id not in {a.id for a in self.previous_candidates()}:
            raise ValidationError(f"Action {action_id} is not an eligible previous action.")
        if action_id != self.previous_action_id:
            self.outcome = None
            if self.then_action_id == action_id:
                self.then_action_id = None
        self.previous_action_id = action_id
        self.state = EditorState.SELECTING_OUTCOME_TYPE
        if self.outcome is not None:
            self._advance_past_outcome()

    def choose_outcome(self, outcome: str) -> None:
        self._ensure_open()
        if self.previous_action_id is None:
            raise ValidationError("Choose a previous action first.")
        offered = self.offered_outcomes()
        if outcome not in offered:
            raise ValidationError(f"Outcome must be one of: {', '.join(offered)}")
        self.outcome = outcome
        self._advance_past_outcome()

    def choose_then(self, action_id: str) -> None:
        self._ensure_open()
        if self.outcome is None:
            raise ValidationError("Choose an outcome before the then-action.")
        if action_id == self.previous_action_id:
            raise ValidationError("Then-action cannot be the previous action.")
        if action_id not in {a.id for a in self.then_candidates()}:
            raise ValidationError(f"Action {action_id} is not an eligible then-action.")
        self.then_action_id = action_id
        self.state = EditorState.COMPLETE

    def build(self) -> Condition:
        self._ensure_open()
        if self.state is not EditorState.COMPLETE:
            raise ValidationError("Condition needs a previous action, an outcome and a then-action.")
        then_action = self.scope.actions.get(self.then_action_id)
        if then_action is None:
            raise ValidationError(f"Then-action no longer exists: {self.then_action_id}")
        return Condition(
            id=self.condition_id or f"condition-{new_id()}",
            type=self.outcome,
            previous_action_id=self.previous_action_id,
            action=snapshot(then_action),
        )

    def cancel(self) -> None:
        self.state = EditorState.CANCELLED

    def _advance_past_outcome(self) -> None:
        if self.then_action_id is not None:
            self.state = EditorState.COMPLETE
        else:
            self.state = EditorState.SELECTING_THEN_ACTION

    def _ensure_open(self) -> None:
        if self.state is EditorState.CANCELLED:
            raise ValidationError("Condition editor was cancelled.")


def validate_condition(scope: ConditionScope, holder: Action, condition: Condition) -> None:
    previous_id = condition.previous_action_id
    if not previous_id:
        raise ValidationError(f"Condition {condition.id} has no previous action.")
    if previous_id == holder.id:
        raise ValidationError(f"Condition {condition.id}: an action cannot condition on itself.")
    visible_ids = {a.id for a in scope.visible_from(holder.id)}
    if previous_id not in visible_ids:
        raise ValidationError(
            f"Condition {condition.id}: previous action {previous_id} is not visible from {holder.id}."
        )
    if not scope.precedes(previous_id, holder.id):
        raise ValidationError(
            f"Condition {condition.id}: previous action {previous_id} is placed after {holder.id}."
        )
    previous = scope.actions[previous_id]
    offered = eligible_outcomes(previous.type)
    if condition.type not in offered:
        allowed = ", ".join(offered) or "none"
        raise ValidationError(
            f"Condition {condition.id}: outcome {condition.type!r} not available for a "
            f"{previous.type} action (allowed: {allowed})."
        )
    then_id = condition.action.id
    if then_id == previous_id:
        raise ValidationError(f"Condition {condition.id}: then-action cannot be the previous action.")
    if then_id not in visible_ids:
        raise ValidationError(f"Condition {condition.id}: then-action {then_id} does not exist here.")


def upsert_condition(holder: Action, condition: Condition) -> bool:
    """Insert or replace by id. Returns True when the condition is new."""
    for index, existing in enumerate(holder.conditions):
        if existing.id == condition.id:
            holder.conditions[index] = condition
            return False
    holder.conditions.append(condition)
    return True


def remove_condition(holder: Action, condition_id: str) -> Condition:
    condition = holder.find_condition(condition_id)
    if condition is None:
        raise NotFoundError(f"Condition not found on {holder.id}: {condition_id}")
    holder.conditions.remove(condition)
    return condition


def find_cycle(actions: Iterable[Action]) -> list[str] | None:
    """Return one cycle in the holder -> previous-action graph, if any."""
    edges: dict[str, list[str]] = {}
    for action in actions:
        edges[action.id] = [c.previous_action_id for c in action.conditions]

    done: set[str] = set()
    for start in edges:
        if start in done:
            continue
        path: list[str] = []
        on_path: set[str] = set()
        stack = [(start, iter(edges.get(start, ())))]
        path.append(start)
        on_path.add(start)
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                path.pop()
                on_path.discard(node)
                done.add(node)
                continue
            if child in on_path:
                return path[path.index(child):] + [child]
            if child in done or child not in edges:
                continue
            stack.append((child, iter(edges[child])))
            path.append(child)
            on_path.add(child)
    return None


def ensure_acyclic(actions: Iterable[Action]) -> None:
    cycle = find_cycle(actions)
    if cycle:
        raise ValidationError(f"Conditions form a cycle: {' -> '.join(cycle)}")


def move_violations(
    timeline: Timeline, action_id: str, target_offset: int
) -> list[tuple[str, str]]:
    """Conditions that would point forward in time if ``action_id`` moved to ``target_offset``."""
    offsets = {action.id: day.day for day, action in timeline.iter_actions()}
    violations = []
    for _, holder in timeline.iter_actions():
        holder_offset = target_offset if holder.id == action_id else offsets[holder.id]
        for condition in holder.conditions:
            previous_id = condition.previous_action_id
            if previous_id not in offsets:
                continue
            if holder.id != action_id and previous_id != action_id:
                continue
            previous_offset = target_offset if previous_id == action_id else offsets[previous_id]
            if previous_offset > holder_offset:
                violations.append((holder.id, condition.id))
    return violations


def ensure_move_allowed(timeline: Timeline, action_id: str, target_offset: int) -> None:
    violations = move_violations(timeline, action_id, target_offset)
    if violations:
        raise ConflictError(
            f"Moving {action_id} would place a previous action after the action that depends on it.",
            violations,
        )


def _has_outcomes(action: Action) -> bool:
    try:
        return bool(eligible_outcomes(action.type))
    except ValueError:
        return False
