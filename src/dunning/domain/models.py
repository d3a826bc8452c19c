from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from dunning.domain.stages import day_label


@dataclass(frozen=True)
class ActionDraft:
    """Editable fields of an action, as submitted by a form or the CLI."""

    type: str
    name: str
    subject: str = ""
    message: str = ""
    send_time: str | None = None


@dataclass
class Action:
    id: str
    type: str
    name: str
    subject: str = ""
    message: str = ""
    send_time: str | None = None
    conditions: list[Condition] = field(default_factory=list)
    # Relation to the containing day; the day owns the action.
    day_id: str | None = None

    def find_condition(self, condition_id: str) -> Condition | None:
        for condition in self.conditions:
            if condition.id == condition_id:
                return condition
        return None


@dataclass
class Condition:
    id: str
    type: str
    previous_action_id: str
    # Snapshot of the then-action taken when the condition was saved.
    action: Action


@dataclass
class Day:
    id: str
    day: int
    actions: list[Action] = field(default_factory=list)
    active: bool = False

    @property
    def label(self) -> str:
        return day_label(self.day)

    def find_action(self, action_id: str) -> Action | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None


@dataclass
class Timeline:
    id: str
    name: str
    days: list[Day]
    created_at: str

    def find_day(self, day_id: str) -> Day | None:
        for day in self.days:
            if day.id == day_id:
                return day
        return None

    def active_days(self) -> list[Day]:
        return [day for day in self.days if day.active]

    def iter_actions(self) -> Iterator[tuple[Day, Action]]:
        for day in self.days:
            for action in day.actions:
                yield day, action

    def locate(self, action_id: str) -> tuple[Day, Action] | None:
        for day, action in self.iter_actions():
            if action.id == action_id:
                return day, action
        return None


@dataclass
class Library:
    actions: list[Action] = field(default_factory=list)

    def find(self, action_id: str) -> Action | None:
        for action in self.actions:
            if action.id == action_id:
                return action
        return None


@dataclass(frozen=True)
class TimelineSummary:
    timeline_id: str
    name: str
    created_at: str
    day_count: int
    active_day_count: int
    action_count: int
