from __future__ import annotations

import copy

from dunning.domain import rules
from dunning.domain.models import Day, Timeline, TimelineSummary
from dunning.domain.rules import ValidationError
from dunning.domain.stages import DEFAULT_TIMELINE_NAME, FIRST_DAY, LAST_DAY, day_id_for
from dunning.services.utils import new_id, utc_now_iso


def validate_day_range(first_day: int, last_day: int) -> None:
    if not first_day <= 0 <= last_day:
        raise ValidationError(
            f"Day range {first_day}..{last_day} must include the due date (0)."
        )


def build_days(first_day: int = FIRST_DAY, last_day: int = LAST_DAY) -> list[Day]:
    validate_day_range(first_day, last_day)
    return [
        Day(id=day_id_for(offset), day=offset, actions=[], active=offset == 0)
        for offset in range(first_day, last_day + 1)
    ]


def create_timeline(
    name: str | None = None,
    first_day: int = FIRST_DAY,
    last_day: int = LAST_DAY,
    default_name: str = DEFAULT_TIMELINE_NAME,
) -> Timeline:
    if name is not None and name.strip() == "":
        name = None
    return Timeline(
        id=f"timeline-{new_id()}",
        name=(name or default_name).strip(),
        days=build_days(first_day, last_day),
        created_at=utc_now_iso(),
    )


def rename_timeline(timeline: Timeline, name: str) -> Timeline:
    rules.require(name, "name")
    timeline.name = name.strip()
    return timeline


def duplicate_timeline(timeline: Timeline) -> Timeline:
    duplicate = copy.deepcopy(timeline)
    duplicate.id = f"timeline-{new_id()}"
    duplicate.name = f"{timeline.name} (Copy)"
    duplicate.created_at = utc_now_iso()
    return duplicate


def validate_days(timeline: Timeline) -> None:
    """Days must be unique, contiguous and contain the due date."""
    offsets = [day.day for day in timeline.days]
    if len(set(offsets)) != len(offsets):
        raise ValidationError(f"Timeline {timeline.id} has duplicate day offsets.")
    if not offsets:
        raise ValidationError(f"Timeline {timeline.id} has no days.")
    expected = list(range(min(offsets), max(offsets) + 1))
    if sorted(offsets) != expected:
        raise ValidationError(f"Timeline {timeline.id} day range has gaps.")
    validate_day_range(min(offsets), max(offsets))
    for day in timeline.days:
        if day.id != day_id_for(day.day):
            raise ValidationError(f"Day {day.day} has id {day.id}, expected {day_id_for(day.day)}.")


def summarize(timeline: Timeline) -> TimelineSummary:
    return TimelineSummary(
        timeline_id=timeline.id,
        name=timeline.name,
        created_at=timeline.created_at,
        day_count=len(timeline.days),
        active_day_count=len(timeline.active_days()),
        action_count=sum(len(day.actions) for day in timeline.days),
    )
