"""Export and import of timeline configuration documents.

The export document holds the timeline name, its *active* days and the
library actions. Inactive days are dropped, so the document is a
configuration hand-off, not a backup: importing it yields a new timeline in
which only the exported days are active.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from openpyxl import Workbook

from dunning.domain import codec
from dunning.domain.models import Action, Library, Timeline
from dunning.domain.rules import ValidationError
from dunning.domain.stages import FIRST_DAY, LAST_DAY, day_id_for
from dunning.services import actions, conditions, timelines

DAY_HEADERS = ["day", "label", "action_id", "type", "name", "subject", "send_time", "conditions"]
LIBRARY_HEADERS = ["action_id", "type", "name", "subject", "send_time", "conditions"]


def export_config(timeline: Timeline, library: Library) -> dict[str, Any]:
    return {
        "name": timeline.name,
        "days": [codec.day_to_record(day) for day in timeline.active_days()],
        "libraryActions": [codec.action_to_record(a) for a in library.actions],
    }


def dump_config(document: dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def write_config(document: dict[str, Any], out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(dump_config(document), encoding="utf-8")


def read_config(in_path: Path) -> dict[str, Any]:
    try:
        document = json.loads(in_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ValidationError(f"Cannot read {in_path}: {exc}") from exc
    except ValueError as exc:
        raise ValidationError(f"{in_path} is not a valid export document: {exc}") from exc
    if not isinstance(document, dict):
        raise ValidationError(f"{in_path} must contain a JSON object.")
    return document


def import_config(
    document: dict[str, Any],
    library: Library,
    first_day: int = FIRST_DAY,
    last_day: int = LAST_DAY,
) -> tuple[Timeline, list[Action]]:
    """Build a new timeline from an export document.

    Every invariant is checked again. Returns the timeline and the library
    actions from the document that the library does not know yet; neither
    ``library`` nor anything else is modified.
    """
    raw_days = document.get("days") or []
    raw_library = document.get("libraryActions") or []
    if not isinstance(raw_days, list) or not isinstance(raw_library, list):
        raise ValidationError("days and libraryActions must be lists.")
    name = document.get("name")
    if name is not None and not isinstance(name, str):
        raise ValidationError("name must be a string.")

    added: list[Action] = []
    working = Library(actions=list(library.actions))
    for record in raw_library:
        action = codec.action_from_record(record)
        if library.find(action.id) is not None:
            continue
        if working.find(action.id) is not None:
            raise ValidationError(f"Duplicate library action id: {action.id}")
        actions.validate_action(action)
        action.day_id = None
        working.actions.append(action)
        added.append(action)

    parsed_days = [codec.day_from_record(record) for record in raw_days]
    offsets = [day.day for day in parsed_days]
    if len(set(offsets)) != len(offsets):
        raise ValidationError("Export document lists the same day twice.")
    first = min([first_day, *offsets])
    last = max([last_day, *offsets])
    timeline = timelines.create_timeline(name, first, last)
    for day in timeline.days:
        day.active = False

    seen = {action.id for action in working.actions}
    for parsed in parsed_days:
        day = timeline.find_day(day_id_for(parsed.day))
        day.active = True
        for action in parsed.actions:
            if action.id in seen:
                raise ValidationError(f"Duplicate action id: {action.id}")
            actions.validate_action(action)
            action.day_id = day.id
            day.actions.append(action)
            seen.add(action.id)

    scope = conditions.ConditionScope(working, timeline)
    holders = [a for a in scope.all_actions() if library.find(a.id) is None]
    for holder in holders:
        condition_ids = set()
        for condition in holder.conditions:
            if condition.id in condition_ids:
                raise ValidationError(f"Duplicate condition id on {holder.id}: {condition.id}")
            condition_ids.add(condition.id)
            conditions.validate_condition(scope, holder, condition)
            condition.action = actions.snapshot(scope.actions[condition.action.id])
    conditions.ensure_acyclic(scope.all_actions())
    return timeline, added


def export_excel(timeline: Timeline, library: Library, out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)

    day_rows = (
        [day.day, day.label, *_action_row(action)]
        for day in timeline.active_days()
        for action in day.actions
    )
    _write_rows(wb.create_sheet(title="days"), DAY_HEADERS, day_rows)

    library_ws = wb.create_sheet(title="library")
    _write_rows(library_ws, LIBRARY_HEADERS, (_action_row(a) for a in library.actions))
    wb.save(out_path)


def _action_row(action: Action) -> list[Any]:
    return [
        action.id,
        action.type,
        action.name,
        action.subject,
        action.send_time,
        len(action.conditions),
    ]


def _write_rows(ws, headers: list[str], rows: Iterable[list[Any]]) -> None:
    ws.append(headers)
    for row in rows:
        ws.append(row)
