import json
from pathlib import Path

import pytest
from openpyxl import load_workbook

from dunning.domain.models import ActionDraft
from dunning.domain.rules import ValidationError
from dunning.services import exports
from dunning.services.workspace import TimelineWorkspace
from dunning.store.memory import MemoryStore


def _email(name: str) -> ActionDraft:
    return ActionDraft(type="email", name=name, subject="Hi", message="body")


def _populated() -> tuple[TimelineWorkspace, str]:
    ws = TimelineWorkspace(MemoryStore())
    timeline = ws.create_timeline("Standard")
    welcome = ws.add_library_action(_email("Welcome"))
    ws.move_action(timeline.id, None, "day-0", welcome.id)
    reminder = ws.create_day_action(timeline.id, "day-0", _email("Reminder"))
    ws.toggle_day_active(timeline.id, "day-3")
    holder = ws.create_day_action(
        timeline.id, "day-3", ActionDraft(type="sms", name="Nudge", subject="s", message="m")
    )
    ws.create_day_action(timeline.id, "day-9", ActionDraft(type="negativar", name="Hidden"))
    editor = ws.edit_condition(timeline.id, holder.id)
    editor.choose_previous(reminder.id)
    editor.choose_outcome("not_opened")
    editor.choose_then(welcome.id)
    ws.save_condition(editor)
    return ws, timeline.id


def test_export_contains_only_active_days() -> None:
    ws, timeline_id = _populated()

    document = ws.export_config(timeline_id)

    assert document["name"] == "Standard"
    assert [d["day"] for d in document["days"]] == [0, 3]
    assert len(document["days"]) == len(ws.get_timeline(timeline_id).active_days())
    assert [a["name"] for a in document["libraryActions"]] == ["Welcome"]
    assert "Hidden" not in exports.dump_config(document)


def test_dump_is_deterministic() -> None:
    ws, timeline_id = _populated()
    first = exports.dump_config(ws.export_config(timeline_id))
    second = exports.dump_config(ws.export_config(timeline_id))
    assert first == second
    assert json.loads(first)["days"][1]["actions"][0]["conditions"][0]["type"] == "not_opened"


def test_import_rebuilds_timeline_and_revalidates(tmp_path: Path) -> None:
    ws, timeline_id = _populated()
    path = tmp_path / "standard.json"
    exports.write_config(ws.export_config(timeline_id), path)

    fresh = TimelineWorkspace(MemoryStore())
    imported = fresh.import_config(exports.read_config(path))

    assert imported.id != timeline_id
    assert imported.name == "Standard"
    assert len(imported.days) == 101
    assert [d.day for d in imported.active_days()] == [0, 3]
    assert [a.name for a in fresh.list_library_actions()] == ["Welcome"]
    nudge = imported.find_day("day-3").actions[0]
    assert nudge.conditions[0].type == "not_opened"


def test_import_keeps_existing_library_entries() -> None:
    ws, timeline_id = _populated()
    document = ws.export_config(timeline_id)

    ws.import_config(document)

    assert len(ws.list_library_actions()) == 1
    assert len(ws.list_timelines()) == 2


def test_import_rejects_ineligible_outcome() -> None:
    ws, timeline_id = _populated()
    document = ws.export_config(timeline_id)
    document["days"][1]["actions"][0]["conditions"][0]["type"] = "clicked"
    previous_id = document["days"][1]["actions"][0]["conditions"][0]["previousActionId"]
    for action in document["days"][0]["actions"]:
        if action["id"] == previous_id:
            action["type"] = "sms"

    with pytest.raises(ValidationError, match="not available"):
        TimelineWorkspace(MemoryStore()).import_config(document)


def test_import_rejects_dangling_reference() -> None:
    ws, timeline_id = _populated()
    document = ws.export_config(timeline_id)
    document["days"][1]["actions"][0]["conditions"][0]["previousActionId"] = "ghost"

    fresh = TimelineWorkspace(MemoryStore())
    with pytest.raises(ValidationError):
        fresh.import_config(document)
    assert fresh.list_timelines() == []
    assert fresh.list_library_actions() == []


def test_import_rejects_blank_required_fields() -> None:
    document = {
        "name": "Broken",
        "days": [{"id": "day-0", "day": 0, "active": True, "actions": [
            {"id": "a", "type": "email", "name": "No subject", "subject": "", "message": "m"}
        ]}],
        "libraryActions": [],
    }
    with pytest.raises(ValidationError, match="subject"):
        TimelineWorkspace(MemoryStore()).import_config(document)


def test_import_rejects_forward_reference() -> None:
    document = {
        "name": "Backwards",
        "days": [
            {"id": "day-0", "day": 0, "active": True, "actions": [
                {"id": "early", "type": "sms", "name": "Early", "subject": "s", "message": "m",
                 "conditions": [{"id": "c", "type": "opened", "previousActionId": "late",
                                 "action": {"id": "late", "type": "email", "name": "Late"}}]},
            ]},
            {"id": "day-4", "day": 4, "active": True, "actions": [
                {"id": "late", "type": "email", "name": "Late", "subject": "s", "message": "m"},
            ]},
        ],
        "libraryActions": [],
    }
    with pytest.raises(ValidationError, match="placed after"):
        TimelineWorkspace(MemoryStore()).import_config(document)


def test_import_rejects_non_string_name() -> None:
    ws = TimelineWorkspace(MemoryStore())
    with pytest.raises(ValidationError, match="name must be a string"):
        ws.import_config({"name": 123, "days": [], "libraryActions": []})
    assert ws.list_timelines() == []


def test_read_config_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="Cannot read"):
        exports.read_config(tmp_path / "missing.json")


def test_read_config_rejects_malformed_json(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValidationError, match="not a valid export document"):
        exports.read_config(path)


def test_export_excel_writes_days_and_library(tmp_path: Path) -> None:
    ws, timeline_id = _populated()
    out = tmp_path / "out" / "standard.xlsx"

    exports.export_excel(ws.get_timeline(timeline_id), ws.library, out)

    wb = load_workbook(out)
    assert wb.sheetnames == ["days", "library"]
    days = list(wb["days"].iter_rows(values_only=True))
    assert days[0] == tuple(exports.DAY_HEADERS)
    assert [row[1] for row in days[1:]] == ["Due Date", "Due Date", "D+3"]
    library = list(wb["library"].iter_rows(values_only=True))
    assert library[1][2] == "Welcome"
