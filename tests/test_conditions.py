import pytest

from dunning.domain.models import Action, ActionDraft, Condition
from dunning.domain.rules import ConflictError, NotFoundError, ValidationError
from dunning.services.conditions import EditorState, find_cycle
from dunning.services.workspace import TimelineWorkspace
from dunning.store.memory import MemoryStore


def _draft(action_type: str, name: str) -> ActionDraft:
    if action_type == "negativar":
        return ActionDraft(type=action_type, name=name)
    return ActionDraft(type=action_type, name=name, subject="s", message="m")


def _workspace() -> TimelineWorkspace:
    return TimelineWorkspace(MemoryStore())


def test_email_offers_all_six_outcomes() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    email = ws.create_day_action(timeline.id, "day-0", _draft("email", "Email"))
    holder = ws.create_day_action(timeline.id, "day-1", _draft("sms", "Follow up"))

    editor = ws.edit_condition(timeline.id, holder.id)
    editor.choose_previous(email.id)

    assert set(editor.offered_outcomes()) == {
        "delivered",
        "not_delivered",
        "opened",
        "not_opened",
        "clicked",
        "not_clicked",
    }


@pytest.mark.parametrize("action_type", ["whatsapp", "sms"])
def test_whatsapp_and_sms_offer_delivery_outcomes_only(action_type: str) -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    previous = ws.create_day_action(timeline.id, "day-0", _draft(action_type, "Msg"))
    holder = ws.create_day_action(timeline.id, "day-2", _draft("email", "Holder"))

    editor = ws.edit_condition(timeline.id, holder.id)
    editor.choose_previous(previous.id)

    assert set(editor.offered_outcomes()) == {"delivered", "not_delivered"}
    with pytest.raises(ValidationError):
        editor.choose_outcome("opened")


def test_negativar_is_not_a_previous_candidate() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    bureau = ws.create_day_action(timeline.id, "day-0", _draft("negativar", "Bureau"))
    holder = ws.create_day_action(timeline.id, "day-5", _draft("email", "Holder"))

    editor = ws.edit_condition(timeline.id, holder.id)

    assert bureau.id not in {a.id for a in editor.previous_candidates()}
    assert bureau.id in {a.id for a in editor.then_candidates()}
    with pytest.raises(ValidationError):
        editor.choose_previous(bureau.id)


def test_self_reference_is_rejected() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    ws.create_day_action(timeline.id, "day-0", _draft("sms", "B"))

    editor = ws.edit_condition(timeline.id, a.id)

    assert a.id not in {c.id for c in editor.previous_candidates()}
    with pytest.raises(ValidationError, match="itself"):
        editor.choose_previous(a.id)
    assert a.conditions == []


def test_full_walk_through_the_editor_states() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    b = ws.create_day_action(timeline.id, "day-3", _draft("sms", "B"))
    then = ws.add_library_action(_draft("whatsapp", "Then"))

    editor = ws.edit_condition(timeline.id, b.id)
    assert editor.state is EditorState.SELECTING_PREVIOUS_ACTION
    with pytest.raises(ValidationError):
        editor.choose_outcome("opened")

    editor.choose_previous(a.id)
    assert editor.state is EditorState.SELECTING_OUTCOME_TYPE
    with pytest.raises(ValidationError):
        editor.choose_then(then.id)

    editor.choose_outcome("opened")
    assert editor.state is EditorState.SELECTING_THEN_ACTION
    with pytest.raises(ValidationError):
        editor.build()

    editor.choose_then(then.id)
    assert editor.state is EditorState.COMPLETE

    condition = ws.save_condition(editor)
    assert b.conditions == [condition]
    assert condition.previous_action_id == a.id
    assert condition.type == "opened"
    assert condition.action.id == then.id
    assert condition.action is not then


def test_changing_previous_action_resets_outcome() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    email = ws.create_day_action(timeline.id, "day-0", _draft("email", "Email"))
    sms = ws.create_day_action(timeline.id, "day-0", _draft("sms", "Sms"))
    holder = ws.create_day_action(timeline.id, "day-1", _draft("email", "Holder"))

    editor = ws.edit_condition(timeline.id, holder.id)
    editor.choose_previous(email.id)
    editor.choose_outcome("clicked")
    editor.choose_previous(sms.id)

    assert editor.outcome is None
    assert editor.state is EditorState.SELECTING_OUTCOME_TYPE


def test_then_action_cannot_equal_previous() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    holder = ws.create_day_action(timeline.id, "day-1", _draft("email", "Holder"))

    editor = ws.edit_condition(timeline.id, holder.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("delivered")

    assert a.id not in {c.id for c in editor.then_candidates()}
    with pytest.raises(ValidationError, match="cannot be the previous action"):
        editor.choose_then(a.id)


def test_save_rejects_then_action_equal_to_previous() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    holder = ws.create_day_action(timeline.id, "day-1", _draft("email", "Holder"))

    editor = ws.edit_condition(timeline.id, holder.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("opened")
    editor.then_action_id = a.id
    editor.state = EditorState.COMPLETE

    with pytest.raises(ValidationError, match="cannot be the previous action"):
        ws.save_condition(editor)
    assert holder.conditions == []


def test_cancel_leaves_holder_untouched() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    b = ws.create_day_action(timeline.id, "day-1", _draft("sms", "B"))
    c = ws.create_day_action(timeline.id, "day-1", _draft("sms", "C"))

    editor = ws.edit_condition(timeline.id, b.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("opened")
    editor.choose_then(c.id)
    editor.cancel()

    assert b.conditions == []
    with pytest.raises(ValidationError):
        ws.save_condition(editor)
    assert b.conditions == []


def test_editing_keeps_condition_id() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    b = ws.create_day_action(timeline.id, "day-1", _draft("sms", "B"))
    c = ws.create_day_action(timeline.id, "day-1", _draft("sms", "C"))
    d = ws.create_day_action(timeline.id, "day-2", _draft("email", "D"))

    editor = ws.edit_condition(timeline.id, b.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("opened")
    editor.choose_then(c.id)
    original = ws.save_condition(editor)

    editor = ws.edit_condition(timeline.id, b.id, original.id)
    assert editor.state is EditorState.COMPLETE
    editor.choose_then(d.id)
    updated = ws.save_condition(editor)

    assert updated.id == original.id
    assert len(b.conditions) == 1
    assert b.conditions[0].action.id == d.id


def test_previous_action_must_not_be_on_a_later_day() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    holder = ws.create_day_action(timeline.id, "day-0", _draft("sms", "Holder"))
    later = ws.create_day_action(timeline.id, "day-5", _draft("email", "Later"))
    same_day = ws.create_day_action(timeline.id, "day-0", _draft("email", "Same day"))
    library = ws.add_library_action(_draft("email", "Library"))

    editor = ws.edit_condition(timeline.id, holder.id)
    candidates = {a.id for a in editor.previous_candidates()}

    assert later.id not in candidates
    assert same_day.id in candidates
    assert library.id in candidates
    with pytest.raises(ValidationError):
        editor.choose_previous(later.id)


def test_library_holder_only_sees_library_actions() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    day_action = ws.create_day_action(timeline.id, "day-0", _draft("email", "Day"))
    first = ws.add_library_action(_draft("email", "First"))
    second = ws.add_library_action(_draft("sms", "Second"))

    editor = ws.edit_condition(None, second.id)

    assert {a.id for a in editor.previous_candidates()} == {first.id}
    assert day_action.id not in {a.id for a in editor.then_candidates()}


def test_cycle_on_the_same_day_is_rejected() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    b = ws.create_day_action(timeline.id, "day-0", _draft("email", "B"))
    c = ws.create_day_action(timeline.id, "day-0", _draft("sms", "C"))

    editor = ws.edit_condition(timeline.id, b.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("opened")
    editor.choose_then(c.id)
    ws.save_condition(editor)

    editor = ws.edit_condition(timeline.id, a.id)
    editor.choose_previous(b.id)
    editor.choose_outcome("opened")
    editor.choose_then(c.id)
    with pytest.raises(ValidationError, match="cycle"):
        ws.save_condition(editor)
    assert a.conditions == []


def test_find_cycle_reports_path() -> None:
    a = Action(id="a", type="email", name="A", subject="s", message="m")
    b = Action(id="b", type="email", name="B", subject="s", message="m")
    c = Action(id="c", type="email", name="C", subject="s", message="m")
    a.conditions.append(Condition(id="1", type="opened", previous_action_id="b", action=c))
    assert find_cycle([a, b, c]) is None

    b.conditions.append(Condition(id="2", type="opened", previous_action_id="a", action=c))
    assert find_cycle([a, b, c]) == ["a", "b", "a"]


def test_remove_condition() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-0", _draft("email", "A"))
    b = ws.create_day_action(timeline.id, "day-1", _draft("sms", "B"))
    c = ws.create_day_action(timeline.id, "day-1", _draft("sms", "C"))
    editor = ws.edit_condition(timeline.id, b.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("opened")
    editor.choose_then(c.id)
    condition = ws.save_condition(editor)

    ws.remove_condition(timeline.id, b.id, condition.id)

    assert b.conditions == []
    with pytest.raises(NotFoundError):
        ws.remove_condition(timeline.id, b.id, condition.id)


def test_moving_dependent_before_its_previous_action_is_blocked() -> None:
    ws = _workspace()
    timeline = ws.create_timeline("T1")
    a = ws.create_day_action(timeline.id, "day-2", _draft("email", "A"))
    b = ws.create_day_action(timeline.id, "day-4", _draft("sms", "B"))
    c = ws.create_day_action(timeline.id, "day-4", _draft("sms", "C"))
    editor = ws.edit_condition(timeline.id, b.id)
    editor.choose_previous(a.id)
    editor.choose_outcome("opened")
    editor.choose_then(c.id)
    condition = ws.save_condition(editor)

    with pytest.raises(ConflictError) as excinfo:
        ws.move_action(timeline.id, "day-4", "day-1", b.id)
    assert excinfo.value.references == [(b.id, condition.id)]
    with pytest.raises(ConflictError):
        ws.move_action(timeline.id, "day-2", "day-5", a.id)

    ws.move_action(timeline.id, "day-2", "day-4", a.id)
    assert timeline.find_day("day-4").find_action(a.id) is a
