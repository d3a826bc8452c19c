from dunning.domain import codec
from dunning.domain.models import Action, Condition


def test_legacy_library_record_is_normalized() -> None:
    record = {
        "id": "a-1",
        "nome": "Lembrete",
        "tipo": "sms",
        "assunto_email": "Aviso",
        "conteudo_mensagem": "Sua fatura vence hoje",
        "horario_envio": "09:00",
        "tenant_id": "t-1",
    }
    action = codec.action_from_record(record)
    assert action.name == "Lembrete"
    assert action.type == "sms"
    assert action.subject == "Aviso"
    assert action.message == "Sua fatura vence hoje"
    assert action.send_time == "09:00"
    assert action.conditions == []


def test_title_is_accepted_for_name() -> None:
    action = codec.action_from_record({"id": "a-2", "title": "Old title", "type": "email"})
    assert action.name == "Old title"


def test_canonical_fields_win_over_aliases() -> None:
    action = codec.action_from_record(
        {"id": "a-3", "name": "Canonical", "nome": "Legacy", "type": "email"}
    )
    assert action.name == "Canonical"


def test_record_keys_are_camel_case() -> None:
    then = Action(id="t", type="sms", name="Then", subject="s", message="m")
    action = Action(
        id="a",
        type="email",
        name="A",
        subject="s",
        message="m",
        send_time="10:00",
        day_id="day-0",
        conditions=[Condition(id="c", type="opened", previous_action_id="p", action=then)],
    )
    record = codec.action_to_record(action)
    assert record["sendTime"] == "10:00"
    assert record["dayId"] == "day-0"
    assert record["conditions"][0]["previousActionId"] == "p"
    assert record["conditions"][0]["action"]["id"] == "t"
    assert "dayId" not in record["conditions"][0]["action"]
