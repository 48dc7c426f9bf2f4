from __future__ import annotations

import pytest

from switchyard.exceptions import ProviderUnavailableError
from switchyard.provider import MockDriver, ModelInfo
from switchyard.services.switchyard_service import SwitchyardService


def test_send_message_round_trip(service, db_session):
    conversation = service.create_conversation(db_session, "openai", system_prompt="Be brief.")

    reply, record = service.send_message(db_session, conversation, "hello there")

    messages = service.get_messages(db_session, conversation)
    assert [(m.sequence, m.role) for m in messages] == [(1, "system"), (2, "user"), (3, "assistant")]
    assert reply.content == "echo: hello there"
    assert reply.provider_name == "openai"
    assert record.message_id == reply.id
    assert record.provider_name == "openai"
    assert record.input_tokens > 0
    assert conversation.total_messages == 1
    assert conversation.total_cost == pytest.approx(record.total_cost)


def test_send_message_after_switch_is_billed_to_new_provider(service, db_session):
    conversation = service.create_conversation(db_session, "openai")
    service.send_message(db_session, conversation, "first")

    service.switch_provider(db_session, conversation, "local")
    _, record = service.send_message(db_session, conversation, "second")

    assert record.provider_name == "local"
    assert record.total_cost == 0
    analysis = service.get_cost_analysis(db_session, conversation)
    assert {b.provider for b in analysis.provider_breakdown} == {"openai", "local"}


def test_send_message_context_respects_small_window(service, db_session, driver_registry):
    seen = {}

    class _RecordingDriver(MockDriver):
        def send_message(self, context, options=None):
            seen["context"] = list(context)
            seen["options"] = dict(options or {})
            return super().send_message(context, options)

    driver_registry.register(_RecordingDriver("local", models=[ModelInfo(id="llama3", context_window=2048)]))
    conversation = service.create_conversation(db_session, "local")
    for index in range(6):
        service.append_message(db_session, conversation, "user", "x" * 2000, token_count=500)

    service.send_message(db_session, conversation, "latest question")

    assert seen["options"]["model"] == "llama3"
    assert seen["context"][-1] == {"role": "user", "content": "latest question"}
    assert len(seen["context"]) < 7


def test_send_message_driver_failure_is_unavailable(service, db_session, driver_registry):
    driver_registry.register(MockDriver("xai", models=[ModelInfo(id="grok-2")], available=False))
    conversation = service.create_conversation(db_session, "xai")

    with pytest.raises(ProviderUnavailableError):
        service.send_message(db_session, conversation, "hello")

    # 用户消息已写入，但没有回复也没有费用
    assert [m.role for m in service.get_messages(db_session, conversation)] == ["user"]
    assert conversation.total_messages == 0


def test_default_wiring(monkeypatch):
    from switchyard.settings import settings

    monkeypatch.setattr(settings, "event_backend", "none")
    monkeypatch.setattr(settings, "lock_backend", "local")

    built = SwitchyardService()
    try:
        assert built.switching.drivers is built.drivers
        assert built.costs.pricing is built.pricing
        assert built.switching.lock is built.costs.lock
    finally:
        built.close()
