from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from switchyard.exceptions import (
    FallbackExhaustedError,
    InvalidSwitchRequestError,
    ModelNotFoundError,
    ProviderInactiveError,
    ProviderNotFoundError,
    ProviderUnavailableError,
)
from switchyard.models import ProviderModel
from switchyard.provider import MockDriver, ModelInfo
from switchyard.schemas import FallbackCandidate, FallbackStrategy, ProviderSwitched, SwitchOptions, SwitchRequest
from switchyard.schemas.switching import SWITCH_REASON_MAX_LENGTH


def _with_history(service, db, provider="openai", turns=3):
    conversation = service.create_conversation(db, provider, system_prompt="Be brief.")
    for index in range(turns):
        service.append_message(db, conversation, "user", f"question {index}", token_count=400)
        service.append_message(db, conversation, "assistant", f"answer {index}", token_count=400)
    return conversation


def test_switch_updates_binding_and_opens_session(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    switched = service.switch_provider(db_session, conversation, "xai")

    assert switched.provider_name == "xai"
    assert switched.model_name == "grok-2"
    sessions = service.get_history(db_session, switched)
    assert [(s.provider_name, s.switch_type) for s in sessions] == [("openai", "initial"), ("xai", "manual")]
    assert sessions[0].ended_at is not None

    meta = switched.get_metadata()
    assert len(meta.switch_log) == 1
    entry = meta.switch_log[0]
    assert (entry.from_provider, entry.to_provider, entry.to_model) == ("openai", "xai", "grok-2")
    assert entry.session_ordinal == 2


def test_switch_to_explicit_model(service, db_session):
    conversation = service.create_conversation(db_session, "xai")

    switched = service.switch_provider(db_session, conversation, "openai", "gpt-4o-mini")

    assert switched.model_name == "gpt-4o-mini"


def test_switch_to_same_pair_opens_new_session_and_keeps_messages(service, db_session):
    conversation = _with_history(service, db_session)
    before = [(m.sequence, m.role, m.content) for m in service.get_messages(db_session, conversation)]

    service.switch_provider(db_session, conversation, "openai", "gpt-4o")

    sessions = service.get_history(db_session, conversation)
    assert len(sessions) == 2
    assert sessions[1].provider_name == "openai"
    assert [(m.sequence, m.role, m.content) for m in service.get_messages(db_session, conversation)] == before


def test_switch_records_context_plan_for_smaller_window(service, db_session):
    conversation = _with_history(service, db_session, turns=5)

    switched = service.switch_provider(db_session, conversation, "local")

    plan = switched.last_context_preservation
    assert plan is not None
    assert plan.target_provider == "local"
    assert plan.context_window == 2048
    assert plan.strategy == "truncate_oldest"
    assert plan.preserved_tokens <= plan.budget_tokens
    # system prompt 总是保留
    assert plan.preserved_sequences[0] == 1
    assert switched.get_metadata().switch_log[-1].context_strategy == "truncate_oldest"
    # 方案不会删除任何消息
    assert len(service.get_messages(db_session, switched)) == 11


def test_switch_without_context_preservation(service, db_session):
    conversation = _with_history(service, db_session)

    switched = service.switch_provider(
        db_session, conversation, "xai", options=SwitchOptions(preserve_context=False)
    )

    assert switched.last_context_preservation is None
    assert switched.get_metadata().switch_log[-1].context_strategy is None


@pytest.mark.parametrize(
    "provider, model, error",
    [
        ("nope", None, ProviderNotFoundError),
        ("retired", None, ProviderInactiveError),
        ("openai", "gpt-99", ModelNotFoundError),
    ],
)
def test_invalid_targets_are_rejected_without_changes(
    service, db_session, publisher, published_events, provider, model, error
):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(error):
        service.switch_provider(db_session, conversation, provider, model)

    db_session.refresh(conversation)
    assert conversation.provider_name == "openai"
    assert len(service.get_history(db_session, conversation)) == 1
    publisher.drain()
    assert not any(isinstance(e, ProviderSwitched) for e in published_events)


def test_empty_target_is_invalid(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(InvalidSwitchRequestError):
        service.switch_provider(db_session, conversation, "")


def test_unreachable_provider_is_unavailable_and_rolls_back(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(ProviderUnavailableError) as excinfo:
        service.switch_provider(db_session, conversation, "offline")

    assert excinfo.value.provider == "offline"
    db_session.refresh(conversation)
    assert conversation.provider_name == "openai"
    assert conversation.get_metadata().switch_log == []
    assert len(service.get_history(db_session, conversation)) == 1


def test_model_not_offered_by_driver_is_unavailable(service, db_session, driver_registry):
    driver_registry.register(MockDriver("xai", models=[ModelInfo(id="grok-beta")]))
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(ProviderUnavailableError) as excinfo:
        service.switch_provider(db_session, conversation, "xai")

    assert "not offered" in excinfo.value.reason


def test_rejected_credentials_are_unavailable(service, db_session, driver_registry):
    driver_registry.register(
        MockDriver("xai", models=[ModelInfo(id="grok-2")], credentials_valid=False)
    )
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(ProviderUnavailableError):
        service.switch_provider(db_session, conversation, "xai")

    # 不校验凭证时可以切换
    switched = service.switch_provider(
        db_session, conversation, "xai", options=SwitchOptions(validate_credentials=False)
    )
    assert switched.provider_name == "xai"


def test_switch_publishes_event_after_commit(service, db_session, publisher, published_events):
    conversation = service.create_conversation(db_session, "openai")

    service.switch_provider(db_session, conversation, "gemini", options=SwitchOptions(reason="cheaper"))

    publisher.drain()
    events = [e for e in published_events if isinstance(e, ProviderSwitched)]
    assert len(events) == 1
    event = events[0]
    assert (event.from_provider, event.to_provider) == ("openai", "gemini")
    assert (event.from_model, event.to_model) == ("gpt-4o", "gemini-1.5-flash")
    assert event.reason == "cheaper"
    assert event.switch_type == "manual"


def test_failing_publisher_does_not_undo_switch(service, db_session):
    class _Broken:
        def publish(self, event):
            raise RuntimeError("broker down")

    service.switching.publisher = _Broken()
    conversation = service.create_conversation(db_session, "openai")

    switched = service.switch_provider(db_session, conversation, "xai")

    assert switched.provider_name == "xai"


def test_fallback_uses_first_available_candidate(service, db_session, driver_registry):
    driver_registry.register(
        MockDriver("gemini", models=[ModelInfo(id="gemini-1.5-flash")], credentials_valid=False)
    )
    conversation = service.create_conversation(db_session, "openai")

    switched = service.switch_with_fallback(
        db_session,
        conversation,
        ["offline", FallbackCandidate(provider="gemini"), ("xai", "grok-2")],
    )

    assert switched.provider_name == "xai"
    sessions = service.get_history(db_session, switched)
    assert len(sessions) == 2
    assert sessions[-1].switch_type == "fallback"
    assert sessions[-1].switch_reason == "fallback"

    attempts = service.get_switch_attempts(db_session, switched)
    assert [(a.provider_name, a.succeeded) for a in attempts] == [
        ("offline", False),
        ("gemini", False),
        ("xai", True),
    ]


def test_fallback_exhausted_lists_every_failure(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(FallbackExhaustedError) as excinfo:
        service.switch_with_fallback(db_session, conversation, ["offline", "offline"])

    assert [a["provider"] for a in excinfo.value.attempts] == ["offline", "offline"]
    db_session.refresh(conversation)
    assert conversation.provider_name == "openai"
    assert len(service.get_history(db_session, conversation)) == 1


def test_fallback_does_not_swallow_validation_errors(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(ProviderNotFoundError):
        service.switch_with_fallback(db_session, conversation, ["offline", "nope", "xai"])


def test_fallback_requires_candidates(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(InvalidSwitchRequestError):
        service.switch_with_fallback(db_session, conversation, [])


def test_available_providers_exclude_current_and_inactive(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    available = service.get_available_providers(db_session, conversation)

    names = [p.name for p in available]
    assert names == ["gemini", "local", "offline", "xai"]
    local = next(p for p in available if p.name == "local")
    assert local.models[0].context_window == 2048
    assert local.models[0].is_default is True
    assert local.models[0].capabilities == ["chat"]


def test_auto_fallback_tries_other_providers(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    switched = service.execute_auto_fallback(db_session, conversation, "upstream 502")

    # 按名称排序后第一个可用的 Provider
    assert switched.provider_name == "gemini"
    latest = service.get_history(db_session, switched)[-1]
    assert latest.switch_type == "fallback"
    assert latest.switch_reason == "auto_fallback: upstream 502"


def test_auto_fallback_without_alternatives(service, db_session):
    conversation = service.create_conversation(db_session, "openai")
    service.switching.get_available_providers = lambda db, conv: []

    with pytest.raises(FallbackExhaustedError):
        service.execute_auto_fallback(db_session, conversation, RuntimeError("boom"))


def test_auto_fallback_clips_long_error_into_reason(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    switched = service.execute_auto_fallback(db_session, conversation, "x" * 1000)

    reason = service.get_history(db_session, switched)[-1].switch_reason
    assert len(reason) == SWITCH_REASON_MAX_LENGTH
    assert reason.startswith("auto_fallback: xxx")
    assert reason.endswith("...")


def test_switch_request_rejects_overlong_reason():
    with pytest.raises(ValidationError):
        SwitchRequest(provider="xai", reason="x" * (SWITCH_REASON_MAX_LENGTH + 1))

    assert SwitchRequest(provider="xai", reason="x" * SWITCH_REASON_MAX_LENGTH).reason


def test_cost_optimized_fallback_prefers_cheapest_default_model(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    candidates = service.build_fallback_candidates(db_session, conversation, FallbackStrategy.COST_OPTIMIZED)
    switched = service.execute_auto_fallback(
        db_session, conversation, "rate limited", strategy="cost_optimized"
    )

    assert [(c.provider, c.model) for c in candidates] == [
        ("local", "llama3"),
        ("gemini", "gemini-1.5-flash"),
        ("xai", "grok-2"),
        ("offline", "offline-model"),
    ]
    assert (switched.provider_name, switched.model_name) == ("local", "llama3")


def test_capability_matched_fallback_requires_current_capabilities(service, db_session):
    for name in ("gpt-4o", "grok-2"):
        model = db_session.execute(select(ProviderModel).where(ProviderModel.name == name)).scalar_one()
        model.capabilities = ["chat", "vision"]
    db_session.commit()
    conversation = service.create_conversation(db_session, "openai")

    candidates = service.build_fallback_candidates(db_session, conversation, "capability_matched")
    switched = service.execute_auto_fallback(
        db_session, conversation, "upstream 503", strategy=FallbackStrategy.CAPABILITY_MATCHED
    )

    assert [(c.provider, c.model) for c in candidates] == [("xai", "grok-2")]
    assert switched.provider_name == "xai"


def test_capability_matched_without_match_is_exhausted(service, db_session):
    model = db_session.execute(select(ProviderModel).where(ProviderModel.name == "gpt-4o")).scalar_one()
    model.capabilities = ["chat", "audio"]
    db_session.commit()
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(FallbackExhaustedError):
        service.execute_auto_fallback(db_session, conversation, "down", strategy="capability_matched")

    db_session.refresh(conversation)
    assert conversation.provider_name == "openai"


def test_user_preference_fallback_follows_stored_order(service, db_session):
    conversation = service.create_conversation(db_session, "openai")
    service.set_fallback_preferences(
        db_session,
        conversation,
        ["xai", "retired", "openai", {"provider": "gemini"}, {"provider": "xai", "model": "grok-9"}, "xai"],
    )

    candidates = service.build_fallback_candidates(db_session, conversation, FallbackStrategy.USER_PREFERENCE)

    assert [(c.provider, c.model) for c in candidates] == [("xai", None), ("gemini", None)]
    assert [p.provider for p in conversation.fallback_preferences][:2] == ["xai", "retired"]

    switched = service.execute_auto_fallback(db_session, conversation, "boom", strategy="user_preference")
    assert switched.provider_name == "xai"


def test_user_preference_without_preferences_uses_auto_order(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    candidates = service.build_fallback_candidates(db_session, conversation, "user_preference")

    assert [c.provider for c in candidates] == ["gemini", "local", "offline", "xai"]


def test_unknown_fallback_strategy_is_invalid(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(InvalidSwitchRequestError):
        service.execute_auto_fallback(db_session, conversation, "boom", strategy="performance_optimized")


def test_auto_fallback_stops_after_max_attempts(service, db_session, driver_registry):
    for name, model in (("gemini", "gemini-1.5-flash"), ("local", "llama3")):
        driver_registry.register(MockDriver(name, models=[ModelInfo(id=model)], available=False))
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(FallbackExhaustedError) as capped:
        service.execute_auto_fallback(db_session, conversation, "boom", max_attempts=2)
    # 默认上限 3：gemini / local / offline 均不可达，xai 排在第四位
    with pytest.raises(FallbackExhaustedError) as default_cap:
        service.execute_auto_fallback(db_session, conversation, "boom")
    switched = service.execute_auto_fallback(db_session, conversation, "boom", max_attempts=4)

    assert [a["provider"] for a in capped.value.attempts] == ["gemini", "local"]
    assert [a["provider"] for a in default_cap.value.attempts] == ["gemini", "local", "offline"]
    assert switched.provider_name == "xai"
    tried = [a.provider_name for a in service.get_switch_attempts(db_session, switched)]
    assert tried.count("xai") == 1


def test_fallback_max_attempts_must_be_positive(service, db_session):
    conversation = service.create_conversation(db_session, "openai")

    with pytest.raises(InvalidSwitchRequestError):
        service.switch_with_fallback(db_session, conversation, ["xai"], max_attempts=0)
