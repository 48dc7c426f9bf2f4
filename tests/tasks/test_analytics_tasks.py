from __future__ import annotations

from switchyard.schemas import CostCalculated, ProviderSwitched
from switchyard.tasks.analytics import (
    cost_calculated_task,
    dispatch_event,
    provider_switched_task,
)


def _switched_payload() -> dict:
    return ProviderSwitched(
        conversation_id="c1",
        from_provider="openai",
        to_provider="xai",
        from_model="gpt-4o",
        to_model="grok-2",
        reason="fallback",
        switch_type="fallback",
    ).model_dump(mode="json")


def test_provider_switched_task_consumes_payload():
    result = provider_switched_task.run(payload=_switched_payload())

    assert result == {
        "event": "provider_switched",
        "conversation_id": "c1",
        "to_provider": "xai",
        "switch_type": "fallback",
    }


def test_cost_calculated_task_consumes_payload():
    payload = CostCalculated(
        conversation_id="c1", provider="openai", model="gpt-4o", cost=0.0125, currency="USD"
    ).model_dump(mode="json")

    result = cost_calculated_task.run(payload=payload)

    assert result["cost"] == 0.0125
    assert result["provider"] == "openai"


def test_malformed_payload_is_dropped():
    assert provider_switched_task.run(payload={"conversation_id": "c1"}) is None
    assert cost_calculated_task.run(payload={}) is None


def test_dispatch_event_routes_by_type():
    switched = ProviderSwitched.model_validate(_switched_payload())

    assert dispatch_event(switched)["event"] == "provider_switched"
    assert dispatch_event("not-an-event") is None
