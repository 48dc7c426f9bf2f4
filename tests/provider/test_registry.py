from __future__ import annotations

import pytest

from switchyard.models import Provider
from switchyard.provider import MockDriver, OpenAICompatibleDriver, build_default_registry
from switchyard.provider.registry import (
    DriverRegistry,
    get_provider,
    openai_compatible_factory,
    provider_api_key,
    resolve_target_model,
)
from tests.utils import seed_provider


class _ClosingDriver(MockDriver):
    def __init__(self, name):
        super().__init__(name)
        self.closed = False

    def close(self):
        self.closed = True


def test_register_replaces_and_closes_previous_driver():
    registry = DriverRegistry()
    first = _ClosingDriver("openai")
    second = _ClosingDriver("openai")

    registry.register(first)
    registry.register(second)

    assert registry.get("openai") is second
    assert first.closed is True
    assert registry.names() == ["openai"]


def test_unregister_and_close():
    registry = DriverRegistry()
    driver = _ClosingDriver("xai")
    registry.register(driver)

    registry.unregister("xai")

    assert driver.closed is True
    assert registry.get("xai") is None


def test_factory_builds_driver_once_per_provider():
    registry = DriverRegistry()
    created = []

    def factory(provider):
        created.append(provider.name)
        return MockDriver(provider.name)

    registry.register_factory("mock", factory)
    provider = Provider(name="acme", driver="mock", status="active")

    first = registry.get("acme", provider=provider)
    second = registry.get("acme", provider=provider)

    assert first is second
    assert created == ["acme"]
    assert registry.get("other", provider=Provider(name="other", driver="unknown")) is None


def test_provider_api_key_from_environment(monkeypatch):
    monkeypatch.setenv("SWITCHYARD_PROVIDER_XAI_API_KEY", "xai-secret")

    assert provider_api_key("xai") == "xai-secret"
    assert provider_api_key("nobody") is None


def test_openai_compatible_factory(monkeypatch):
    monkeypatch.setenv("SWITCHYARD_PROVIDER_OPENAI_API_KEY", "sk-env")

    driver = openai_compatible_factory(
        Provider(name="openai", driver="openai_compatible", base_url="https://api.openai.com/v1")
    )
    local = openai_compatible_factory(
        Provider(name="local", driver="openai_compatible", base_url="http://localhost:11434/v1")
    )
    custom = openai_compatible_factory(
        Provider(name="acme", driver="openai_compatible", base_url="https://acme.test/v1")
    )

    try:
        assert isinstance(driver, OpenAICompatibleDriver)
        assert driver.api_key == "sk-env"
        assert driver.pricing_table == "openai"
        assert local.require_api_key is False
        assert local.pricing_table == "local"
        assert custom.pricing_table is None
    finally:
        for item in (driver, local, custom):
            item.close()


def test_openai_compatible_factory_requires_base_url():
    with pytest.raises(ValueError):
        openai_compatible_factory(Provider(name="openai", driver="openai_compatible"))


def test_default_registry_builds_mock_driver_from_catalog(db_session):
    registry = build_default_registry()
    provider = get_provider(db_session, "xai")

    driver = registry.get("xai", provider=provider)

    assert isinstance(driver, MockDriver)
    assert [m.id for m in driver.get_available_models()] == ["grok-2"]
    registry.close()


def test_resolve_target_model(db_session):
    provider = seed_provider(
        db_session,
        "multi",
        [("alpha", 4096, False), ("beta", 8192, True)],
    )

    assert resolve_target_model(db_session, provider, None).name == "beta"
    assert resolve_target_model(db_session, provider, "alpha").name == "alpha"
    assert resolve_target_model(db_session, provider, "gamma") is None
