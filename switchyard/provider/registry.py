from __future__ import annotations

import os
import threading
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from switchyard.logging_config import logger
from switchyard.models import Provider, ProviderModel

from .driver import ProviderDriver
from .mock import MockDriver
from .openai_compat import OpenAICompatibleDriver
from .static_pricing import LOCAL_PROVIDERS, STATIC_PRICING_TABLES

DriverFactory = Callable[[Provider], ProviderDriver]


class DriverRegistry:
    """
    Provider 名称 -> 驱动实例的映射。

    驱动可以直接注册实例，也可以按 Provider.driver 类型注册工厂，在第一次使用时根据数据库中的
    Provider 记录懒加载。
    """

    def __init__(self) -> None:
        self._drivers: dict[str, ProviderDriver] = {}
        self._factories: dict[str, DriverFactory] = {}
        self._lock = threading.Lock()

    def register(self, driver: ProviderDriver) -> None:
        with self._lock:
            previous = self._drivers.get(driver.name)
            self._drivers[driver.name] = driver
        if previous is not None and previous is not driver:
            previous.close()

    def register_factory(self, driver_type: str, factory: DriverFactory) -> None:
        with self._lock:
            self._factories[driver_type] = factory

    def unregister(self, name: str) -> None:
        with self._lock:
            driver = self._drivers.pop(name, None)
        if driver is not None:
            driver.close()

    def get(self, name: str, *, provider: Provider | None = None) -> ProviderDriver | None:
        with self._lock:
            driver = self._drivers.get(name)
            if driver is not None or provider is None:
                return driver
            factory = self._factories.get(provider.driver)
        if factory is None:
            return None

        created = factory(provider)
        with self._lock:
            # 并发首次访问时以先注册者为准。
            existing = self._drivers.setdefault(name, created)
        if existing is not created:
            created.close()
        else:
            logger.info("Driver registry: created %s driver for provider %s", provider.driver, name)
        return existing

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._drivers)

    def close(self) -> None:
        with self._lock:
            drivers = list(self._drivers.values())
            self._drivers.clear()
        for driver in drivers:
            driver.close()


def get_provider(db: Session, name: str) -> Provider | None:
    return db.execute(select(Provider).where(Provider.name == name)).scalars().first()


def list_active_providers(db: Session) -> list[Provider]:
    return list(
        db.execute(
            select(Provider).where(Provider.status == "active").order_by(Provider.name)
        ).scalars()
    )


def get_provider_model(db: Session, provider: Provider, name: str) -> ProviderModel | None:
    return (
        db.execute(
            select(ProviderModel)
            .where(ProviderModel.provider_id == provider.id)
            .where(ProviderModel.name == name)
        )
        .scalars()
        .first()
    )


def active_models(db: Session, provider: Provider) -> list[ProviderModel]:
    return list(
        db.execute(
            select(ProviderModel)
            .where(ProviderModel.provider_id == provider.id)
            .where(ProviderModel.status == "active")
            .order_by(ProviderModel.created_at, ProviderModel.name)
        ).scalars()
    )


def resolve_target_model(db: Session, provider: Provider, model_name: str | None) -> ProviderModel | None:
    """
    解析切换目标模型：显式指定时必须存在且为 active；未指定时取默认模型，再退到第一个 active 模型。
    """
    if model_name:
        model = get_provider_model(db, provider, model_name)
        if model is None or not model.is_active:
            return None
        return model

    candidates = active_models(db, provider)
    for model in candidates:
        if model.is_default:
            return model
    return candidates[0] if candidates else None


def provider_api_key(provider_name: str) -> str | None:
    """
    Provider API key 从环境变量读取，不落库：

        SWITCHYARD_PROVIDER_openai_API_KEY=sk-...
    """
    return os.getenv(f"SWITCHYARD_PROVIDER_{provider_name}_API_KEY") or os.getenv(
        f"SWITCHYARD_PROVIDER_{provider_name.upper()}_API_KEY"
    )


def openai_compatible_factory(provider: Provider) -> ProviderDriver:
    if not provider.base_url:
        raise ValueError(f"Provider {provider.name} has no base_url configured")
    is_local = provider.name.lower() in LOCAL_PROVIDERS
    table = provider.name.lower()
    return OpenAICompatibleDriver(
        provider.name,
        base_url=provider.base_url,
        api_key=provider_api_key(provider.name),
        pricing_table=table if is_local or table in STATIC_PRICING_TABLES else None,
        require_api_key=not is_local,
    )


def _mock_factory(provider: Provider) -> ProviderDriver:
    return MockDriver(
        provider.name,
        models=[m.name for m in provider.models if m.is_active],
    )


def build_default_registry() -> DriverRegistry:
    registry = DriverRegistry()
    registry.register_factory("openai_compatible", openai_compatible_factory)
    registry.register_factory("mock", _mock_factory)
    return registry


__all__ = [
    "DriverFactory",
    "DriverRegistry",
    "active_models",
    "build_default_registry",
    "get_provider",
    "get_provider_model",
    "list_active_providers",
    "openai_compatible_factory",
    "provider_api_key",
    "resolve_target_model",
]
