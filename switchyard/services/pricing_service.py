"""
定价解析与费用计算。

解析顺序（三层）：
1. 数据库中的定价覆盖（model_pricing 表中 is_current 的记录）；
2. 驱动内置的静态价格表；
3. 通用兜底价：每 1K tokens 输入 0.01 / 输出 0.02 USD，按量计费。

每次解析结果都会按 (provider, model) 缓存一段时间；写入定价覆盖时会在返回前失效对应缓存，
保证写入之后的下一次解析一定能读到新价格。
"""

from __future__ import annotations

import datetime as dt
import threading
import time
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from switchyard.exceptions import PricingValidationError
from switchyard.logging_config import logger
from switchyard.models import ModelPricingRecord
from switchyard.pricing_units import BillingModel, PricingUnit
from switchyard.provider.registry import DriverRegistry
from switchyard.provider.static_pricing import lookup_static_pricing
from switchyard.schemas.pricing import (
    CostBreakdown,
    PricingCandidate,
    PricingComparisonEntry,
    PricingDescriptor,
    PricingSource,
)
from switchyard.settings import settings

from .pricing_validator import validate_model_pricing, validate_or_raise

CacheKey = tuple[str, str]


class _PricingCache:
    """
    进程内 TTL 缓存；读多写少，用一把 RLock 保护即可。

    每次 invalidate 都会递增 generation。读路径在查库前记下 generation，回填时若已变化
    则放弃回填，避免与写入交错的读者把旧价格写回缓存。
    """

    def __init__(self, ttl_seconds: float) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[CacheKey, tuple[float, PricingDescriptor]] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: CacheKey) -> PricingDescriptor | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, descriptor = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return descriptor

    def put(self, key: CacheKey, descriptor: PricingDescriptor, *, generation: int | None = None) -> bool:
        if self.ttl_seconds <= 0:
            return False
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[key] = (time.monotonic() + self.ttl_seconds, descriptor)
            return True

    def invalidate(self, provider: str | None = None, model: str | None = None) -> int:
        with self._lock:
            self._generation += 1
            if provider is None and model is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            keys = [
                key
                for key in self._entries
                if (provider is None or key[0] == provider) and (model is None or key[1] == model)
            ]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


def _round(value: float, precision: int) -> float:
    return round(float(value), precision)


def _descriptor_from_record(record: ModelPricingRecord) -> PricingDescriptor:
    return PricingDescriptor(
        provider=record.provider_name,
        model=record.model_name,
        input_rate=float(record.input_rate or 0.0),
        output_rate=float(record.output_rate or 0.0),
        flat_rate=float(record.flat_rate) if record.flat_rate is not None else None,
        unit=PricingUnit(record.unit),
        currency=record.currency,
        billing_model=BillingModel(record.billing_model),
        effective_date=record.effective_date,
        source=PricingSource.STORED_OVERRIDE,
    )


def _descriptor_from_payload(
    provider: str,
    model: str,
    data: Mapping[str, Any],
    *,
    source: PricingSource,
) -> PricingDescriptor:
    unit = PricingUnit(str(data.get("unit") or PricingUnit.PER_1K_TOKENS.value))
    effective_date = data.get("effective_date")
    if isinstance(effective_date, str):
        effective_date = dt.date.fromisoformat(effective_date)
    return PricingDescriptor(
        provider=provider,
        model=model,
        input_rate=float(data.get("input") or 0.0),
        output_rate=float(data.get("output") or 0.0),
        flat_rate=float(data["cost"]) if data.get("cost") is not None else None,
        unit=unit,
        currency=str(data.get("currency") or settings.default_currency),
        billing_model=BillingModel(str(data.get("billing_model") or BillingModel.PAY_PER_USE.value)),
        effective_date=effective_date,
        source=source,
    )


def universal_fallback(provider: str, model: str) -> PricingDescriptor:
    return PricingDescriptor(
        provider=provider,
        model=model,
        input_rate=settings.universal_fallback_input_per_1k,
        output_rate=settings.universal_fallback_output_per_1k,
        unit=PricingUnit.PER_1K_TOKENS,
        currency="USD",
        billing_model=BillingModel.PAY_PER_USE,
        source=PricingSource.UNIVERSAL_FALLBACK,
    )


def cost_for_descriptor(
    descriptor: PricingDescriptor,
    input_tokens: int,
    output_tokens: int,
    *,
    units: float = 1.0,
    precision: int | None = None,
) -> CostBreakdown:
    """
    按给定定价计算费用。

    token 单位先换算为每 token 单价再相乘；各分项先按精度四舍五入，总价由舍入后的分项相加得到，
    因此 total_cost == input_cost + output_cost 恒成立。非 token 单位按 flat_rate × units 计费。
    """
    digits = settings.cost_precision if precision is None else precision
    input_tokens = max(0, int(input_tokens or 0))
    output_tokens = max(0, int(output_tokens or 0))

    if descriptor.unit.is_flat:
        total = _round((descriptor.flat_rate or 0.0) * max(0.0, float(units)), digits)
        return CostBreakdown(
            provider=descriptor.provider,
            model=descriptor.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            units=float(units),
            input_cost=0.0,
            output_cost=0.0,
            total_cost=total,
            currency=descriptor.currency,
            unit=descriptor.unit,
            billing_model=descriptor.billing_model,
            pricing_source=descriptor.source,
        )

    multiplier = descriptor.unit.multiplier
    input_cost = _round(input_tokens / multiplier * descriptor.input_rate, digits)
    output_cost = _round(output_tokens / multiplier * descriptor.output_rate, digits)
    return CostBreakdown(
        provider=descriptor.provider,
        model=descriptor.model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        units=float(input_tokens + output_tokens),
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost=_round(input_cost + output_cost, digits),
        currency=descriptor.currency,
        unit=descriptor.unit,
        billing_model=descriptor.billing_model,
        pricing_source=descriptor.source,
    )


def normalize_pricing(descriptor: PricingDescriptor, target_unit: PricingUnit | str) -> PricingDescriptor:
    """
    在同一基础单位之间换算价格，例如每 1K tokens -> 每 1M tokens（单价 × 1000）。

    返回新的描述对象，原对象不变；基础单位不同（token vs image）时抛出 PricingValidationError。
    """
    target = target_unit if isinstance(target_unit, PricingUnit) else PricingUnit(str(target_unit))
    source = descriptor.unit
    if source == target:
        return descriptor.model_copy()
    if not source.is_compatible_with(target):
        raise PricingValidationError(
            [f"Cannot convert pricing from unit '{source.value}' to '{target.value}'"]
        )

    factor = target.multiplier / source.multiplier
    return descriptor.model_copy(
        update={
            "input_rate": descriptor.input_rate * factor,
            "output_rate": descriptor.output_rate * factor,
            "flat_rate": descriptor.flat_rate * factor if descriptor.flat_rate is not None else None,
            "unit": target,
        }
    )


class PricingService:
    def __init__(
        self,
        *,
        driver_registry: DriverRegistry | None = None,
        cache_ttl_seconds: float | None = None,
    ) -> None:
        self.driver_registry = driver_registry
        ttl = settings.pricing_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        self._cache = _PricingCache(ttl)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _stored_override(self, db: Session, provider: str, model: str) -> PricingDescriptor | None:
        record = (
            db.execute(
                select(ModelPricingRecord)
                .where(ModelPricingRecord.provider_name == provider)
                .where(ModelPricingRecord.model_name == model)
                .where(ModelPricingRecord.is_current.is_(True))
                .order_by(ModelPricingRecord.created_at.desc())
            )
            .scalars()
            .first()
        )
        if record is None:
            return None
        return _descriptor_from_record(record)

    def _driver_static(self, provider: str, model: str) -> PricingDescriptor | None:
        entry: dict[str, Any] | None = None
        driver = self.driver_registry.get(provider) if self.driver_registry is not None else None
        if driver is not None:
            entry = driver.get_static_pricing(model)
        if entry is None:
            entry = lookup_static_pricing(provider, model)
        if entry is None:
            return None

        errors = validate_model_pricing(model, entry)
        if errors:
            logger.warning(
                "Static pricing for %s/%s is invalid, skipping: %s",
                provider,
                model,
                "; ".join(errors),
            )
            return None
        return _descriptor_from_payload(
            provider, model, entry, source=PricingSource.DRIVER_STATIC_DEFAULT
        )

    def resolve(self, db: Session, provider: str, model: str) -> PricingDescriptor:
        key = (provider, model)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        generation = self._cache.generation

        descriptor = self._stored_override(db, provider, model)
        if descriptor is None:
            descriptor = self._driver_static(provider, model)
        if descriptor is None:
            logger.info(
                "No pricing found for %s/%s, using universal fallback pricing", provider, model
            )
            descriptor = universal_fallback(provider, model)

        if not self._cache.put(key, descriptor, generation=generation) and self._cache.ttl_seconds > 0:
            logger.debug("Pricing for %s/%s changed during resolution, not cached", provider, model)
        return descriptor

    # ------------------------------------------------------------------
    # Cost
    # ------------------------------------------------------------------

    def calculate_cost(
        self,
        db: Session,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        *,
        units: float = 1.0,
    ) -> CostBreakdown:
        descriptor = self.resolve(db, provider, model)
        return cost_for_descriptor(descriptor, input_tokens, output_tokens, units=units)

    def compare_pricing(
        self,
        db: Session,
        candidates: Sequence[PricingCandidate | tuple[str, str]],
        input_tokens: int,
        output_tokens: int,
    ) -> list[PricingComparisonEntry]:
        entries: list[PricingComparisonEntry] = []
        for candidate in candidates:
            if isinstance(candidate, PricingCandidate):
                provider, model = candidate.provider, candidate.model
            else:
                provider, model = candidate
            breakdown = self.calculate_cost(db, provider, model, input_tokens, output_tokens)
            entries.append(
                PricingComparisonEntry(
                    provider=provider,
                    model=model,
                    total_cost=breakdown.total_cost,
                    input_cost=breakdown.input_cost,
                    output_cost=breakdown.output_cost,
                    currency=breakdown.currency,
                    unit=breakdown.unit,
                    pricing_source=breakdown.pricing_source,
                )
            )
        entries.sort(key=lambda e: (e.total_cost, e.provider, e.model))
        return entries

    # ------------------------------------------------------------------
    # Stored overrides
    # ------------------------------------------------------------------

    def store_pricing_override(
        self,
        db: Session,
        provider: str,
        model: str,
        payload: Mapping[str, Any],
    ) -> PricingDescriptor:
        validate_or_raise(model, payload)
        descriptor = _descriptor_from_payload(
            provider, model, payload, source=PricingSource.STORED_OVERRIDE
        )

        try:
            db.execute(
                update(ModelPricingRecord)
                .where(ModelPricingRecord.provider_name == provider)
                .where(ModelPricingRecord.model_name == model)
                .where(ModelPricingRecord.is_current.is_(True))
                .values(is_current=False)
            )
            db.flush()
            record = ModelPricingRecord(
                provider_name=provider,
                model_name=model,
                input_rate=descriptor.input_rate if descriptor.unit.is_token_based else None,
                output_rate=descriptor.output_rate if descriptor.unit.is_token_based else None,
                flat_rate=descriptor.flat_rate,
                unit=descriptor.unit.value,
                currency=descriptor.currency,
                billing_model=descriptor.billing_model.value,
                effective_date=descriptor.effective_date,
                is_current=True,
            )
            db.add(record)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "Concurrent pricing override write for %s/%s rejected", provider, model
            )
            raise
        finally:
            # 无论成功与否都让缓存失效，下一次解析直接读库。
            self._cache.invalidate(provider, model)

        logger.info(
            "Stored pricing override for %s/%s: unit=%s input=%s output=%s cost=%s",
            provider,
            model,
            descriptor.unit.value,
            descriptor.input_rate,
            descriptor.output_rate,
            descriptor.flat_rate,
        )
        return descriptor

    def get_pricing_history(self, db: Session, provider: str, model: str) -> list[ModelPricingRecord]:
        return list(
            db.execute(
                select(ModelPricingRecord)
                .where(ModelPricingRecord.provider_name == provider)
                .where(ModelPricingRecord.model_name == model)
                .order_by(ModelPricingRecord.created_at.desc())
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self, provider: str | None = None, model: str | None = None) -> int:
        removed = self._cache.invalidate(provider, model)
        logger.debug("Pricing cache cleared: provider=%s model=%s removed=%d", provider, model, removed)
        return removed

    def warm_cache(self, db: Session, pairs: Iterable[tuple[str, str]]) -> int:
        count = 0
        for provider, model in pairs:
            self.resolve(db, provider, model)
            count += 1
        return count

    def cache_info(self) -> dict[str, Any]:
        return {
            "size": self._cache.size(),
            "hits": self._cache.hits,
            "misses": self._cache.misses,
            "ttl_seconds": self._cache.ttl_seconds,
        }


__all__ = [
    "PricingService",
    "cost_for_descriptor",
    "normalize_pricing",
    "universal_fallback",
]
