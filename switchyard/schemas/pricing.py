from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from switchyard.pricing_units import BillingModel, PricingUnit


class PricingSource(str, Enum):
    STORED_OVERRIDE = "stored_override"
    DRIVER_STATIC_DEFAULT = "driver_static_default"
    UNIVERSAL_FALLBACK = "universal_fallback"


class PricingDescriptor(BaseModel):
    """
    某个 (provider, model) 当前生效的价格。

    token 类单位使用 input_rate / output_rate；按次、按时长等单位只使用 flat_rate。
    """

    provider: str
    model: str
    input_rate: float = Field(default=0.0, ge=0.0, description="每个计价单位的输入价格")
    output_rate: float = Field(default=0.0, ge=0.0, description="每个计价单位的输出价格")
    flat_rate: float | None = Field(default=None, ge=0.0, description="非 token 单位的单价")
    unit: PricingUnit = PricingUnit.PER_1K_TOKENS
    currency: str = "USD"
    billing_model: BillingModel = BillingModel.PAY_PER_USE
    effective_date: dt.date | None = None
    source: PricingSource

    model_config = ConfigDict(frozen=True)


class CostBreakdown(BaseModel):
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    units: float = 0.0
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0
    currency: str = "USD"
    unit: PricingUnit
    billing_model: BillingModel
    pricing_source: PricingSource


class PricingCandidate(BaseModel):
    provider: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)


class PricingComparisonEntry(BaseModel):
    provider: str
    model: str
    total_cost: float
    input_cost: float
    output_cost: float
    currency: str
    unit: PricingUnit
    pricing_source: PricingSource


class PricingOverrideRequest(BaseModel):
    """写入定价覆盖时的原始载荷；字段名与静态价格表保持一致（input / output / cost）。"""

    unit: str | None = None
    billing_model: str | None = None
    currency: str | None = None
    input: Any = None
    output: Any = None
    cost: Any = None
    effective_date: Any = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CostCalculationRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    units: float = Field(default=1.0, ge=0.0, description="非 token 单位的计费数量，例如图片张数")


class PricingCompareRequest(BaseModel):
    candidates: list[PricingCandidate] = Field(..., min_length=1)
    input_tokens: int = Field(default=1000, ge=0)
    output_tokens: int = Field(default=1000, ge=0)


class PricingHistoryItem(BaseModel):
    provider_name: str
    model_name: str
    input_rate: float | None = None
    output_rate: float | None = None
    flat_rate: float | None = None
    unit: str
    currency: str
    billing_model: str
    effective_date: dt.date | None = None
    is_current: bool
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


__all__ = [
    "CostBreakdown",
    "CostCalculationRequest",
    "PricingCandidate",
    "PricingCompareRequest",
    "PricingComparisonEntry",
    "PricingDescriptor",
    "PricingHistoryItem",
    "PricingOverrideRequest",
    "PricingSource",
]
