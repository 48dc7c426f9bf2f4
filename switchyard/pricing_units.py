"""
定价单位与计费模式。

不同 Provider 的报价口径差异很大：OpenAI 按每 1K tokens 报价，Gemini / xAI 按每 1M tokens，
图像、音频类接口则按次数或文件数计费。这里统一把单位归约到「基础单位」，
换算时只允许在同一基础单位之间进行。
"""

from __future__ import annotations

from enum import Enum


class PricingUnit(str, Enum):
    PER_TOKEN = "per_token"
    PER_1K_TOKENS = "1k_tokens"
    PER_1M_TOKENS = "1m_tokens"
    PER_CHARACTER = "per_character"
    PER_1K_CHARACTERS = "1k_characters"
    PER_SECOND = "per_second"
    PER_MINUTE = "per_minute"
    PER_HOUR = "per_hour"
    PER_REQUEST = "per_request"
    PER_IMAGE = "per_image"
    PER_AUDIO_FILE = "per_audio_file"
    PER_MB = "per_mb"
    PER_GB = "per_gb"

    @property
    def base_unit(self) -> str:
        return _BASE_UNITS[self]

    @property
    def multiplier(self) -> float:
        """How many base units one priced unit covers (1K tokens -> 1000 tokens)."""
        return _MULTIPLIERS.get(self, 1.0)

    @property
    def is_token_based(self) -> bool:
        return self.base_unit == "token"

    @property
    def is_flat(self) -> bool:
        # 非 token 单位（按次、按时长、按数据量）没有输入输出之分，只有单价。
        return not self.is_token_based

    @property
    def is_request_based(self) -> bool:
        return self.base_unit in ("request", "image", "audio_file")

    @property
    def is_time_based(self) -> bool:
        return self.base_unit == "second"

    def is_compatible_with(self, other: "PricingUnit") -> bool:
        return self.base_unit == other.base_unit

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


_BASE_UNITS: dict[PricingUnit, str] = {
    PricingUnit.PER_TOKEN: "token",
    PricingUnit.PER_1K_TOKENS: "token",
    PricingUnit.PER_1M_TOKENS: "token",
    PricingUnit.PER_CHARACTER: "character",
    PricingUnit.PER_1K_CHARACTERS: "character",
    PricingUnit.PER_SECOND: "second",
    PricingUnit.PER_MINUTE: "second",
    PricingUnit.PER_HOUR: "second",
    PricingUnit.PER_REQUEST: "request",
    PricingUnit.PER_IMAGE: "image",
    PricingUnit.PER_AUDIO_FILE: "audio_file",
    PricingUnit.PER_MB: "mb",
    PricingUnit.PER_GB: "mb",
}

_MULTIPLIERS: dict[PricingUnit, float] = {
    PricingUnit.PER_1K_TOKENS: 1_000.0,
    PricingUnit.PER_1M_TOKENS: 1_000_000.0,
    PricingUnit.PER_1K_CHARACTERS: 1_000.0,
    PricingUnit.PER_MINUTE: 60.0,
    PricingUnit.PER_HOUR: 3_600.0,
    PricingUnit.PER_GB: 1_024.0,
}


class BillingModel(str, Enum):
    PAY_PER_USE = "pay_per_use"
    TIERED = "tiered"
    SUBSCRIPTION = "subscription"
    CREDITS = "credits"
    FREE_TIER = "free_tier"
    ENTERPRISE = "enterprise"

    @property
    def supports_automatic_calculation(self) -> bool:
        """订阅、免费额度与企业合同类计费无法按单条消息自动核算。"""
        return self in (BillingModel.PAY_PER_USE, BillingModel.TIERED, BillingModel.CREDITS)

    def is_compatible_with(self, unit: PricingUnit) -> bool:
        if self is BillingModel.CREDITS:
            return unit.is_token_based or unit.is_request_based
        if self is BillingModel.SUBSCRIPTION:
            return unit.is_time_based or unit.is_request_based
        if self is BillingModel.FREE_TIER:
            return unit.is_request_based or unit.is_token_based
        return True

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


SUPPORTED_CURRENCIES = frozenset({"USD", "EUR", "GBP", "CNY", "JPY", "CAD", "AUD"})


__all__ = ["BillingModel", "PricingUnit", "SUPPORTED_CURRENCIES"]
