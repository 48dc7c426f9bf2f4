"""
驱动内置的静态价格表（定价解析的第二层）。

各家官方报价口径不同，表内保留原始单位，不做预先换算：
- openai：每 1K tokens
- gemini / xai：每 1M tokens
- local：本地推理，免费

条目格式与定价覆盖的写入载荷一致（input / output / cost / unit / ...），
因此同一套校验逻辑可以直接作用在静态表上。
"""

from __future__ import annotations

from typing import Any

from switchyard.pricing_units import BillingModel, PricingUnit


def _per_1k(input_rate: float, output_rate: float, effective_date: str = "2025-01-01") -> dict[str, Any]:
    return {
        "input": input_rate,
        "output": output_rate,
        "unit": PricingUnit.PER_1K_TOKENS.value,
        "currency": "USD",
        "billing_model": BillingModel.PAY_PER_USE.value,
        "effective_date": effective_date,
    }


def _per_1m(input_rate: float, output_rate: float, effective_date: str = "2025-01-01") -> dict[str, Any]:
    return {
        "input": input_rate,
        "output": output_rate,
        "unit": PricingUnit.PER_1M_TOKENS.value,
        "currency": "USD",
        "billing_model": BillingModel.PAY_PER_USE.value,
        "effective_date": effective_date,
    }


OPENAI_PRICING: dict[str, dict[str, Any]] = {
    "gpt-3.5-turbo": _per_1k(0.0015, 0.002),
    "gpt-3.5-turbo-16k": _per_1k(0.003, 0.004),
    "gpt-3.5-turbo-0125": _per_1k(0.0005, 0.0015),
    "gpt-3.5-turbo-1106": _per_1k(0.001, 0.002),
    "gpt-4": _per_1k(0.03, 0.06),
    "gpt-4-32k": _per_1k(0.06, 0.12),
    "gpt-4-turbo": _per_1k(0.01, 0.03),
    "gpt-4-turbo-preview": _per_1k(0.01, 0.03),
    "gpt-4-1106-preview": _per_1k(0.01, 0.03),
    "gpt-4-0125-preview": _per_1k(0.01, 0.03),
    "gpt-4o": _per_1k(0.0025, 0.01),
    "gpt-4o-2024-11-20": _per_1k(0.0025, 0.01, "2024-11-20"),
    "gpt-4o-2024-08-06": _per_1k(0.0025, 0.01, "2024-08-06"),
    "gpt-4o-2024-05-13": _per_1k(0.005, 0.015, "2024-05-13"),
    "gpt-4o-mini": _per_1k(0.00015, 0.0006),
}

GEMINI_PRICING: dict[str, dict[str, Any]] = {
    "gemini-2.5-pro": _per_1m(1.25, 10.00),
    "gemini-2.5-flash": _per_1m(0.30, 2.50),
    "gemini-2.5-flash-lite": _per_1m(0.10, 0.40),
    "gemini-2.0-flash": _per_1m(0.075, 0.30),
    "gemini-2.0-flash-lite": _per_1m(0.075, 0.30),
    "gemini-2.0-pro": _per_1m(1.25, 10.00),
    "gemini-1.5-pro": _per_1m(1.25, 5.00),
    "gemini-1.5-flash": _per_1m(0.075, 0.30),
    "gemini-1.0-pro": _per_1m(0.50, 1.50),
}

XAI_PRICING: dict[str, dict[str, Any]] = {
    "grok-beta": _per_1m(5.00, 15.00),
    "grok-2": _per_1m(2.00, 10.00),
    "grok-2-1212": _per_1m(2.00, 10.00),
    "grok-2-vision-1212": _per_1m(2.00, 10.00),
    "grok-2-mini": _per_1m(1.00, 5.00),
    "grok-4": _per_1m(3.00, 15.00),
    "grok-4-0709": _per_1m(3.00, 15.00),
}

# 本地模型没有逐条模型的价格表，任何模型都按 0 计费。
LOCAL_DEFAULT: dict[str, Any] = {
    "input": 0.0,
    "output": 0.0,
    "unit": PricingUnit.PER_1K_TOKENS.value,
    "currency": "USD",
    "billing_model": BillingModel.PAY_PER_USE.value,
}

STATIC_PRICING_TABLES: dict[str, dict[str, dict[str, Any]]] = {
    "openai": OPENAI_PRICING,
    "gemini": GEMINI_PRICING,
    "xai": XAI_PRICING,
}

LOCAL_PROVIDERS = frozenset({"local", "ollama", "lmstudio"})


def _normalise_model_id(model: str) -> str:
    normalized = model.strip().lower()
    # Gemini 的模型 ID 常带 "models/" 前缀。
    if normalized.startswith("models/"):
        normalized = normalized[len("models/"):]
    return normalized


def lookup_static_pricing(table: str, model: str) -> dict[str, Any] | None:
    """
    在指定价格表中查找模型价格，返回条目副本；找不到时返回 None。

    先精确匹配，再按最长前缀匹配带日期后缀的版本号（例如 gpt-4o-mini-2024-07-18 -> gpt-4o-mini）。
    """
    key = (table or "").strip().lower()
    if key in LOCAL_PROVIDERS:
        return dict(LOCAL_DEFAULT)

    entries = STATIC_PRICING_TABLES.get(key)
    if not entries:
        return None

    model_id = _normalise_model_id(model)
    if model_id in entries:
        return dict(entries[model_id])

    best: str | None = None
    for candidate in entries:
        if model_id.startswith(candidate + "-") and (best is None or len(candidate) > len(best)):
            best = candidate
    if best is not None:
        return dict(entries[best])
    return None


__all__ = [
    "GEMINI_PRICING",
    "LOCAL_DEFAULT",
    "LOCAL_PROVIDERS",
    "OPENAI_PRICING",
    "STATIC_PRICING_TABLES",
    "XAI_PRICING",
    "lookup_static_pricing",
]
