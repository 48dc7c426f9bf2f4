"""
定价数据校验。

写入定价覆盖前调用 validate_model_pricing，一次性收集全部错误，而不是遇到第一个就返回，
这样调用方可以在一次请求里修正所有字段。
"""

from __future__ import annotations

import datetime as dt
import re
import statistics
from typing import Any, Mapping

from switchyard.exceptions import PricingValidationError
from switchyard.pricing_units import SUPPORTED_CURRENCIES, BillingModel, PricingUnit

_REQUIRED_FIELDS = ("unit", "billing_model", "currency")
_NUMERIC_FIELDS = ("input", "output", "cost")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

OUTLIER_HIGH_RATIO = 10.0
OUTLIER_LOW_RATIO = 0.1


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def _coerce_unit(value: Any) -> PricingUnit | None:
    if isinstance(value, PricingUnit):
        return value
    try:
        return PricingUnit(str(value))
    except ValueError:
        return None


def _coerce_billing_model(value: Any) -> BillingModel | None:
    if isinstance(value, BillingModel):
        return value
    try:
        return BillingModel(str(value))
    except ValueError:
        return None


def validate_model_pricing(model: str, data: Mapping[str, Any]) -> list[str]:
    """返回单个模型定价数据的全部校验错误；空列表表示合法。"""
    errors: list[str] = []

    for field in _REQUIRED_FIELDS:
        if data.get(field) in (None, ""):
            errors.append(f"Model '{model}' missing required field: {field}")

    unit = _coerce_unit(data["unit"]) if data.get("unit") not in (None, "") else None
    if data.get("unit") not in (None, "") and unit is None:
        errors.append(
            f"Model '{model}' unit '{data['unit']}' is not one of: {', '.join(PricingUnit.values())}"
        )

    billing_model = (
        _coerce_billing_model(data["billing_model"])
        if data.get("billing_model") not in (None, "")
        else None
    )
    if data.get("billing_model") not in (None, "") and billing_model is None:
        errors.append(
            f"Model '{model}' billing_model '{data['billing_model']}' is not one of: "
            f"{', '.join(BillingModel.values())}"
        )

    currency = data.get("currency")
    if currency not in (None, ""):
        if not isinstance(currency, str) or not _CURRENCY_RE.match(currency):
            errors.append(f"Model '{model}' currency must be a 3-letter upper-case ISO code")
        elif currency not in SUPPORTED_CURRENCIES:
            errors.append(f"Model '{model}' currency '{currency}' is not supported")

    if unit is not None:
        if unit.is_token_based:
            if data.get("input") is None or data.get("output") is None:
                errors.append(
                    f"Model '{model}' with token pricing must have 'input' and 'output' fields"
                )
        elif data.get("cost") is None:
            errors.append(f"Model '{model}' with unit pricing must have 'cost' field")

    for field in _NUMERIC_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        if not _is_number(value):
            errors.append(f"Model '{model}' field '{field}' must be numeric")
        elif float(value) < 0:
            errors.append(f"Model '{model}' field '{field}' must be non-negative")

    effective_date = data.get("effective_date")
    if effective_date is not None and not isinstance(effective_date, dt.date):
        if not isinstance(effective_date, str) or not _DATE_RE.match(effective_date):
            errors.append(f"Model '{model}' effective_date must be in YYYY-MM-DD format")
        else:
            try:
                dt.date.fromisoformat(effective_date)
            except ValueError:
                errors.append(f"Model '{model}' effective_date is not a valid date")

    if unit is not None and billing_model is not None and not billing_model.is_compatible_with(unit):
        errors.append(
            f"Model '{model}' billing model '{billing_model.value}' is not compatible with unit '{unit.value}'"
        )

    return errors


def validate_pricing_array(pricing: Mapping[str, Mapping[str, Any]]) -> list[str]:
    if not pricing:
        return ["Pricing array cannot be empty"]
    errors: list[str] = []
    for model, data in pricing.items():
        errors.extend(validate_model_pricing(model, data))
    return errors


def validate_or_raise(model: str, data: Mapping[str, Any]) -> None:
    errors = validate_model_pricing(model, data)
    if errors:
        raise PricingValidationError(errors)


def validate_consistency(pricing: Mapping[str, Mapping[str, Any]]) -> list[str]:
    """
    对同一 Provider 下的一组 token 定价做离群检测，返回告警而不是错误。

    以所有模型 (input + output) / 2 的中位数为基准，比值 > 10 或 < 0.1 的视为可疑。
    不同单位的价格先统一换算到每 token 再比较。
    订阅、企业合同等无法自动核算的计费方式也会单独给出告警。
    """
    warnings: list[str] = []
    averages: dict[str, float] = {}
    for model, data in pricing.items():
        billing_model = _coerce_billing_model(data.get("billing_model"))
        if billing_model is not None and not billing_model.supports_automatic_calculation:
            warnings.append(
                f"Model '{model}' billing model '{billing_model.value}' cannot be calculated per message"
            )
        unit = _coerce_unit(data.get("unit"))
        if unit is None or not unit.is_token_based:
            continue
        if not (_is_number(data.get("input")) and _is_number(data.get("output"))):
            continue
        per_token = (float(data["input"]) + float(data["output"])) / 2 / unit.multiplier
        averages[model] = per_token

    if len(averages) < 2:
        return warnings

    median = statistics.median(averages.values())
    if median <= 0:
        return warnings

    for model, avg in averages.items():
        ratio = avg / median
        if ratio > OUTLIER_HIGH_RATIO:
            warnings.append(
                f"Model '{model}' pricing is {ratio:.1f}x the median and may be incorrect"
            )
        elif ratio < OUTLIER_LOW_RATIO:
            warnings.append(
                f"Model '{model}' pricing is {ratio:.2f}x the median and may be incorrect"
            )
    return warnings


__all__ = [
    "OUTLIER_HIGH_RATIO",
    "OUTLIER_LOW_RATIO",
    "validate_consistency",
    "validate_model_pricing",
    "validate_or_raise",
    "validate_pricing_array",
]
