from __future__ import annotations

import pytest

from switchyard.exceptions import PricingValidationError
from switchyard.services.pricing_validator import (
    validate_consistency,
    validate_model_pricing,
    validate_or_raise,
    validate_pricing_array,
)


def _token_pricing(**overrides):
    data = {
        "input": 0.001,
        "output": 0.002,
        "unit": "1k_tokens",
        "currency": "USD",
        "billing_model": "pay_per_use",
    }
    data.update(overrides)
    return data


def test_valid_token_pricing_has_no_errors():
    assert validate_model_pricing("gpt-4o", _token_pricing()) == []


def test_valid_flat_pricing_has_no_errors():
    data = {"cost": 0.04, "unit": "per_image", "currency": "USD", "billing_model": "pay_per_use"}

    assert validate_model_pricing("dall-e-3", data) == []


def test_missing_required_fields_are_all_reported():
    errors = validate_model_pricing("m", {"input": 0.1, "output": 0.2})

    assert len([e for e in errors if "missing required field" in e]) == 3


def test_unknown_unit_and_billing_model():
    errors = validate_model_pricing("m", _token_pricing(unit="per_banana", billing_model="barter"))

    assert any("unit 'per_banana'" in e for e in errors)
    assert any("billing_model 'barter'" in e for e in errors)


@pytest.mark.parametrize("currency", ["usd", "US", "DOLLARS"])
def test_currency_must_be_upper_case_iso_code(currency):
    errors = validate_model_pricing("m", _token_pricing(currency=currency))

    assert errors == ["Model 'm' currency must be a 3-letter upper-case ISO code"]


def test_unsupported_currency():
    errors = validate_model_pricing("m", _token_pricing(currency="XYZ"))

    assert errors == ["Model 'm' currency 'XYZ' is not supported"]


def test_token_unit_requires_input_and_output():
    data = _token_pricing()
    del data["output"]

    errors = validate_model_pricing("m", data)

    assert any("must have 'input' and 'output'" in e for e in errors)


def test_flat_unit_requires_cost():
    data = {"unit": "per_request", "currency": "USD", "billing_model": "pay_per_use"}

    errors = validate_model_pricing("m", data)

    assert errors == ["Model 'm' with unit pricing must have 'cost' field"]


def test_negative_and_non_numeric_rates():
    errors = validate_model_pricing("m", _token_pricing(input=-0.1, output="cheap"))

    assert "Model 'm' field 'input' must be non-negative" in errors
    assert "Model 'm' field 'output' must be numeric" in errors


def test_numeric_strings_are_accepted():
    assert validate_model_pricing("m", _token_pricing(input="0.5", output="1")) == []


def test_boolean_is_not_numeric():
    errors = validate_model_pricing("m", _token_pricing(input=True))

    assert "Model 'm' field 'input' must be numeric" in errors


@pytest.mark.parametrize("value", ["2024/01/01", "01-01-2024", "2024-02-30"])
def test_bad_effective_date(value):
    errors = validate_model_pricing("m", _token_pricing(effective_date=value))

    assert len(errors) == 1
    assert "effective_date" in errors[0]


def test_good_effective_date():
    assert validate_model_pricing("m", _token_pricing(effective_date="2024-06-01")) == []


def test_billing_model_incompatible_with_unit():
    data = {"cost": 5, "unit": "per_mb", "currency": "USD", "billing_model": "subscription"}

    errors = validate_model_pricing("m", data)

    assert errors == ["Model 'm' billing model 'subscription' is not compatible with unit 'per_mb'"]


def test_empty_pricing_array():
    assert validate_pricing_array({}) == ["Pricing array cannot be empty"]


def test_pricing_array_collects_errors_of_every_model():
    errors = validate_pricing_array(
        {
            "good": _token_pricing(),
            "bad-a": _token_pricing(currency="usd"),
            "bad-b": _token_pricing(input=-1),
        }
    )

    assert len(errors) == 2
    assert any("'bad-a'" in e for e in errors)
    assert any("'bad-b'" in e for e in errors)


def test_validate_or_raise_carries_all_errors():
    with pytest.raises(PricingValidationError) as excinfo:
        validate_or_raise("m", {"unit": "1k_tokens"})

    assert len(excinfo.value.errors) >= 3
    assert excinfo.value.details["errors"] == excinfo.value.errors


def test_consistency_flags_outliers_across_units():
    warnings = validate_consistency(
        {
            "a": _token_pricing(input=1.0, output=2.0),
            "b": _token_pricing(input=1.2, output=2.2),
            # 同样的价格，只是按每百万 token 报价，不应被标记。
            "c": _token_pricing(input=1000.0, output=2000.0, unit="1m_tokens"),
            "expensive": _token_pricing(input=50.0, output=100.0),
            "cheap": _token_pricing(input=0.01, output=0.02),
        }
    )

    assert len(warnings) == 2
    assert any("'expensive'" in w for w in warnings)
    assert any("'cheap'" in w for w in warnings)


def test_consistency_needs_at_least_two_token_models():
    assert validate_consistency({"only": _token_pricing()}) == []


def test_consistency_flags_billing_models_without_per_message_cost():
    warnings = validate_consistency(
        {
            "team-plan": _token_pricing(billing_model="subscription", unit="per_request", cost=20.0),
            "gpt-4o": _token_pricing(),
        }
    )

    assert warnings == [
        "Model 'team-plan' billing model 'subscription' cannot be calculated per message"
    ]
