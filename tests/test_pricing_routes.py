from __future__ import annotations

from fastapi.testclient import TestClient

OVERRIDE = {
    "input": 0.002,
    "output": 0.008,
    "unit": "1k_tokens",
    "currency": "USD",
    "billing_model": "pay_per_use",
    "effective_date": "2025-03-01",
}


def test_resolve_static_pricing(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    with TestClient(app) as client:
        response = client.get("/v1/pricing/resolve", params={"provider": "openai", "model": "gpt-4o"})

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "driver_static_default"
    assert body["unit"] == "1k_tokens"
    assert body["input_rate"] == 0.0025


def test_store_override_then_history(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    with TestClient(app) as client:
        stored = client.put(
            "/v1/pricing/overrides",
            params={"provider": "openai", "model": "gpt-4o"},
            json=OVERRIDE,
        )
        resolved = client.get("/v1/pricing/resolve", params={"provider": "openai", "model": "gpt-4o"})
        history = client.get("/v1/pricing/history", params={"provider": "openai", "model": "gpt-4o"})

    assert stored.status_code == 200, stored.text
    assert stored.json()["source"] == "stored_override"
    assert resolved.json()["input_rate"] == 0.002
    items = history.json()
    assert len(items) == 1
    assert items[0]["is_current"] is True
    assert items[0]["effective_date"] == "2025-03-01"


def test_invalid_override_is_400_with_every_error(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    with TestClient(app) as client:
        response = client.put(
            "/v1/pricing/overrides",
            params={"provider": "openai", "model": "gpt-4o"},
            json={"unit": "1k_tokens", "currency": "usd", "billing_model": "pay_per_use", "input": -1},
        )
        history = client.get("/v1/pricing/history", params={"provider": "openai", "model": "gpt-4o"})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "pricing_validation_error"
    assert len(detail["details"]["errors"]) >= 3
    assert history.json() == []


def test_compare_pricing(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    with TestClient(app) as client:
        response = client.post(
            "/v1/pricing/compare",
            json={
                "candidates": [
                    {"provider": "openai", "model": "gpt-4o"},
                    {"provider": "local", "model": "llama3"},
                    {"provider": "mystery", "model": "model-x"},
                ],
                "input_tokens": 1000,
                "output_tokens": 1000,
            },
        )

    assert response.status_code == 200
    entries = response.json()
    assert [e["provider"] for e in entries] == ["local", "openai", "mystery"]
    assert entries[-1]["pricing_source"] == "universal_fallback"


def test_calculate_cost(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    with TestClient(app) as client:
        response = client.post(
            "/v1/pricing/cost",
            json={"provider": "gemini", "model": "gemini-1.5-flash", "input_tokens": 1000000, "output_tokens": 0},
        )

    assert response.status_code == 200
    assert response.json()["total_cost"] == 0.075
