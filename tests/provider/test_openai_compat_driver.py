from __future__ import annotations

import json

import httpx
import pytest

from switchyard.provider import DriverError, OpenAICompatibleDriver


def _driver(handler, *, api_key="sk-test", require_api_key=True):
    return OpenAICompatibleDriver(
        "openai",
        base_url="https://api.example.com/v1/",
        api_key=api_key,
        pricing_table="openai",
        require_api_key=require_api_key,
        transport=httpx.MockTransport(handler),
    )


def test_get_available_models_parses_openai_list():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        assert request.headers["Authorization"] == "Bearer sk-test"
        return httpx.Response(
            200,
            json={
                "object": "list",
                "data": [
                    {"id": "gpt-4o", "context_window": 128000, "capabilities": ["Chat", "Vision"]},
                    {"id": "text-embedding-3", "context_length": "8191", "capabilities": "embedding"},
                    {"name": "no-id-model"},
                    {"object": "model"},
                    "garbage",
                ],
            },
        )

    models = _driver(handler).get_available_models()

    assert [m.id for m in models] == ["gpt-4o", "text-embedding-3", "no-id-model"]
    assert models[0].context_window == 128000
    assert models[0].capabilities == ["chat", "vision"]
    assert models[1].context_window == 8191
    assert models[1].capabilities == ["embedding"]
    assert models[2].context_window is None


def test_http_error_status_becomes_driver_error():
    driver = _driver(lambda request: httpx.Response(503, json={"error": "down"}))

    with pytest.raises(DriverError) as excinfo:
        driver.get_available_models()

    assert excinfo.value.status_code == 503
    assert excinfo.value.provider == "openai"


def test_network_error_becomes_driver_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DriverError):
        _driver(handler).get_available_models()


def test_non_json_body_becomes_driver_error():
    driver = _driver(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(DriverError):
        driver.get_available_models()


def test_validate_credentials_without_key():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"data": []})

    check = _driver(handler, api_key=None).validate_credentials()

    assert check.valid is False
    assert calls == []


def test_validate_credentials_local_provider_needs_no_key():
    driver = _driver(lambda request: httpx.Response(200, json={"data": []}), api_key=None, require_api_key=False)

    assert driver.validate_credentials().valid is True


@pytest.mark.parametrize("status", [401, 403])
def test_validate_credentials_rejected(status):
    driver = _driver(lambda request: httpx.Response(status, json={}))

    check = driver.validate_credentials()

    assert check.valid is False
    assert str(status) in check.errors[0]


def test_send_message_posts_context_and_reads_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "gpt-4o-2024-08-06",
                "choices": [{"message": {"role": "assistant", "content": "hi there"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3},
            },
        )

    response = _driver(handler).send_message(
        [{"role": "user", "content": "hello"}],
        {"model": "gpt-4o", "temperature": 0.2},
    )

    assert seen["path"] == "/v1/chat/completions"
    assert seen["body"] == {
        "model": "gpt-4o",
        "messages": [{"role": "user", "content": "hello"}],
        "temperature": 0.2,
    }
    assert response.content == "hi there"
    assert response.token_usage.input_tokens == 12
    assert response.token_usage.output_tokens == 3
    assert response.finish_reason == "stop"
    assert response.model == "gpt-4o-2024-08-06"


def test_send_message_requires_model():
    driver = _driver(lambda request: httpx.Response(200, json={}))

    with pytest.raises(DriverError):
        driver.send_message([{"role": "user", "content": "hello"}], {})


def test_static_pricing_comes_from_declared_table():
    driver = _driver(lambda request: httpx.Response(200, json={}))

    pricing = driver.get_static_pricing("gpt-4o-mini-2024-07-18")

    assert pricing is not None
    assert pricing["input"] == pytest.approx(0.00015)
    driver.close()
