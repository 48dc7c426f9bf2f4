from fastapi.testclient import TestClient

from switchyard.exceptions import ConversationStateError


def test_unhandled_exception_returns_structured_error(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    @app.get("/__raise_unhandled_error")
    async def raise_error():
        raise RuntimeError("boom")

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/__raise_unhandled_error")

    assert response.status_code == 500
    payload = response.json()
    assert payload["error_code"] == "internal_error"
    assert payload["message"] == "服务器内部错误，请稍后再试"
    assert payload["error_id"]


def test_state_error_maps_to_conflict(app_with_inmemory_db):
    app, _ = app_with_inmemory_db

    @app.get("/__raise_state_error")
    async def raise_state_error():
        raise ConversationStateError("Conversation c1 has no open provider session")

    with TestClient(app) as client:
        response = client.get("/__raise_state_error")

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "conversation_state_error"
    assert detail["code"] == 409
    assert detail["details"] is None
