import pytest

from bloxr.api.main import create_app
from bloxr.config import Settings
from fastapi.testclient import TestClient

from .utils import FakeTokenSource, auth_headers, script_block, sse_frames


def _client_with(stores, source):
    return TestClient(create_app(Settings(), token_source=source, **stores))


def test_chat_requires_auth(client):
    res = client.post("/api/chat", json={"message": "hi"})
    assert res.status_code == 401


def test_empty_message_rejected_before_streaming(client, token_source):
    headers = auth_headers(client)
    res = client.post("/api/chat", json={"message": "   "}, headers=headers)
    assert res.status_code == 400
    assert token_source.calls == []
    assert client.post("/api/chat", json={}, headers=headers).status_code == 422


def test_plain_answer_streams_deltas_then_done(client):
    headers = auth_headers(client)
    res = client.post("/api/chat", json={"message": "hello"}, headers=headers)
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache, no-transform"
    assert sse_frames(res.text) == [{"delta": "Here you go."}, "[DONE]"]


def test_generated_blocks_reach_the_plugin_queue(stores):
    source = FakeTokenSource(["Added a kill brick.\n", script_block(name="KillBrick")])
    client = _client_with(stores, source)
    headers = auth_headers(client)

    res = client.post("/api/chat", json={"message": "kill brick please"}, headers=headers)
    frames = sse_frames(res.text)
    assert frames[-3:] == [{"building": True}, {"codePushed": True}, "[DONE]"]

    pending = client.get("/api/sync/pending", headers=headers).json()
    assert pending["payload"]["name"] == "KillBrick"
    assert pending["payload"]["type"] == "script"


def test_provider_failure_ends_with_error_frame(stores):
    source = FakeTokenSource(["partial ", "```json\n{\"name\""], fail_after=1)
    client = _client_with(stores, source)
    headers = auth_headers(client)

    frames = sse_frames(client.post("/api/chat", json={"message": "x"}, headers=headers).text)
    assert frames == [{"delta": "partial "}, {"error": "Failed to get response"}]
    assert client.get("/api/sync/pending", headers=headers).json() == {}


def test_chat_id_supplies_history_when_request_has_none(client, token_source):
    headers = auth_headers(client)
    chat = client.post("/api/chats", json={"title": "Obby"}, headers=headers).json()
    client.post(f"/api/chats/{chat['chat_id']}/messages", json={"role": "user", "content": "make a lava floor"}, headers=headers)
    client.post(f"/api/chats/{chat['chat_id']}/messages", json={"role": "assistant", "text": "Done."}, headers=headers)

    client.post("/api/chat", json={"message": "now make it blink", "chat_id": chat["chat_id"]}, headers=headers)

    _, messages = token_source.calls[-1]
    assert [m["content"] for m in messages] == ["make a lava floor", "Done.", "now make it blink"]


def test_request_history_wins_over_stored_chat(client, token_source):
    headers = auth_headers(client)
    chat = client.post("/api/chats", json={}, headers=headers).json()
    client.post(f"/api/chats/{chat['chat_id']}/messages", json={"role": "user", "content": "stored"}, headers=headers)

    client.post(
        "/api/chat",
        json={
            "message": "go",
            "chat_id": chat["chat_id"],
            "conversationHistory": [{"role": "user", "content": "inline"}],
        },
        headers=headers,
    )
    _, messages = token_source.calls[-1]
    assert [m["content"] for m in messages] == ["inline", "go"]


def test_chat_crud_is_scoped_to_owner(client):
    owner = auth_headers(client, "owner")
    other = auth_headers(client, "other")

    res = client.post("/api/chats", json={"project_id": "obby"}, headers=owner)
    assert res.status_code == 201
    chat = res.json()
    assert chat["title"] == "New Chat"

    res = client.post(f"/api/chats/{chat['chat_id']}/messages", json={"role": "user", "content": "hi"}, headers=owner)
    assert res.status_code == 201

    full = client.get(f"/api/chats/{chat['chat_id']}", headers=owner).json()
    assert [m["content"] for m in full["messages"]] == ["hi"]
    assert full["chat"]["updated_at"] >= full["chat"]["created_at"]

    assert client.get(f"/api/chats/{chat['chat_id']}", headers=other).status_code == 404
    res = client.post(f"/api/chats/{chat['chat_id']}/messages", json={"role": "user", "content": "x"}, headers=other)
    assert res.status_code == 404


@pytest.mark.parametrize("body", [{"role": "user", "content": ""}, {"role": "system", "content": "x"}])
def test_chat_message_validation(client, body):
    headers = auth_headers(client)
    chat = client.post("/api/chats", json={}, headers=headers).json()
    res = client.post(f"/api/chats/{chat['chat_id']}/messages", json=body, headers=headers)
    assert res.status_code == 422


def test_token_issue_is_rate_limited(client, monkeypatch):
    monkeypatch.setenv("BLOXR_TOKEN_LIMIT", "2")
    assert client.post("/api/auth/token", json={"user_id": "a"}).status_code == 200
    assert client.post("/api/auth/token", json={"user_id": "a"}).status_code == 200
    res = client.post("/api/auth/token", json={"user_id": "a"})
    assert res.status_code == 429
    assert int(res.headers["Retry-After"]) >= 1


def test_token_requires_user_id(client):
    assert client.post("/api/auth/token", json={}).status_code == 422
    assert client.post("/api/auth/token", json={"user_id": ""}).status_code == 422


def test_health_and_metrics(client):
    assert client.get("/health").json()["status"] == "ok"
    client.get("/api/sync/pending")
    body = client.get("/metrics").text
    assert "bloxr_request_latency_seconds" in body
