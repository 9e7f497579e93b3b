import pytest

from .utils import auth_headers


SCRIPT = {
    "type": "script",
    "name": "KillBrick",
    "scriptType": "Script",
    "targetService": "ServerScriptService",
    "code": "script.Parent.Touched:Connect(function() end)",
}


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/api/sync/pending"),
        ("get", "/api/sync/heartbeat"),
        ("get", "/api/sync/context"),
    ],
)
def test_sync_requires_bearer_token(client, method, path):
    res = getattr(client, method)(path)
    assert res.status_code == 401
    assert res.json() == {"detail": "Unauthorized"}

    res = getattr(client, method)(path, headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json() == {"detail": "Unauthorized"}


def test_expired_token_rejected_like_invalid(client, stores):
    from datetime import UTC, datetime, timedelta

    headers = auth_headers(client)
    token = headers["Authorization"].split(" ", 1)[1]
    sessions = stores["session_store"]
    sessions._sessions[token] = sessions._sessions[token].model_copy(
        update={"expires_at": datetime.now(UTC) - timedelta(minutes=1)}
    )
    res = client.get("/api/sync/pending", headers=headers)
    assert res.status_code == 401
    assert res.json() == {"detail": "Unauthorized"}


def test_push_pending_confirm_cycle(client):
    headers = auth_headers(client)
    assert client.get("/api/sync/pending", headers=headers).json() == {}

    a = client.post("/api/sync/push", json=SCRIPT, headers=headers).json()
    b = client.post("/api/sync/push", json={**SCRIPT, "name": "Door"}, headers=headers).json()
    assert a["payload"]["name"] == "KillBrick"
    assert a["status"] == "pending"

    assert client.get("/api/sync/pending", headers=headers).json()["id"] == a["id"]
    assert client.get("/api/sync/pending", headers=headers).json()["id"] == a["id"]

    assert client.post("/api/sync/confirm", json={"id": a["id"]}, headers=headers).json() == {"ok": True}
    assert client.get("/api/sync/pending", headers=headers).json()["id"] == b["id"]

    assert client.post("/api/sync/confirm", json={"id": b["id"]}, headers=headers).status_code == 200
    assert client.get("/api/sync/pending", headers=headers).json() == {}


def test_confirm_twice_is_not_found(client):
    headers = auth_headers(client)
    item = client.post("/api/sync/push", json=SCRIPT, headers=headers).json()
    assert client.post("/api/sync/confirm", json={"id": item["id"]}, headers=headers).status_code == 200
    res = client.post("/api/sync/confirm", json={"id": item["id"]}, headers=headers)
    assert res.status_code == 404


def test_cross_user_confirm_is_not_found(client):
    owner = auth_headers(client, "owner")
    other = auth_headers(client, "other")
    item = client.post("/api/sync/push", json=SCRIPT, headers=owner).json()

    assert client.get("/api/sync/pending", headers=other).json() == {}
    assert client.post("/api/sync/confirm", json={"id": item["id"]}, headers=other).status_code == 404
    assert client.get("/api/sync/pending", headers=owner).json()["id"] == item["id"]


def test_push_without_type_defaults_to_script(client):
    headers = auth_headers(client)
    body = {k: v for k, v in SCRIPT.items() if k != "type"}
    item = client.post("/api/sync/push", json=body, headers=headers).json()
    assert item["payload"]["type"] == "script"


def test_push_rejects_invalid_payload(client):
    headers = auth_headers(client)
    assert client.post("/api/sync/push", json={"type": "part"}, headers=headers).status_code == 422
    assert client.post("/api/sync/push", json=[1, 2], headers=headers).status_code == 422


def test_error_report_flags_item_and_surfaces_once(client):
    headers = auth_headers(client)
    item = client.post("/api/sync/push", json=SCRIPT, headers=headers).json()

    res = client.post(
        "/api/sync/error",
        json={"id": item["id"], "message": "attempt to index nil", "script": "KillBrick", "line": 3},
        headers=headers,
    )
    assert res.json() == {"ok": True, "flagged": True}

    pending = client.get("/api/sync/pending", headers=headers).json()
    assert pending == {"lastError": {"message": "attempt to index nil", "script": "KillBrick", "line": 3}}
    assert client.get("/api/sync/pending", headers=headers).json() == {}


def test_error_without_id_only_records_last_error(client):
    headers = auth_headers(client)
    item = client.post("/api/sync/push", json=SCRIPT, headers=headers).json()
    res = client.post("/api/sync/error", json={"message": "runtime boom"}, headers=headers)
    assert res.json() == {"ok": True}

    hb = client.get("/api/sync/heartbeat", headers=headers).json()
    assert hb["status"] == "ok"
    assert isinstance(hb["timestamp"], int)
    assert hb["lastError"]["message"] == "runtime boom"
    assert "lastError" not in client.get("/api/sync/heartbeat", headers=headers).json()
    # the item was never touched
    assert client.get("/api/sync/pending", headers=headers).json()["id"] == item["id"]


def test_context_is_replaced_wholesale(client):
    headers = auth_headers(client)
    assert client.get("/api/sync/context", headers=headers).json() == {"context": []}
    client.post("/api/sync/context", json={"context": ["Part Floor", "Script Door"]}, headers=headers)
    res = client.post("/api/sync/context", json={"context": ["Script Lamp"]}, headers=headers)
    assert res.json() == {"context": ["Script Lamp"]}
    assert client.get("/api/sync/context", headers=headers).json() == {"context": ["Script Lamp"]}


def test_place_is_reported_in_heartbeat(client):
    headers = auth_headers(client)
    assert client.post("/api/sync/place", json={"placeId": 123, "gameId": 456}, headers=headers).json() == {"ok": True}
    hb = client.get("/api/sync/heartbeat", headers=headers).json()
    assert hb["place"] == {"placeId": 123, "gameId": 456}


def test_store_outage_maps_to_503(client, stores):
    from bloxr.core.errors import StoreUnavailable

    headers = auth_headers(client)

    def boom(user_id):
        raise StoreUnavailable("down", retry_after_seconds=7)

    stores["work_queue"].peek_oldest_pending = boom
    res = client.get("/api/sync/pending", headers=headers)
    assert res.status_code == 503
    assert res.headers["Retry-After"] == "7"


def test_error_report_is_recorded_when_queue_is_down(client, stores):
    from bloxr.core.errors import StoreUnavailable

    headers = auth_headers(client)

    def boom(user_id, item_id):
        raise StoreUnavailable("down")

    stores["work_queue"].mark_error = boom
    res = client.post("/api/sync/error", json={"id": "abc", "message": "nil index", "line": 9}, headers=headers)
    assert res.status_code == 503

    hb = client.get("/api/sync/heartbeat", headers=headers).json()
    assert hb["lastError"] == {"message": "nil index", "script": None, "line": 9}
