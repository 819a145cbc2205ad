# tests/v1/test_queue_api.py
from fastapi.testclient import TestClient


def _enqueue(client: TestClient, headers: dict[str, str], **overrides) -> dict:
    body = {"source": "ingest", "kind": "prayer_import", "payload": {"row": 1}}
    body.update(overrides)
    response = client.post("/api/v1/queue/items", json=body, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_queue_requires_admin(client: TestClient, auth_token) -> None:
    response = client.post(
        "/api/v1/queue/items",
        json={"source": "ingest", "kind": "prayer_import"},
        headers=auth_token,
    )
    assert response.status_code == 403
    assert client.get("/api/v1/queue/health", headers=auth_token).status_code == 403
    assert client.get("/api/v1/queue/health").status_code in {401, 403}


def test_claim_and_complete(client: TestClient, admin_token) -> None:
    low = _enqueue(client, admin_token, priority=1)
    high = _enqueue(client, admin_token, priority=90)

    claimed = client.post("/api/v1/queue/claim", json={"batch_size": 1}, headers=admin_token).json()
    assert [item["id"] for item in claimed] == [high["id"]]
    assert claimed[0]["status"] == "processing"

    done = client.post(
        f"/api/v1/queue/items/{high['id']}/complete",
        json={"result": {"imported": True}},
        headers=admin_token,
    )
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert done.json()["result"] == {"imported": True}

    rest = client.post("/api/v1/queue/claim", json={"batch_size": 5}, headers=admin_token).json()
    assert [item["id"] for item in rest] == [low["id"]]

    missing = client.post("/api/v1/queue/items/4242/complete", json={}, headers=admin_token)
    assert missing.status_code == 404


def test_fail_dead_letter_and_retry(client: TestClient, admin_token) -> None:
    item = _enqueue(client, admin_token)

    first = client.post(
        f"/api/v1/queue/items/{item['id']}/fail",
        json={"error": "timeout", "max_retries": 2},
        headers=admin_token,
    )
    assert first.json() == {"outcome": "retrying"}
    second = client.post(
        f"/api/v1/queue/items/{item['id']}/fail",
        json={"error": "timeout again", "max_retries": 2},
        headers=admin_token,
    )
    assert second.json() == {"outcome": "dead_lettered"}

    conflict = client.post(f"/api/v1/queue/items/{item['id']}/complete", json={}, headers=admin_token)
    assert conflict.status_code == 409

    (dead,) = client.get("/api/v1/queue/dead-letters", headers=admin_token).json()
    assert dead["original_item_id"] == item["id"]
    assert len(dead["error_history"]) == 2

    revived = client.post(f"/api/v1/queue/dead-letters/{dead['id']}/retry", headers=admin_token)
    assert revived.status_code == 201
    assert revived.json()["retry_count"] == 0
    assert revived.json()["payload"] == {"row": 1}


def test_reset_stale_and_health(client: TestClient, admin_token) -> None:
    _enqueue(client, admin_token)
    client.post("/api/v1/queue/claim", json={"batch_size": 1}, headers=admin_token)

    reset = client.post("/api/v1/queue/reset-stale", json={"timeout_minutes": 0}, headers=admin_token)
    assert reset.json() == {"reset": 1}

    health = client.get("/api/v1/queue/health", headers=admin_token).json()
    assert health["pending"] == 1
    assert health["processing"] == 0
    assert health["status"] == "healthy"
