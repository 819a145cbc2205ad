# tests/v1/test_prayers_api.py
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from living_map.models import AdminRole
from tests.conftest import LA, NOW, NYC, auth_headers

NEW_YORK_AREA = {"south": 40, "west": -75, "north": 41, "east": -73}


def test_create_prayer_notifies_neighbours(
    client: TestClient, make_user, auth_token, other_auth_token
) -> None:
    make_user("user-bob", 40.72, -74.01)

    response = client.post(
        "/api/v1/prayers",
        json={"body": "Healing for my mother", "origin": {"lat": NYC[0], "lng": NYC[1]}},
        headers=auth_token,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["prayer"]["author_id"] == "user-alice"
    assert data["prayer"]["status"] == "active"
    assert data["notifications_created"] == 1
    assert client.get("/api/v1/notifications/unread-count", headers=other_auth_token).json() == {
        "count": 1
    }


def test_create_prayer_validates_input(client: TestClient, auth_token) -> None:
    blank = client.post(
        "/api/v1/prayers",
        json={"body": "", "origin": {"lat": 0, "lng": 0}},
        headers=auth_token,
    )
    assert blank.status_code == 422
    off_map = client.post(
        "/api/v1/prayers",
        json={"body": "hi", "origin": {"lat": 0, "lng": 181}},
        headers=auth_token,
    )
    assert off_map.status_code == 422


def test_list_prayers_in_box(client: TestClient, make_prayer) -> None:
    nearby = make_prayer(*NYC)
    make_prayer(*LA)
    make_prayer(*NYC, status="hidden")

    response = client.get("/api/v1/prayers", params=NEW_YORK_AREA)

    assert response.status_code == 200
    assert [p["id"] for p in response.json()] == [nearby.id]


def test_respond_draws_connection(
    client: TestClient, make_prayer, make_user, auth_token, other_auth_token
) -> None:
    make_user("user-alice", *NYC)
    prayer = make_prayer(author_id="user-alice")

    response = client.post(
        f"/api/v1/prayers/{prayer.id}/responses",
        json={"location": {"lat": LA[0], "lng": LA[1]}, "message": "With you"},
        headers=other_auth_token,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["responder_id"] == "user-bob"
    assert data["kind"] == "prayer_response"
    connection = client.get(f"/api/v1/connections/{data['connection_id']}").json()
    assert connection["from_lat"] == NYC[0]
    assert connection["to_lng"] == LA[1]

    inbox = client.get("/api/v1/notifications", headers=auth_token).json()
    assert [n["type"] for n in inbox] == ["prayer_response"]

    missing = client.post(
        "/api/v1/prayers/9999/responses",
        json={"location": {"lat": LA[0], "lng": LA[1]}},
        headers=other_auth_token,
    )
    assert missing.status_code == 404


def test_status_change_requires_moderator(
    client: TestClient, db_session: Session, make_prayer, auth_token
) -> None:
    prayer = make_prayer()

    denied = client.patch(
        f"/api/v1/prayers/{prayer.id}/status", json={"status": "hidden"}, headers=auth_token
    )
    assert denied.status_code == 403

    db_session.add(AdminRole(user_id="user-mod", role="moderator"))
    db_session.commit()
    allowed = client.patch(
        f"/api/v1/prayers/{prayer.id}/status",
        json={"status": "hidden"},
        headers=auth_headers("user-mod"),
    )
    assert allowed.status_code == 200
    assert allowed.json()["status"] == "hidden"
    assert client.get("/api/v1/prayers", params=NEW_YORK_AREA).json() == []


def test_archive_expired_is_admin_only(
    client: TestClient, make_prayer, auth_token, admin_token
) -> None:
    expired = make_prayer(expires_at=NOW - timedelta(days=1))

    assert client.post("/api/v1/prayers/archive-expired", headers=auth_token).status_code == 403

    response = client.post("/api/v1/prayers/archive-expired", headers=admin_token)
    assert response.json() == {"archived": 1}
    assert expired.id not in [p["id"] for p in client.get("/api/v1/prayers", params=NEW_YORK_AREA).json()]
