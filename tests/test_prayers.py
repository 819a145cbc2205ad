# tests/test_prayers.py
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from living_map.core.errors import NotFoundError, ValidationError
from living_map.models import ConnectionKind, MemorialConnection, Notification
from living_map.services.geo import BoundingBox, GeoPoint
from living_map.services.prayers import PrayerService
from tests.conftest import LA, NOW, NYC


@pytest.fixture()
def service(db_session: Session) -> PrayerService:
    return PrayerService(db_session)


def test_create_prayer_runs_nearby_fanout(
    db_session: Session, service: PrayerService, make_user
) -> None:
    make_user("user-bob", 40.72, -74.01)

    prayer, result = service.create_prayer("user-alice", "Strength for today", GeoPoint(*NYC), now=NOW)

    assert prayer.id is not None
    assert prayer.status == "active"
    assert prayer.expires_at == NOW + timedelta(days=30)
    assert result is not None
    assert result.created == 1


def test_create_prayer_survives_fanout_failure(
    mocker, db_session: Session, service: PrayerService, make_user
) -> None:
    make_user("user-bob", 40.72, -74.01)
    mocker.patch.object(
        service.fanout,
        "fanout_for_event",
        side_effect=OperationalError("SELECT", {}, Exception("disk I/O error")),
    )

    prayer, result = service.create_prayer("user-alice", "Strength for today", GeoPoint(*NYC), now=NOW)

    assert result is None
    assert service.get_prayer(prayer.id).body == "Strength for today"
    with pytest.raises(ValidationError):
        service.create_prayer("user-alice", "   ", GeoPoint(*NYC))


def test_respond_draws_line_and_notifies_author(
    db_session: Session, service: PrayerService, make_prayer, make_user
) -> None:
    make_user("user-alice", *NYC)
    prayer = make_prayer(author_id="user-alice")

    response = service.respond(
        prayer.id, "user-bob", GeoPoint(*LA), ConnectionKind.ONGOING_PRAYER, "Praying daily", now=NOW
    )

    connection = db_session.get(MemorialConnection, response.connection_id)
    assert connection.kind == "ongoing_prayer"
    (notification,) = db_session.scalars(
        select(Notification).where(Notification.recipient_id == "user-alice")
    )
    assert notification.type == "prayer_support"
    assert notification.event_key == f"prayer_response:{response.id}"
    assert notification.payload["body"] == "Praying daily"


def test_self_response_does_not_notify(
    db_session: Session, service: PrayerService, make_prayer, make_user
) -> None:
    make_user("user-alice", *NYC)
    prayer = make_prayer(author_id="user-alice")

    service.respond(prayer.id, "user-alice", GeoPoint(*NYC), now=NOW)

    assert db_session.scalars(select(Notification)).first() is None
    with pytest.raises(NotFoundError):
        service.respond(4242, "user-bob", GeoPoint(*LA))


def test_archive_and_restore(db_session: Session, service: PrayerService, make_prayer) -> None:
    expired = make_prayer(expires_at=NOW - timedelta(days=1))
    current = make_prayer(expires_at=NOW + timedelta(days=1))
    box = BoundingBox(40, -75, 41, -73)

    assert service.archive_expired(now=NOW) == 1
    db_session.refresh(expired)
    assert expired.archived_at == NOW
    assert expired.archive_reason == "expired"
    assert [p.id for p in service.list_discoverable(box)] == [current.id]
    assert service.archive_expired(now=NOW) == 0

    restored = service.restore(expired.id, days=7, now=NOW)
    assert restored.archived_at is None
    assert restored.expires_at == NOW + timedelta(days=7)
    assert {p.id for p in service.list_discoverable(box)} == {expired.id, current.id}
    with pytest.raises(ValidationError):
        service.restore(expired.id, days=0)


def test_archive_leaves_connections_visible(
    db_session: Session, service: PrayerService, make_prayer
) -> None:
    prayer = make_prayer(expires_at=NOW - timedelta(days=1))
    response = service.respond(prayer.id, "user-bob", GeoPoint(*LA), now=NOW)

    service.archive_expired(now=NOW)

    assert service.ledger.get_connection(response.connection_id).prayer_id == prayer.id


def test_set_status_conceals_from_discovery(service: PrayerService, make_prayer) -> None:
    prayer = make_prayer()
    box = BoundingBox(40, -75, 41, -73)

    service.set_status(prayer.id, "hidden")
    assert service.list_discoverable(box) == []
    with pytest.raises(ValidationError):
        service.set_status(prayer.id, "deleted")
