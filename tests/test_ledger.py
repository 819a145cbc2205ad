# tests/test_ledger.py
from datetime import timedelta

import pytest
from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from living_map.core.errors import NotFoundError, ProtectedRecordError, ValidationError
from living_map.db.guards import guard_statements, translate_guard_violations
from living_map.models import ConnectionKind, MemorialConnection, PrayerResponse
from living_map.services.geo import BoundingBox, GeoPoint
from living_map.services.ledger import ConnectionLedger
from living_map.services.viewport import ViewportQueryEngine
from tests.conftest import LA, NOW, NYC

US = BoundingBox(25, -125, 50, -65)


@pytest.fixture()
def ledger(db_session: Session) -> ConnectionLedger:
    return ConnectionLedger(db_session)


def _nyc_to_la(ledger: ConnectionLedger, prayer_id: int, **kwargs) -> int:
    return ledger.create_connection(
        prayer_id,
        GeoPoint(*NYC),
        GeoPoint(*LA),
        "user-alice",
        "user-bob",
        **kwargs,
    )


def test_create_connection_defaults(ledger: ConnectionLedger, make_prayer) -> None:
    prayer = make_prayer()
    connection_id = _nyc_to_la(ledger, prayer.id, created_at=NOW)

    connection = ledger.get_connection(connection_id)
    assert connection.kind == ConnectionKind.PRAYER_RESPONSE.value
    assert connection.is_eternal is False
    # legacy stamp is written but never read
    assert connection.expires_at == NOW + timedelta(days=365)


def test_answered_prayer_is_always_eternal(ledger: ConnectionLedger, make_prayer) -> None:
    prayer = make_prayer()
    connection_id = _nyc_to_la(
        ledger, prayer.id, kind=ConnectionKind.ANSWERED_PRAYER, is_eternal=False
    )

    connection = ledger.get_connection(connection_id)
    assert connection.is_eternal is True
    assert connection.expires_at is None


def test_create_connection_rejects_unknown_prayer_and_kind(
    ledger: ConnectionLedger, make_prayer
) -> None:
    with pytest.raises(NotFoundError):
        _nyc_to_la(ledger, 99999)
    prayer = make_prayer()
    with pytest.raises(ValidationError):
        _nyc_to_la(ledger, prayer.id, kind="miracle")


def test_delete_connection_always_refused(ledger: ConnectionLedger, make_prayer) -> None:
    prayer = make_prayer()
    connection_id = _nyc_to_la(ledger, prayer.id)

    with pytest.raises(ProtectedRecordError):
        ledger.delete_connection(connection_id)
    with pytest.raises(ProtectedRecordError):
        ledger.delete_connection(424242)
    assert ledger.get_connection(connection_id).id == connection_id


def test_orm_delete_and_geometry_change_refused(
    db_session: Session, ledger: ConnectionLedger, make_prayer
) -> None:
    prayer = make_prayer()
    connection = ledger.get_connection(_nyc_to_la(ledger, prayer.id))

    db_session.delete(connection)
    with pytest.raises(ProtectedRecordError):
        db_session.flush()
    db_session.rollback()

    connection = ledger.get_connection(connection.id)
    connection.to_lat = 0.0
    with pytest.raises(ProtectedRecordError):
        db_session.flush()
    db_session.rollback()


def test_raw_sql_delete_refused_by_storage(
    db_session: Session, ledger: ConnectionLedger, make_prayer
) -> None:
    prayer = make_prayer()
    connection_id = _nyc_to_la(ledger, prayer.id)

    with pytest.raises(IntegrityError, match="eternal"):
        db_session.execute(text("DELETE FROM memorial_connection WHERE id = :id"), {"id": connection_id})
    db_session.rollback()

    with pytest.raises(ProtectedRecordError), translate_guard_violations():
        db_session.execute(delete(MemorialConnection))
    db_session.rollback()

    with pytest.raises(ProtectedRecordError, match="immutable"), translate_guard_violations():
        db_session.execute(
            update(MemorialConnection)
            .where(MemorialConnection.id == connection_id)
            .values(from_lat=1.0)
            .execution_options(synchronize_session=False)
        )
    db_session.rollback()

    assert db_session.scalar(select(MemorialConnection.from_lat).where(
        MemorialConnection.id == connection_id
    )) == NYC[0]


def test_raw_sql_may_touch_non_geometry_columns(
    db_session: Session, ledger: ConnectionLedger, make_prayer
) -> None:
    prayer = make_prayer()
    connection_id = _nyc_to_la(ledger, prayer.id)

    db_session.execute(
        text("UPDATE memorial_connection SET expires_at = NULL WHERE id = :id"),
        {"id": connection_id},
    )
    db_session.commit()


def test_connection_still_visible_after_400_days(
    db_session: Session, ledger: ConnectionLedger, make_prayer
) -> None:
    prayer = make_prayer()
    connection_id = _nyc_to_la(ledger, prayer.id, created_at=NOW)
    engine = ViewportQueryEngine(db_session)

    later = NOW + timedelta(days=400)
    views = engine.query_viewport(US, limit=100, now=later)
    assert [v.id for v in views] == [connection_id]
    assert views[0].age_days == pytest.approx(400)
    # expired legacy stamp is ignored entirely
    assert ledger.get_connection(connection_id).expires_at < later


def test_concealed_prayer_hides_but_keeps_connections(
    db_session: Session, ledger: ConnectionLedger, make_prayer
) -> None:
    visible = make_prayer()
    hidden = make_prayer(LA[0], LA[1])
    kept = _nyc_to_la(ledger, visible.id)
    concealed = _nyc_to_la(ledger, hidden.id)

    hidden.status = "removed"
    db_session.commit()

    with pytest.raises(NotFoundError):
        ledger.get_connection(concealed)
    assert [c.id for c in ledger.all_visible()] == [kept]
    assert db_session.get(MemorialConnection, concealed) is not None

    stats = ledger.statistics(now=NOW)
    assert stats.total == 2
    assert stats.visible == 1


def test_record_response_draws_line_from_origin_to_responder(
    db_session: Session, ledger: ConnectionLedger, make_prayer
) -> None:
    prayer = make_prayer(author_id="user-alice")
    response = ledger.record_response(
        prayer.id, "user-bob", GeoPoint(*LA), ConnectionKind.ONGOING_PRAYER, "with you"
    )

    assert isinstance(response, PrayerResponse)
    connection = ledger.get_connection(response.connection_id)
    assert (connection.from_lat, connection.from_lng) == NYC
    assert (connection.to_lat, connection.to_lng) == LA
    assert connection.from_user_id == "user-alice"
    assert connection.to_user_id == "user-bob"
    assert connection.kind == "ongoing_prayer"


def test_connections_for_user_and_statistics(ledger: ConnectionLedger, make_prayer) -> None:
    prayer = make_prayer()
    first = _nyc_to_la(ledger, prayer.id, created_at=NOW - timedelta(days=30))
    second = _nyc_to_la(
        ledger, prayer.id, kind=ConnectionKind.ANSWERED_PRAYER, created_at=NOW
    )
    ledger.create_connection(
        prayer.id, GeoPoint(*NYC), GeoPoint(10, 10), "user-alice", "user-carol"
    )

    bob = [c.id for c in ledger.connections_for_user("user-bob")]
    assert bob == [second, first]
    assert len(ledger.connections_for_user("user-alice")) == 3

    stats = ledger.statistics(now=NOW)
    assert stats.total == 3
    assert stats.eternal == 1
    assert stats.by_kind == {"prayer_response": 2, "answered_prayer": 1}


def test_guard_statements_per_dialect() -> None:
    sqlite_ddl = guard_statements("sqlite")
    assert any("BEFORE DELETE" in s for s in sqlite_ddl)
    assert any("BEFORE UPDATE" in s for s in sqlite_ddl)
    assert any("TRUNCATE" in s for s in guard_statements("postgresql"))
    assert guard_statements("mssql") == []
