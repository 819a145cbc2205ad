# tests/test_rate_limiter.py
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from living_map.core.errors import (
    TransientStoreError,
    UnsupportedBackendError,
    ValidationError,
)
from living_map.models import NotificationType
from living_map.services.rate_limiter import RateLimiter
from tests.conftest import NOW


@pytest.fixture()
def limiter(db_session: Session) -> RateLimiter:
    return RateLimiter(db_session, cooldown_minutes=60)


def test_first_send_is_allowed(limiter: RateLimiter) -> None:
    assert limiter.can_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
    assert limiter.sent_count("user-alice", NotificationType.NEARBY_PRAYER) == 0


@pytest.mark.parametrize(
    ("minutes_later", "allowed"),
    [(10, False), (59, False), (60, False), (61, True)],
)
def test_cooldown_window_end_is_inclusive(
    db_session: Session, limiter: RateLimiter, minutes_later: int, allowed: bool
) -> None:
    limiter.record_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
    db_session.commit()

    later = NOW + timedelta(minutes=minutes_later)
    assert limiter.can_send("user-alice", NotificationType.NEARBY_PRAYER, now=later) is allowed


def test_cooldown_is_per_type_and_per_user(db_session: Session, limiter: RateLimiter) -> None:
    limiter.record_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
    db_session.commit()

    soon = NOW + timedelta(minutes=5)
    assert not limiter.can_send("user-alice", "nearby_prayer", now=soon)
    assert limiter.can_send("user-alice", NotificationType.PRAYER_RESPONSE, now=soon)
    assert limiter.can_send("user-bob", NotificationType.NEARBY_PRAYER, now=soon)


def test_record_send_upserts_and_counts(db_session: Session, limiter: RateLimiter) -> None:
    for hours in range(3):
        limiter.record_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW + timedelta(hours=hours))
    db_session.commit()

    assert limiter.sent_count("user-alice", NotificationType.NEARBY_PRAYER) == 3
    # the latest send restarts the window
    assert not limiter.can_send(
        "user-alice", NotificationType.NEARBY_PRAYER, now=NOW + timedelta(hours=2, minutes=30)
    )


def test_explicit_cooldown_override(db_session: Session, limiter: RateLimiter) -> None:
    limiter.record_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
    db_session.commit()

    later = NOW + timedelta(minutes=10)
    assert limiter.can_send("user-alice", NotificationType.NEARBY_PRAYER, cooldown_minutes=5, now=later)
    with pytest.raises(ValidationError):
        limiter.can_send("user-alice", NotificationType.NEARBY_PRAYER, cooldown_minutes=-1)
    with pytest.raises(ValidationError):
        limiter.can_send("user-alice", "carrier_pigeon")


def test_lock_contention_surfaces_as_transient(mocker, limiter: RateLimiter) -> None:
    mocker.patch.object(
        limiter.session,
        "execute",
        side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
    )

    with pytest.raises(TransientStoreError, match="locked"):
        limiter.record_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)


def test_claim_send_only_wins_once_per_window(db_session: Session, limiter: RateLimiter) -> None:
    assert limiter.claim_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
    assert not limiter.claim_send(
        "user-alice", NotificationType.NEARBY_PRAYER, now=NOW + timedelta(minutes=60)
    )
    db_session.commit()

    assert limiter.sent_count("user-alice", NotificationType.NEARBY_PRAYER) == 1
    assert not limiter.can_send(
        "user-alice", NotificationType.NEARBY_PRAYER, now=NOW + timedelta(minutes=60)
    )

    assert limiter.claim_send(
        "user-alice", NotificationType.NEARBY_PRAYER, now=NOW + timedelta(minutes=61)
    )
    db_session.commit()
    assert limiter.sent_count("user-alice", NotificationType.NEARBY_PRAYER) == 2
    with pytest.raises(ValidationError):
        limiter.claim_send("user-alice", NotificationType.NEARBY_PRAYER, cooldown_minutes=-1)


def test_backend_without_upsert_is_rejected(mocker, limiter: RateLimiter) -> None:
    bind = mocker.MagicMock()
    bind.dialect.name = "mssql"
    mocker.patch.object(limiter.session, "get_bind", return_value=bind)

    with pytest.raises(UnsupportedBackendError, match="mssql"):
        limiter.record_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
    with pytest.raises(UnsupportedBackendError):
        limiter.claim_send("user-alice", NotificationType.NEARBY_PRAYER, now=NOW)
