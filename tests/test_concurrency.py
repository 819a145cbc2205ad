# tests/test_concurrency.py
"""Multi-session properties against a file-backed SQLite database."""
from __future__ import annotations

import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from living_map.db.session import Base, configure_sqlite
from living_map.models import Notification, Prayer, PushToken, UserLocation
from living_map.services.fanout import NotificationFanout, RecipientOutcome
from living_map.services.geo import GeoPoint
from living_map.services.queue import RetryQueue
from tests.conftest import NOW, NYC

WORKERS = 4


@pytest.fixture()
def file_sessions(tmp_path: Path) -> Iterator[sessionmaker[Session]]:
    engine = configure_sqlite(
        create_engine(
            f"sqlite:///{tmp_path / 'living_map.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        ),
        immediate=True,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        engine.dispose()


def test_concurrent_claimers_never_share_an_item(file_sessions) -> None:
    with file_sessions() as session:
        queue = RetryQueue(session)
        expected = {queue.enqueue("ingest", "row", {"n": n}).id for n in range(40)}

    barrier = threading.Barrier(WORKERS)

    def claimer() -> list[int]:
        barrier.wait()
        mine: list[int] = []
        with file_sessions() as session:
            queue = RetryQueue(session)
            while batch := queue.claim_batch(3):
                mine.extend(item.id for item in batch)
        return mine

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(lambda _: claimer(), range(WORKERS)))

    claimed = [item_id for ids in results for item_id in ids]
    assert len(claimed) == len(expected)
    assert set(claimed) == expected


def test_concurrent_fanout_for_one_event_notifies_each_user_once(file_sessions) -> None:
    with file_sessions() as session:
        prayer = Prayer(author_id="user-alice", body="hold us", origin_lat=NYC[0], origin_lng=NYC[1])
        session.add(prayer)
        recipients = [f"user-{n}" for n in range(6)]
        for n, user_id in enumerate(recipients):
            session.add(UserLocation(user_id=user_id, lat=NYC[0] + 0.001 * n, lng=NYC[1]))
            session.add(PushToken(user_id=user_id, token=f"t-{user_id}", platform="android"))
        session.commit()
        prayer_id = prayer.id

    barrier = threading.Barrier(WORKERS)

    def run_fanout() -> int:
        barrier.wait()
        with file_sessions() as session:
            result = NotificationFanout(session).fanout_for_event(
                prayer_id, GeoPoint(*NYC), "user-alice", "hold us", now=NOW
            )
            return result.count(RecipientOutcome.CREATED)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        created = list(pool.map(lambda _: run_fanout(), range(WORKERS)))

    assert sum(created) == len(recipients)
    with file_sessions() as session:
        per_user = session.execute(
            select(Notification.recipient_id, func.count(Notification.id))
            .group_by(Notification.recipient_id)
        ).all()
    assert sorted(tuple(row) for row in per_user) == [(user_id, 1) for user_id in sorted(recipients)]


def test_concurrent_fanouts_for_two_events_respect_the_cooldown(file_sessions) -> None:
    with file_sessions() as session:
        prayers = [
            Prayer(author_id="user-alice", body=body, origin_lat=NYC[0], origin_lng=NYC[1])
            for body in ("hold us", "heal our street")
        ]
        session.add_all(prayers)
        recipients = [f"user-{n}" for n in range(6)]
        for n, user_id in enumerate(recipients):
            session.add(UserLocation(user_id=user_id, lat=NYC[0] + 0.001 * n, lng=NYC[1]))
            session.add(PushToken(user_id=user_id, token=f"t-{user_id}", platform="android"))
        session.commit()
        prayer_ids = [prayer.id for prayer in prayers]

    barrier = threading.Barrier(WORKERS)

    def run_fanout(prayer_id: int) -> dict[str, RecipientOutcome]:
        barrier.wait()
        with file_sessions() as session:
            result = NotificationFanout(session).fanout_for_event(
                prayer_id, GeoPoint(*NYC), "user-alice", "hold us", now=NOW
            )
            return result.outcomes

    jobs = [prayer_ids[n % 2] for n in range(WORKERS)]
    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        outcomes = list(pool.map(run_fanout, jobs))

    for user_id in recipients:
        seen = [result[user_id] for result in outcomes]
        assert seen.count(RecipientOutcome.CREATED) == 1
    with file_sessions() as session:
        per_user = session.execute(
            select(Notification.recipient_id, func.count(Notification.id))
            .group_by(Notification.recipient_id)
        ).all()
    assert sorted(tuple(row) for row in per_user) == [(user_id, 1) for user_id in sorted(recipients)]
