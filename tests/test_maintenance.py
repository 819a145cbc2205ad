# tests/test_maintenance.py
import json
from contextlib import nullcontext
from datetime import timedelta

import psycopg
import pytest
from sqlalchemy.orm import Session

from living_map.scripts import maintenance
from living_map.services.queue import RetryQueue
from tests.conftest import NOW


@pytest.fixture
def run(db_session: Session, capsys):
    def _run(*argv: str) -> tuple[int, dict]:
        code = maintenance.main(list(argv), session_factory=lambda: nullcontext(db_session))
        out = capsys.readouterr().out.strip()
        return code, json.loads(out) if out else {}

    return _run


def test_archive_prayers(run, make_prayer) -> None:
    make_prayer(expires_at=NOW - timedelta(days=2))
    make_prayer(expires_at=None)

    assert run("archive-prayers") == (0, {"archived": 1})
    assert run("archive-prayers") == (0, {"archived": 0})


def test_purge_notifications(run, make_notification) -> None:
    make_notification("user-alice", "nearby_prayer:1", is_read=True)
    make_notification("user-alice", "nearby_prayer:2")

    assert run("purge-notifications", "--older-than-days", "0") == (0, {"purged": 1})


def test_queue_commands(run, db_session: Session) -> None:
    queue = RetryQueue(db_session)
    queue.enqueue("ingest", "a", {})
    queue.claim_next(now=NOW - timedelta(hours=2))
    finished = queue.enqueue("ingest", "b", {})
    queue.complete(finished.id, now=NOW - timedelta(days=10))

    assert run("reset-stale", "--timeout-minutes", "30") == (0, {"reset": 1})
    assert run("cleanup-queue") == (0, {"deleted": 1})

    code, report = run("queue-health")
    assert code == 0
    assert report["pending"] == 1
    assert report["dead_letter_size"] == 0


def test_service_errors_exit_non_zero(run) -> None:
    code, report = run("purge-notifications", "--older-than-days", "-1")
    assert code == 1
    assert report == {}


def test_ensure_db_skips_non_postgres(run) -> None:
    assert run("ensure-db", "--url", "sqlite:///./living_map.db") == (0, {"created": False})


def test_ensure_db_creates_missing_database(mocker) -> None:
    conn = mocker.MagicMock()
    conn.__enter__.return_value = conn
    cur = conn.cursor.return_value.__enter__.return_value
    cur.fetchone.return_value = None
    connect = mocker.patch.object(maintenance.psycopg, "connect", return_value=conn)

    created = maintenance.ensure_database("postgresql+psycopg://app:secret@db:5432/living_map")

    assert created is True
    connect.assert_called_once_with("postgresql://app:secret@db:5432/postgres", autocommit=True)
    assert cur.execute.call_count == 2


def test_ensure_db_reports_connection_failure(run, mocker) -> None:
    mocker.patch.object(
        maintenance.psycopg, "connect", side_effect=psycopg.OperationalError("connection refused")
    )

    code, _ = run("ensure-db", "--url", "postgresql://app@db/living_map")
    assert code == 1
