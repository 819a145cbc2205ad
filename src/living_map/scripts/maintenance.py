"""Operational commands for scheduled jobs and one-off database chores."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import asdict

import psycopg
from psycopg import sql
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from living_map.core.errors import LivingMapError
from living_map.core.settings import settings
from living_map.db.session import SessionLocal, create_tables
from living_map.services.notifications import NotificationInbox
from living_map.services.prayers import PrayerService
from living_map.services.queue import RetryQueue

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def archive_prayers(session: Session, args: argparse.Namespace) -> dict[str, object]:
    return {"archived": PrayerService(session).archive_expired()}


def purge_notifications(session: Session, args: argparse.Namespace) -> dict[str, object]:
    return {"purged": NotificationInbox(session).purge_read(args.older_than_days)}


def reset_stale(session: Session, args: argparse.Namespace) -> dict[str, object]:
    return {"reset": RetryQueue(session).reset_stale(args.timeout_minutes)}


def cleanup_queue(session: Session, args: argparse.Namespace) -> dict[str, object]:
    return {"deleted": RetryQueue(session).cleanup_completed(args.older_than_days)}


def queue_health(session: Session, args: argparse.Namespace) -> dict[str, object]:
    return asdict(RetryQueue(session).health())


def ensure_database(url: str) -> bool:
    """Create the Postgres database named in ``url`` when it is missing.

    Returns True when the database was created. SQLite files are created on
    first connect, so nothing happens for them.
    """
    target = make_url(url)
    if target.get_backend_name() != "postgresql" or not target.database:
        return False
    admin_url = target.set(drivername="postgresql", database="postgres").render_as_string(
        hide_password=False
    )
    with psycopg.connect(admin_url, autocommit=True) as conn, conn.cursor() as cur:
        cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (target.database,))
        if cur.fetchone() is not None:
            return False
        cur.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(target.database)))
    logger.info("Created database %s", target.database)
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="living-map-maintenance",
        description="Run Living Map maintenance jobs against the configured database",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ensure = sub.add_parser("ensure-db", help="Create the configured Postgres database if missing")
    ensure.add_argument("--url", default=None, help="Override the configured database URL")
    sub.add_parser("init-db", help="Create all tables and memorial guards")
    sub.add_parser("archive-prayers", help="Soft-archive prayers past their expiry")

    purge = sub.add_parser("purge-notifications", help="Delete old read notifications")
    purge.add_argument(
        "--older-than-days",
        type=int,
        default=settings.notification_retention_days,
    )

    stale = sub.add_parser("reset-stale", help="Return stuck queue claims to pending")
    stale.add_argument(
        "--timeout-minutes",
        type=int,
        default=settings.queue_stale_timeout_minutes,
    )

    cleanup = sub.add_parser("cleanup-queue", help="Delete old completed queue items")
    cleanup.add_argument("--older-than-days", type=int, default=7)

    sub.add_parser("queue-health", help="Print queue health as JSON")
    return parser


COMMANDS: dict[str, Callable[[Session, argparse.Namespace], dict[str, object]]] = {
    "archive-prayers": archive_prayers,
    "purge-notifications": purge_notifications,
    "reset-stale": reset_stale,
    "cleanup-queue": cleanup_queue,
    "queue-health": queue_health,
}


def main(argv: Sequence[str] | None = None, session_factory: SessionFactory | None = None) -> int:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    if args.command == "ensure-db":
        try:
            created = ensure_database(args.url or settings.database_url_sync)
        except psycopg.Error as exc:
            logger.error("ensure-db failed: %s", exc)
            print(f"[maintenance] ERROR: {exc}", file=sys.stderr)
            return 1
        print(json.dumps({"created": created}))
        return 0

    if args.command == "init-db":
        create_tables()
        logger.info("Created tables")
        print(json.dumps({"initialized": True}))
        return 0

    factory = session_factory or SessionLocal
    try:
        with factory() as session:
            report = COMMANDS[args.command](session, args)
    except (LivingMapError, SQLAlchemyError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"[maintenance] ERROR: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(report, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
