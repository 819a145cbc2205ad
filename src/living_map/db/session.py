"""Database session configuration."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from living_map.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


def configure_sqlite(engine: Engine, *, immediate: bool = False) -> Engine:
    """Give a pysqlite engine real transactional and SAVEPOINT semantics.

    The driver's implicit transaction handling is disabled and SQLAlchemy
    emits ``BEGIN`` itself. ``immediate`` takes the write lock up front so
    concurrent writers queue on the busy timeout instead of deadlocking on
    a lock upgrade.
    """
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE" if immediate else "BEGIN")

    return engine


# Ensure model modules are imported so that metadata is populated when create_all runs.
import living_map.models  # noqa: E402,F401

_connect_args: dict[str, Any] = {}
if settings.effective_database_url.startswith("sqlite"):
    _connect_args = {"check_same_thread": False, "timeout": 30}

engine = configure_sqlite(
    create_engine(
        settings.effective_database_url,
        pool_pre_ping=True,
        echo=settings.sql_debug,
        connect_args=_connect_args,
    )
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create all database tables, including storage-level guards."""
    Base.metadata.create_all(bind=engine)


def drop_tables() -> None:
    """Drop all database tables."""
    Base.metadata.drop_all(bind=engine)
