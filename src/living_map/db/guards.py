"""Storage-level guards for eternal memorial connections.

The guards live in the database (triggers created alongside the table) so
that raw SQL, bulk deletes and administrative sessions are refused too, not
just the ORM path. Mapper events mirror the triggers to fail early with a
typed error.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import DDL, event, inspect
from sqlalchemy.exc import DBAPIError

from living_map.core.errors import (
    ETERNAL_DELETE_MESSAGE,
    IMMUTABLE_GEOMETRY_MESSAGE,
    ProtectedRecordError,
)

IMMUTABLE_COLUMNS: tuple[str, ...] = (
    "prayer_id",
    "from_lat",
    "from_lng",
    "to_lat",
    "to_lng",
    "from_user_id",
    "to_user_id",
    "created_at",
)


def _sqlite_statements(table: str) -> list[str]:
    changed = " OR ".join(f"NEW.{col} IS NOT OLD.{col}" for col in IMMUTABLE_COLUMNS)
    return [
        f"CREATE TRIGGER IF NOT EXISTS {table}_no_delete "
        f"BEFORE DELETE ON {table} "
        f"BEGIN SELECT RAISE(ABORT, '{ETERNAL_DELETE_MESSAGE}'); END",
        f"CREATE TRIGGER IF NOT EXISTS {table}_immutable_geometry "
        f"BEFORE UPDATE ON {table} WHEN {changed} "
        f"BEGIN SELECT RAISE(ABORT, '{IMMUTABLE_GEOMETRY_MESSAGE}'); END",
    ]


def _postgresql_statements(table: str) -> list[str]:
    changed = " OR ".join(
        f"NEW.{col} IS DISTINCT FROM OLD.{col}" for col in IMMUTABLE_COLUMNS
    )
    return [
        "CREATE OR REPLACE FUNCTION prevent_memorial_deletion() RETURNS trigger "
        "LANGUAGE plpgsql AS $$ BEGIN "
        f"RAISE EXCEPTION '{ETERNAL_DELETE_MESSAGE}' USING ERRCODE = 'restrict_violation'; "
        "END; $$",
        "CREATE OR REPLACE FUNCTION prevent_memorial_geometry_change() RETURNS trigger "
        "LANGUAGE plpgsql AS $$ BEGIN "
        f"IF {changed} THEN "
        f"RAISE EXCEPTION '{IMMUTABLE_GEOMETRY_MESSAGE}' USING ERRCODE = 'restrict_violation'; "
        "END IF; RETURN NEW; END; $$",
        f"CREATE TRIGGER {table}_no_delete BEFORE DELETE ON {table} "
        "FOR EACH ROW EXECUTE FUNCTION prevent_memorial_deletion()",
        f"CREATE TRIGGER {table}_no_truncate BEFORE TRUNCATE ON {table} "
        "FOR EACH STATEMENT EXECUTE FUNCTION prevent_memorial_deletion()",
        f"CREATE TRIGGER {table}_immutable_geometry BEFORE UPDATE ON {table} "
        "FOR EACH ROW EXECUTE FUNCTION prevent_memorial_geometry_change()",
    ]


_STATEMENTS_BY_DIALECT = {
    "sqlite": _sqlite_statements,
    "postgresql": _postgresql_statements,
}


def guard_statements(dialect: str, table: str = "memorial_connection") -> list[str]:
    """Return the trigger DDL protecting ``table`` on ``dialect``.

    Unsupported dialects get no triggers; the mapper guards still apply.
    """
    builder = _STATEMENTS_BY_DIALECT.get(dialect)
    return builder(table) if builder is not None else []


def _refuse_delete(mapper: Any, connection: Any, target: Any) -> None:
    raise ProtectedRecordError(ETERNAL_DELETE_MESSAGE)


def _refuse_geometry_change(mapper: Any, connection: Any, target: Any) -> None:
    state = inspect(target)
    for column in IMMUTABLE_COLUMNS:
        if state.attrs[column].history.has_changes():
            raise ProtectedRecordError(IMMUTABLE_GEOMETRY_MESSAGE)


def install_memorial_guards(model: Any) -> None:
    """Attach trigger DDL and mapper guards to the memorial connection model."""
    table = model.__table__
    for dialect in _STATEMENTS_BY_DIALECT:
        for statement in guard_statements(dialect, table.name):
            event.listen(table, "after_create", DDL(statement).execute_if(dialect=dialect))

    event.listen(model, "before_delete", _refuse_delete)
    event.listen(model, "before_update", _refuse_geometry_change)


def is_guard_violation(exc: DBAPIError) -> bool:
    """Return True when a driver error came from one of the memorial triggers."""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return ETERNAL_DELETE_MESSAGE in message or IMMUTABLE_GEOMETRY_MESSAGE in message


@contextmanager
def translate_guard_violations() -> Iterator[None]:
    """Re-raise trigger aborts on memorial rows as ``ProtectedRecordError``."""
    try:
        yield
    except DBAPIError as exc:
        if not is_guard_violation(exc):
            raise
        message = (
            IMMUTABLE_GEOMETRY_MESSAGE
            if IMMUTABLE_GEOMETRY_MESSAGE in str(exc.orig)
            else ETERNAL_DELETE_MESSAGE
        )
        raise ProtectedRecordError(message) from exc
