"""Per-(user, notification type) cooldown tracking."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import ColumnElement, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from living_map.core.errors import (
    TransientStoreError,
    UnsupportedBackendError,
    ValidationError,
)
from living_map.core.settings import settings
from living_map.db.time import as_utc, utcnow
from living_map.models.notification import NotificationRateLimit, NotificationType

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _type_value(notification_type: NotificationType | str) -> str:
    try:
        return NotificationType(notification_type).value
    except ValueError as exc:
        raise ValidationError(f"unknown notification type: {notification_type!r}") from exc


class RateLimiter:
    """Cooldown window per (user, notification type).

    The cooldown end is inclusive: a user becomes eligible again only once
    strictly more than ``cooldown_minutes`` have passed since the last send.
    """

    def __init__(self, session: Session, cooldown_minutes: int | None = None) -> None:
        self.session = session
        self.cooldown_minutes = (
            settings.notification_cooldown_minutes if cooldown_minutes is None else cooldown_minutes
        )

    def can_send(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        cooldown_minutes: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        cooldown = self.cooldown_minutes if cooldown_minutes is None else cooldown_minutes
        if cooldown < 0:
            raise ValidationError("cooldown must not be negative")
        now = as_utc(now) if now is not None else utcnow()

        last_sent = self.session.scalar(
            select(NotificationRateLimit.last_sent_at).where(
                NotificationRateLimit.user_id == user_id,
                NotificationRateLimit.notification_type == _type_value(notification_type),
            )
        )
        if last_sent is None:
            return True
        return now - as_utc(last_sent) > timedelta(minutes=cooldown)

    def record_send(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        now: datetime | None = None,
    ) -> None:
        """Insert-or-increment the rate-limit row in one statement.

        Runs in the caller's transaction so that it commits, or rolls back,
        together with the notification it accounts for.

        Raises:
            TransientStoreError: On lock contention or timeouts; retry with backoff.
        """
        now = as_utc(now) if now is not None else utcnow()
        self._execute_upsert(self._upsert(user_id, notification_type, now))

    def claim_send(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        cooldown_minutes: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Record a send only if the cooldown has elapsed, atomically.

        The existing row is bumped only while its ``last_sent_at`` is older
        than the cooldown, so of two sessions racing past :meth:`can_send`
        exactly one wins. Returns False, writing nothing, for the loser.
        """
        cooldown = self.cooldown_minutes if cooldown_minutes is None else cooldown_minutes
        if cooldown < 0:
            raise ValidationError("cooldown must not be negative")
        now = as_utc(now) if now is not None else utcnow()
        stmt = self._upsert(
            user_id,
            notification_type,
            now,
            where=NotificationRateLimit.last_sent_at < now - timedelta(minutes=cooldown),
        )
        return self._execute_upsert(stmt) > 0

    def _upsert(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        now: datetime,
        where: ColumnElement[bool] | None = None,
    ) -> Any:
        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise UnsupportedBackendError(f"no atomic upsert available for dialect {dialect!r}")

        stmt = insert(NotificationRateLimit).values(
            user_id=user_id,
            notification_type=_type_value(notification_type),
            last_sent_at=now,
            sent_count=1,
        )
        return stmt.on_conflict_do_update(
            index_elements=[
                NotificationRateLimit.user_id,
                NotificationRateLimit.notification_type,
            ],
            set_={
                "last_sent_at": stmt.excluded.last_sent_at,
                "sent_count": NotificationRateLimit.sent_count + 1,
            },
            where=where,
        )

    def _execute_upsert(self, stmt: Any) -> int:
        try:
            return self.session.execute(stmt).rowcount
        except OperationalError as exc:
            raise TransientStoreError(f"rate limit upsert failed: {exc.orig}") from exc

    def sent_count(self, user_id: str, notification_type: NotificationType | str) -> int:
        count = self.session.scalar(
            select(NotificationRateLimit.sent_count).where(
                NotificationRateLimit.user_id == user_id,
                NotificationRateLimit.notification_type == _type_value(notification_type),
            )
        )
        return count or 0
