# src/living_map/services/notifications.py
"""Recipient-facing notification operations and the push hand-off."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from living_map.core.errors import ValidationError
from living_map.core.settings import settings
from living_map.db.time import as_utc, utcnow
from living_map.models.notification import Notification, NotificationPreference

logger = logging.getLogger(__name__)

PREFERENCE_FLAGS: frozenset[str] = frozenset(
    {
        "nearby_prayers_enabled",
        "prayer_support_enabled",
        "prayer_response_enabled",
        "prayer_answered_enabled",
        "push_notifications_enabled",
    }
)


class NotificationInbox:
    """Reads and read-state changes for a user's notifications.

    Only the recipient changes read state; the purge removes read rows only.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        stmt = select(Notification).where(Notification.recipient_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = (
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt))

    def unread_count(self, user_id: str) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.recipient_id == user_id,
            Notification.is_read.is_(False),
        )
        return self.session.scalar(stmt) or 0

    def mark_read(
        self,
        user_id: str,
        notification_ids: Iterable[int],
        now: datetime | None = None,
    ) -> int:
        """Mark the caller's own unread notifications read; returns how many changed."""
        ids = list(notification_ids)
        if not ids:
            return 0
        return self._mark(
            user_id,
            now,
            Notification.id.in_(ids),
        )

    def mark_all_read(self, user_id: str, now: datetime | None = None) -> int:
        return self._mark(user_id, now)

    def purge_read(self, older_than_days: int | None = None, now: datetime | None = None) -> int:
        """Delete read notifications older than the retention window."""
        days = settings.notification_retention_days if older_than_days is None else older_than_days
        if days < 0:
            raise ValidationError("retention days must not be negative")
        now = as_utc(now) if now is not None else utcnow()
        stmt = delete(Notification).where(
            Notification.is_read.is_(True),
            Notification.created_at < now - timedelta(days=days),
        )
        purged = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        logger.info("Purged %d read notifications older than %d days", purged, days)
        return purged

    def pending_push(self, limit: int = 100) -> list[Notification]:
        """Notifications the push collaborator has not picked up yet, oldest first."""
        stmt = (
            select(Notification)
            .where(Notification.dispatched_at.is_(None))
            .order_by(Notification.created_at, Notification.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def mark_dispatched(self, notification_ids: Iterable[int], now: datetime | None = None) -> int:
        ids = list(notification_ids)
        if not ids:
            return 0
        now = as_utc(now) if now is not None else utcnow()
        stmt = (
            update(Notification)
            .where(Notification.id.in_(ids), Notification.dispatched_at.is_(None))
            .values(dispatched_at=now)
        )
        changed = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        return changed

    def get_preferences(self, user_id: str) -> NotificationPreference:
        """Return stored preferences, or the all-enabled defaults (unsaved)."""
        preference = self.session.get(NotificationPreference, user_id)
        if preference is None:
            preference = NotificationPreference(
                user_id=user_id,
                **{flag: True for flag in PREFERENCE_FLAGS},
            )
        return preference

    def update_preferences(self, user_id: str, **flags: bool) -> NotificationPreference:
        unknown = set(flags) - PREFERENCE_FLAGS
        if unknown:
            raise ValidationError(f"unknown preference flags: {', '.join(sorted(unknown))}")

        preference = self.session.get(NotificationPreference, user_id)
        if preference is None:
            preference = NotificationPreference(
                user_id=user_id,
                **{flag: True for flag in PREFERENCE_FLAGS},
            )
            self.session.add(preference)
        for flag, value in flags.items():
            setattr(preference, flag, bool(value))
        self.session.commit()
        return preference

    def _mark(self, user_id: str, now: datetime | None, *criteria) -> int:
        now = as_utc(now) if now is not None else utcnow()
        stmt = (
            update(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
                *criteria,
            )
            .values(is_read=True, read_at=now)
        )
        changed = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        return changed
