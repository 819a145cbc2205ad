# src/living_map/models/notification.py
"""Models for notification records, preferences, push tokens and rate limits."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from living_map.db.session import Base
from living_map.db.time import utcnow
from living_map.db.types import UTCDateTime


class NotificationType(str, Enum):
    NEARBY_PRAYER = "nearby_prayer"
    PRAYER_RESPONSE = "prayer_response"
    PRAYER_SUPPORT = "prayer_support"
    PRAYER_ANSWERED = "prayer_answered"
    SYSTEM_ANNOUNCEMENT = "system_announcement"


# Preference column gating each notification type; None means it cannot be muted.
PREFERENCE_COLUMNS: dict[NotificationType, str | None] = {
    NotificationType.NEARBY_PRAYER: "nearby_prayers_enabled",
    NotificationType.PRAYER_RESPONSE: "prayer_response_enabled",
    NotificationType.PRAYER_SUPPORT: "prayer_support_enabled",
    NotificationType.PRAYER_ANSWERED: "prayer_answered_enabled",
    NotificationType.SYSTEM_ANNOUNCEMENT: None,
}


class Notification(Base):
    """A fact that one user should be told about one event.

    ``(recipient_id, event_key)`` is unique, which is what makes fanout
    at-most-once per recipient and event even under concurrent runs.
    """

    __tablename__ = "notification"
    __table_args__ = (
        UniqueConstraint("recipient_id", "event_key", name="uq_notification_recipient_event"),
        CheckConstraint(
            "(NOT is_read AND read_at IS NULL) OR (is_read AND read_at IS NOT NULL)",
            name="ck_notification_read_state",
        ),
        Index("ix_notification_recipient_created", "recipient_id", "created_at"),
        Index("ix_notification_dispatch", "dispatched_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    event_key: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    prayer_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    # Set by the push delivery collaborator once it has picked the record up.
    dispatched_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class NotificationPreference(Base):
    """Per-user opt-outs. A missing row means everything is enabled."""

    __tablename__ = "notification_preference"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    nearby_prayers_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    prayer_support_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    prayer_response_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    prayer_answered_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    push_notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )


class PushToken(Base):
    """FCM/APNs delivery token; registration mechanics live with the push collaborator."""

    __tablename__ = "push_token"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", "token", name="uq_push_token_user_platform"),
        CheckConstraint("platform IN ('ios', 'android', 'web')", name="ck_push_token_platform"),
        CheckConstraint("length(token) > 0", name="ck_push_token_not_empty"),
        Index("ix_push_token_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[str] = mapped_column(String(10), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class NotificationRateLimit(Base):
    """Cooldown state per (user, notification type); the one hot, contended row."""

    __tablename__ = "notification_rate_limit"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    notification_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_sent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
