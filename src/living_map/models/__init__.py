# src/living_map/models/__init__.py
"""SQLAlchemy models for the Living Map core."""

from .memorial import ConnectionKind, LineStyle, MemorialConnection, line_style
from .notification import (
    Notification,
    NotificationPreference,
    NotificationRateLimit,
    NotificationType,
    PushToken,
)
from .prayer import ModerationStatus, Prayer, PrayerResponse, PrayerStatus
from .queue import DeadLetterItem, FailOutcome, QueueItem, QueueStatus
from .user import AdminRole, UserLocation, UserProfile

__all__ = [
    "ConnectionKind", "LineStyle", "MemorialConnection", "line_style",
    "Notification", "NotificationPreference", "NotificationRateLimit",
    "NotificationType", "PushToken",
    "ModerationStatus", "Prayer", "PrayerResponse", "PrayerStatus",
    "DeadLetterItem", "FailOutcome", "QueueItem", "QueueStatus",
    "AdminRole", "UserLocation", "UserProfile",
]
