"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .memorial import (
    ClusteredItem,
    ClusterOut,
    ConnectionCreate,
    ConnectionCreated,
    ConnectionOut,
    DensityCellOut,
    MemorialStatsOut,
    PointIn,
)
from .notification import FanoutRequest, FanoutResponse, NotificationOut, PreferencesOut
from .prayer import PrayerCreate, PrayerCreated, PrayerOut, ResponseCreate, ResponseOut
from .queue import DeadLetterOut, EnqueueRequest, QueueHealthOut, QueueItemOut

__all__ = [
    "ClusteredItem", "ClusterOut", "ConnectionCreate", "ConnectionCreated",
    "ConnectionOut", "DensityCellOut", "MemorialStatsOut", "PointIn",
    "FanoutRequest", "FanoutResponse", "NotificationOut", "PreferencesOut",
    "PrayerCreate", "PrayerCreated", "PrayerOut", "ResponseCreate", "ResponseOut",
    "DeadLetterOut", "EnqueueRequest", "QueueHealthOut", "QueueItemOut",
]
