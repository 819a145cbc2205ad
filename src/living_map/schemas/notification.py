# src/living_map/schemas/notification.py
"""Notification-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .memorial import PointIn


class FanoutRequest(BaseModel):
    """Schema for triggering a nearby-prayer fanout."""

    prayer_id: int = Field(..., ge=1)
    origin: PointIn
    actor_user_id: str | None = Field(None, max_length=64)
    preview_text: str = Field(..., max_length=5000)


class FanoutResponse(BaseModel):
    event_key: str
    created: int
    excluded: int
    rate_limited: int
    duplicate: int
    failed: int
    capped: int
    notification_ids: list[int]


class NotificationOut(BaseModel):
    """Schema for a notification returned to its recipient."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    event_key: str
    actor_id: str | None
    prayer_id: int | None
    payload: dict[str, Any]
    is_read: bool
    read_at: datetime | None
    created_at: datetime


class MarkReadRequest(BaseModel):
    ids: list[int] = Field(..., min_length=1, max_length=500)


class CountResponse(BaseModel):
    count: int


class PreferencesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    nearby_prayers_enabled: bool
    prayer_support_enabled: bool
    prayer_response_enabled: bool
    prayer_answered_enabled: bool
    push_notifications_enabled: bool


class PreferencesUpdate(BaseModel):
    """Partial update; omitted flags keep their current value."""

    nearby_prayers_enabled: bool | None = None
    prayer_support_enabled: bool | None = None
    prayer_response_enabled: bool | None = None
    prayer_answered_enabled: bool | None = None
    push_notifications_enabled: bool | None = None


class PurgeRequest(BaseModel):
    older_than_days: int | None = Field(None, ge=0)
