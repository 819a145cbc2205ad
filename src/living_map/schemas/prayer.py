# src/living_map/schemas/prayer.py
"""Prayer-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from living_map.models.memorial import ConnectionKind
from living_map.models.prayer import PrayerStatus

from .memorial import PointIn


class PrayerCreate(BaseModel):
    """Schema for creating a new prayer."""

    title: str | None = Field(None, max_length=200)
    body: str = Field(..., min_length=1, max_length=5000, description="Prayer text")
    origin: PointIn


class PrayerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    author_id: str | None
    title: str | None
    body: str
    origin_lat: float
    origin_lng: float
    status: str
    moderation_status: str
    created_at: datetime
    expires_at: datetime | None
    archived_at: datetime | None


class PrayerCreated(BaseModel):
    prayer: PrayerOut
    notifications_created: int | None = Field(
        None, description="Null when the nearby fanout was aborted"
    )


class ResponseCreate(BaseModel):
    """Schema for responding to (praying for) a prayer."""

    location: PointIn
    kind: ConnectionKind = ConnectionKind.PRAYER_RESPONSE
    message: str | None = Field(None, max_length=2000)


class ResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prayer_id: int
    responder_id: str
    message: str | None
    kind: str
    connection_id: int | None
    created_at: datetime


class StatusUpdate(BaseModel):
    status: PrayerStatus


class ArchiveResult(BaseModel):
    archived: int
