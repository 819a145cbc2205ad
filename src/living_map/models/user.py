# src/living_map/models/user.py
"""SQLAlchemy models for the slice of user state the core reads.

Identity itself lives with the auth provider; user ids are opaque strings.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from living_map.db.session import Base
from living_map.db.time import utcnow
from living_map.db.types import UTCDateTime

ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"


class UserProfile(Base):
    """Per-user map settings."""

    __tablename__ = "user_profile"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Null falls back to the configured default radius.
    notification_radius_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class UserLocation(Base):
    """A reported user position; the most recent row per user is authoritative."""

    __tablename__ = "user_location"
    __table_args__ = (
        CheckConstraint(
            "lat BETWEEN -90 AND 90 AND lng BETWEEN -180 AND 180",
            name="ck_user_location_coordinates",
        ),
        Index("ix_user_location_lat_lng", "lat", "lng"),
        Index("ix_user_location_user_recorded", "user_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    # 'current', 'home' or 'prayer_location'.
    location_type: Mapped[str] = mapped_column(String(20), nullable=False, default="current")
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class AdminRole(Base):
    """Role grant checked by the narrow capability lookup in ``services.authz``."""

    __tablename__ = "admin_role"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'moderator')", name="ck_admin_role_role"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), primary_key=True)
