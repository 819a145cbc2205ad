# src/living_map/models/prayer.py
"""SQLAlchemy models for prayers and the responses they collect."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from living_map.db.session import Base
from living_map.db.time import utcnow
from living_map.db.types import UTCDateTime


class PrayerStatus(str, Enum):
    """Visibility status driven by moderation."""

    ACTIVE = "active"
    HIDDEN = "hidden"
    REMOVED = "removed"
    PENDING_REVIEW = "pending_review"


class ModerationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Parent statuses that remove a prayer's memorial lines from default rendering.
CONCEALED_STATUSES: frozenset[str] = frozenset(
    {PrayerStatus.HIDDEN.value, PrayerStatus.REMOVED.value}
)


class Prayer(Base):
    """A spiritual request pinned to a geographic origin.

    Archival is soft: ``archived_at`` removes the prayer from discovery
    but the row, and every memorial line that references it, stays.
    """

    __tablename__ = "prayer"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'hidden', 'removed', 'pending_review')",
            name="ck_prayer_status",
        ),
        CheckConstraint("origin_lat BETWEEN -90 AND 90", name="ck_prayer_origin_lat"),
        CheckConstraint("origin_lng BETWEEN -180 AND 180", name="ck_prayer_origin_lng"),
        Index("ix_prayer_origin", "origin_lat", "origin_lng"),
        Index("ix_prayer_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Anonymous prayers carry no author.
    author_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    origin_lat: Mapped[float] = mapped_column(Float, nullable=False)
    origin_lng: Mapped[float] = mapped_column(Float, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PrayerStatus.ACTIVE.value
    )
    moderation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ModerationStatus.APPROVED.value
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    archive_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    @property
    def is_concealed(self) -> bool:
        return self.status in CONCEALED_STATUSES


class PrayerResponse(Base):
    """Someone praying for, or answering, a prayer request."""

    __tablename__ = "prayer_response"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prayer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("prayer.id"),
        nullable=False,
        index=True,
    )
    responder_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    # Memorial line drawn for this response.
    connection_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("memorial_connection.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
