# src/living_map/models/memorial.py
"""Memorial connections: the append-only lines drawn on the living map."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from living_map.db.guards import install_memorial_guards
from living_map.db.session import Base
from living_map.db.time import utcnow
from living_map.db.types import UTCDateTime


class ConnectionKind(str, Enum):
    """Classification of a memorial line."""

    PRAYER_RESPONSE = "prayer_response"
    ONGOING_PRAYER = "ongoing_prayer"
    ANSWERED_PRAYER = "answered_prayer"


LINE_STYLE_VERSION = 1


@dataclass(frozen=True)
class LineStyle:
    """Rendering hints for one kind of memorial line."""

    version: int
    color: str
    dash: tuple[int, ...]
    width: float
    glow: bool


_LINE_STYLES: dict[ConnectionKind, LineStyle] = {
    ConnectionKind.PRAYER_RESPONSE: LineStyle(LINE_STYLE_VERSION, "#f5c542", (), 2.0, False),
    ConnectionKind.ONGOING_PRAYER: LineStyle(LINE_STYLE_VERSION, "#8fb8ff", (6, 4), 1.5, False),
    ConnectionKind.ANSWERED_PRAYER: LineStyle(LINE_STYLE_VERSION, "#ffffff", (), 3.0, True),
}


def line_style(kind: ConnectionKind | str) -> LineStyle:
    """Return the style for ``kind``; every kind has exactly one entry."""
    return _LINE_STYLES[ConnectionKind(kind)]


class MemorialConnection(Base):
    """Directed link from a prayer's origin to a responder's location.

    Rows are never deleted and their geometry never changes; see
    ``living_map.db.guards``. ``expires_at`` is written for older clients
    only and no read path consults it.
    """

    __tablename__ = "memorial_connection"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('prayer_response', 'ongoing_prayer', 'answered_prayer')",
            name="ck_memorial_connection_kind",
        ),
        CheckConstraint(
            "from_lat BETWEEN -90 AND 90 AND to_lat BETWEEN -90 AND 90",
            name="ck_memorial_connection_lat",
        ),
        CheckConstraint(
            "from_lng BETWEEN -180 AND 180 AND to_lng BETWEEN -180 AND 180",
            name="ck_memorial_connection_lng",
        ),
        Index("ix_memorial_connection_created", "created_at", "id"),
        Index("ix_memorial_connection_from", "from_lat", "from_lng"),
        Index("ix_memorial_connection_to", "to_lat", "to_lng"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prayer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("prayer.id"),
        nullable=False,
        index=True,
    )
    from_lat: Mapped[float] = mapped_column(Float, nullable=False)
    from_lng: Mapped[float] = mapped_column(Float, nullable=False)
    to_lat: Mapped[float] = mapped_column(Float, nullable=False)
    to_lng: Mapped[float] = mapped_column(Float, nullable=False)
    from_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    to_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConnectionKind.PRAYER_RESPONSE.value
    )
    is_eternal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


install_memorial_guards(MemorialConnection)
