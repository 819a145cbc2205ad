# src/living_map/services/ledger.py
"""Append-only ledger of memorial connections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from living_map.core.errors import (
    ETERNAL_DELETE_MESSAGE,
    NotFoundError,
    ProtectedRecordError,
    ValidationError,
)
from living_map.core.settings import settings
from living_map.db.guards import translate_guard_violations
from living_map.db.time import as_utc, utcnow
from living_map.models.memorial import ConnectionKind, MemorialConnection
from living_map.models.prayer import Prayer, PrayerResponse
from living_map.services.geo import GeoPoint
from living_map.services.visibility import visible_connection_clause

logger = logging.getLogger(__name__)

__all__ = ["ConnectionLedger", "LedgerStatistics", "visible_connection_clause"]


@dataclass
class LedgerStatistics:
    """Aggregate counts over the whole ledger."""

    total: int
    eternal: int
    visible: int
    created_last_7_days: int
    by_kind: dict[str, int] = field(default_factory=dict)


def _parse_kind(kind: ConnectionKind | str) -> ConnectionKind:
    try:
        return ConnectionKind(kind)
    except ValueError as exc:
        raise ValidationError(f"unknown connection kind: {kind!r}") from exc


class ConnectionLedger:
    """Durable, append-only storage of memorial connections.

    The ledger exposes creation and reads only. Deletion is refused here
    and, independently, by triggers on the table itself.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def create_connection(
        self,
        prayer_id: int,
        from_point: GeoPoint,
        to_point: GeoPoint,
        from_user_id: str | None,
        to_user_id: str | None,
        kind: ConnectionKind | str = ConnectionKind.PRAYER_RESPONSE,
        *,
        is_eternal: bool | None = None,
        created_at: datetime | None = None,
    ) -> int:
        """Persist one memorial connection and return its id.

        Raises:
            NotFoundError: If the prayer does not exist.
            ValidationError: If ``kind`` is not a known connection kind.
        """
        connection = self._build(
            prayer_id, from_point, to_point, from_user_id, to_user_id, kind,
            is_eternal=is_eternal, created_at=created_at,
        )
        with translate_guard_violations():
            self.session.commit()
        logger.info(
            "Created memorial connection %d for prayer %d (%s)",
            connection.id, prayer_id, connection.kind,
        )
        return connection.id

    def record_response(
        self,
        prayer_id: int,
        responder_id: str,
        responder_point: GeoPoint,
        kind: ConnectionKind | str = ConnectionKind.PRAYER_RESPONSE,
        message: str | None = None,
    ) -> PrayerResponse:
        """Store a response and the connection it draws, in one transaction.

        The line runs from the prayer's origin to the responder's location.
        """
        prayer = self.session.get(Prayer, prayer_id)
        if prayer is None:
            raise NotFoundError(f"prayer {prayer_id} not found")

        connection = self._build(
            prayer_id,
            GeoPoint(prayer.origin_lat, prayer.origin_lng),
            responder_point,
            prayer.author_id,
            responder_id,
            kind,
        )
        response = PrayerResponse(
            prayer_id=prayer_id,
            responder_id=responder_id,
            message=message,
            kind=connection.kind,
            connection_id=connection.id,
            created_at=connection.created_at,
        )
        self.session.add(response)
        with translate_guard_violations():
            self.session.commit()
        logger.info(
            "Recorded response %d to prayer %d with connection %d",
            response.id, prayer_id, connection.id,
        )
        return response

    def delete_connection(self, connection_id: int) -> None:
        """Always refused: memorial lines are never removed."""
        raise ProtectedRecordError(ETERNAL_DELETE_MESSAGE)

    def get_connection(self, connection_id: int) -> MemorialConnection:
        """Return a visible connection by id.

        Connections of hidden or removed prayers are reported as missing.
        """
        stmt = select(MemorialConnection).where(
            MemorialConnection.id == connection_id,
            visible_connection_clause(),
        )
        connection = self.session.scalars(stmt).first()
        if connection is None:
            raise NotFoundError(f"memorial connection {connection_id} not found")
        return connection

    def connections_for_user(self, user_id: str, limit: int = 100) -> list[MemorialConnection]:
        """Return visible connections where ``user_id`` is either endpoint, newest first."""
        stmt = (
            select(MemorialConnection)
            .where(
                or_(
                    MemorialConnection.from_user_id == user_id,
                    MemorialConnection.to_user_id == user_id,
                ),
                visible_connection_clause(),
            )
            .order_by(MemorialConnection.created_at.desc(), MemorialConnection.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def all_visible(self, limit: int = 1000) -> list[MemorialConnection]:
        stmt = (
            select(MemorialConnection)
            .where(visible_connection_clause())
            .order_by(MemorialConnection.created_at.desc(), MemorialConnection.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def statistics(self, now: datetime | None = None) -> LedgerStatistics:
        """Summarise the ledger as of ``now``."""
        now = as_utc(now) if now is not None else utcnow()
        count = func.count(MemorialConnection.id)

        total = self.session.scalar(select(count)) or 0
        eternal = self.session.scalar(
            select(count).where(MemorialConnection.is_eternal.is_(True))
        ) or 0
        visible = self.session.scalar(select(count).where(visible_connection_clause())) or 0
        recent = self.session.scalar(
            select(count).where(MemorialConnection.created_at >= now - timedelta(days=7))
        ) or 0
        by_kind = {
            kind: n
            for kind, n in self.session.execute(
                select(MemorialConnection.kind, count).group_by(MemorialConnection.kind)
            )
        }
        return LedgerStatistics(
            total=total,
            eternal=eternal,
            visible=visible,
            created_last_7_days=recent,
            by_kind=by_kind,
        )

    def _build(
        self,
        prayer_id: int,
        from_point: GeoPoint,
        to_point: GeoPoint,
        from_user_id: str | None,
        to_user_id: str | None,
        kind: ConnectionKind | str,
        *,
        is_eternal: bool | None = None,
        created_at: datetime | None = None,
    ) -> MemorialConnection:
        parsed = _parse_kind(kind)
        if self.session.get(Prayer, prayer_id) is None:
            raise NotFoundError(f"prayer {prayer_id} not found")

        created = as_utc(created_at) if created_at is not None else utcnow()
        # Answered prayers are always eternal; the flag is descriptive only.
        eternal = parsed is ConnectionKind.ANSWERED_PRAYER or bool(is_eternal)
        # Legacy stamp for older clients; no read path consults it.
        expires_at = (
            None if eternal else created + timedelta(days=settings.legacy_connection_ttl_days)
        )

        connection = MemorialConnection(
            prayer_id=prayer_id,
            from_lat=from_point.lat,
            from_lng=from_point.lng,
            to_lat=to_point.lat,
            to_lng=to_point.lng,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            kind=parsed.value,
            is_eternal=eternal,
            created_at=created,
            expires_at=expires_at,
        )
        self.session.add(connection)
        self.session.flush()
        return connection
