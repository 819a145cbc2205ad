"""Data access helpers for spatial reads.

SQL does the coarse filtering with plain range predicates that any
dialect can index; the exact geometry checks from ``services.geo`` run
in-process on the survivors.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import ColumnElement, and_, func, or_, select
from sqlalchemy.orm import Session

from living_map.models.memorial import MemorialConnection
from living_map.models.prayer import CONCEALED_STATUSES, Prayer
from living_map.models.user import UserLocation, UserProfile
from living_map.services.geo import BoundingBox, GeoPoint, touches_viewport
from living_map.services.visibility import visible_connection_clause

__all__ = ["GeoStore", "LocatedUser"]

_STREAM_BATCH = 500


@dataclass(frozen=True)
class LocatedUser:
    """A user's most recent reported position and notification radius."""

    user_id: str
    point: GeoPoint
    radius_km: float | None


def _endpoint_in(box: BoundingBox, lat: ColumnElement[float], lng: ColumnElement[float]):
    return and_(lat.between(box.south, box.north), lng.between(box.west, box.east))


def _touching_prefilter(viewport: BoundingBox, expanded: BoundingBox) -> ColumnElement[bool]:
    c = MemorialConnection
    # Segment envelope overlaps the viewport; min/max spelled out so the
    # clause stays portable across dialects.
    envelope = and_(
        or_(c.from_lat <= viewport.north, c.to_lat <= viewport.north),
        or_(c.from_lat >= viewport.south, c.to_lat >= viewport.south),
        or_(c.from_lng <= viewport.east, c.to_lng <= viewport.east),
        or_(c.from_lng >= viewport.west, c.to_lng >= viewport.west),
    )
    return or_(
        _endpoint_in(expanded, c.from_lat, c.from_lng),
        _endpoint_in(expanded, c.to_lat, c.to_lng),
        envelope,
    )


class GeoStore:
    """Thin wrapper around the spatial queries the engines need."""

    def __init__(self, session: Session) -> None:
        """Initialize the store with a SQLAlchemy session."""
        self.session = session

    def connections_touching(
        self,
        viewport: BoundingBox,
        padding_ratio: float,
        *,
        since: datetime | None = None,
    ) -> Iterator[MemorialConnection]:
        """Yield visible connections touching ``viewport``, newest first.

        Rows are streamed so callers that only need a prefix stop early.
        """
        expanded = viewport.expanded(padding_ratio)
        stmt = select(MemorialConnection).where(
            visible_connection_clause(),
            _touching_prefilter(viewport, expanded),
        )
        if since is not None:
            stmt = stmt.where(MemorialConnection.created_at > since)
        stmt = stmt.order_by(
            MemorialConnection.created_at.desc(),
            MemorialConnection.id.desc(),
        ).execution_options(yield_per=_STREAM_BATCH)

        result = self.session.scalars(stmt)
        try:
            for connection in result:
                start = GeoPoint(connection.from_lat, connection.from_lng)
                end = GeoPoint(connection.to_lat, connection.to_lng)
                if touches_viewport(viewport, expanded, start, end):
                    yield connection
        finally:
            result.close()

    def origins_within(self, box: BoundingBox) -> list[tuple[float, float, datetime]]:
        """Return ``(lat, lng, created_at)`` of visible connection origins inside ``box``."""
        c = MemorialConnection
        stmt = select(c.from_lat, c.from_lng, c.created_at).where(
            visible_connection_clause(),
            _endpoint_in(box, c.from_lat, c.from_lng),
        )
        return [(row[0], row[1], row[2]) for row in self.session.execute(stmt)]

    def prayers_within(self, box: BoundingBox, *, limit: int) -> list[Prayer]:
        """Return discoverable prayers whose origin lies inside ``box``."""
        stmt = (
            select(Prayer)
            .where(
                _endpoint_in(box, Prayer.origin_lat, Prayer.origin_lng),
                Prayer.archived_at.is_(None),
                Prayer.status.not_in(sorted(CONCEALED_STATUSES)),
            )
            .order_by(Prayer.created_at.desc(), Prayer.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def latest_locations_in_band(self, south: float, north: float) -> list[LocatedUser]:
        """Return each user's latest location when it falls in the latitude band."""
        ranked = select(
            UserLocation.user_id,
            UserLocation.lat,
            UserLocation.lng,
            func.row_number()
            .over(
                partition_by=UserLocation.user_id,
                order_by=(UserLocation.recorded_at.desc(), UserLocation.id.desc()),
            )
            .label("position"),
        ).subquery()

        stmt = (
            select(ranked.c.user_id, ranked.c.lat, ranked.c.lng, UserProfile.notification_radius_km)
            .outerjoin(UserProfile, UserProfile.user_id == ranked.c.user_id)
            .where(
                ranked.c.position == 1,
                ranked.c.lat.between(south, north),
            )
            .order_by(ranked.c.user_id)
        )
        return [
            LocatedUser(
                user_id=row.user_id,
                point=GeoPoint(row.lat, row.lng),
                radius_km=row.notification_radius_km,
            )
            for row in self.session.execute(stmt)
        ]
