# src/living_map/services/viewport.py
"""Viewport queries over the memorial ledger.

Every read path here shares one spatial rule (``geo.touches_viewport``)
and one visibility rule (``visibility.visible_connection_clause``).
Nothing is filtered by age: dense areas are aggregated, never trimmed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from itertools import islice

from sqlalchemy.orm import Session

from living_map.core.errors import ValidationError
from living_map.core.settings import settings
from living_map.db.time import as_utc, utcnow
from living_map.models.memorial import ConnectionKind, MemorialConnection
from living_map.repositories.geo_store import GeoStore
from living_map.services.geo import BoundingBox, GeoPoint, snap_to_grid

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class ConnectionView:
    """A memorial connection as rendered on the map."""

    id: int
    prayer_id: int
    from_lat: float
    from_lng: float
    to_lat: float
    to_lng: float
    from_user_id: str | None
    to_user_id: str | None
    kind: ConnectionKind
    is_eternal: bool
    created_at: datetime
    age_days: float
    # Display emphasis in (0, 1]; newer lines are stronger.
    connection_strength: float


@dataclass(frozen=True)
class ConnectionCluster:
    """Aggregate of the connections whose origins snap to one grid cell."""

    center_lat: float
    center_lng: float
    member_count: int
    earliest_created_at: datetime
    latest_created_at: datetime
    avg_age_days: float
    representative_id: int


@dataclass(frozen=True)
class DensityCell:
    center_lat: float
    center_lng: float
    count: int
    avg_age_days: float


def age_in_days(created_at: datetime, now: datetime) -> float:
    return max(0.0, (now - as_utc(created_at)).total_seconds() / SECONDS_PER_DAY)


def connection_strength(age_days: float, half_life_days: float | None = None) -> float:
    """Exponential decay of display emphasis with age; a hint, never a filter."""
    half_life = half_life_days or settings.connection_strength_half_life_days
    return 0.5 ** (age_days / half_life)


def to_view(connection: MemorialConnection, now: datetime) -> ConnectionView:
    age = age_in_days(connection.created_at, now)
    return ConnectionView(
        id=connection.id,
        prayer_id=connection.prayer_id,
        from_lat=connection.from_lat,
        from_lng=connection.from_lng,
        to_lat=connection.to_lat,
        to_lng=connection.to_lng,
        from_user_id=connection.from_user_id,
        to_user_id=connection.to_user_id,
        kind=ConnectionKind(connection.kind),
        is_eternal=connection.is_eternal,
        created_at=as_utc(connection.created_at),
        age_days=age,
        connection_strength=connection_strength(age),
    )


class ViewportQueryEngine:
    """Answers "what is visible in this box" regardless of ledger size."""

    def __init__(self, session: Session, store: GeoStore | None = None) -> None:
        self.session = session
        self.store = store or GeoStore(session)
        self.padding_ratio = settings.viewport_padding_ratio

    def query_viewport(
        self,
        bbox: BoundingBox,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[ConnectionView]:
        """Return connections touching the padded viewport, newest first."""
        limit = self._check_limit(limit)
        return self._views(bbox, limit, self._now(now))

    def query_clustered(
        self,
        bbox: BoundingBox,
        cell_size: float | None = None,
        max_individual: int | None = None,
        now: datetime | None = None,
    ) -> list[ConnectionCluster | ConnectionView]:
        """Return individual lines for sparse boxes, grid clusters for dense ones.

        In the clustered case, cells with a single member come back as the
        plain connection so that member counts plus singletons always add
        up to the total number of touching connections.
        """
        cell_size = settings.cluster_cell_size if cell_size is None else cell_size
        max_individual = (
            settings.cluster_max_individual if max_individual is None else max_individual
        )
        if cell_size <= 0:
            raise ValidationError("cluster cell size must be positive")
        if max_individual < 1:
            raise ValidationError("max_individual must be at least 1")
        now = self._now(now)

        if self.estimate_density(bbox, stop_after=max_individual + 1) <= max_individual:
            return self._views(bbox, max_individual, now)
        return self._clusters(self.store.connections_touching(bbox, self.padding_ratio),
                              cell_size, now)

    def query_delta_since(
        self,
        bbox: BoundingBox,
        since: datetime,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[ConnectionView]:
        """Return only connections created strictly after ``since``."""
        limit = self._check_limit(limit if limit is not None else settings.viewport_max_limit)
        now = self._now(now)
        touching = self.store.connections_touching(
            bbox, self.padding_ratio, since=as_utc(since)
        )
        return [to_view(c, now) for c in islice(touching, limit)]

    def query_density_grid(
        self,
        bbox: BoundingBox,
        grid_size: float | None = None,
        now: datetime | None = None,
    ) -> list[DensityCell]:
        """Heatmap cells over origins inside the viewport; only cells with two or more."""
        grid_size = settings.density_grid_size if grid_size is None else grid_size
        if grid_size <= 0:
            raise ValidationError("grid size must be positive")
        now = self._now(now)

        cells: dict[GeoPoint, list[float]] = {}
        for lat, lng, created_at in self.store.origins_within(bbox):
            cell = snap_to_grid(GeoPoint(lat, lng), grid_size)
            cells.setdefault(cell, []).append(age_in_days(created_at, now))

        result = [
            DensityCell(
                center_lat=cell.lat,
                center_lng=cell.lng,
                count=len(ages),
                avg_age_days=sum(ages) / len(ages),
            )
            for cell, ages in cells.items()
            if len(ages) >= 2
        ]
        result.sort(key=lambda c: (-c.count, c.center_lat, c.center_lng))
        return result

    def estimate_density(self, bbox: BoundingBox, stop_after: int | None = None) -> int:
        """Count connections touching ``bbox``, optionally stopping early."""
        touching: Iterable[MemorialConnection] = self.store.connections_touching(
            bbox, self.padding_ratio
        )
        if stop_after is not None:
            touching = islice(touching, stop_after)
        return sum(1 for _ in touching)

    def _views(self, bbox: BoundingBox, limit: int, now: datetime) -> list[ConnectionView]:
        touching = self.store.connections_touching(bbox, self.padding_ratio)
        return [to_view(c, now) for c in islice(touching, limit)]

    @staticmethod
    def _clusters(
        connections: Iterable[MemorialConnection],
        cell_size: float,
        now: datetime,
    ) -> list[ConnectionCluster | ConnectionView]:
        # Input arrives newest first, so the first member of a cell is its newest.
        members: dict[GeoPoint, list[MemorialConnection]] = {}
        for connection in connections:
            cell = snap_to_grid(GeoPoint(connection.from_lat, connection.from_lng), cell_size)
            members.setdefault(cell, []).append(connection)

        rows: list[tuple[int, datetime, ConnectionCluster | ConnectionView]] = []
        for cell, group in members.items():
            newest = group[0]
            latest = as_utc(newest.created_at)
            if len(group) == 1:
                rows.append((1, latest, to_view(newest, now)))
                continue
            ages = [age_in_days(c.created_at, now) for c in group]
            rows.append((
                len(group),
                latest,
                ConnectionCluster(
                    center_lat=cell.lat,
                    center_lng=cell.lng,
                    member_count=len(group),
                    earliest_created_at=as_utc(group[-1].created_at),
                    latest_created_at=latest,
                    avg_age_days=sum(ages) / len(ages),
                    representative_id=newest.id,
                ),
            ))

        rows.sort(key=lambda row: (-row[0], -row[1].timestamp()))
        return [item for _, _, item in rows]

    def _check_limit(self, limit: int | None) -> int:
        if limit is None:
            return settings.viewport_default_limit
        if not 1 <= limit <= settings.viewport_max_limit:
            raise ValidationError(
                f"limit must be between 1 and {settings.viewport_max_limit}"
            )
        return limit

    @staticmethod
    def _now(now: datetime | None) -> datetime:
        return as_utc(now) if now is not None else utcnow()
