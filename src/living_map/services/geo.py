# src/living_map/services/geo.py
"""Planar lat/lng geometry used by the viewport engine and fanout discovery.

Bounding boxes are plain min/max comparisons in the lat/lng plane. Boxes
that cross the antimeridian are rejected rather than silently wrapped.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from living_map.core.errors import ValidationError

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate in degrees."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            raise ValidationError("coordinates must be finite numbers")
        if not -90.0 <= self.lat <= 90.0:
            raise ValidationError(f"latitude {self.lat} outside [-90, 90]")
        if not -180.0 <= self.lng <= 180.0:
            raise ValidationError(f"longitude {self.lng} outside [-180, 180]")


@dataclass(frozen=True)
class BoundingBox:
    """Viewport rectangle given as south, west, north, east."""

    south: float
    west: float
    north: float
    east: float

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> BoundingBox:
        """Raise ``ValidationError`` for boxes the engine cannot answer."""
        values = (self.south, self.west, self.north, self.east)
        if not all(math.isfinite(v) for v in values):
            raise ValidationError("bounding box edges must be finite numbers")
        if not (-90.0 <= self.south <= 90.0 and -90.0 <= self.north <= 90.0):
            raise ValidationError("bounding box latitude outside [-90, 90]")
        if not (-180.0 <= self.west <= 180.0 and -180.0 <= self.east <= 180.0):
            raise ValidationError("bounding box longitude outside [-180, 180]")
        if self.south > self.north:
            raise ValidationError("bounding box south edge is above its north edge")
        if self.west > self.east:
            raise ValidationError("bounding boxes crossing the antimeridian are not supported")
        return self

    @property
    def lat_span(self) -> float:
        return self.north - self.south

    @property
    def lng_span(self) -> float:
        return self.east - self.west

    def expanded(self, ratio: float) -> BoundingBox:
        """Pad every edge by ``ratio`` of the larger span, clamped to the globe."""
        if ratio < 0:
            raise ValidationError("padding ratio must not be negative")
        pad = ratio * max(self.lat_span, self.lng_span)
        return BoundingBox(
            south=max(-90.0, self.south - pad),
            west=max(-180.0, self.west - pad),
            north=min(90.0, self.north + pad),
            east=min(180.0, self.east + pad),
        )

    def contains(self, point: GeoPoint) -> bool:
        return (
            self.south <= point.lat <= self.north
            and self.west <= point.lng <= self.east
        )

    def intersects_segment(self, a: GeoPoint, b: GeoPoint) -> bool:
        """Return True when the straight segment a-b touches the box.

        Liang-Barsky clipping with longitude as x and latitude as y.
        """
        if self.contains(a) or self.contains(b):
            return True

        dx = b.lng - a.lng
        dy = b.lat - a.lat
        t_enter, t_exit = 0.0, 1.0
        for p, q in (
            (-dx, a.lng - self.west),
            (dx, self.east - a.lng),
            (-dy, a.lat - self.south),
            (dy, self.north - a.lat),
        ):
            if p == 0:
                # Parallel to this edge: outside it means no intersection at all.
                if q < 0:
                    return False
                continue
            r = q / p
            if p < 0:
                if r > t_exit:
                    return False
                t_enter = max(t_enter, r)
            else:
                if r < t_enter:
                    return False
                t_exit = min(t_exit, r)
        return t_enter <= t_exit


def snap_to_grid(point: GeoPoint, size: float) -> GeoPoint:
    """Snap ``point`` to the nearest multiple of ``size`` on both axes.

    Halves round away from zero. The result is clamped so that a cell
    centre is always a valid coordinate.
    """
    if size <= 0:
        raise ValidationError("grid size must be positive")
    return GeoPoint(
        lat=max(-90.0, min(90.0, _snap(point.lat, size))),
        lng=max(-180.0, min(180.0, _snap(point.lng, size))),
    )


def _snap(value: float, size: float) -> float:
    snapped = math.copysign(math.floor(abs(value) / size + 0.5) * size, value)
    # Trim float noise such as 40.710000000000001 so equal cells compare equal.
    return round(snapped, 10) + 0.0


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Return the great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def radius_lat_band(point: GeoPoint, radius_km: float) -> tuple[float, float]:
    """Latitude band that contains every point within ``radius_km`` of ``point``."""
    if radius_km < 0:
        raise ValidationError("radius must not be negative")
    delta = math.degrees(radius_km / EARTH_RADIUS_KM)
    return max(-90.0, point.lat - delta), min(90.0, point.lat + delta)


def touches_viewport(
    viewport: BoundingBox,
    expanded: BoundingBox,
    start: GeoPoint,
    end: GeoPoint,
) -> bool:
    """The one spatial rule every viewport read path applies.

    A line is on screen when either endpoint lies in the padded box or the
    segment itself crosses the visible viewport.
    """
    return (
        expanded.contains(start)
        or expanded.contains(end)
        or viewport.intersects_segment(start, end)
    )
