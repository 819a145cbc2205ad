"""Candidate discovery for notification fanout.

Where users are comes from a collaborator; the fanout engine only needs
something that answers "who is within their notification radius of P".
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from living_map.core.errors import ValidationError
from living_map.core.settings import settings
from living_map.models.user import UserProfile
from living_map.repositories.geo_store import GeoStore
from living_map.services.geo import GeoPoint, haversine_km, radius_lat_band


@dataclass(frozen=True)
class CandidateUser:
    user_id: str
    distance_km: float


CandidatePredicate = Callable[[CandidateUser], bool]


class LocationProvider(Protocol):
    """Interface the fanout engine consumes for recipient discovery."""

    def users_within_radius(
        self,
        point: GeoPoint,
        predicate: CandidatePredicate | None = None,
        *,
        radius_km: float | None = None,
    ) -> list[CandidateUser]:
        ...


class StoredLocationProvider:
    """Discovery over each user's most recently reported ``user_location`` row.

    Each user is matched against their own ``notification_radius_km``
    (or the configured default) unless ``radius_km`` overrides it for the
    whole call.
    """

    def __init__(self, session: Session, default_radius_km: float | None = None) -> None:
        self.session = session
        self.store = GeoStore(session)
        self.default_radius_km = (
            settings.notification_radius_km_default
            if default_radius_km is None
            else default_radius_km
        )

    def users_within_radius(
        self,
        point: GeoPoint,
        predicate: CandidatePredicate | None = None,
        *,
        radius_km: float | None = None,
    ) -> list[CandidateUser]:
        if radius_km is not None and radius_km < 0:
            raise ValidationError("radius must not be negative")

        band_radius = radius_km if radius_km is not None else self._widest_radius()
        south, north = radius_lat_band(point, band_radius)

        candidates: list[CandidateUser] = []
        for located in self.store.latest_locations_in_band(south, north):
            limit = radius_km
            if limit is None:
                limit = located.radius_km if located.radius_km is not None else self.default_radius_km
            distance = haversine_km(point, located.point)
            if distance > limit:
                continue
            candidate = CandidateUser(user_id=located.user_id, distance_km=distance)
            if predicate is None or predicate(candidate):
                candidates.append(candidate)

        candidates.sort(key=lambda c: (c.distance_km, c.user_id))
        return candidates

    def _widest_radius(self) -> float:
        widest = self.session.scalar(select(func.max(UserProfile.notification_radius_km)))
        return max(self.default_radius_km, widest or 0.0)
