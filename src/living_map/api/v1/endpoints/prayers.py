# src/living_map/api/v1/endpoints/prayers.py
"""Prayer endpoints for the Living Map API."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from living_map.schemas.prayer import (
    ArchiveResult,
    PrayerCreate,
    PrayerCreated,
    PrayerOut,
    ResponseCreate,
    ResponseOut,
    StatusUpdate,
)
from living_map.services.geo import GeoPoint
from living_map.services.prayers import PrayerService

from ..dependencies import AdminDep, BBoxDep, CurrentUserDep, ModeratorDep, SessionDep

router = APIRouter(prefix="/prayers", tags=["prayers"])


@router.post("", response_model=PrayerCreated, status_code=status.HTTP_201_CREATED)
async def create_prayer(
    payload: PrayerCreate,
    db: SessionDep,
    current_user_id: CurrentUserDep,
) -> PrayerCreated:
    """Create a prayer. Nearby notification is best effort and never fails the request."""
    prayer, fanout = PrayerService(db).create_prayer(
        current_user_id,
        payload.body,
        GeoPoint(payload.origin.lat, payload.origin.lng),
        title=payload.title,
    )
    return PrayerCreated(
        prayer=PrayerOut.model_validate(prayer),
        notifications_created=fanout.created if fanout is not None else None,
    )


@router.get("", response_model=list[PrayerOut])
async def list_prayers(
    bbox: BBoxDep,
    db: SessionDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[PrayerOut]:
    """Discoverable prayers in the box; archived and concealed prayers are left out."""
    prayers = PrayerService(db).list_discoverable(bbox, limit=limit)
    return [PrayerOut.model_validate(p) for p in prayers]


@router.post(
    "/archive-expired",
    response_model=ArchiveResult,
)
async def archive_expired(db: SessionDep, _admin: AdminDep) -> ArchiveResult:
    return ArchiveResult(archived=PrayerService(db).archive_expired())


@router.post(
    "/{prayer_id}/responses",
    response_model=ResponseOut,
    status_code=status.HTTP_201_CREATED,
)
async def respond_to_prayer(
    prayer_id: int,
    payload: ResponseCreate,
    db: SessionDep,
    current_user_id: CurrentUserDep,
) -> ResponseOut:
    """Pray for a request; draws a memorial line from the prayer to the caller."""
    response = PrayerService(db).respond(
        prayer_id,
        current_user_id,
        GeoPoint(payload.location.lat, payload.location.lng),
        payload.kind,
        payload.message,
    )
    return ResponseOut.model_validate(response)


@router.patch("/{prayer_id}/status", response_model=PrayerOut)
async def set_prayer_status(
    prayer_id: int,
    payload: StatusUpdate,
    db: SessionDep,
    _moderator: ModeratorDep,
) -> PrayerOut:
    prayer = PrayerService(db).set_status(prayer_id, payload.status)
    return PrayerOut.model_validate(prayer)
