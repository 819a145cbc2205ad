# src/living_map/api/v1/endpoints/notifications.py
"""Notification endpoints for the Living Map API."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from living_map.schemas.notification import (
    CountResponse,
    FanoutRequest,
    FanoutResponse,
    MarkReadRequest,
    NotificationOut,
    PreferencesOut,
    PreferencesUpdate,
    PurgeRequest,
)
from living_map.services.authz import is_admin
from living_map.services.fanout import NotificationFanout
from living_map.services.geo import GeoPoint
from living_map.services.notifications import NotificationInbox
from living_map.services.prayers import PrayerService

from ..dependencies import AdminDep, CurrentUserDep, SessionDep

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/fanout", response_model=FanoutResponse)
async def fanout_for_event(
    payload: FanoutRequest,
    db: SessionDep,
    current_user_id: CurrentUserDep,
) -> FanoutResponse:
    """Notify users near a prayer. Only its author or an admin may trigger this."""
    prayer = PrayerService(db).get_prayer(payload.prayer_id)
    if prayer.author_id != current_user_id and not is_admin(db, current_user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the prayer's author may trigger its fanout",
        )

    result = NotificationFanout(db).fanout_for_event(
        payload.prayer_id,
        GeoPoint(payload.origin.lat, payload.origin.lng),
        payload.actor_user_id or prayer.author_id,
        payload.preview_text,
        title=prayer.title,
    )
    return FanoutResponse(
        event_key=result.event_key,
        created=result.created,
        excluded=result.excluded,
        rate_limited=result.rate_limited,
        duplicate=result.duplicate,
        failed=result.failed,
        capped=result.capped,
        notification_ids=result.notification_ids,
    )


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    db: SessionDep,
    current_user_id: CurrentUserDep,
    unread_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[NotificationOut]:
    notifications = NotificationInbox(db).list_for_user(
        current_user_id, unread_only=unread_only, limit=limit, offset=offset
    )
    return [NotificationOut.model_validate(n) for n in notifications]


@router.get("/unread-count", response_model=CountResponse)
async def unread_count(db: SessionDep, current_user_id: CurrentUserDep) -> CountResponse:
    return CountResponse(count=NotificationInbox(db).unread_count(current_user_id))


@router.post("/read", response_model=CountResponse)
async def mark_read(
    payload: MarkReadRequest,
    db: SessionDep,
    current_user_id: CurrentUserDep,
) -> CountResponse:
    """Mark the caller's notifications read; ids owned by others are ignored."""
    return CountResponse(count=NotificationInbox(db).mark_read(current_user_id, payload.ids))


@router.post("/read-all", response_model=CountResponse)
async def mark_all_read(db: SessionDep, current_user_id: CurrentUserDep) -> CountResponse:
    return CountResponse(count=NotificationInbox(db).mark_all_read(current_user_id))


@router.get("/preferences", response_model=PreferencesOut)
async def get_preferences(db: SessionDep, current_user_id: CurrentUserDep) -> PreferencesOut:
    return PreferencesOut.model_validate(NotificationInbox(db).get_preferences(current_user_id))


@router.put("/preferences", response_model=PreferencesOut)
async def update_preferences(
    payload: PreferencesUpdate,
    db: SessionDep,
    current_user_id: CurrentUserDep,
) -> PreferencesOut:
    preference = NotificationInbox(db).update_preferences(
        current_user_id, **payload.model_dump(exclude_none=True)
    )
    return PreferencesOut.model_validate(preference)


@router.post("/purge", response_model=CountResponse)
async def purge_read(payload: PurgeRequest, db: SessionDep, _admin: AdminDep) -> CountResponse:
    """Delete old read notifications. Unread ones are never purged."""
    return CountResponse(count=NotificationInbox(db).purge_read(payload.older_than_days))
