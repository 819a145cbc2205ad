# src/living_map/services/prayers.py
"""Prayer lifecycle and the side effects it publishes.

Creating a prayer commits first and only then runs the nearby fanout;
responding records the memorial line and then tells the author. Both
side effects are best effort: failures are logged, never raised.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from living_map.core.errors import LivingMapError, NotFoundError, ValidationError
from living_map.core.settings import settings
from living_map.db.time import as_utc, utcnow
from living_map.models.memorial import ConnectionKind
from living_map.models.notification import NotificationType
from living_map.models.prayer import ModerationStatus, Prayer, PrayerResponse, PrayerStatus
from living_map.repositories.geo_store import GeoStore
from living_map.services.fanout import FanoutResult, NotificationFanout, response_event_key
from living_map.services.geo import BoundingBox, GeoPoint
from living_map.services.ledger import ConnectionLedger

logger = logging.getLogger(__name__)

ARCHIVE_REASON_EXPIRED = "expired"

_RESPONSE_NOTIFICATIONS: dict[ConnectionKind, tuple[NotificationType, str]] = {
    ConnectionKind.PRAYER_RESPONSE: (NotificationType.PRAYER_RESPONSE, "Someone responded to your prayer"),
    ConnectionKind.ONGOING_PRAYER: (NotificationType.PRAYER_SUPPORT, "Someone is praying for you"),
    ConnectionKind.ANSWERED_PRAYER: (NotificationType.PRAYER_ANSWERED, "A prayer was marked answered"),
}


class PrayerService:
    """Creates prayers and responses and drives their lifecycle."""

    def __init__(
        self,
        session: Session,
        fanout: NotificationFanout | None = None,
        ledger: ConnectionLedger | None = None,
    ) -> None:
        self.session = session
        self.fanout = fanout or NotificationFanout(session)
        self.ledger = ledger or ConnectionLedger(session)

    def get_prayer(self, prayer_id: int) -> Prayer:
        prayer = self.session.get(Prayer, prayer_id)
        if prayer is None:
            raise NotFoundError(f"prayer {prayer_id} not found")
        return prayer

    def create_prayer(
        self,
        author_id: str | None,
        body: str,
        origin: GeoPoint,
        title: str | None = None,
        *,
        now: datetime | None = None,
    ) -> tuple[Prayer, FanoutResult | None]:
        """Persist a prayer, then notify nearby users.

        Returns the prayer and the fanout result, or ``None`` when the
        fanout was aborted.
        """
        if not body or not body.strip():
            raise ValidationError("prayer body must not be empty")
        now = as_utc(now) if now is not None else utcnow()

        prayer = Prayer(
            author_id=author_id,
            title=title,
            body=body,
            origin_lat=origin.lat,
            origin_lng=origin.lng,
            status=PrayerStatus.ACTIVE.value,
            moderation_status=ModerationStatus.APPROVED.value,
            created_at=now,
            expires_at=now + timedelta(days=settings.prayer_expiration_days),
        )
        self.session.add(prayer)
        self.session.commit()

        try:
            result = self.fanout.fanout_for_event(
                prayer.id, origin, author_id, body, title=title, now=now
            )
        except (LivingMapError, SQLAlchemyError) as exc:
            self.session.rollback()
            logger.warning("Fanout for prayer %d aborted: %s", prayer.id, exc)
            result = None
        return prayer, result

    def respond(
        self,
        prayer_id: int,
        responder_id: str,
        point: GeoPoint,
        kind: ConnectionKind | str = ConnectionKind.PRAYER_RESPONSE,
        message: str | None = None,
        *,
        now: datetime | None = None,
    ) -> PrayerResponse:
        """Record a response with its memorial line, then notify the author."""
        response = self.ledger.record_response(prayer_id, responder_id, point, kind, message)
        prayer = self.get_prayer(prayer_id)
        if prayer.author_id is None or prayer.author_id == responder_id:
            return response

        ntype, title = _RESPONSE_NOTIFICATIONS[ConnectionKind(response.kind)]
        preview = (message or "")[: settings.notification_preview_chars]
        try:
            self.fanout.notify_user(
                prayer.author_id,
                ntype,
                response_event_key(response.id),
                actor_id=responder_id,
                prayer_id=prayer_id,
                payload={
                    "prayer_id": prayer_id,
                    "response_id": response.id,
                    "title": title,
                    "body": preview,
                    "kind": response.kind,
                },
                now=now,
            )
        except (LivingMapError, SQLAlchemyError) as exc:
            self.session.rollback()
            logger.warning("Response notification for prayer %d failed: %s", prayer_id, exc)
        return response

    def set_status(self, prayer_id: int, status: PrayerStatus | str) -> Prayer:
        """Moderation hook; concealing a prayer hides, never deletes, its lines."""
        try:
            parsed = PrayerStatus(status)
        except ValueError as exc:
            raise ValidationError(f"unknown prayer status: {status!r}") from exc
        prayer = self.get_prayer(prayer_id)
        prayer.status = parsed.value
        self.session.commit()
        logger.info("Prayer %d status set to %s", prayer_id, parsed.value)
        return prayer

    def archive_expired(self, now: datetime | None = None) -> int:
        """Soft-archive prayers past their expiry; their connections are untouched."""
        now = as_utc(now) if now is not None else utcnow()
        stmt = (
            update(Prayer)
            .where(
                Prayer.expires_at.is_not(None),
                Prayer.expires_at < now,
                Prayer.archived_at.is_(None),
            )
            .values(archived_at=now, archive_reason=ARCHIVE_REASON_EXPIRED)
        )
        archived = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        logger.info("Archived %d expired prayers", archived)
        return archived

    def restore(
        self,
        prayer_id: int,
        days: int | None = None,
        now: datetime | None = None,
    ) -> Prayer:
        """Bring an archived prayer back into discovery for another ``days``."""
        days = settings.prayer_expiration_days if days is None else days
        if days < 1:
            raise ValidationError("days must be at least 1")
        now = as_utc(now) if now is not None else utcnow()
        prayer = self.get_prayer(prayer_id)
        prayer.archived_at = None
        prayer.archive_reason = None
        prayer.expires_at = now + timedelta(days=days)
        self.session.commit()
        return prayer

    def list_discoverable(self, bbox: BoundingBox, limit: int = 100) -> list[Prayer]:
        if limit < 1:
            raise ValidationError("limit must be positive")
        return GeoStore(self.session).prayers_within(bbox, limit=limit)
