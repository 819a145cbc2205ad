# src/living_map/services/fanout.py
"""Notification fanout: who hears about an event, and at most once each.

Each candidate is evaluated on its own:

1. Excluded: the actor, opted out of the type or of push, or no active token.
2. Rate limited: the cooldown for this type has not elapsed. Nothing is written.
3. Eligible: the notification and a conditional rate-limit upsert are written
   inside one savepoint, so they land together or not at all. If another
   session claimed the cooldown after step 2, the savepoint is rolled back
   and the recipient is reported as rate limited.

``(recipient_id, event_key)`` is unique in storage, which keeps concurrent
runs for the same event from notifying anyone twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from living_map.core.errors import (
    DiscoveryError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from living_map.core.settings import settings
from living_map.db.time import as_utc, utcnow
from living_map.models.notification import (
    PREFERENCE_COLUMNS,
    Notification,
    NotificationPreference,
    NotificationType,
    PushToken,
)
from living_map.models.prayer import Prayer, PrayerStatus
from living_map.services.geo import GeoPoint
from living_map.services.location import CandidateUser, LocationProvider, StoredLocationProvider
from living_map.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

NEARBY_PRAYER_TITLE = "Someone nearby needs prayer"
NEARBY_BODY_CHARS = 50


def nearby_event_key(prayer_id: int) -> str:
    return f"nearby_prayer:{prayer_id}"


def response_event_key(response_id: int) -> str:
    return f"prayer_response:{response_id}"


class RecipientOutcome(str, Enum):
    """Terminal state of one candidate in one fanout."""

    CREATED = "created"
    EXCLUDED = "excluded"
    RATE_LIMITED = "rate_limited"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    CAPPED = "capped"


@dataclass
class FanoutResult:
    """Per-recipient outcomes of a fanout run."""

    event_key: str
    outcomes: dict[str, RecipientOutcome] = field(default_factory=dict)
    notification_ids: list[int] = field(default_factory=list)

    def record(
        self,
        user_id: str,
        outcome: RecipientOutcome,
        notification_id: int | None = None,
    ) -> None:
        self.outcomes[user_id] = outcome
        if notification_id is not None:
            self.notification_ids.append(notification_id)

    def count(self, outcome: RecipientOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value is outcome)

    @property
    def created(self) -> int:
        return self.count(RecipientOutcome.CREATED)

    @property
    def excluded(self) -> int:
        return self.count(RecipientOutcome.EXCLUDED)

    @property
    def rate_limited(self) -> int:
        return self.count(RecipientOutcome.RATE_LIMITED)

    @property
    def duplicate(self) -> int:
        return self.count(RecipientOutcome.DUPLICATE)

    @property
    def failed(self) -> int:
        return self.count(RecipientOutcome.FAILED)

    @property
    def capped(self) -> int:
        return self.count(RecipientOutcome.CAPPED)


@dataclass
class _Gates:
    preferences: dict[str, NotificationPreference]
    with_tokens: set[str]


class NotificationFanout:
    """Emits at most one notification per (recipient, event)."""

    def __init__(
        self,
        session: Session,
        locations: LocationProvider | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.session = session
        self.locations = locations or StoredLocationProvider(session)
        self.rate_limiter = rate_limiter or RateLimiter(session)

    def fanout_for_event(
        self,
        prayer_id: int,
        origin: GeoPoint,
        actor_id: str | None,
        preview_text: str,
        *,
        title: str | None = None,
        cap: int | None = None,
        now: datetime | None = None,
    ) -> FanoutResult:
        """Notify users near ``origin`` about a new prayer.

        Raises:
            NotFoundError: If the prayer does not exist.
            DiscoveryError: If candidate discovery fails; nothing is written.
        """
        cap = settings.fanout_batch_cap if cap is None else cap
        if cap < 0:
            raise ValidationError("fanout cap must not be negative")
        now = as_utc(now) if now is not None else utcnow()

        prayer = self.session.get(Prayer, prayer_id)
        if prayer is None:
            raise NotFoundError(f"prayer {prayer_id} not found")

        result = FanoutResult(event_key=nearby_event_key(prayer_id))
        if prayer.status != PrayerStatus.ACTIVE.value or prayer.archived_at is not None:
            logger.info("Skipping fanout for prayer %d with status %s", prayer_id, prayer.status)
            return result

        try:
            candidates = self.locations.users_within_radius(origin)
        except Exception as exc:
            raise DiscoveryError(
                f"candidate discovery failed for prayer {prayer_id}: {exc}"
            ) from exc

        unique = _dedupe(candidates)
        gates = self._load_gates([c.user_id for c in unique])
        preview = preview_text[: settings.notification_preview_chars]
        base_payload = {
            "prayer_id": prayer_id,
            "title": NEARBY_PRAYER_TITLE,
            "body": title or preview_text[:NEARBY_BODY_CHARS],
            "preview": preview,
        }

        for candidate in unique:
            if result.created >= cap:
                result.record(candidate.user_id, RecipientOutcome.CAPPED)
                continue
            outcome, notification_id = self._evaluate(
                candidate.user_id,
                NotificationType.NEARBY_PRAYER,
                result.event_key,
                actor_id=actor_id,
                prayer_id=prayer_id,
                payload={**base_payload, "distance_km": round(candidate.distance_km, 2)},
                gates=gates,
                now=now,
            )
            result.record(candidate.user_id, outcome, notification_id)

        self.session.commit()
        logger.info(
            "Fanout %s: created=%d excluded=%d rate_limited=%d duplicate=%d failed=%d capped=%d",
            result.event_key,
            result.created,
            result.excluded,
            result.rate_limited,
            result.duplicate,
            result.failed,
            result.capped,
        )
        return result

    def notify_user(
        self,
        recipient_id: str,
        notification_type: NotificationType | str,
        event_key: str,
        *,
        actor_id: str | None = None,
        prayer_id: int | None = None,
        payload: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> tuple[RecipientOutcome, int | None]:
        """Single-recipient path through the same gates as a fanout."""
        try:
            ntype = NotificationType(notification_type)
        except ValueError as exc:
            raise ValidationError(f"unknown notification type: {notification_type!r}") from exc
        now = as_utc(now) if now is not None else utcnow()

        outcome, notification_id = self._evaluate(
            recipient_id,
            ntype,
            event_key,
            actor_id=actor_id,
            prayer_id=prayer_id,
            payload=payload or {},
            gates=self._load_gates([recipient_id]),
            now=now,
        )
        self.session.commit()
        logger.info("Notification %s for %s: %s", event_key, recipient_id, outcome.value)
        return outcome, notification_id

    def _evaluate(
        self,
        recipient_id: str,
        ntype: NotificationType,
        event_key: str,
        *,
        actor_id: str | None,
        prayer_id: int | None,
        payload: dict[str, Any],
        gates: _Gates,
        now: datetime,
    ) -> tuple[RecipientOutcome, int | None]:
        if _is_excluded(recipient_id, ntype, actor_id, gates):
            return RecipientOutcome.EXCLUDED, None
        if not self.rate_limiter.can_send(recipient_id, ntype, now=now):
            return RecipientOutcome.RATE_LIMITED, None
        if self._already_notified(recipient_id, event_key):
            return RecipientOutcome.DUPLICATE, None

        notification = Notification(
            recipient_id=recipient_id,
            type=ntype.value,
            event_key=event_key,
            actor_id=actor_id,
            prayer_id=prayer_id,
            payload=payload,
            is_read=False,
            created_at=now,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(notification)
            self.session.flush()
            claimed = self.rate_limiter.claim_send(recipient_id, ntype, now=now)
        except (SQLAlchemyError, TransientStoreError) as exc:
            savepoint.rollback()
            logger.warning(
                "Skipping recipient %s for %s: %s",
                recipient_id,
                event_key,
                getattr(exc, "orig", None) or exc,
            )
            return RecipientOutcome.FAILED, None
        if not claimed:
            # A concurrent send won the cooldown after the pre-check.
            savepoint.rollback()
            return RecipientOutcome.RATE_LIMITED, None
        savepoint.commit()
        return RecipientOutcome.CREATED, notification.id

    def _already_notified(self, recipient_id: str, event_key: str) -> bool:
        stmt = select(Notification.id).where(
            Notification.recipient_id == recipient_id,
            Notification.event_key == event_key,
        )
        return self.session.scalar(stmt) is not None

    def _load_gates(self, user_ids: list[str]) -> _Gates:
        if not user_ids:
            return _Gates(preferences={}, with_tokens=set())
        preferences = {
            pref.user_id: pref
            for pref in self.session.scalars(
                select(NotificationPreference).where(NotificationPreference.user_id.in_(user_ids))
            )
        }
        with_tokens = set(
            self.session.scalars(
                select(PushToken.user_id)
                .where(PushToken.user_id.in_(user_ids), PushToken.is_active.is_(True))
                .distinct()
            )
        )
        return _Gates(preferences=preferences, with_tokens=with_tokens)


def _is_excluded(
    recipient_id: str,
    ntype: NotificationType,
    actor_id: str | None,
    gates: _Gates,
) -> bool:
    if actor_id is not None and recipient_id == actor_id:
        return True
    preference = gates.preferences.get(recipient_id)
    if preference is not None:
        column = PREFERENCE_COLUMNS[ntype]
        if column is not None and not getattr(preference, column):
            return True
        if not preference.push_notifications_enabled:
            return True
    return recipient_id not in gates.with_tokens


def _dedupe(candidates: list[CandidateUser]) -> list[CandidateUser]:
    seen: set[str] = set()
    unique: list[CandidateUser] = []
    for candidate in candidates:
        if candidate.user_id in seen:
            continue
        seen.add(candidate.user_id)
        unique.append(candidate)
    return unique
