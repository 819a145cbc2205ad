# src/living_map/services/queue.py
"""Priority retry queue with dead-lettering and stale-claim recovery.

Item lifecycle: ``pending -> processing -> completed``, or back to
``pending`` with ``retry_count + 1`` on failure, or moved to the
dead-letter store once retries are exhausted.

A reset stale claim may still be completed by the worker that held it.
``complete`` is last-writer-wins for that reason.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from living_map.core.errors import (
    DeadLetteredError,
    LivingMapError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from living_map.core.settings import settings
from living_map.db.time import as_utc, utcnow
from living_map.models.queue import DeadLetterItem, FailOutcome, QueueItem, QueueStatus

logger = logging.getLogger(__name__)

STALE_ERROR = "processing timeout"

# Health thresholds: (dead letters, oldest pending minutes, error rate).
CRITICAL_THRESHOLDS = (100, 60.0, 0.25)
DEGRADED_THRESHOLDS = (20, 30.0, 0.10)


@dataclass(frozen=True)
class QueueHealth:
    pending: int
    processing: int
    completed_last_24h: int
    dead_lettered_last_24h: int
    dead_letter_size: int
    oldest_pending_minutes: float
    items_with_retries: int
    error_rate: float
    status: str


def _history_entry(attempt: int, error: str, now: datetime) -> dict[str, Any]:
    return {"attempt": attempt, "error": error, "timestamp": now.isoformat()}


class RetryQueue:
    """Queue operations over ``queue_item`` and ``dead_letter_item``.

    Every public mutation commits its own transaction.
    """

    def __init__(self, session: Session, max_retries: int | None = None) -> None:
        self.session = session
        self.max_retries = settings.queue_max_retries if max_retries is None else max_retries

    def enqueue(
        self,
        source: str,
        kind: str,
        payload: dict[str, Any],
        priority: int = 0,
    ) -> QueueItem:
        if not 0 <= priority <= 100:
            raise ValidationError("priority must be between 0 and 100")
        item = QueueItem(
            source=source,
            kind=kind,
            payload=dict(payload),
            priority=priority,
            status=QueueStatus.PENDING.value,
            retry_count=0,
            error_history=[],
            created_at=utcnow(),
        )
        self.session.add(item)
        self.session.commit()
        return item

    def claim_next(self, now: datetime | None = None) -> QueueItem | None:
        claimed = self.claim_batch(1, now=now)
        return claimed[0] if claimed else None

    def claim_batch(self, size: int, now: datetime | None = None) -> list[QueueItem]:
        """Move up to ``size`` pending items to processing, highest priority first.

        Candidates are read with ``FOR UPDATE SKIP LOCKED`` where the dialect
        has it; the conditional update then makes each claim a compare-and-set,
        so an item is only ever handed to one claimer.

        Raises:
            TransientStoreError: On lock contention or timeouts; retry with backoff.
        """
        if size < 1:
            raise ValidationError("batch size must be at least 1")
        now = as_utc(now) if now is not None else utcnow()

        candidates = (
            select(QueueItem.id)
            .where(QueueItem.status == QueueStatus.PENDING.value)
            .order_by(QueueItem.priority.desc(), QueueItem.created_at, QueueItem.id)
            .limit(size)
        )
        if self._supports_skip_locked():
            candidates = candidates.with_for_update(skip_locked=True)

        claimed: list[int] = []
        try:
            for item_id in list(self.session.scalars(candidates)):
                result = self.session.execute(
                    update(QueueItem)
                    .where(
                        QueueItem.id == item_id,
                        QueueItem.status == QueueStatus.PENDING.value,
                    )
                    .values(status=QueueStatus.PROCESSING.value, processing_started_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(item_id)
            self.session.commit()
        except OperationalError as exc:
            self.session.rollback()
            raise TransientStoreError(f"queue claim failed: {exc.orig}") from exc

        if not claimed:
            return []
        stmt = (
            select(QueueItem)
            .where(QueueItem.id.in_(claimed))
            .order_by(QueueItem.priority.desc(), QueueItem.created_at, QueueItem.id)
            .execution_options(populate_existing=True)
        )
        return list(self.session.scalars(stmt))

    def complete(
        self,
        item_id: int,
        result: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> QueueItem:
        """Record a result. Repeating it, or completing a reset item, is harmless."""
        now = as_utc(now) if now is not None else utcnow()
        item = self._get_live(item_id)
        item.status = QueueStatus.COMPLETED.value
        item.result = result
        item.processed_at = now
        item.processing_started_at = None
        self.session.commit()
        return item

    def fail(
        self,
        item_id: int,
        error: str,
        max_retries: int | None = None,
        now: datetime | None = None,
    ) -> FailOutcome:
        """Record a failed attempt; dead-letter the item once retries are used up."""
        max_retries = self.max_retries if max_retries is None else max_retries
        if max_retries < 1:
            raise ValidationError("max_retries must be at least 1")
        now = as_utc(now) if now is not None else utcnow()

        item = self._get_live(item_id)
        if item.status == QueueStatus.COMPLETED.value:
            raise ValidationError(f"queue item {item_id} is already completed")

        history = [*item.error_history, _history_entry(item.retry_count + 1, error, now)]

        if item.retry_count + 1 >= max_retries:
            # Copy and delete commit together.
            self.session.add(
                DeadLetterItem(
                    original_item_id=item.id,
                    payload={
                        "source": item.source,
                        "kind": item.kind,
                        "priority": item.priority,
                        "payload": item.payload,
                        "created_at": as_utc(item.created_at).isoformat(),
                    },
                    error_history=history,
                    moved_at=now,
                    retry_from_dlq_count=0,
                )
            )
            self.session.delete(item)
            self.session.commit()
            logger.info(
                "Dead-lettered queue item %d after %d attempts: %s",
                item_id, len(history), error,
            )
            return FailOutcome.DEAD_LETTERED

        item.retry_count += 1
        item.status = QueueStatus.PENDING.value
        item.processing_started_at = None
        item.error_message = error
        item.error_history = history
        self.session.commit()
        return FailOutcome.RETRYING

    def reset_stale(self, timeout_minutes: int | None = None, now: datetime | None = None) -> int:
        """Return items stuck in processing to pending; returns how many were reset."""
        timeout = (
            settings.queue_stale_timeout_minutes if timeout_minutes is None else timeout_minutes
        )
        if timeout < 0:
            raise ValidationError("timeout must not be negative")
        now = as_utc(now) if now is not None else utcnow()

        stale = self.session.scalars(
            select(QueueItem).where(
                QueueItem.status == QueueStatus.PROCESSING.value,
                QueueItem.processing_started_at < now - timedelta(minutes=timeout),
            )
        ).all()
        for item in stale:
            item.error_history = [
                *item.error_history,
                _history_entry(item.retry_count, STALE_ERROR, now),
            ]
            item.status = QueueStatus.PENDING.value
            item.processing_started_at = None
        self.session.commit()
        if stale:
            logger.info("Reset %d stale queue items", len(stale))
        return len(stale)

    def retry_from_dead_letter(self, dead_letter_id: int) -> QueueItem:
        """Re-queue a dead-lettered payload as a fresh item, keeping its history."""
        now = utcnow()
        dead = self.session.get(DeadLetterItem, dead_letter_id)
        if dead is None:
            raise NotFoundError(f"dead letter item {dead_letter_id} not found")

        original = dead.payload
        item = QueueItem(
            source=original.get("source", "dead_letter"),
            kind=original.get("kind", "unknown"),
            payload=original.get("payload", {}),
            priority=original.get("priority", 0),
            status=QueueStatus.PENDING.value,
            retry_count=0,
            error_history=list(dead.error_history),
            created_at=now,
        )
        self.session.add(item)
        dead.retried_at = now
        dead.retry_from_dlq_count += 1
        self.session.commit()
        logger.warning(
            "Re-queued dead letter %d as queue item %d (retry #%d)",
            dead_letter_id, item.id, dead.retry_from_dlq_count,
        )
        return item

    def list_dead_letters(self, limit: int = 50) -> list[DeadLetterItem]:
        stmt = (
            select(DeadLetterItem)
            .order_by(DeadLetterItem.moved_at.desc(), DeadLetterItem.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def get_item(self, item_id: int) -> QueueItem:
        return self._get_live(item_id)

    def health(self, now: datetime | None = None) -> QueueHealth:
        now = as_utc(now) if now is not None else utcnow()
        day_ago = now - timedelta(hours=24)

        def count_items(*criteria: Any) -> int:
            return self.session.scalar(select(func.count(QueueItem.id)).where(*criteria)) or 0

        pending = count_items(QueueItem.status == QueueStatus.PENDING.value)
        processing = count_items(QueueItem.status == QueueStatus.PROCESSING.value)
        completed = count_items(
            QueueItem.status == QueueStatus.COMPLETED.value,
            QueueItem.processed_at >= day_ago,
        )
        with_retries = count_items(QueueItem.retry_count > 0)
        dead_total = self.session.scalar(select(func.count(DeadLetterItem.id))) or 0
        dead_recent = self.session.scalar(
            select(func.count(DeadLetterItem.id)).where(DeadLetterItem.moved_at >= day_ago)
        ) or 0

        oldest = self.session.scalar(
            select(func.min(QueueItem.created_at)).where(
                QueueItem.status == QueueStatus.PENDING.value
            )
        )
        oldest_minutes = (
            max(0.0, (now - as_utc(oldest)).total_seconds() / 60.0) if oldest else 0.0
        )
        finished = completed + dead_recent
        error_rate = dead_recent / finished if finished else 0.0

        return QueueHealth(
            pending=pending,
            processing=processing,
            completed_last_24h=completed,
            dead_lettered_last_24h=dead_recent,
            dead_letter_size=dead_total,
            oldest_pending_minutes=oldest_minutes,
            items_with_retries=with_retries,
            error_rate=error_rate,
            status=_health_status(dead_total, oldest_minutes, error_rate),
        )

    def cleanup_completed(self, older_than_days: int = 7, now: datetime | None = None) -> int:
        now = as_utc(now) if now is not None else utcnow()
        stmt = delete(QueueItem).where(
            QueueItem.status == QueueStatus.COMPLETED.value,
            QueueItem.processed_at < now - timedelta(days=older_than_days),
        )
        removed = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        logger.info("Removed %d completed queue items", removed)
        return removed

    def _get_live(self, item_id: int) -> QueueItem:
        item = self.session.get(QueueItem, item_id, populate_existing=True)
        if item is not None:
            return item
        dead = self.session.scalar(
            select(DeadLetterItem.id).where(DeadLetterItem.original_item_id == item_id)
        )
        if dead is not None:
            raise DeadLetteredError(f"queue item {item_id} was moved to dead letter {dead}")
        raise NotFoundError(f"queue item {item_id} not found")

    def _supports_skip_locked(self) -> bool:
        return self.session.get_bind().dialect.name == "postgresql"


def _health_status(dead_letters: int, oldest_minutes: float, error_rate: float) -> str:
    for label, (max_dead, max_minutes, max_rate) in (
        ("critical", CRITICAL_THRESHOLDS),
        ("degraded", DEGRADED_THRESHOLDS),
    ):
        if dead_letters > max_dead or oldest_minutes > max_minutes or error_rate > max_rate:
            return label
    return "healthy"


QueueHandler = Callable[[QueueItem], Awaitable[dict[str, Any] | None]]


class QueueWorker:
    """Background loop: reset stale claims, claim a batch, run the handler.

    Handler exceptions fail the item (and eventually dead-letter it); the
    loop itself keeps running.
    """

    def __init__(
        self,
        handler: QueueHandler,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        *,
        batch_size: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        if session_factory is None:
            from living_map.db.session import SessionLocal

            session_factory = SessionLocal
        self.handler = handler
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.queue_batch_size
        self.poll_interval = (
            settings.queue_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background processing loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the loop after the current batch."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def run_once(self) -> int:
        """Process one batch; returns the number of items handled."""
        with self.session_factory() as session:
            queue = RetryQueue(session)
            queue.reset_stale()
            items = queue.claim_batch(self.batch_size)
            for item in items:
                try:
                    result = await self.handler(item)
                except Exception as exc:
                    logger.exception("Queue handler failed for item %d", item.id)
                    self._settle(queue.fail, item.id, str(exc) or exc.__class__.__name__)
                else:
                    self._settle(queue.complete, item.id, result)
            return len(items)

    @staticmethod
    def _settle(action: Callable[..., object], item_id: int, *args: Any) -> None:
        # Another worker may have reset or dead-lettered the item meanwhile.
        try:
            action(item_id, *args)
        except LivingMapError as exc:
            logger.warning("Could not settle queue item %d: %s", item_id, exc)

    async def _run(self) -> None:
        interval = max(0.05, float(self.poll_interval))
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except TransientStoreError as e:
                logger.warning("QueueWorker hit a transient store error: %s", e)
                processed = 0
            except Exception:
                logger.exception("QueueWorker batch failed; retrying after the poll interval")
                processed = 0
            if processed:
                continue
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
