# src/living_map/models/queue.py
"""Retry queue models: live work items and their dead-letter counterparts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from living_map.db.session import Base
from living_map.db.time import utcnow
from living_map.db.types import UTCDateTime


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailOutcome(str, Enum):
    """What ``RetryQueue.fail`` did with the item."""

    RETRYING = "retrying"
    DEAD_LETTERED = "dead_lettered"


class QueueItem(Base):
    """A unit of async work.

    ``processing_started_at`` is set on claim and drives stale-claim
    recovery; ``error_history`` accumulates one entry per failed attempt.
    """

    __tablename__ = "queue_item"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_queue_item_status",
        ),
        CheckConstraint("priority BETWEEN 0 AND 100", name="ck_queue_item_priority"),
        CheckConstraint("retry_count >= 0", name="ck_queue_item_retry_count"),
        Index("ix_queue_item_claim", "status", "priority", "created_at"),
        Index("ix_queue_item_processing", "status", "processing_started_at"),
        # Ids of dead-lettered rows must never be handed out again.
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QueueStatus.PENDING.value
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    processing_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class DeadLetterItem(Base):
    """An item that exhausted its retries, kept for inspection and replay."""

    __tablename__ = "dead_letter_item"
    __table_args__ = (Index("ix_dead_letter_item_moved", "moved_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Unique: an item is dead-lettered at most once.
    original_item_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    moved_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    retried_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    retry_from_dlq_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
