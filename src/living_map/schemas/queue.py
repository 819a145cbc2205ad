# src/living_map/schemas/queue.py
"""Retry queue Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from living_map.models.queue import FailOutcome


class EnqueueRequest(BaseModel):
    source: str = Field(..., min_length=1, max_length=50)
    kind: str = Field(..., min_length=1, max_length=50)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(0, ge=0, le=100)


class QueueItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    kind: str
    payload: dict[str, Any]
    status: str
    priority: int
    retry_count: int
    error_message: str | None
    error_history: list[dict[str, Any]]
    result: dict[str, Any] | None
    created_at: datetime
    processing_started_at: datetime | None
    processed_at: datetime | None


class ClaimRequest(BaseModel):
    batch_size: int = Field(1, ge=1, le=100)


class CompleteRequest(BaseModel):
    result: dict[str, Any] | None = None


class FailRequest(BaseModel):
    error: str = Field(..., min_length=1, max_length=2000)
    max_retries: int | None = Field(None, ge=1)


class FailResponse(BaseModel):
    outcome: FailOutcome


class ResetStaleRequest(BaseModel):
    timeout_minutes: int | None = Field(None, ge=0)


class ResetStaleResponse(BaseModel):
    reset: int


class DeadLetterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_item_id: int
    payload: dict[str, Any]
    error_history: list[dict[str, Any]]
    moved_at: datetime
    retried_at: datetime | None
    retry_from_dlq_count: int
    notes: str | None


class QueueHealthOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending: int
    processing: int
    completed_last_24h: int
    dead_lettered_last_24h: int
    dead_letter_size: int
    oldest_pending_minutes: float
    items_with_retries: int
    error_rate: float
    status: str
