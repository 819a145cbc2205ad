# src/living_map/api/v1/endpoints/queue.py
"""Retry queue administration endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from living_map.schemas.queue import (
    ClaimRequest,
    CompleteRequest,
    DeadLetterOut,
    EnqueueRequest,
    FailRequest,
    FailResponse,
    QueueHealthOut,
    QueueItemOut,
    ResetStaleRequest,
    ResetStaleResponse,
)
from living_map.services.queue import RetryQueue

from ..dependencies import AdminDep, SessionDep

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post("/items", response_model=QueueItemOut, status_code=status.HTTP_201_CREATED)
async def enqueue(payload: EnqueueRequest, db: SessionDep, _admin: AdminDep) -> QueueItemOut:
    item = RetryQueue(db).enqueue(payload.source, payload.kind, payload.payload, payload.priority)
    return QueueItemOut.model_validate(item)


@router.post("/claim", response_model=list[QueueItemOut])
async def claim(payload: ClaimRequest, db: SessionDep, _admin: AdminDep) -> list[QueueItemOut]:
    items = RetryQueue(db).claim_batch(payload.batch_size)
    return [QueueItemOut.model_validate(item) for item in items]


@router.post("/items/{item_id}/complete", response_model=QueueItemOut)
async def complete(
    item_id: int,
    payload: CompleteRequest,
    db: SessionDep,
    _admin: AdminDep,
) -> QueueItemOut:
    return QueueItemOut.model_validate(RetryQueue(db).complete(item_id, payload.result))


@router.post("/items/{item_id}/fail", response_model=FailResponse)
async def fail(item_id: int, payload: FailRequest, db: SessionDep, _admin: AdminDep) -> FailResponse:
    outcome = RetryQueue(db).fail(item_id, payload.error, max_retries=payload.max_retries)
    return FailResponse(outcome=outcome)


@router.post("/reset-stale", response_model=ResetStaleResponse)
async def reset_stale(
    payload: ResetStaleRequest,
    db: SessionDep,
    _admin: AdminDep,
) -> ResetStaleResponse:
    return ResetStaleResponse(reset=RetryQueue(db).reset_stale(payload.timeout_minutes))


@router.get("/dead-letters", response_model=list[DeadLetterOut])
async def list_dead_letters(
    db: SessionDep,
    _admin: AdminDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[DeadLetterOut]:
    return [DeadLetterOut.model_validate(d) for d in RetryQueue(db).list_dead_letters(limit)]


@router.post(
    "/dead-letters/{dead_letter_id}/retry",
    response_model=QueueItemOut,
    status_code=status.HTTP_201_CREATED,
)
async def retry_dead_letter(dead_letter_id: int, db: SessionDep, _admin: AdminDep) -> QueueItemOut:
    return QueueItemOut.model_validate(RetryQueue(db).retry_from_dead_letter(dead_letter_id))


@router.get("/health", response_model=QueueHealthOut)
async def queue_health(db: SessionDep, _admin: AdminDep) -> QueueHealthOut:
    return QueueHealthOut.model_validate(RetryQueue(db).health())
