# src/living_map/api/v1/endpoints/connections.py
"""Memorial connection and viewport endpoints for the Living Map API."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query, status

from living_map.core.settings import settings
from living_map.db.time import utcnow
from living_map.schemas.memorial import (
    ClusteredItem,
    ClusterOut,
    ConnectionCreate,
    ConnectionCreated,
    ConnectionOut,
    DensityCellOut,
    MemorialStatsOut,
)
from living_map.services.geo import GeoPoint
from living_map.services.ledger import ConnectionLedger
from living_map.services.viewport import ConnectionView, ViewportQueryEngine, to_view

from ..dependencies import BBoxDep, CurrentUserDep, SessionDep

router = APIRouter(prefix="/connections", tags=["connections"])


@router.post("", response_model=ConnectionCreated, status_code=status.HTTP_201_CREATED)
async def create_connection(
    payload: ConnectionCreate,
    db: SessionDep,
    current_user_id: CurrentUserDep,
) -> ConnectionCreated:
    """Draw a memorial line. The responder defaults to the caller."""
    ledger = ConnectionLedger(db)
    connection_id = ledger.create_connection(
        payload.prayer_id,
        GeoPoint(payload.from_point.lat, payload.from_point.lng),
        GeoPoint(payload.to_point.lat, payload.to_point.lng),
        payload.from_user_id,
        payload.to_user_id or current_user_id,
        payload.kind,
        is_eternal=payload.is_eternal,
    )
    return ConnectionCreated(id=connection_id)


@router.get("/viewport", response_model=list[ConnectionOut])
async def query_viewport(
    bbox: BBoxDep,
    db: SessionDep,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[ConnectionOut]:
    views = ViewportQueryEngine(db).query_viewport(bbox, limit=limit)
    return [ConnectionOut.from_view(view) for view in views]


@router.get("/clustered", response_model=list[ClusteredItem])
async def query_clustered(
    bbox: BBoxDep,
    db: SessionDep,
    cell_size: Annotated[float | None, Query(gt=0)] = None,
    max_individual: Annotated[int | None, Query(ge=1)] = None,
) -> list[ConnectionOut | ClusterOut]:
    items = ViewportQueryEngine(db).query_clustered(
        bbox, cell_size=cell_size, max_individual=max_individual
    )
    return [
        ConnectionOut.from_view(item) if isinstance(item, ConnectionView)
        else ClusterOut.from_cluster(item)
        for item in items
    ]


@router.get("/delta", response_model=list[ConnectionOut])
async def query_delta(
    bbox: BBoxDep,
    db: SessionDep,
    since: Annotated[datetime, Query(description="Only lines created strictly after this")],
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[ConnectionOut]:
    views = ViewportQueryEngine(db).query_delta_since(bbox, since, limit=limit)
    return [ConnectionOut.from_view(view) for view in views]


@router.get("/density", response_model=list[DensityCellOut])
async def query_density(
    bbox: BBoxDep,
    db: SessionDep,
    grid_size: Annotated[float | None, Query(gt=0)] = None,
) -> list[DensityCellOut]:
    cells = ViewportQueryEngine(db).query_density_grid(bbox, grid_size=grid_size)
    return [DensityCellOut.from_cell(cell) for cell in cells]


@router.get("/stats", response_model=MemorialStatsOut)
async def connection_stats(db: SessionDep) -> MemorialStatsOut:
    stats = ConnectionLedger(db).statistics()
    return MemorialStatsOut(
        total=stats.total,
        eternal=stats.eternal,
        visible=stats.visible,
        created_last_7_days=stats.created_last_7_days,
        by_kind=stats.by_kind,
    )


@router.get("/users/{user_id}", response_model=list[ConnectionOut])
async def connections_for_user(
    user_id: str,
    db: SessionDep,
    limit: Annotated[int, Query(ge=1, le=settings.viewport_max_limit)] = 100,
) -> list[ConnectionOut]:
    now = utcnow()
    connections = ConnectionLedger(db).connections_for_user(user_id, limit=limit)
    return [ConnectionOut.from_view(to_view(c, now)) for c in connections]


@router.get("/{connection_id}", response_model=ConnectionOut)
async def get_connection(connection_id: int, db: SessionDep) -> ConnectionOut:
    connection = ConnectionLedger(db).get_connection(connection_id)
    return ConnectionOut.from_view(to_view(connection, utcnow()))


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connection(connection_id: int, db: SessionDep) -> None:
    """Memorial lines are eternal; this always answers 403."""
    ConnectionLedger(db).delete_connection(connection_id)
