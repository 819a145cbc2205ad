# src/living_map/schemas/memorial.py
"""Memorial connection and viewport Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from living_map.models.memorial import ConnectionKind, line_style
from living_map.services.viewport import ConnectionCluster, ConnectionView, DensityCell


class PointIn(BaseModel):
    """A coordinate supplied by a client."""

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class ConnectionCreate(BaseModel):
    """Schema for creating a memorial connection."""

    prayer_id: int = Field(..., ge=1)
    from_point: PointIn
    to_point: PointIn
    from_user_id: str | None = Field(None, max_length=64)
    to_user_id: str | None = Field(None, max_length=64)
    kind: ConnectionKind = ConnectionKind.PRAYER_RESPONSE
    is_eternal: bool | None = Field(
        None, description="Defaults to true for answered prayers, false otherwise"
    )


class ConnectionCreated(BaseModel):
    id: int


class LineStyleOut(BaseModel):
    version: int
    color: str
    dash: list[int]
    width: float
    glow: bool


class ConnectionOut(BaseModel):
    """A memorial line as rendered by the map client."""

    model_config = ConfigDict(use_enum_values=True)

    item_type: Literal["connection"] = "connection"
    id: int
    prayer_id: int
    from_lat: float
    from_lng: float
    to_lat: float
    to_lng: float
    from_user_id: str | None
    to_user_id: str | None
    kind: ConnectionKind
    is_eternal: bool
    created_at: datetime
    age_days: float
    connection_strength: float
    style: LineStyleOut

    @classmethod
    def from_view(cls, view: ConnectionView) -> ConnectionOut:
        style = line_style(view.kind)
        return cls(
            id=view.id,
            prayer_id=view.prayer_id,
            from_lat=view.from_lat,
            from_lng=view.from_lng,
            to_lat=view.to_lat,
            to_lng=view.to_lng,
            from_user_id=view.from_user_id,
            to_user_id=view.to_user_id,
            kind=view.kind,
            is_eternal=view.is_eternal,
            created_at=view.created_at,
            age_days=view.age_days,
            connection_strength=view.connection_strength,
            style=LineStyleOut(
                version=style.version,
                color=style.color,
                dash=list(style.dash),
                width=style.width,
                glow=style.glow,
            ),
        )


class ClusterOut(BaseModel):
    """Aggregate of connections whose origins share a grid cell."""

    item_type: Literal["cluster"] = "cluster"
    center_lat: float
    center_lng: float
    member_count: int
    earliest_created_at: datetime
    latest_created_at: datetime
    avg_age_days: float
    representative_id: int

    @classmethod
    def from_cluster(cls, cluster: ConnectionCluster) -> ClusterOut:
        return cls(
            center_lat=cluster.center_lat,
            center_lng=cluster.center_lng,
            member_count=cluster.member_count,
            earliest_created_at=cluster.earliest_created_at,
            latest_created_at=cluster.latest_created_at,
            avg_age_days=cluster.avg_age_days,
            representative_id=cluster.representative_id,
        )


ClusteredItem = Annotated[ConnectionOut | ClusterOut, Field(discriminator="item_type")]


class DensityCellOut(BaseModel):
    center_lat: float
    center_lng: float
    count: int
    avg_age_days: float

    @classmethod
    def from_cell(cls, cell: DensityCell) -> DensityCellOut:
        return cls(
            center_lat=cell.center_lat,
            center_lng=cell.center_lng,
            count=cell.count,
            avg_age_days=cell.avg_age_days,
        )


class MemorialStatsOut(BaseModel):
    total: int
    eternal: int
    visible: int
    created_last_7_days: int
    by_kind: dict[str, int]
