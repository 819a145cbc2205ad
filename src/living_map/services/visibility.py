"""The single visibility rule for memorial connections.

A connection is hidden from default read paths only when its parent
prayer is concealed by moderation. Age and the legacy ``expires_at``
column never take part.
"""

from __future__ import annotations

from sqlalchemy import ColumnElement, exists

from living_map.models.memorial import MemorialConnection
from living_map.models.prayer import CONCEALED_STATUSES, Prayer

__all__ = ["visible_connection_clause"]


def visible_connection_clause() -> ColumnElement[bool]:
    """Return a WHERE clause that keeps only connections of unconcealed prayers.

    The clause is a correlated EXISTS, so it composes with any statement
    selecting from ``memorial_connection`` without requiring a join.
    """
    return exists().where(
        Prayer.id == MemorialConnection.prayer_id,
        Prayer.status.not_in(sorted(CONCEALED_STATUSES)),
    )
