"""Version 1 API endpoints."""

from .endpoints import (
    connections_router,
    notifications_router,
    prayers_router,
    queue_router,
)

__all__ = [
    "connections_router",
    "notifications_router",
    "prayers_router",
    "queue_router",
]
