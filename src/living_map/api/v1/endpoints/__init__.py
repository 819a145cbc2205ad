"""API endpoint modules for version 1."""

from .connections import router as connections_router
from .notifications import router as notifications_router
from .prayers import router as prayers_router
from .queue import router as queue_router

__all__ = [
    "connections_router",
    "notifications_router",
    "prayers_router",
    "queue_router",
]
