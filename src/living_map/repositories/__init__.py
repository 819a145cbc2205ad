"""Data access helpers."""

from .geo_store import GeoStore, LocatedUser

__all__ = ["GeoStore", "LocatedUser"]
