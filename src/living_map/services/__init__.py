# src/living_map/services/__init__.py
"""Business logic services for the Living Map core."""

from .fanout import FanoutResult, NotificationFanout, RecipientOutcome
from .ledger import ConnectionLedger
from .location import CandidateUser, LocationProvider, StoredLocationProvider
from .notifications import NotificationInbox
from .prayers import PrayerService
from .queue import QueueWorker, RetryQueue
from .rate_limiter import RateLimiter
from .viewport import ViewportQueryEngine

__all__ = [
    "CandidateUser",
    "ConnectionLedger",
    "FanoutResult",
    "LocationProvider",
    "NotificationFanout",
    "NotificationInbox",
    "PrayerService",
    "QueueWorker",
    "RateLimiter",
    "RecipientOutcome",
    "RetryQueue",
    "StoredLocationProvider",
    "ViewportQueryEngine",
]
