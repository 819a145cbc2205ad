"""Error taxonomy shared by the ledger, viewport, fanout and queue services."""

from __future__ import annotations


class LivingMapError(RuntimeError):
    """Base exception for all Living Map core failures."""


class NotFoundError(LivingMapError):
    """Raised when a referenced prayer, user, queue item or connection is missing."""


class ProtectedRecordError(LivingMapError):
    """Raised on any attempt to delete or re-point an eternal memorial connection."""


class ValidationError(LivingMapError):
    """Raised for malformed input such as an inverted bounding box or bad priority."""


class TransientStoreError(LivingMapError):
    """Raised for retryable store failures (lock contention, timeouts).

    The core never retries these itself; callers retry with bounded backoff.
    """


class DeadLetteredError(LivingMapError):
    """Raised when an operation targets a queue item that was moved to the dead-letter store."""


class UnsupportedBackendError(LivingMapError):
    """Raised when the bound database offers no atomic upsert for rate limiting."""


class DiscoveryError(LivingMapError):
    """Raised when fanout candidate discovery fails and the whole event is aborted."""


ETERNAL_DELETE_MESSAGE = "memorial lines are eternal and cannot be deleted"
IMMUTABLE_GEOMETRY_MESSAGE = "memorial line geometry is immutable"
