"""
Error types raised by the escalation engine, the record store and calendar sync.
"""

from typing import Optional


class RemindSyncError(Exception):
    """Base exception for all application errors."""


class ValidationError(RemindSyncError):
    """Malformed policy, step or persisted value."""


class InvalidTransitionError(RemindSyncError):
    """Lifecycle operation not allowed from the reminder's current state."""


class NotFoundError(RemindSyncError):
    """Requested record does not exist."""


class SchedulingError(RemindSyncError):
    """The alert scheduler rejected an item or ran out of capacity."""


class StoreError(RemindSyncError):
    """Persistence failure. Alerts already handed to the scheduler stay scheduled."""


class SyncError(RemindSyncError):
    """Base class for per-source calendar sync failures."""


class FetchError(SyncError):
    """Transport failure or a status code outside 200-299."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(SyncError):
    """Feed bytes could not be decoded as text."""
