"""Exceptions raised by the sync and export pipeline."""


class CalendarSyncError(Exception):
    """Base class for calendar sync failures."""


class FetchError(CalendarSyncError):
    """A partner feed could not be retrieved or was empty."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch iCal content from {url}: {reason}")


class StoreError(CalendarSyncError):
    """A DynamoDB operation failed."""


class ReconcileError(CalendarSyncError):
    """A single feed event could not be persisted."""

    def __init__(self, uid: str, cause: Exception):
        self.uid = uid
        self.cause = cause
        super().__init__(f"Failed to reconcile event {uid}: {cause}")
