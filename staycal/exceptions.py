"""
Calendar error taxonomy.

Every failure is scoped to one operation and reported to the caller.
The HTTP layer maps these onto status codes in ``main.py``.
"""

from typing import Optional


class CalendarError(Exception):
    """Base class for calendar failures surfaced to callers"""
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailure(CalendarError):
    """Rejected before any external call (bad range, price <= 0, missing field)"""
    status_code = 400


class NotFound(CalendarError):
    status_code = 404


class SchemaDrift(CalendarError):
    """An expected column is missing from the store"""
    status_code = 500

    def __init__(self, message: str, column: Optional[str] = None):
        super().__init__(message, {"column": column} if column else None)
        self.column = column


class ExternalWriteError(CalendarError):
    """The store rejected a write; callers roll back optimistic state"""
    status_code = 502


class FeedImportError(CalendarError):
    """External feed could not be fetched or parsed"""
    status_code = 502

    def __init__(self, message: str = "Unable to sync, verify the URL", details: Optional[dict] = None):
        super().__init__(message, details)


class SyncInProgress(CalendarError):
    """A sync for the same feed is already running"""
    status_code = 409
