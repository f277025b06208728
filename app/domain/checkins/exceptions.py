"""Check-in domain errors, mapped to HTTP responses in main.py"""


class CheckInError(Exception):
    """Base class for check-in scheduling errors"""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(CheckInError):
    """Series or assignment missing. Listing omits these instead of raising."""

    status_code = 404


class AuthorizationDenied(CheckInError):
    """Client/coach mismatch. Surfaced to the caller, never retried."""

    status_code = 403


class InvalidOperation(CheckInError):
    """Request is well-formed but not allowed in the occurrence's current state"""

    status_code = 409


class TransientStorageFailure(CheckInError):
    """Storage unavailable. Retried by the next sweep or the caller, not in-process."""

    status_code = 503


class DispatchFailure(CheckInError):
    """Reminder could not be delivered; the milestone stays unfired"""

    status_code = 502
