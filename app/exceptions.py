"""
Error taxonomy for the notification service.

Every caller-facing failure is a NotificationError carrying a stable code
and the HTTP status the API layer should answer with.
"""

from typing import Any, Optional


class NotificationError(Exception):
    """Base exception for the notification service."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_SERVER_ERROR",
        status_code: int = 500,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class DestinationBlocked(NotificationError):
    """Raised when a submission targets a denylisted phone number."""

    def __init__(self, phone_number: str):
        super().__init__(
            "Phone number is blacklisted",
            code="PHONE_NUMBER_BLACKLISTED",
            status_code=400,
            details={"phone_number": phone_number},
        )


class RequestNotFound(NotificationError):
    """Raised when a requested SMS record does not exist."""

    def __init__(self, message: str = "SMS request not found", details: Optional[Any] = None):
        super().__init__(message, code="REQUEST_NOT_FOUND", status_code=404, details=details)


class InvalidRequest(NotificationError):
    def __init__(self, message: str = "Invalid request", details: Optional[Any] = None):
        super().__init__(message, code="INVALID_REQUEST", status_code=400, details=details)


class StoreUnavailable(NotificationError):
    """Raised when the record store cannot be reached or rejects a write."""

    def __init__(self, message: str = "Record store unavailable", details: Optional[Any] = None):
        super().__init__(message, code="STORE_UNAVAILABLE", status_code=503, details=details)


class QueueUnavailable(NotificationError):
    """Raised when a work item cannot be published to or read from the queue."""

    def __init__(self, message: str = "Message queue unavailable", details: Optional[Any] = None):
        super().__init__(message, code="QUEUE_UNAVAILABLE", status_code=503, details=details)


class IndexUnavailable(NotificationError):
    """Raised when the search index cannot be written or queried."""

    def __init__(self, message: str = "Search index unavailable", details: Optional[Any] = None):
        super().__init__(message, code="INDEX_UNAVAILABLE", status_code=503, details=details)


class DenylistUnavailable(NotificationError):
    """
    Raised when denylist membership cannot be confirmed.

    Distinct from a negative answer so callers never mistake a cache outage
    for "not blocked".
    """

    def __init__(self, message: str = "Denylist cache unavailable", details: Optional[Any] = None):
        super().__init__(message, code="DENYLIST_UNAVAILABLE", status_code=503, details=details)


class InternalInconsistency(NotificationError):
    """A dequeued correlation id has no backing record."""

    def __init__(self, correlation_id: str):
        super().__init__(
            f"No SMS request found for correlation ID: {correlation_id}",
            code="INTERNAL_INCONSISTENCY",
            status_code=500,
            details={"correlation_id": correlation_id},
        )


class TransportFailure(NotificationError):
    """
    Raised inside a delivery transport when an attempt fails.

    Transports convert it into a failed SendResult; it never reaches the
    HTTP layer.
    """

    def __init__(self, code: str, detail: str):
        super().__init__(detail, code=code, status_code=502)
        self.detail = detail


class IllegalTransition(NotificationError):
    """Raised when a write would move a record backwards or out of a terminal state."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move SMS request from {current} to {target}",
            code="ILLEGAL_TRANSITION",
            status_code=409,
            details={"current": current, "target": target},
        )


class Unauthorized(NotificationError):
    def __init__(self, message: str = "Authorization header is required"):
        super().__init__(message, code="UNAUTHORIZED", status_code=401)
