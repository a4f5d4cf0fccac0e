"""
Error taxonomy shared by the intake server and the field client.

Every error carries the HTTP status it maps to, a stable machine code used in
JSON error bodies, and whether retrying the same request can ever succeed.
"""
from typing import Optional


class DigPaperError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def detail(self) -> str:
        return str(self)


# ---- server side ----

class ValidationFailure(DigPaperError):
    status_code = 400
    code = "validation_failure"
    default_message = "Malformed request"


class NotFound(DigPaperError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class PayloadTooLarge(DigPaperError):
    status_code = 413
    code = "payload_too_large"
    default_message = "Payload too large"


class UnsupportedMediaType(DigPaperError):
    status_code = 415
    code = "unsupported_media_type"
    default_message = "Unsupported media type"


class StorageFailure(DigPaperError):
    """Disk or database failure. Nothing was committed."""

    status_code = 500
    code = "storage_failure"
    retryable = True
    default_message = "Storage failure"


# ---- client side ----

class NetworkUnavailable(DigPaperError):
    """No connectivity: the request never left the device."""

    status_code = 0
    code = "network_unavailable"
    retryable = True
    default_message = "Network unavailable"


class ServerUnreachable(DigPaperError):
    """The request was sent but no response arrived (timeout, reset)."""

    status_code = 0
    code = "server_unreachable"
    retryable = True
    default_message = "Server unreachable"


# statuses that describe a transient condition even though they are 4xx
RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


class ServerRejected(DigPaperError):
    code = "server_rejected"
    default_message = "Server rejected the upload"

    def __init__(self, status_code: int, message: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code in RETRYABLE_CLIENT_STATUSES
