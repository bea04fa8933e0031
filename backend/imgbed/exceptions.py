"""
ImgBed Backend — Custom Exception Hierarchy
=============================================

What:  Closed set of application errors, each mapped to one HTTP status.
How:   Each exception carries a caller-safe message and an optional context
       dict. Global handlers (registered in main.py) turn them into JSON
       error responses; context is logged, never returned for 5xx.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    ImgBedError (base)
    ├── ValidationError                  → 400 Bad Request
    ├── UnsupportedOrCorruptImageError   → 400 Bad Request (rejected upload)
    ├── UnauthorizedError                → 401 Unauthorized
    ├── NotFoundError                    → 404 Not Found
    │   └── InvalidStoragePathError      → 404 Not Found
    ├── RateLimitExceededError           → 429 Too Many Requests
    ├── FileStorageError                 → 500 Internal Server Error
    ├── DatabaseError                    → 500 Internal Server Error
    └── InternalError                    → 500 Internal Server Error

NotFoundError always carries the same message. A malformed identifier,
an unknown id, a soft-deleted image on the public path and a file missing
from disk must be indistinguishable to the caller.
"""

from typing import Any, Dict, Optional


class ImgBedError(Exception):
    """
    Base exception for all ImgBed application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ImgBedError):
    """
    Raised when client input fails validation.

    When:    Empty upload, size exceeded, disallowed extension, bad quality value.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnsupportedOrCorruptImageError(ImgBedError):
    """
    Raised when the image backend cannot decode an uploaded buffer.

    Untrusted input routinely fails to decode; this is a rejected upload,
    not a server fault.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "The uploaded file is not a supported image or is corrupt",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UnauthorizedError(ImgBedError):
    """
    Raised when a credential is missing, invalid, or expired.

    HTTP:    401 Unauthorized (with WWW-Authenticate: Bearer)

    Attributes:
        reason: "missing", "invalid" or "expired" (logged only)
    """

    def __init__(
        self,
        message: str = "Authentication required",
        reason: str = "missing",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["reason"] = reason
        super().__init__(message=message, context=ctx)
        self.reason = reason


class NotFoundError(ImgBedError):
    """
    Raised when a requested image cannot be served.

    HTTP:    404 Not Found

    The message is fixed. The `cause` lands in context for the server log:
        malformed  - path did not match <id>.<ext>
        unknown    - no ledger record with that id
        deleted    - record is soft-deleted and the path filters those out
        missing    - ledger record exists but the file is gone (drift)
    """

    MESSAGE = "Image not found"

    def __init__(
        self,
        cause: str = "unknown",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["cause"] = cause
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=self.MESSAGE, context=ctx)
        self.cause = cause


class InvalidStoragePathError(NotFoundError):
    """
    Raised by the storage adapter for an id/extension that could escape
    the storage root or does not have the identifier shape.
    """

    def __init__(self, filename: str):
        super().__init__(cause="malformed", context={"filename": filename})


class RateLimitExceededError(ImgBedError):
    """
    Raised when a client exceeds the per-IP upload rate limit.

    HTTP:    429 Too Many Requests (with Retry-After)
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class FileStorageError(ImgBedError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error (paths are logged, never returned)
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(ImgBedError):
    """
    Raised when ledger operations fail or a stored row fails validation.

    HTTP:    500 Internal Server Error (generic message to caller)
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InternalError(ImgBedError):
    """
    Unclassified failure collapsed at a service boundary.

    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
