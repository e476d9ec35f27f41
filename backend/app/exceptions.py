"""
Lets-Go-WorkSpace Backend — Custom Exception Hierarchy
=======================================================

What:  Application-specific exceptions that carry an optional HTTP status.
Why:   The terminal error stage turns any failure into the same JSON envelope;
       exceptions only need to say which status code they want.
How:   Each exception stores a message, an optional `status` and an optional
       context dict. The error stage (app.middleware.errors) reads `status`
       and falls back to 500 when it is missing.

Exception Hierarchy:
    AppError (base, status optional → 500)
    ├── ValidationError        → 400 Bad Request
    │   └── MalformedBodyError → 400 Bad Request (body could not be parsed)
    ├── NotFoundError          → 404 Not Found
    └── PayloadTooLargeError   → 413 Payload Too Large

    LifecycleError (not an HTTP error; invalid server state transition)

Any other exception raised by a handler is still answered, with status 500.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """
    Base exception for errors raised while handling a request.

    Attributes:
        message:  User-facing error description (returned in the response)
        status:   HTTP status code for the response, or None for 500
        context:  Additional debug info (logged but NOT returned to client)
    """

    status: Optional[int] = None

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status is not None:
            self.status = status
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Raised when client input fails validation. HTTP 400."""

    status = 400

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


class MalformedBodyError(ValidationError):
    """
    Raised by the body parser when a JSON or URL-encoded body cannot be read.

    Example response:
        {"status": "error", "message": "Invalid JSON body: Expecting value", ...}
    """

    def __init__(self, message: str = "Malformed request body", content_type: str = ""):
        super().__init__(message=message, field="body", context={"content_type": content_type})


class NotFoundError(AppError):
    """Raised by a handler when the resource it was asked for does not exist."""

    status = 404

    def __init__(self, resource: str = "Resource", identifier: str = ""):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(
            message=message,
            context={"resource": resource, "identifier": identifier},
        )


class PayloadTooLargeError(AppError):
    """Raised when a request body exceeds the configured BODY_LIMIT. HTTP 413."""

    status = 413

    def __init__(self, limit: int, length: Optional[int] = None):
        self.limit = limit
        self.length = length
        super().__init__(
            message="request entity too large",
            context={"limit": limit, "length": length},
        )


class LifecycleError(Exception):
    """
    Raised when the server controller is asked for a transition its state
    machine does not allow (e.g. `started` while already running).
    """

    def __init__(self, state: str, event: str):
        self.state = state
        self.event = event
        super().__init__(f"Invalid server transition: '{event}' while {state}")
