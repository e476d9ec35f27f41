"""
Lets-Go-WorkSpace Backend — Pydantic Response Schemas
======================================================

What:  Pydantic models defining the JSON envelopes the API returns.
Why:   One definition per envelope keeps the health, error and not-found
       bodies identical wherever they are produced, and feeds the OpenAPI docs.
How:   Route handlers return these models; the error stage and the not-found
       handler build them and serialize with model_dump().

Envelopes:
    HealthResponse         {"status": "success", "message", "timestamp"}
    ErrorResponse          {"status": "error", "message", "timestamp"}
    RouteNotFoundResponse  {"status": "error", "message": "Route not found", "path"}
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """
    Current UTC time as ISO 8601 text with millisecond precision.

    Example: "2026-10-19T08:15:30.123Z"
    """
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class HealthResponse(BaseModel):
    """
    What:  Liveness response for GET /api/health.
    Who:   Load balancers, container health checks, the frontend's status badge.

    The endpoint checks nothing beyond "the process is answering requests",
    so every field except the timestamp is constant.
    """
    status: Literal["success"] = Field(default="success")
    message: str = Field(default="Server is running")
    timestamp: str = Field(
        default_factory=utc_timestamp,
        description="When the response was generated (UTC ISO 8601)",
    )


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response for every failed request.
    Why:   Clients need a single structure to parse errors programmatically.

    Example:
        {
            "status": "error",
            "message": "request entity too large",
            "timestamp": "2026-10-19T08:15:30.123Z"
        }
    """
    status: Literal["error"] = Field(default="error")
    message: str = Field(description="Human-readable error description")
    timestamp: str = Field(default_factory=utc_timestamp)


class RouteNotFoundResponse(BaseModel):
    """Returned for any method/path combination without a registered route."""
    status: Literal["error"] = Field(default="error")
    message: str = Field(default="Route not found")
    path: str = Field(description="The requested path, without query string")
