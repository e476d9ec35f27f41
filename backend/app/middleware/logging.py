"""
Lets-Go-WorkSpace Backend — Request Logging Middleware
=======================================================

What:  Logs every HTTP request as it arrives and, at DEBUG, how it finished.
Why:   The arrival line ("GET /api/health") is the access log operators grep
       for; the completion line adds status and duration when debugging.
How:   INFO on arrival with method and path, DEBUG after the response with
       status code and elapsed milliseconds.
When:  Innermost middleware, after body parsing; requests rejected by the
       body parser are logged by the error stage instead.

What we log vs what we DON'T log (privacy):
    ✅ Log: method, path, status, duration
    ❌ Don't log: request body, query string, headers
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("letsgo.access")


def request_path(request: Request) -> str:
    """
    The path exactly as the client sent it: still percent-encoded, no query.

    `request.url.path` is decoded ("/api/caf%C3%A9" → "/api/café"), so the
    raw ASGI path is preferred when the server provides one.
    """
    raw = request.scope.get("raw_path")
    if not raw:
        return request.scope["path"]
    return raw.decode("latin-1").split("?", 1)[0]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method and path of each request, plus status and duration at DEBUG."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Why time.perf_counter: monotonic and high resolution
        start_time = time.perf_counter()
        method = request.method
        path = request_path(request)

        logger.info("%s %s", method, path, extra={"method": method, "path": path})

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "%s %s %d %.1fms",
            method,
            path,
            response.status_code,
            duration_ms,
            extra={
                "method": method,
                "path": path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
