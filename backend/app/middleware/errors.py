"""
Lets-Go-WorkSpace Backend — Terminal Error-Handling Middleware
===============================================================

What:  Catches every exception that escapes the inner middleware or a route
       handler and answers it with the JSON error envelope.
Why:   No failure may reach the ASGI server. Starlette's own server-error
       middleware re-raises after responding, which test clients and uvicorn
       both report as a crash.
How:   Wraps call_next in try/except. The status code comes from the
       exception's `status` attribute (AppError) or `status_code`
       (Starlette HTTPException), else 500.
When:  Sits inside CORS and security headers, so error responses still get
       those headers, and outside body parsing, logging and routing.

Covered failure sources:
    - sync handlers (run in Starlette's threadpool, exception re-raised here)
    - async handlers, including failures after an await
    - the body parser and request logger middleware
"""

import logging
from http import HTTPStatus
from typing import Optional

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.schemas.responses import ErrorResponse

logger = logging.getLogger(__name__)


def declared_status(exc: BaseException) -> Optional[int]:
    """
    Status code the exception asks for, or None when it declares none.

    Accepts `status` (our AppError) and `status_code` (Starlette/FastAPI
    HTTPException); ignores anything that is not an int in 100..599.
    """
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
            return value
    return None


def status_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"


def error_response(exc: BaseException) -> JSONResponse:
    """Build the error envelope for `exc` and log it."""
    status = declared_status(exc) or 500
    message = getattr(exc, "message", None) or getattr(exc, "detail", None) or str(exc)
    if not isinstance(message, str) or not message:
        message = status_phrase(status)

    if status >= 500:
        logger.error(message, exc_info=exc)
    else:
        logger.error(message)

    body = ErrorResponse(message=message)
    # e.g. WWW-Authenticate on a 401
    headers = exc.headers if isinstance(exc, StarletteHTTPException) else None
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last line of defence: converts any escaped exception into a response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return error_response(exc)
