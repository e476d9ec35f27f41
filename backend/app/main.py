"""
Lets-Go-WorkSpace Backend — FastAPI Application Factory
========================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes middleware registration, exception handlers, and route
       mounting in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Imported by app.server (python -m app) or directly by uvicorn
       (uvicorn app.main:app).
When:  Once at server startup; the returned app handles all subsequent requests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                        FastAPI App                           │
    │                                                              │
    │  Middleware Chain:                                           │
    │  ┌──────────┐ ┌──────┐ ┌────────┐ ┌─────────────┐ ┌────────┐ │
    │  │ Security │→│ CORS │→│ Errors │→│ Body Parser │→│ Logging│ │
    │  └──────────┘ └──────┘ └────────┘ └─────────────┘ └────────┘ │
    │                                                              │
    │  Routes:                                                     │
    │  ┌─────────────────┐  ┌──────────────────────────────────┐   │
    │  │ GET /api/health │  │ anything else → 404 not found    │   │
    │  └─────────────────┘  └──────────────────────────────────┘   │
    └──────────────────────────────────────────────────────────────┘

Listener lifecycle (bind, signal handling, drain, exit) lives in app.server.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import __version__
from app.config import Settings, settings
from app.exceptions import AppError, ValidationError
from app.middleware.body_parser import BodyParserMiddleware
from app.middleware.errors import ErrorHandlingMiddleware, error_response
from app.middleware.logging import RequestLoggingMiddleware, request_path
from app.middleware.security_headers import SecurityHeadersMiddleware
from app.routes import health
from app.schemas.responses import RouteNotFoundResponse

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Configure logging for the entire application.

    What:    One stdout handler on the root logger with a consistent format.
    When:    Called from the lifespan handler, before the listener reports
             that it is running.

    Format: 2026-10-19T08:15:30 [INFO] letsgo.access: GET /api/health
    """
    level_name = log_level or settings.log_level

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),  # Docker captures stdout
        ],
        force=True,  # Override any existing logging config
    )

    # We log requests ourselves (app.middleware.logging)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: configure logging. Shutdown: nothing to release yet.

    Runs before uvicorn binds the port, so the "running on port" line that
    app.server logs afterwards already uses this configuration.
    """
    app_settings: Settings = app.state.settings
    setup_logging(app_settings.log_level)
    logger.debug("Application startup (version %s)", __version__)

    yield  # Application runs here

    logger.debug("Application shutdown")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def is_unmatched_route(request: Request, exc: StarletteHTTPException) -> bool:
    """
    True for the 404/405 the router raises when no route matches.

    A matched route is recorded on the scope before its handler runs, so a
    handler raising HTTPException(404) keeps the error envelope. A 405 means
    the path matched a route that does not accept this method.
    """
    if exc.status_code not in (404, 405):
        return False
    route = request.scope.get("route")
    if route is None:
        return True
    methods = getattr(route, "methods", None)
    return bool(methods) and request.method not in methods


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register handlers for exceptions FastAPI intercepts before our error
    middleware sees them.

    Handler map:
        HTTPException (unmatched route) → 404 {"message": "Route not found", "path"}
        HTTPException (other)           → its status, error envelope
        RequestValidationError          → 400 error envelope
        AppError                        → its status (or 500), error envelope

    Everything else propagates to ErrorHandlingMiddleware.
    """

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if is_unmatched_route(request, exc):
            body = RouteNotFoundResponse(path=request_path(request))
            return JSONResponse(status_code=404, content=body.model_dump())
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = [
            "{}: {}".format(".".join(str(part) for part in err.get("loc", ())), err.get("msg"))
            for err in exc.errors()
        ]
        message = "Invalid request: " + "; ".join(problems) if problems else "Invalid request"
        return error_response(ValidationError(message=message))

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        return error_response(exc)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to build the app with; defaults to the
            module-level singleton. Tests pass their own to vary CORS origins
            or the body limit.

    Returns: Fully configured FastAPI instance ready to receive requests.
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title="Lets-Go-WorkSpace API",
        description="Backend API for Lets-Go-WorkSpace.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        # "/api/health/" is a different route, not a redirect
        redirect_slashes=False,
    )
    app.state.settings = app_settings

    # ── Register Middleware ───────────────────────────────────────────────
    # Order matters! Middleware executes in REVERSE order of addition
    # (last added = first to execute):
    # Security Headers → CORS → Errors → Body Parser → Logging → routes

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(BodyParserMiddleware, limit=app_settings.body_limit)

    app.add_middleware(ErrorHandlingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(SecurityHeadersMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# Why module-level: uvicorn expects `app.main:app` to be importable
app = create_app()
