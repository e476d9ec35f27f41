"""
Lets-Go-WorkSpace Backend — Application Configuration
=======================================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   Pydantic Settings reads from environment variables (or a .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the app factory, middleware, and the server controller.
When:  Loaded once at module import time.

Environment variables:
    PORT              Listener port (default 5000, 0 picks a free port)
    HOST              Bind address (default 0.0.0.0)
    CORS_ORIGIN       Allowed origin(s), comma-separated
    NODE_ENV          Environment label shown in the startup log
    LOG_LEVEL         DEBUG, INFO, WARNING, ERROR or CRITICAL
    BODY_LIMIT        Max request body size accepted by the body parser
    SHUTDOWN_TIMEOUT  Seconds to wait for in-flight requests on shutdown
                      (unset = wait as long as it takes)
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have defaults suitable for local development, so the server
    starts with an empty environment.
    """

    # ── Server ────────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=0, le=65535)

    # What: Label for the deployment environment, only used for logging
    # Read from NODE_ENV, shared with the frontend deployment
    node_env: str = Field(default="development")

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated URLs (split by cors_origins_list below)
    cors_origin: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list for CORSMiddleware."""
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]

    # ── Request Bodies ────────────────────────────────────────────────────
    # 100 KiB
    body_limit: int = Field(default=100 * 1024, ge=1)

    # ── Shutdown ──────────────────────────────────────────────────────────
    # What: Upper bound on how long draining may take after a shutdown signal
    # None keeps waiting until every in-flight request has finished
    shutdown_timeout: Optional[float] = Field(default=None, gt=0)

    # ── Logging ───────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,  # PORT and port both work
        "extra": "ignore",
    }


# Singleton instance — imported throughout the application
settings = Settings()
