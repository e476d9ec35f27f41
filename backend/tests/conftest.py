"""
Lets-Go-WorkSpace Backend — Test Configuration (conftest.py)
=============================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixtures:
    test_settings: Settings with a known CORS origin and a small body limit
    app:           Fresh FastAPI app built from test_settings
    test_client:   HTTPX AsyncClient talking to `app` in-process
"""

import os

# Override settings for testing BEFORE any app imports
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["CORS_ORIGIN"] = "http://localhost:3000"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.config import Settings
from app.main import create_app

ALLOWED_ORIGIN = "http://localhost:3000"
BODY_LIMIT = 1024


@pytest.fixture
def test_settings():
    """Settings used to build the app under test."""
    return Settings(cors_origin=ALLOWED_ORIGIN, body_limit=BODY_LIMIT)


@pytest.fixture
def app(test_settings):
    """
    A fresh application per test.

    Why fresh: tests add throwaway routes (e.g. handlers that raise) and must
    not leak them into other tests.
    """
    return create_app(test_settings)


@pytest_asyncio.fixture
async def test_client(app):
    """
    Provides an async HTTP test client for endpoint testing.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/api/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
