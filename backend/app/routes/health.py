"""
Lets-Go-WorkSpace Backend — Health Check Route
===============================================

What:  Liveness endpoint for monitoring and load balancer health checks.
How:   Always answers 200 with a constant status and the current timestamp.
Who:   Called by container health checks, load balancers, and the frontend.

The backend has no database or upstream services yet, so "healthy" simply
means the process is accepting and answering requests.
"""

from fastapi import APIRouter

from app.schemas.responses import HealthResponse

router = APIRouter(prefix="/api", tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Returns 200 while the server is running.",
)
async def health_check() -> HealthResponse:
    return HealthResponse()
