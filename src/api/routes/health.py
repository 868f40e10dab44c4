"""
Health check endpoint.
"""

import structlog
from fastapi import APIRouter, Depends

from src.api.dependencies import get_pipeline
from src.api.models import HealthResponse
from src.services.pipeline import Pipeline

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the store, Redis and the optional YouTube integrations.",
)
async def health_check(pipeline: Pipeline = Depends(get_pipeline)) -> HealthResponse:
    """
    Status logic:
    - unhealthy: database is down
    - degraded: Redis is down (locks fail open, quota is not tracked)
    - healthy: all components operational
    """
    try:
        components = await pipeline.health_check()
    except Exception as e:
        logger.warning("Health check failed", error=str(e))
        components = {"database": False, "redis": False}

    if not components.get("database"):
        status = "unhealthy"
    elif not components.get("redis"):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(status=status, components=components)
