"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status
along with the current block height.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from crystal_custody.api.deps import get_block_height
from crystal_custody.infrastructure.database.engine import _get_engine
from crystal_custody.infrastructure.redis_client import get_redis
from crystal_custody.logging_config import get_logger
from crystal_custody.schemas.custody import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(block_height: int = Depends(get_block_height)) -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "unknown"

    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    # Redis only guards idempotency keys, so its absence degrades but does not fail.
    try:
        await get_redis().ping()
        redis_status = "healthy"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.warning("health.redis_check_failed", error=str(exc))

    overall = "ok" if db_status == "healthy" and redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        block_height=block_height,
    )
