"""Crystal Custody HTTP service.

The app exposes the custody engine under ``/api/v1``: one POST per ledger
operation, read endpoints for records, stability and the audit trail, and a
development-only funding route for principals. Callers identify themselves
with the ``X-Principal`` header; the block height comes from the configured
chain clock.

Startup binds the database engine (creating tables in development) and, when
reachable, Redis for crystal-creation idempotency keys. Redis is optional: the
service runs without it and skips duplicate detection.

Run with:
    uv run uvicorn crystal_custody.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from crystal_custody.config import get_settings
from crystal_custody.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Bind storage for the ledger before serving, release it on shutdown."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "custody.starting",
        env=settings.app_env,
        custody_account=settings.custody_account,
        supervisor=settings.supervisor_identity,
        block_interval_seconds=settings.block_interval_seconds,
    )

    from crystal_custody.infrastructure.database.engine import close_db, init_db
    from crystal_custody.infrastructure.redis_client import close_redis, init_redis

    await init_db()
    try:
        await init_redis()
    except Exception as exc:
        logger.warning("custody.idempotency_disabled", error=str(exc))

    logger.info("custody.ready", host=settings.app_host, port=settings.app_port)

    yield

    await close_db()
    await close_redis()
    logger.info("custody.stopped")


def create_app() -> FastAPI:
    """Build the custody API: middleware, then health, crystal and account routes."""
    settings = get_settings()

    app = FastAPI(
        title="Crystal Custody",
        description=(
            "Holds energy for an originator until it is transmitted to the "
            "beneficiary, returned, split or recovered, within a block-height "
            "stability window."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    from crystal_custody.api.middleware import setup_middleware
    from crystal_custody.api.routes.accounts import router as accounts_router
    from crystal_custody.api.routes.custody import router as custody_router
    from crystal_custody.api.routes.health import router as health_router

    setup_middleware(app)
    app.include_router(health_router)
    app.include_router(custody_router)
    app.include_router(accounts_router)

    return app


app = create_app()
