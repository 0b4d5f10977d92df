"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the block-height clock, the call context, and configuration.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_custody.config import Settings, get_settings
from crystal_custody.domain.context import CallContext, Clock
from crystal_custody.infrastructure.clock import BlockHeightClock
from crystal_custody.infrastructure.database.engine import get_async_session
from crystal_custody.logging_config import bind_caller


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_clock() -> Clock:
    """Provide the block-height clock. Tests override this with a ManualClock."""
    return BlockHeightClock()


def get_block_height(clock: Clock = Depends(get_clock)) -> int:
    return clock.now()


def get_call_context(
    x_principal: str = Header(..., min_length=1, max_length=128, description="Calling principal"),
    block_height: int = Depends(get_block_height),
) -> CallContext:
    """Resolve who is calling and at what block height."""
    bind_caller(x_principal, block_height)
    return CallContext(caller=x_principal, now=block_height)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
