"""Shared test fixtures for the Crystal Custody test suite.

Provides:
    - An in-memory SQLite engine bound to the engine module singletons
    - A database session and a CustodyService on top of it
    - Funded principals and a manual block-height clock
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from crystal_custody.config import get_settings
from crystal_custody.domain.context import CallContext
from crystal_custody.infrastructure.clock import ManualClock
from crystal_custody.infrastructure.database import engine as engine_module
from crystal_custody.infrastructure.database.orm_models import Base
from crystal_custody.services.custody_service import CustodyService
from crystal_custody.services.transfer_service import LedgerTransferService

ORIGINATOR = "alice"
BENEFICIARY = "bob"
STRANGER = "mallory"
SUPERVISOR = get_settings().supervisor_identity
CUSTODY = get_settings().custody_account

STARTING_BALANCE = 10_000


def ctx(caller: str, now: int = 0) -> CallContext:
    return CallContext(caller=caller, now=now)


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    """A fresh in-memory database per test, installed as the app's engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    engine_module.use_engine(engine)
    yield engine
    await engine_module.close_db()


@pytest_asyncio.fixture
async def session(db_engine):
    factory = engine_module.make_session_factory(db_engine)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def funded(session) -> LedgerTransferService:
    """Transfer service with ORIGINATOR and STRANGER holding STARTING_BALANCE."""
    transfers = LedgerTransferService(session)
    await transfers.credit(ORIGINATOR, STARTING_BALANCE)
    await transfers.credit(STRANGER, STARTING_BALANCE)
    await session.commit()
    return transfers


@pytest.fixture
def service(session, funded) -> CustodyService:
    return CustodyService(session, funded)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
