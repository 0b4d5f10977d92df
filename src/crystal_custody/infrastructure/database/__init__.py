"""Database infrastructure — engine, ORM models, and repositories."""

from crystal_custody.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
    run_unit_of_work,
    use_engine,
)
from crystal_custody.infrastructure.database.orm_models import (
    AccountBalance,
    Base,
    CustodyEvent,
    CustodyRecord,
    LedgerSequence,
)
from crystal_custody.infrastructure.database.repositories import (
    BalanceRepository,
    CrystalRepository,
    EventRepository,
    SequenceRepository,
)

__all__ = [
    "AccountBalance",
    "Base",
    "CustodyEvent",
    "CustodyRecord",
    "LedgerSequence",
    "BalanceRepository",
    "CrystalRepository",
    "EventRepository",
    "SequenceRepository",
    "close_db",
    "get_async_session",
    "init_db",
    "run_unit_of_work",
    "use_engine",
]
