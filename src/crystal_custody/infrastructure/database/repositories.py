"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from crystal_custody.domain.exceptions import ConcurrentModificationError
from crystal_custody.infrastructure.database.orm_models import (
    AccountBalance,
    CustodyEvent,
    CustodyRecord,
    LedgerSequence,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from crystal_custody.domain.enums import CrystalState, EventType

CRYSTAL_SEQUENCE = "crystal_id"


class SequenceRepository:
    """Ledger-owned counters with atomic increment-and-fetch."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_value(self, name: str = CRYSTAL_SEQUENCE) -> int:
        """Advance the named counter and return the new value.

        The row is locked for the rest of the transaction, so concurrent
        creators queue behind each other and values are never handed out twice.
        """
        result = await self._session.execute(
            select(LedgerSequence).where(LedgerSequence.name == name).with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = LedgerSequence(name=name, value=0)
            self._session.add(sequence)
        sequence.value += 1
        await self._session.flush()
        return sequence.value

    async def current_value(self, name: str = CRYSTAL_SEQUENCE) -> int:
        """Return the last value handed out, 0 if the counter was never used."""
        result = await self._session.execute(
            select(LedgerSequence.value).where(LedgerSequence.name == name)
        )
        return result.scalar_one_or_none() or 0


class CrystalRepository:
    """Data access for custody records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: CustodyRecord) -> CustodyRecord:
        """Insert a new custody record."""
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_id(self, crystal_id: int) -> CustodyRecord | None:
        """Fetch a record by id without locking."""
        result = await self._session.execute(
            select(CustodyRecord).where(CustodyRecord.id == crystal_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, crystal_id: int) -> CustodyRecord | None:
        """Fetch a record and hold its row lock until the transaction ends."""
        result = await self._session.execute(
            select(CustodyRecord)
            .where(CustodyRecord.id == crystal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_fragments(self, parent_id: int) -> list[CustodyRecord]:
        result = await self._session.execute(
            select(CustodyRecord)
            .where(CustodyRecord.parent_id == parent_id)
            .order_by(CustodyRecord.id.asc())
        )
        return list(result.scalars().all())

    async def total_held(self) -> int:
        """Sum of energy still held across all records."""
        result = await self._session.execute(select(func.coalesce(func.sum(CustodyRecord.amount), 0)))
        return int(result.scalar_one())

    async def save(self, record: CustodyRecord) -> CustodyRecord:
        """Flush pending changes to a record (call AFTER state machine validation).

        Raises:
            ConcurrentModificationError: If another transaction bumped the
                record's version since it was read.
        """
        try:
            await self._session.flush()
        except StaleDataError as err:
            raise ConcurrentModificationError(record.id) from err
        return record


class BalanceRepository:
    """Data access for principal balances."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, principal: str) -> int:
        result = await self._session.execute(
            select(AccountBalance.balance).where(AccountBalance.principal == principal)
        )
        return result.scalar_one_or_none() or 0

    async def get_for_update(self, principal: str) -> AccountBalance | None:
        """Fetch and lock a principal's balance row, None if it has never held funds."""
        result = await self._session.execute(
            select(AccountBalance)
            .where(AccountBalance.principal == principal)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    def open_account(self, principal: str) -> AccountBalance:
        """Stage a zero-balance row for a principal seen for the first time."""
        account = AccountBalance(principal=principal, balance=0)
        self._session.add(account)
        return account

    async def flush(self) -> None:
        await self._session.flush()


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        crystal_id: int,
        event_type: EventType,
        old_state: CrystalState | None,
        new_state: CrystalState,
        actor: str,
        block_height: int,
        metadata: dict | None = None,
    ) -> CustodyEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = CustodyEvent(
            crystal_id=crystal_id,
            event_type=event_type.value,
            old_state=old_state.value if old_state else None,
            new_state=new_state.value,
            actor=actor,
            block_height=block_height,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_crystal(self, crystal_id: int) -> list[CustodyEvent]:
        """Fetch all events for a crystal in the order they were recorded."""
        result = await self._session.execute(
            select(CustodyEvent)
            .where(CustodyEvent.crystal_id == crystal_id)
            .order_by(CustodyEvent.block_height.asc(), CustodyEvent.created_at.asc())
        )
        return list(result.scalars().all())
