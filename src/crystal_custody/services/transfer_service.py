"""Transfer Service — moves energy between principal balances.

Balances live in the same database as custody records, so a payout and the
record mutation that accompanies it commit (or roll back) together.

A settlement is a batch of moves applied all-or-nothing: every debit is
checked against the locked balance rows before any balance is changed.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from crystal_custody.domain import rules
from crystal_custody.domain.exceptions import InsufficientFundsError, TransferError
from crystal_custody.infrastructure.database.repositories import BalanceRepository
from crystal_custody.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from crystal_custody.domain.transfer_protocol import Move

logger = get_logger(__name__)


class LedgerTransferService:
    """ValueTransferService backed by the account_balances table."""

    def __init__(self, session: AsyncSession) -> None:
        self._balances = BalanceRepository(session)

    async def settle(self, moves: Sequence[Move]) -> None:
        """Apply every move or none of them.

        Raises:
            TransferError: If a move is malformed or a balance would overflow.
            InsufficientFundsError: If a sender cannot cover its outgoing total.
        """
        if not moves:
            return

        outgoing: dict[str, int] = defaultdict(int)
        net: dict[str, int] = defaultdict(int)
        for move in moves:
            if move.amount <= 0:
                raise TransferError(f"Transfer amount must be positive, got {move.amount}")
            if move.sender == move.recipient:
                raise TransferError(f"Sender and recipient are both {move.sender}")
            outgoing[move.sender] += move.amount
            net[move.sender] -= move.amount
            net[move.recipient] += move.amount

        # Lock in a fixed order so two settlements can't deadlock each other.
        accounts = {p: await self._balances.get_for_update(p) for p in sorted(net)}

        current = {p: (a.balance if a is not None else 0) for p, a in accounts.items()}
        for principal, required in outgoing.items():
            if current[principal] + net[principal] < 0:
                raise InsufficientFundsError(principal, required, current[principal])
        for principal, delta in net.items():
            if current[principal] + delta > rules.MAX_STORED_INT:
                raise TransferError(f"Balance of {principal} would exceed the 64-bit limit")

        for principal, delta in net.items():
            account = accounts[principal] or self._balances.open_account(principal)
            account.balance += delta
        await self._balances.flush()

        for move in moves:
            logger.info(
                "transfer.settled",
                amount=move.amount,
                sender=move.sender,
                recipient=move.recipient,
            )

    async def credit(self, principal: str, amount: int) -> int:
        """Credit energy from outside the ledger (funding a principal).

        Returns the principal's new balance.
        """
        if amount <= 0:
            raise TransferError(f"Credit amount must be positive, got {amount}")
        account = await self._balances.get_for_update(principal)
        current = account.balance if account is not None else 0
        if current + amount > rules.MAX_STORED_INT:
            raise TransferError(f"Balance of {principal} would exceed the 64-bit limit")
        if account is None:
            account = self._balances.open_account(principal)
        account.balance += amount
        await self._balances.flush()
        logger.info("transfer.credited", principal=principal, amount=amount, balance=account.balance)
        return account.balance

    async def balance_of(self, principal: str) -> int:
        return await self._balances.get_balance(principal)
