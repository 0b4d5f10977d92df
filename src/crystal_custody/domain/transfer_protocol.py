"""Value Transfer Protocol.

Defines the interface the engine uses to move energy between principals.
This is a Protocol (structural subtyping) so concrete transfer services don't
need to inherit from a base class — they just need to match the shape.

The domain layer has ZERO imports from SQLAlchemy or any ledger backend.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Move:
    """One leg of a settlement.

    Attributes:
        amount: Units to move; always positive.
        sender: Principal debited.
        recipient: Principal credited.
    """

    amount: int
    sender: str
    recipient: str


@runtime_checkable
class ValueTransferService(Protocol):
    """Protocol that all transfer backends must satisfy.

    Concrete implementations:
        - services/transfer_service.py (account_balances table)
    """

    async def settle(self, moves: Sequence[Move]) -> None:
        """Apply every move or none of them.

        Raises:
            TransferError: If any move cannot be applied. No balance changes.
        """
