"""Explicit call context passed into every custody operation.

The engine never reads ambient state: who is calling and what block height it
is are supplied by the caller, usually the API layer via a Clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class CallContext:
    """Identity and time for one operation.

    Attributes:
        caller: Opaque principal identity of whoever invoked the operation.
        now: Current block height.
    """

    caller: str
    now: int


@runtime_checkable
class Clock(Protocol):
    """Supplies a monotonically non-decreasing block height."""

    def now(self) -> int:
        """Return the current block height."""
