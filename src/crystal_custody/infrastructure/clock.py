"""Block-height clocks.

The custody engine measures time in block heights. These adapters produce
heights for the API layer (derived from wall time) and for tests and the
simulation (set by hand).
"""

from __future__ import annotations

import time

from crystal_custody.config import get_settings


class BlockHeightClock:
    """Derives the block height from wall time and a fixed block interval."""

    def __init__(
        self,
        genesis_unix: int | None = None,
        interval_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self._genesis = settings.chain_genesis_unix if genesis_unix is None else genesis_unix
        self._interval = (
            settings.block_interval_seconds if interval_seconds is None else interval_seconds
        )
        if self._interval <= 0:
            raise ValueError("block interval must be positive")

    def now(self) -> int:
        return max(0, (int(time.time()) - self._genesis) // self._interval)


class ManualClock:
    """A clock advanced explicitly; heights never go backwards."""

    def __init__(self, height: int = 0) -> None:
        self._height = height

    def now(self) -> int:
        return self._height

    def advance(self, ticks: int = 1) -> int:
        if ticks < 0:
            raise ValueError("clock cannot move backwards")
        self._height += ticks
        return self._height

    def set(self, height: int) -> None:
        if height < self._height:
            raise ValueError(f"clock cannot move backwards from {self._height} to {height}")
        self._height = height
