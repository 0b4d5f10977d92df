"""Protocol constants and pure numeric rules.

Everything here is integer arithmetic with no I/O, so the conservation
properties can be tested in isolation from the database.
"""

from __future__ import annotations

from crystal_custody.domain.exceptions import (
    InvalidQuantityError,
    UnevenDivisionError,
)

# Ticks (block heights) a fresh crystal stays stable before it decays.
STABILITY_PERIOD = 1008
# Upper bound of a single extend_stability call.
MAX_STABILITY_EXTENSION = 1440
# Minimum age before a pending chrono extraction may complete.
CHRONO_EXTRACTION_DELAY = 24

MIN_PHASES = 1
MAX_PHASES = 5
MIN_FRAGMENTS = 2
MAX_FRAGMENTS = 5

RATIO_SCALE = 100

# Largest value a BIGINT column holds; amounts, tags and balances stay within it.
MAX_STORED_INT = 2**63 - 1

MAX_TIMELOCK_DURATION = 4320
MIN_MULTISIG_SIGNERS = 2
MAX_MULTISIG_SIGNERS = 10
MAX_RATE_LIMIT_OPERATIONS = 100
MAX_RATE_LIMIT_WINDOW = 1440
MAX_TAMPER_SENSITIVITY = 10
MAX_ZK_PUBLIC_INPUTS = 16
MAX_METADATA_KEY_LENGTH = 32
MAX_METADATA_VALUE_LENGTH = 256


def require_range(name: str, value: int, low: int, high: int) -> int:
    """Return ``value`` if ``low <= value <= high``, else raise InvalidQuantityError."""
    if not low <= value <= high:
        raise InvalidQuantityError(name, value, low, high)
    return value


def divide_exactly(amount: int, parts: int) -> int:
    """Return ``amount // parts``, rejecting any split that would lose value."""
    per_part = amount // parts
    if per_part * parts != amount:
        raise UnevenDivisionError(amount, parts)
    return per_part


def split_by_ratio(amount: int, ratio: int) -> tuple[int, int]:
    """Split ``amount`` into (originator_share, beneficiary_share).

    The originator share is floored; the beneficiary takes the remainder so
    the two always sum to ``amount`` exactly.
    """
    require_range("ratio", ratio, 0, RATIO_SCALE)
    originator_share = amount * ratio // RATIO_SCALE
    return originator_share, amount - originator_share


def initial_deadline(genesis_time: int) -> int:
    return genesis_time + STABILITY_PERIOD


def is_expired(decay_deadline: int, now: int) -> bool:
    """A crystal is expired strictly after its deadline; the deadline tick itself is still fresh."""
    return now > decay_deadline
