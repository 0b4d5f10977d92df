#!/usr/bin/env python3
"""Crystal Custody — End-to-End Simulation.

Simulates four scenarios with OriginatorBot, BeneficiaryBot and SupervisorBot
acting on a ledger whose block height is advanced by hand:

    Scenario A: Happy Path
        - Originator spawns 1000 units for the beneficiary
        - Originator finalizes before the deadline -> TRANSMITTED

    Scenario B: Dispute
        - Originator spawns 100 units
        - Beneficiary reports an anomaly -> ANOMALOUS
        - Supervisor balances at 30% -> originator 30, beneficiary 70

    Scenario C: Decay
        - Originator spawns at height 0 (deadline 1008)
        - Reclaim at height 1008 is rejected (NOT_YET_EXPIRED)
        - Reclaim at height 1009 succeeds -> DECAYED

    Scenario D: Split
        - Splitting 100 units into 3 fragments is rejected (UNEVEN_DIVISION)
        - Splitting 99 units into 3 fragments succeeds -> SPLIT + 3 fragments of 33

With --sqlite every scenario runs against a fresh database, so ids start at 1.

Usage:
    # Option A: With Docker (PostgreSQL):
    docker compose up -d
    uv run python simulation.py

    # Option B: Without Docker (SQLite in-memory):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario B
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from crystal_custody.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from crystal_custody.config import get_settings  # noqa: E402
from crystal_custody.domain.context import CallContext  # noqa: E402
from crystal_custody.domain.exceptions import CustodyError  # noqa: E402
from crystal_custody.infrastructure.clock import ManualClock  # noqa: E402
from crystal_custody.infrastructure.database.engine import (  # noqa: E402
    close_db,
    init_db,
    run_unit_of_work,
    use_engine,
)
from crystal_custody.services.custody_service import CustodyService  # noqa: E402
from crystal_custody.services.transfer_service import LedgerTransferService  # noqa: E402


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize a database engine and create tables."""
    if use_sqlite:
        from sqlalchemy.ext.asyncio import create_async_engine
        from sqlalchemy.pool import StaticPool

        from crystal_custody.infrastructure.database.orm_models import Base

        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        use_engine(engine)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        await init_db()


async def shutdown_database() -> None:
    await close_db()


# ---------------------------------------------------------------------------
# Bot Principals
# ---------------------------------------------------------------------------
@dataclass
class Principal:
    """A ledger participant acting at the shared clock's height."""

    name: str
    clock: ManualClock
    icon: str = "⚪"

    def ctx(self) -> CallContext:
        return CallContext(caller=self.name, now=self.clock.now())

    async def act(self, label: str, operation: str, crystal_id: int, *args):
        """Run one custody operation in its own unit of work."""
        ctx = self.ctx()
        record = await run_unit_of_work(
            lambda s: getattr(CustodyService(s), operation)(ctx, crystal_id, *args)
        )
        logger.info(
            f"{self.icon} {self.name.upper()}: {label}",
            crystal_id=record.id,
            state=record.state,
            amount=record.amount,
            height=ctx.now,
        )
        return record

    async def try_act(self, label: str, operation: str, crystal_id: int, *args) -> str | None:
        """Like act(), but report a rejection instead of raising it."""
        try:
            await self.act(label, operation, crystal_id, *args)
        except CustodyError as exc:
            logger.info(f"{self.icon} {self.name.upper()}: {label} rejected", code=exc.code)
            return exc.code
        return None

    async def balance(self) -> int:
        return await run_unit_of_work(lambda s: LedgerTransferService(s).balance_of(self.name))


@dataclass
class OriginatorBot(Principal):
    """Funds crystals from its own balance."""

    name: str = "originator"
    clock: ManualClock = field(default_factory=ManualClock)
    icon: str = "🔵"

    async def fund(self, amount: int) -> None:
        await run_unit_of_work(lambda s: LedgerTransferService(s).credit(self.name, amount))

    async def spawn(self, beneficiary: str, amount: int, tag: int = 5) -> int:
        ctx = self.ctx()
        record = await run_unit_of_work(
            lambda s: CustodyService(s).spawn(ctx, beneficiary, amount, tag)
        )
        logger.info(
            "🔵 ORIGINATOR: Crystal spawned",
            crystal_id=record.id,
            amount=amount,
            decay_deadline=record.decay_deadline,
        )
        return record.id


@dataclass
class BeneficiaryBot(Principal):
    name: str = "beneficiary"
    clock: ManualClock = field(default_factory=ManualClock)
    icon: str = "🟢"


@dataclass
class SupervisorBot(Principal):
    name: str = field(default_factory=lambda: get_settings().supervisor_identity)
    clock: ManualClock = field(default_factory=ManualClock)
    icon: str = "🟣"


def cast(clock: ManualClock) -> tuple[OriginatorBot, BeneficiaryBot, SupervisorBot]:
    return OriginatorBot(clock=clock), BeneficiaryBot(clock=clock), SupervisorBot(clock=clock)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_balances(*principals: Principal) -> None:
    custody = get_settings().custody_account
    custody_balance = await run_unit_of_work(lambda s: LedgerTransferService(s).balance_of(custody))
    print("\n  💰 Balances:")
    for p in principals:
        print(f"    {p.name:<22} {await p.balance():>8}")
    print(f"    {custody:<22} {custody_balance:>8}")


async def print_audit_trail(crystal_id: int) -> None:
    """Print the full audit trail for a crystal."""
    events = await run_unit_of_work(lambda s: CustodyService(s).get_events(crystal_id))
    print(f"\n  📜 Audit Trail (crystal {crystal_id}):")
    for i, evt in enumerate(events, 1):
        old = evt.old_state or "—"
        print(
            f"    {i}. @{evt.block_height} [{evt.event_type}] "
            f"{old} → {evt.new_state} (by {evt.actor})"
        )
    print()


# ===========================================================================
# Scenario A: Happy Path
# ===========================================================================
async def scenario_a_happy_path() -> None:
    banner("SCENARIO A: Happy Path — spawn and finalize")

    clock = ManualClock()
    originator, beneficiary, _ = cast(clock)
    await originator.fund(1000)

    section("Step 1: Originator spawns 1000 units")
    crystal_id = await originator.spawn(beneficiary.name, 1000)

    section("Step 2: Originator finalizes before the deadline")
    clock.advance(100)
    await originator.act("Transmission finalized", "finalize_transmission", crystal_id)

    section("Step 3: A second finalize is rejected")
    await originator.try_act("Second finalize", "finalize_transmission", crystal_id)

    await print_balances(originator, beneficiary)
    await print_audit_trail(crystal_id)


# ===========================================================================
# Scenario B: Dispute
# ===========================================================================
async def scenario_b_dispute() -> None:
    banner("SCENARIO B: Dispute — anomaly balanced 30/70")

    clock = ManualClock()
    originator, beneficiary, supervisor = cast(clock)
    await originator.fund(100)

    section("Step 1: Originator spawns 100 units")
    crystal_id = await originator.spawn(beneficiary.name, 100)

    section("Step 2: Beneficiary reports an anomaly")
    clock.advance(10)
    await beneficiary.act("Anomaly reported", "report_anomaly", crystal_id, "goods never arrived")

    section("Step 3: Supervisor balances at ratio 30")
    clock.advance(10)
    await supervisor.act("Anomaly balanced", "balance_anomaly", crystal_id, 30)

    await print_balances(originator, beneficiary)
    await print_audit_trail(crystal_id)


# ===========================================================================
# Scenario C: Decay
# ===========================================================================
async def scenario_c_decay() -> None:
    banner("SCENARIO C: Decay — reclaim only after the deadline")

    clock = ManualClock()
    originator, beneficiary, _ = cast(clock)
    await originator.fund(500)

    section("Step 1: Originator spawns at height 0")
    crystal_id = await originator.spawn(beneficiary.name, 500)

    section("Step 2: Reclaim at the deadline height (1008)")
    clock.set(1008)
    await originator.try_act("Reclaim", "reclaim_decayed", crystal_id)

    section("Step 3: Reclaim one tick later (1009)")
    clock.set(1009)
    await originator.act("Decayed crystal reclaimed", "reclaim_decayed", crystal_id)

    await print_balances(originator, beneficiary)
    await print_audit_trail(crystal_id)


# ===========================================================================
# Scenario D: Split
# ===========================================================================
async def scenario_d_split() -> None:
    banner("SCENARIO D: Split — exact division only")

    clock = ManualClock()
    originator, beneficiary, _ = cast(clock)
    await originator.fund(199)

    section("Step 1: Split 100 units into 3 fragments")
    uneven_id = await originator.spawn(beneficiary.name, 100)
    await originator.try_act("Split into 3", "split", uneven_id, 3)

    section("Step 2: Split 99 units into 3 fragments")
    even_id = await originator.spawn(beneficiary.name, 99)
    clock.advance(5)
    await originator.act("Crystal split", "split", even_id, 3)

    fragments = await run_unit_of_work(lambda s: CustodyService(s).get_fragments(even_id))
    print("\n  💎 Fragments:")
    for fragment in fragments:
        print(
            f"    #{fragment.id}: {fragment.amount} units, {fragment.state}, "
            f"deadline {fragment.decay_deadline}"
        )

    await print_balances(originator, beneficiary)
    await print_audit_trail(even_id)


SCENARIOS = {
    "A": scenario_a_happy_path,
    "B": scenario_b_dispute,
    "C": scenario_c_decay,
    "D": scenario_d_split,
}


# ===========================================================================
# Main
# ===========================================================================
async def run_scenarios(names: list[str], use_sqlite: bool = False) -> None:
    """Run the named scenarios, each against a fresh database."""
    print("\n" + "💎" * 35)
    print("  CRYSTAL CUSTODY — SIMULATION")
    print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'PostgreSQL'}")
    print("💎" * 35 + "\n")

    for name in names:
        await init_database(use_sqlite=use_sqlite)
        try:
            await SCENARIOS[name]()
        finally:
            await shutdown_database()

    print("\n" + "=" * 70)
    print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Crystal Custody Simulation")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        type=str.upper,
        default=None,
        help="Run a specific scenario (A, B, C or D). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    selected = [args.scenario] if args.scenario else sorted(SCENARIOS)
    asyncio.run(run_scenarios(selected, use_sqlite=args.sqlite))
