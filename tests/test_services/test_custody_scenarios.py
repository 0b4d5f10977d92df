"""End-to-end scenarios and the conservation property.

Conservation: at every step the sum of all principal balances plus the
custody account is constant, and the custody account holds exactly the sum
of the amounts still recorded on crystals.
"""

from __future__ import annotations

import pytest
from conftest import BENEFICIARY, CUSTODY, ORIGINATOR, STARTING_BALANCE, STRANGER, SUPERVISOR, ctx

from crystal_custody.domain.enums import CrystalState
from crystal_custody.domain.exceptions import NotYetExpiredError, UnevenDivisionError
from crystal_custody.infrastructure.clock import ManualClock
from crystal_custody.infrastructure.database.repositories import CrystalRepository

PRINCIPALS = (ORIGINATOR, BENEFICIARY, STRANGER, SUPERVISOR, CUSTODY, "vault")


async def assert_conserved(session, funded) -> None:
    balances = {p: await funded.balance_of(p) for p in PRINCIPALS}
    assert sum(balances.values()) == 2 * STARTING_BALANCE
    assert balances[CUSTODY] == await CrystalRepository(session).total_held()


class TestScenarioA:
    @pytest.mark.asyncio
    async def test_spawn_then_finalize(self, service, funded) -> None:
        record = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 1000, 5)
        assert record.id == 1
        assert record.state == CrystalState.STABILIZING
        assert record.decay_deadline == record.genesis_time + 1008

        await service.finalize_transmission(ctx(ORIGINATOR, 1000), 1)

        assert await funded.balance_of(BENEFICIARY) == 1000
        assert await funded.balance_of(CUSTODY) == 0


class TestScenarioB:
    @pytest.mark.asyncio
    async def test_dispute_balanced_30_70(self, service, funded) -> None:
        await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 100, 5)
        await service.report_anomaly(ctx(BENEFICIARY, 1), 1)
        record = await service.balance_anomaly(ctx(SUPERVISOR, 2), 1, 30)

        assert record.state == CrystalState.BALANCED
        assert record.amount == 0
        assert await funded.balance_of(ORIGINATOR) == STARTING_BALANCE - 100 + 30
        assert await funded.balance_of(BENEFICIARY) == 70


class TestScenarioC:
    @pytest.mark.asyncio
    async def test_reclaim_only_after_deadline(self, service) -> None:
        await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 100, 5)

        with pytest.raises(NotYetExpiredError):
            await service.reclaim_decayed(ctx(ORIGINATOR, 1008), 1)

        record = await service.reclaim_decayed(ctx(ORIGINATOR, 1009), 1)
        assert record.state == CrystalState.DECAYED


class TestScenarioD:
    @pytest.mark.asyncio
    async def test_split_requires_exact_division(self, service) -> None:
        await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 100, 5)
        with pytest.raises(UnevenDivisionError):
            await service.split(ctx(ORIGINATOR, 1), 1, 3)

        await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 99, 5)
        record = await service.split(ctx(ORIGINATOR, 1), 2, 3)
        assert record.state == CrystalState.SPLIT
        assert record.amount == 0


class TestConservation:
    @pytest.mark.asyncio
    async def test_mixed_workload(self, session, service, funded) -> None:
        clock = ManualClock()

        async def step(operation, caller, *args):
            clock.advance(3)
            await getattr(service, operation)(ctx(caller, clock.now()), *args)
            await assert_conserved(session, funded)

        await step("spawn", ORIGINATOR, BENEFICIARY, 1000, 1)
        await step("spawn", STRANGER, BENEFICIARY, 777, 2)
        await step("spawn", ORIGINATOR, STRANGER, 90, 3)
        await step("partial_extraction", ORIGINATOR, 1, 250)
        await step("report_anomaly", BENEFICIARY, 2)
        await step("balance_anomaly", SUPERVISOR, 2, 33)
        await step("split", ORIGINATOR, 3, 3)
        await step("finalize_transmission", ORIGINATOR, 4)
        await step("freeze", SUPERVISOR, 5)
        await step("emergency_recovery", SUPERVISOR, 5, "vault")
        await step("acknowledge_receipt", BENEFICIARY, 1)
        await step("initiate_chrono_extraction", ORIGINATOR, 1)

        clock.set(200)
        await step("chrono_extraction", ORIGINATOR, 1)
        clock.set(2000)
        await step("reclaim_decayed", SUPERVISOR, 6)

        for crystal_id in range(1, 7):
            record = await service.get_record(crystal_id)
            assert record.state in {s.value for s in CrystalState if s.is_terminal}
            assert record.amount == 0
        assert await funded.balance_of(CUSTODY) == 0
