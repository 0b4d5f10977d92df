"""Tests for splitting a crystal into fragments."""

from __future__ import annotations

import pytest
from conftest import BENEFICIARY, CUSTODY, ORIGINATOR, ctx

from crystal_custody.domain.enums import CrystalState, EventType
from crystal_custody.domain.exceptions import (
    AlreadyProcessedError,
    InvalidQuantityError,
    PermissionDeniedError,
)


class TestSplit:
    @pytest.mark.asyncio
    async def test_fragments_are_fresh_crystals(self, service, funded) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 99, 8)
        await service.split(ctx(ORIGINATOR, 500), parent.id, 3)

        fragments = await service.get_fragments(parent.id)
        assert [f.id for f in fragments] == [2, 3, 4]
        for fragment in fragments:
            assert fragment.amount == 33
            assert fragment.tag == 8
            assert fragment.originator == ORIGINATOR
            assert fragment.beneficiary == BENEFICIARY
            assert fragment.state == CrystalState.STABILIZING
            assert fragment.genesis_time == 500
            assert fragment.decay_deadline == 1508
            assert fragment.parent_id == parent.id

        assert await funded.balance_of(CUSTODY) == 99

    @pytest.mark.asyncio
    async def test_fragment_is_independently_releasable(self, service, funded) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 100, 8)
        await service.split(ctx(ORIGINATOR, 1), parent.id, 4)

        await service.finalize_transmission(ctx(ORIGINATOR, 2), 2)
        assert await funded.balance_of(BENEFICIARY) == 25
        assert await funded.balance_of(CUSTODY) == 75

    @pytest.mark.asyncio
    async def test_split_events(self, service) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 10, 8)
        await service.split(ctx(ORIGINATOR, 1), parent.id, 2)

        parent_events = await service.get_events(parent.id)
        assert parent_events[-1].event_type == EventType.CRYSTAL_SPLIT
        assert parent_events[-1].metadata_json["fragment_ids"] == [2, 3]

        fragment_events = await service.get_events(2)
        assert [e.event_type for e in fragment_events] == [EventType.FRAGMENT_MATERIALIZED]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [1, 6])
    async def test_fragment_count_bounds(self, service, count) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 60, 8)
        with pytest.raises(InvalidQuantityError):
            await service.split(ctx(ORIGINATOR, 1), parent.id, count)
        assert (await service.get_statistics(1))["total_records"] == 1

    @pytest.mark.asyncio
    async def test_only_originator_splits(self, service) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 60, 8)
        with pytest.raises(PermissionDeniedError):
            await service.split(ctx(BENEFICIARY, 1), parent.id, 2)

    @pytest.mark.asyncio
    async def test_split_record_is_terminal(self, service) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 60, 8)
        await service.split(ctx(ORIGINATOR, 1), parent.id, 2)
        with pytest.raises(AlreadyProcessedError):
            await service.split(ctx(ORIGINATOR, 2), parent.id, 2)

    @pytest.mark.asyncio
    async def test_drained_crystal_cannot_split(self, service) -> None:
        parent = await service.spawn(ctx(ORIGINATOR, 0), BENEFICIARY, 90, 8)
        await service.partial_extraction(ctx(ORIGINATOR, 1), parent.id, 90)

        with pytest.raises(InvalidQuantityError):
            await service.split(ctx(ORIGINATOR, 2), parent.id, 3)

        record = await service.get_record(parent.id)
        assert record.state == CrystalState.STABILIZING
        assert await service.get_fragments(parent.id) == []
        assert (await service.get_statistics(2))["total_records"] == 1
