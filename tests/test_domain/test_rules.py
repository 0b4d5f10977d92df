"""Tests for the numeric custody rules."""

from __future__ import annotations

import pytest

from crystal_custody.domain import rules
from crystal_custody.domain.exceptions import InvalidQuantityError, UnevenDivisionError


class TestSplitByRatio:
    @pytest.mark.parametrize(
        ("amount", "ratio", "expected"),
        [
            (100, 30, (30, 70)),
            (101, 50, (50, 51)),
            (7, 33, (2, 5)),
            (1000, 0, (0, 1000)),
            (1000, 100, (1000, 0)),
        ],
    )
    def test_shares(self, amount: int, ratio: int, expected: tuple[int, int]) -> None:
        assert rules.split_by_ratio(amount, ratio) == expected

    def test_shares_always_sum_to_amount(self) -> None:
        for amount in (1, 3, 99, 12345):
            for ratio in range(0, 101, 7):
                o, b = rules.split_by_ratio(amount, ratio)
                assert o + b == amount
                assert o == amount * ratio // 100

    @pytest.mark.parametrize("ratio", [-1, 101])
    def test_ratio_out_of_range(self, ratio: int) -> None:
        with pytest.raises(InvalidQuantityError):
            rules.split_by_ratio(100, ratio)


class TestDivideExactly:
    def test_exact(self) -> None:
        assert rules.divide_exactly(99, 3) == 33

    def test_uneven(self) -> None:
        with pytest.raises(UnevenDivisionError) as exc_info:
            rules.divide_exactly(100, 3)
        assert exc_info.value.code == "UNEVEN_DIVISION"


class TestRequireRange:
    @pytest.mark.parametrize("value", [1, 720, 1440])
    def test_inside(self, value: int) -> None:
        assert rules.require_range("extension", value, 1, rules.MAX_STABILITY_EXTENSION) == value

    @pytest.mark.parametrize("value", [0, 1441])
    def test_outside(self, value: int) -> None:
        with pytest.raises(InvalidQuantityError, match="extension"):
            rules.require_range("extension", value, 1, rules.MAX_STABILITY_EXTENSION)


class TestDeadlines:
    def test_initial_deadline(self) -> None:
        assert rules.initial_deadline(0) == 1008
        assert rules.initial_deadline(500) == 1508

    def test_deadline_tick_is_still_fresh(self) -> None:
        assert not rules.is_expired(1008, 1008)
        assert rules.is_expired(1008, 1009)
