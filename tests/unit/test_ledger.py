"""
Unit tests for the resource ledger.

Tests cover:
- Half-up decimal rounding
- Clamped credit and debit
- Economy lookups and formulas
- Invalid input handling
"""

import pytest

from trunk.config import DEFAULT_CONSTANTS, SoilConstants
from trunk.derive.ledger import (
    capacity_gain,
    credit,
    debit,
    harvest_reward,
    planting_cost,
    round_soil,
    season_base_reward,
    uproot_refund,
)
from trunk.errors import LedgerError


class TestRounding:
    """Tests for round_soil."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0.125, 0.13),
            (1.005, 1.01),
            (2.675, 2.68),
            (0.1 + 0.2, 0.3),
            (8.049999, 8.05),
            (10, 10.0),
        ],
    )
    def test_half_up(self, value, expected):
        """Halves round away from zero on the shortest repr."""
        assert round_soil(value) == expected

    def test_places(self):
        """Precision is configurable."""
        assert round_soil(1.23456, places=3) == 1.235


class TestCreditDebit:
    """Tests for clamped arithmetic."""

    def test_credit_adds(self):
        assert credit(8.0, 0.05, 10.0) == 8.05

    def test_credit_capped_at_capacity(self):
        """Credit never exceeds capacity."""
        assert credit(9.98, 0.05, 10.0) == 10.0
        assert credit(10.0, 0.35, 10.0) == 10.0

    def test_debit_subtracts(self):
        assert debit(10.0, 2.0) == 8.0

    def test_debit_floored_at_zero(self):
        """Debit never goes below zero."""
        assert debit(1.0, 2.0) == 0.0

    def test_repeated_small_credits_do_not_drift(self):
        """Rounding after each step keeps values on the cent grid."""
        available = 0.0
        for _ in range(20):
            available = credit(available, 0.05, 10.0)
        assert available == 1.0


class TestEconomy:
    """Tests for the economy formulas."""

    def test_planting_cost_lookup(self):
        assert planting_cost("2w", "fertile") == 2.0
        assert planting_cost("3m", "firm") == 8.0
        assert planting_cost("1y", "barren") == 24.0

    def test_planting_cost_unknown_season(self):
        with pytest.raises(LedgerError) as exc_info:
            planting_cost("5y", "fertile")
        assert exc_info.value.code == "LEDGER_INVALID"

    def test_planting_cost_unknown_environment(self):
        with pytest.raises(LedgerError):
            planting_cost("2w", "swamp")

    def test_season_base_reward(self):
        assert season_base_reward("1y") == 8.84
        with pytest.raises(LedgerError):
            season_base_reward("forever")

    def test_capacity_gain(self):
        """base x environment x result multiplier, rounded."""
        assert capacity_gain(0.26, "fertile", 5) == 0.29
        assert capacity_gain(8.84, "barren", 5) == 21.22
        assert capacity_gain(1.0, "firm", 1) == 0.7

    def test_capacity_gain_invalid_result(self):
        """Result must be an integer 1..5."""
        with pytest.raises(LedgerError):
            capacity_gain(1.0, "firm", 0)
        with pytest.raises(LedgerError):
            capacity_gain(1.0, "firm", 6)

    def test_capacity_gain_invalid_environment(self):
        with pytest.raises(LedgerError):
            capacity_gain(1.0, "lava", 3)

    def test_uproot_refund(self):
        """A quarter of the planting cost comes back."""
        assert uproot_refund(2) == 0.5
        assert uproot_refund(3) == 0.75
        assert uproot_refund(0) == 0.0

    def test_uproot_refund_negative(self):
        with pytest.raises(LedgerError):
            uproot_refund(-1)


class TestHarvestReward:
    """Tests for diminishing harvest rewards."""

    def test_diminishes_with_capacity(self):
        """Rewards shrink as capacity approaches the ceiling."""
        low = harvest_reward("1y", "barren", 5, current_capacity=10)
        high = harvest_reward("1y", "barren", 5, current_capacity=80)
        undiminished = capacity_gain(season_base_reward("1y"), "barren", 5)

        assert 0 < high < low < undiminished

    def test_zero_at_max_capacity(self):
        assert harvest_reward("1y", "barren", 5, current_capacity=DEFAULT_CONSTANTS.max_capacity) == 0.0

    def test_clamped_to_headroom(self):
        """Capacity plus reward never exceeds the ceiling."""
        flat = SoilConstants(diminishing_exponent=0.0)
        reward = harvest_reward("1y", "barren", 5, current_capacity=119.0, constants=flat)
        assert reward == 1.0

    def test_result_scales_reward(self):
        best = harvest_reward("3m", "firm", 5, current_capacity=10)
        worst = harvest_reward("3m", "firm", 1, current_capacity=10)
        assert worst < best
        assert worst > 0
