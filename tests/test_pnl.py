"""Tests for PnL math."""

from datetime import timedelta

import pytest

from settlement_core.pnl import (
    directional_change,
    holding_hours,
    realized_pnl,
    unrealized_pnl_pct,
    update_max_drawdown,
)

from tests.conftest import T0


class TestDirectionalChange:
    """Sign conventions for long and short positions."""

    def test_long_gains_when_price_rises(self):
        assert directional_change(True, 100, 110) == pytest.approx(0.10)

    def test_short_gains_when_price_falls(self):
        assert directional_change(False, 100, 90) == pytest.approx(0.10)

    @pytest.mark.parametrize("entry,price", [(100, 120), (2000, 1500), (0.5, 0.51)])
    def test_long_and_short_are_opposite(self, entry, price):
        """Same move, opposite sign; zero move is zero for both."""
        assert directional_change(True, entry, price) == pytest.approx(
            -directional_change(False, entry, price)
        )
        assert directional_change(True, entry, entry) == 0
        assert directional_change(False, entry, entry) == 0

    def test_rejects_non_positive_entry(self):
        with pytest.raises(ValueError):
            directional_change(True, 0, 100)


class TestUnrealizedPnl:

    def test_leveraged_long(self):
        """2000 -> 2200 at 5x is +50%."""
        assert unrealized_pnl_pct(True, 2000, 2200, leverage=5) == pytest.approx(50.0)

    def test_leveraged_short(self):
        """100 -> 90 short at 2x is +20%."""
        assert unrealized_pnl_pct(False, 100, 90, leverage=2) == pytest.approx(20.0)

    def test_losing_long(self):
        assert unrealized_pnl_pct(True, 100, 88) == pytest.approx(-12.0)


class TestRealizedPnl:

    def test_long_without_costs(self):
        """Entry 2000, exit 2200, $100 collateral at 5x -> +50% / +$50."""
        pnl = realized_pnl(True, 2000, 2200, 100, leverage=5)
        assert pnl.pnl_pct == pytest.approx(50.0)
        assert pnl.pnl_usd == pytest.approx(50.0)
        assert pnl.costs_usd == 0

    def test_short_without_costs(self):
        pnl = realized_pnl(False, 100, 90, 200, leverage=2)
        assert pnl.pnl_pct == pytest.approx(20.0)
        assert pnl.pnl_usd == pytest.approx(40.0)

    def test_fees_and_slippage_reduce_pnl(self):
        pnl = realized_pnl(True, 100, 110, 1000, fees_usd=5, slippage_pct=0.5)
        assert pnl.gross_pnl_usd == pytest.approx(100.0)
        assert pnl.costs_usd == pytest.approx(10.0)
        assert pnl.pnl_usd == pytest.approx(90.0)
        assert pnl.pnl_pct == pytest.approx(9.0)

    def test_rejects_non_positive_collateral(self):
        with pytest.raises(ValueError):
            realized_pnl(True, 100, 110, 0)


class TestDrawdown:

    def test_tracks_running_minimum(self):
        dd = 0.0
        for pnl in (5.0, -3.0, 2.0, -8.0, -1.0):
            dd = update_max_drawdown(dd, pnl)
        assert dd == -8.0

    def test_never_positive(self):
        assert update_max_drawdown(0.0, 15.0) == 0.0


class TestHoldingHours:

    def test_rounds_to_tenth(self):
        assert holding_hours(T0, T0 + timedelta(minutes=95)) == 1.6

    def test_never_negative(self):
        assert holding_hours(T0, T0 - timedelta(hours=1)) == 0.0
