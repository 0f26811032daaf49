"""Profit and loss math for leveraged positions.

All percentages are expressed in percent (50.0 == 50%), relative to the
position's collateral.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


def directional_change(is_long: bool, entry_price: float, price: float) -> float:
    """Fractional price move in the position's favour.

    Positive when a long sees the price rise or a short sees it fall.
    """
    if entry_price <= 0:
        raise ValueError("entry_price must be positive")
    if is_long:
        return (price - entry_price) / entry_price
    return (entry_price - price) / entry_price


def unrealized_pnl_pct(
    is_long: bool,
    entry_price: float,
    current_price: float,
    leverage: float = 1.0,
) -> float:
    """Leveraged PnL percentage at ``current_price`` (no costs applied)."""
    return directional_change(is_long, entry_price, current_price) * leverage * 100


@dataclass(frozen=True)
class RealizedPnl:
    """Settlement result for a closed position."""

    gross_pnl_usd: float
    costs_usd: float
    pnl_usd: float
    pnl_pct: float


def realized_pnl(
    is_long: bool,
    entry_price: float,
    exit_price: float,
    collateral_usd: float,
    leverage: float = 1.0,
    fees_usd: float = 0.0,
    slippage_pct: float = 0.0,
) -> RealizedPnl:
    """Net PnL after fees and slippage.

    net = gross - fees - collateral * slippage% / 100
    """
    if collateral_usd <= 0:
        raise ValueError("collateral_usd must be positive")
    gross_pct = unrealized_pnl_pct(is_long, entry_price, exit_price, leverage)
    gross_usd = collateral_usd * gross_pct / 100
    costs = fees_usd + collateral_usd * slippage_pct / 100
    net_usd = gross_usd - costs
    return RealizedPnl(
        gross_pnl_usd=gross_usd,
        costs_usd=costs,
        pnl_usd=net_usd,
        pnl_pct=net_usd / collateral_usd * 100,
    )


def update_max_drawdown(previous_pct: float, pnl_pct: float) -> float:
    """Running minimum of unrealized PnL%, capped at zero."""
    return min(previous_pct, min(0.0, pnl_pct))


def holding_hours(opened_at: datetime, closed_at: datetime) -> float:
    """Holding duration rounded to a tenth of an hour."""
    seconds = (closed_at - opened_at).total_seconds()
    return round(max(seconds, 0.0) / 3600, 1)
