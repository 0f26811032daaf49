"""Automatic risk-management rules for open positions.

Rules are checked in a fixed priority order and the first match wins:

1. stop loss     -> STOPPED
2. take profit   -> CLOSED
3. expiry        -> EXPIRED
4. max drawdown  -> STOPPED
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from settlement_core.models import CloseReason, Signal, SignalStatus
from settlement_core.pnl import unrealized_pnl_pct, update_max_drawdown

DEFAULT_MAX_DRAWDOWN_FLOOR_PCT = -25.0


@dataclass(frozen=True)
class RuleDecision:
    """Outcome of evaluating one open signal at one price."""

    current_price: float
    unrealized_pnl_pct: float
    unrealized_pnl_usd: float
    max_drawdown_pct: float
    status: SignalStatus = SignalStatus.OPEN
    reason: CloseReason | None = None

    @property
    def should_close(self) -> bool:
        return self.status is not SignalStatus.OPEN


def evaluate_rules(
    signal: Signal,
    current_price: float,
    now: datetime,
    max_drawdown_floor_pct: float = DEFAULT_MAX_DRAWDOWN_FLOOR_PCT,
) -> RuleDecision:
    """Compute unrealized metrics and pick the first auto-close rule that fires."""
    pnl_pct = unrealized_pnl_pct(
        signal.is_long, signal.entry_price, current_price, signal.leverage
    )
    pnl_usd = signal.collateral_usd * pnl_pct / 100
    drawdown = update_max_drawdown(signal.max_drawdown_pct, pnl_pct)

    status = SignalStatus.OPEN
    reason: CloseReason | None = None

    if signal.stop_loss_pct and abs(pnl_pct) >= signal.stop_loss_pct:
        status, reason = SignalStatus.STOPPED, CloseReason.STOP_LOSS
    elif signal.take_profit_pct and pnl_pct >= signal.take_profit_pct:
        status, reason = SignalStatus.CLOSED, CloseReason.TAKE_PROFIT
    elif signal.expires_at is not None and now >= signal.expires_at:
        status, reason = SignalStatus.EXPIRED, CloseReason.EXPIRED
    elif drawdown <= max_drawdown_floor_pct:
        status, reason = SignalStatus.STOPPED, CloseReason.MAX_DRAWDOWN

    return RuleDecision(
        current_price=current_price,
        unrealized_pnl_pct=pnl_pct,
        unrealized_pnl_usd=pnl_usd,
        max_drawdown_pct=drawdown,
        status=status,
        reason=reason,
    )
