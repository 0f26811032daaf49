"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from settlement_core.models import Signal, SignalAction

PROVIDER = "0x" + "ab" * 20
OTHER_PROVIDER = "0x" + "cd" * 20
T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def tx(n: int) -> str:
    """Deterministic 32-byte tx hash."""
    return "0x" + f"{n:064x}"


def make_signal(
    action: SignalAction = SignalAction.LONG,
    token: str = "ETH",
    entry_price: float = 2000.0,
    collateral_usd: float = 100.0,
    created_at: datetime = T0,
    provider: str = PROVIDER,
    n: int = 1,
    **kwargs,
) -> Signal:
    return Signal(
        provider=provider,
        token=token,
        action=action,
        entry_price=entry_price,
        collateral_usd=collateral_usd,
        tx_id=tx(n),
        created_at=created_at,
        **kwargs,
    )


class Clock:
    """Settable UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return Clock()
