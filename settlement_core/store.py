"""Store protocols for signal and subscription persistence.

Any storage backend (PostgreSQL, in-memory, etc.) can implement these
protocols to be used by the settlement engine and the dispatcher.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from settlement_core.models import Signal, SignalStatus, Subscription


@runtime_checkable
class SignalStore(Protocol):
    """Protocol that signal storage backends must implement."""

    async def add(self, signal: Signal) -> None:
        """Persist a new signal."""
        ...

    async def get(self, signal_id: str) -> Signal | None:
        """Get a single signal by its ID."""
        ...

    async def update_metrics(
        self,
        signal_id: str,
        current_price: float,
        unrealized_pnl_pct: float,
        unrealized_pnl_usd: float,
        max_drawdown_pct: float,
        updated_at: datetime,
    ) -> None:
        """Update live metrics of an OPEN signal (no-op for terminal ones)."""
        ...

    async def transition(self, signal: Signal) -> Signal:
        """Persist a terminal ``signal`` only if the stored row is still OPEN.

        Raises:
            StateConflictError: the stored signal already left OPEN
            NotFoundError: no such signal
        """
        ...

    async def set_parent(self, signal_id: str, parent_signal_id: str) -> None:
        """Link a signal to the earlier signal it closed."""
        ...

    async def list_open(self) -> list[Signal]:
        """All OPEN signals, oldest first."""
        ...

    async def query(
        self,
        provider: str | None = None,
        token: str | None = None,
        status: SignalStatus | None = None,
        limit: int = 50,
    ) -> list[Signal]:
        """Signals matching the filters, newest first."""
        ...


@runtime_checkable
class SubscriptionStore(Protocol):
    """Protocol that subscription storage backends must implement."""

    async def add(self, subscription: Subscription) -> None:
        ...

    async def get(self, subscription_id: str) -> Subscription | None:
        ...

    async def delete(self, subscription_id: str) -> bool:
        ...

    async def list_all(self, url: str | None = None) -> list[Subscription]:
        ...

    async def list_active(self) -> list[Subscription]:
        ...

    async def record_delivery(
        self,
        subscription_id: str,
        success: bool,
        at: datetime,
    ) -> Subscription | None:
        """Atomically update delivery counters.

        Success resets the failure count; failure increments it and
        deactivates the subscription once it reaches ``max_failures``.
        """
        ...
