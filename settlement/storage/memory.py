"""In-memory signal and subscription stores.

Used for development, single-process deployments and tests. Each store
guards its dict with an ``asyncio.Lock`` so read-modify-write sequences
(compare-and-set transitions, delivery counters) are atomic.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from settlement_core.errors import NotFoundError, StateConflictError
from settlement_core.models import Signal, SignalStatus, Subscription


class MemorySignalStore:
    """Dict-backed :class:`settlement_core.store.SignalStore`."""

    def __init__(self) -> None:
        self._signals: dict[str, Signal] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._signals)

    async def add(self, signal: Signal) -> None:
        async with self._lock:
            if signal.id in self._signals:
                raise StateConflictError(f"Signal {signal.id} already exists")
            self._signals[signal.id] = signal

    async def get(self, signal_id: str) -> Signal | None:
        return self._signals.get(signal_id)

    async def update_metrics(
        self,
        signal_id: str,
        current_price: float,
        unrealized_pnl_pct: float,
        unrealized_pnl_usd: float,
        max_drawdown_pct: float,
        updated_at: datetime,
    ) -> None:
        async with self._lock:
            signal = self._signals.get(signal_id)
            if signal is None or not signal.is_open:
                return
            self._signals[signal_id] = signal.model_copy(
                update={
                    "current_price": current_price,
                    "unrealized_pnl_pct": unrealized_pnl_pct,
                    "unrealized_pnl_usd": unrealized_pnl_usd,
                    "max_drawdown_pct": max_drawdown_pct,
                    "updated_at": updated_at,
                }
            )

    async def transition(self, signal: Signal) -> Signal:
        async with self._lock:
            current = self._signals.get(signal.id)
            if current is None:
                raise NotFoundError(f"Signal {signal.id} not found", field="signal_id")
            if not current.is_open:
                raise StateConflictError(
                    f"Signal {signal.id} is already {current.status.value}"
                )
            self._signals[signal.id] = signal
            return signal

    async def set_parent(self, signal_id: str, parent_signal_id: str) -> None:
        async with self._lock:
            signal = self._signals.get(signal_id)
            if signal is not None:
                self._signals[signal_id] = signal.model_copy(
                    update={"parent_signal_id": parent_signal_id}
                )

    async def list_open(self) -> list[Signal]:
        signals = [s for s in self._signals.values() if s.is_open]
        return sorted(signals, key=lambda s: s.created_at)

    async def query(
        self,
        provider: str | None = None,
        token: str | None = None,
        status: SignalStatus | None = None,
        limit: int = 50,
    ) -> list[Signal]:
        signals = list(self._signals.values())
        if provider:
            signals = [s for s in signals if s.provider == provider.lower()]
        if token:
            signals = [s for s in signals if s.token == token.upper()]
        if status is not None:
            signals = [s for s in signals if s.status is status]
        signals.sort(key=lambda s: s.created_at, reverse=True)
        return signals[:limit]


class MemorySubscriptionStore:
    """Dict-backed :class:`settlement_core.store.SubscriptionStore`."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def add(self, subscription: Subscription) -> None:
        async with self._lock:
            if subscription.id in self._subscriptions:
                raise StateConflictError(f"Subscription {subscription.id} already exists")
            self._subscriptions[subscription.id] = subscription

    async def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    async def delete(self, subscription_id: str) -> bool:
        async with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    async def list_all(self, url: str | None = None) -> list[Subscription]:
        subs = list(self._subscriptions.values())
        if url:
            subs = [s for s in subs if s.url == url]
        return sorted(subs, key=lambda s: s.created_at)

    async def list_active(self) -> list[Subscription]:
        return [s for s in await self.list_all() if s.active]

    async def record_delivery(
        self,
        subscription_id: str,
        success: bool,
        at: datetime,
    ) -> Subscription | None:
        async with self._lock:
            sub = self._subscriptions.get(subscription_id)
            if sub is None:
                return None
            if success:
                changes = {
                    "failure_count": 0,
                    "success_count": sub.success_count + 1,
                    "last_triggered": at,
                }
            else:
                failures = sub.failure_count + 1
                changes = {
                    "failure_count": failures,
                    "last_failure": at,
                    "active": sub.active and failures < sub.max_failures,
                }
            updated = sub.model_copy(update=changes)
            self._subscriptions[subscription_id] = updated
            return updated
