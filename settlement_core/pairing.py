"""FIFO book of open positions for opposite-signal pairing.

Open signals are queued per (provider, token, action) in arrival order.
An incoming SELL/SHORT/BUY looks up the queues of the actions it closes
and takes the oldest entry inside its lookback window.
"""

from __future__ import annotations

import heapq
from collections import OrderedDict
from datetime import datetime
from typing import Iterator

from settlement_core.models import Signal, SignalAction

# New action -> actions whose open positions it closes
PAIRING_TARGETS: dict[SignalAction, tuple[SignalAction, ...]] = {
    SignalAction.SELL: (SignalAction.BUY, SignalAction.LONG),
    SignalAction.SHORT: (SignalAction.LONG,),
    SignalAction.BUY: (SignalAction.SHORT,),
}

BookKey = tuple[str, str, SignalAction]


def book_key(provider: str, token: str, action: SignalAction) -> BookKey:
    return (provider.lower(), token.upper(), action)


class OpenPositionBook:
    """Per-(provider, token, side) queues of open signal IDs.

    Mutations are synchronous, so they are atomic under a single event loop.
    """

    def __init__(self) -> None:
        self._queues: dict[BookKey, OrderedDict[str, datetime]] = {}
        self._keys: dict[str, BookKey] = {}

    def add(self, signal: Signal) -> None:
        if not signal.is_open or signal.id in self._keys:
            return
        key = book_key(signal.provider, signal.token, signal.action)
        queue = self._queues.setdefault(key, OrderedDict())
        queue[signal.id] = signal.created_at
        # Keep FIFO order when loading rows that arrive out of order
        if len(queue) > 1 and next(reversed(queue.values())) < max(queue.values()):
            self._queues[key] = OrderedDict(sorted(queue.items(), key=lambda kv: kv[1]))
        self._keys[signal.id] = key

    def discard(self, signal_id: str) -> None:
        key = self._keys.pop(signal_id, None)
        if key is None:
            return
        queue = self._queues.get(key)
        if queue is not None:
            queue.pop(signal_id, None)
            if not queue:
                del self._queues[key]

    def clear(self) -> None:
        self._queues.clear()
        self._keys.clear()

    def load(self, signals: list[Signal]) -> None:
        """Rebuild the book from stored open signals."""
        self.clear()
        for signal in sorted(signals, key=lambda s: s.created_at):
            self.add(signal)

    def __contains__(self, signal_id: str) -> bool:
        return signal_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def oldest(self, provider: str, token: str, action: SignalAction) -> str | None:
        queue = self._queues.get(book_key(provider, token, action))
        if not queue:
            return None
        return next(iter(queue))

    def candidates(
        self,
        provider: str,
        token: str,
        actions: tuple[SignalAction, ...],
        since: datetime,
        before: datetime | None = None,
    ) -> Iterator[str]:
        """Signal IDs closable by an opposite signal, oldest first."""
        streams = []
        for action in actions:
            queue = self._queues.get(book_key(provider, token, action))
            if queue:
                streams.append([(ts, sid) for sid, ts in queue.items()])
        for opened_at, signal_id in heapq.merge(*streams):
            if opened_at < since:
                continue
            if before is not None and opened_at > before:
                break
            yield signal_id
