"""Price cache for fast access to latest quotes.

Quotes are keyed by normalized key (upper-case symbol, lower-case token
address). A quote is *fresh* while younger than its TTL and *usable as
stale fallback* while younger than ``stale_max_age``.

Two backends:
- ``PriceCache``: per-process memory only
- ``RedisPriceCache``: memory in front of a shared Redis copy

Data structure in Redis:
- price:{key} -> JSON PriceQuote.to_dict()
"""

from __future__ import annotations

import logging
import time

from settlement.storage import cache
from settlement_core.models import PriceQuote

logger = logging.getLogger(__name__)

# Maximum keys to keep in memory (prevents unbounded growth)
MAX_CACHED_KEYS = 1000
# Cleanup interval (check for stale entries every N writes)
CLEANUP_INTERVAL_WRITES = 200


class PriceCache:
    """In-process quote cache.

    Every write replaces a single key, so concurrent writers never touch
    each other's entries.
    """

    def __init__(self, stale_max_age: float = 300.0, max_keys: int = MAX_CACHED_KEYS):
        self.stale_max_age = stale_max_age
        self.max_keys = max_keys
        self._quotes: dict[str, PriceQuote] = {}
        self._writes = 0

    def __len__(self) -> int:
        return len(self._quotes)

    async def get(self, key: str, now: float | None = None) -> PriceQuote | None:
        """Fresh quote for ``key`` or None."""
        quote = self._quotes.get(key)
        if quote is not None and quote.is_fresh(now):
            return quote
        return None

    async def get_stale(self, key: str, now: float | None = None) -> PriceQuote | None:
        """Last quote for ``key`` if younger than ``stale_max_age``."""
        quote = self._quotes.get(key)
        if quote is not None and quote.age(now) <= self.stale_max_age:
            return quote
        return None

    async def set(self, quote: PriceQuote, now: float | None = None) -> None:
        self._quotes[quote.key] = quote
        self._writes += 1
        if self._writes >= CLEANUP_INTERVAL_WRITES or len(self._quotes) > self.max_keys:
            self.evict_expired(now)
            self._writes = 0

    async def delete(self, key: str) -> None:
        self._quotes.pop(key, None)

    def evict_expired(self, now: float | None = None) -> int:
        """Remove quotes past the stale window, then the oldest over the limit.

        Returns:
            Number of entries removed
        """
        now = now if now is not None else time.time()
        removed = 0

        expired = [k for k, q in self._quotes.items() if q.age(now) > self.stale_max_age]
        for key in expired:
            del self._quotes[key]
            removed += 1

        if len(self._quotes) > self.max_keys:
            by_age = sorted(self._quotes, key=lambda k: self._quotes[k].fetched_at, reverse=True)
            for key in by_age[self.max_keys:]:
                del self._quotes[key]
                removed += 1

        if removed > 0:
            logger.debug(f"Cleaned up {removed} stale price entries")
        return removed


def _price_key(key: str) -> str:
    """Get the Redis key for a quote."""
    return f"{cache.KEY_PREFIX_PRICE}{key}"


class RedisPriceCache(PriceCache):
    """Memory cache backed by a shared Redis copy.

    Redis keeps each quote for the whole stale window so other instances
    can serve it as a fallback. Falls back to memory only when Redis is
    unavailable.
    """

    async def _load(self, key: str) -> PriceQuote | None:
        if not cache.is_cache_available():
            return None
        data = await cache.get_json(_price_key(key))
        if not data:
            return None
        try:
            quote = PriceQuote.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Invalid cached quote for {key}: {e}")
            return None
        current = self._quotes.get(key)
        if current is None or quote.fetched_at > current.fetched_at:
            self._quotes[key] = quote
        return quote

    async def get(self, key: str, now: float | None = None) -> PriceQuote | None:
        quote = await super().get(key, now)
        if quote is not None:
            return quote
        shared = await self._load(key)
        if shared is not None and shared.is_fresh(now):
            return shared
        return None

    async def get_stale(self, key: str, now: float | None = None) -> PriceQuote | None:
        quote = await super().get_stale(key, now)
        if quote is not None:
            return quote
        shared = await self._load(key)
        if shared is not None and shared.age(now) <= self.stale_max_age:
            return shared
        return None

    async def set(self, quote: PriceQuote, now: float | None = None) -> None:
        await super().set(quote, now)
        await cache.set_json(
            _price_key(quote.key),
            quote.to_dict(),
            ttl=max(int(self.stale_max_age), 1),
        )

    async def delete(self, key: str) -> None:
        await super().delete(key)
        await cache.delete(_price_key(key))
