"""Tests for price caches."""

from unittest.mock import AsyncMock, patch

import orjson
import pytest
import redis.asyncio as redis

from settlement.storage import cache as shared_cache
from settlement.storage import price_cache
from settlement.storage.price_cache import PriceCache, RedisPriceCache
from settlement_core.models import PriceQuote


def quote(key="ETH", price=2000.0, fetched_at=1_000.0, ttl=30.0):
    return PriceQuote(key=key, price=price, source="dexscreener", fetched_at=fetched_at, ttl=ttl)


class TestPriceCache:
    """Tests for the in-process cache."""

    @pytest.mark.asyncio
    async def test_fresh_and_stale_windows(self):
        cache = PriceCache(stale_max_age=300)
        await cache.set(quote())

        assert await cache.get("ETH", now=1_030.0) is not None
        assert await cache.get("ETH", now=1_031.0) is None
        assert await cache.get_stale("ETH", now=1_300.0) is not None
        assert await cache.get_stale("ETH", now=1_301.0) is None

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        cache = PriceCache()
        await cache.set(quote("ETH", 2000.0))
        await cache.set(quote("BTC", 60000.0))
        await cache.delete("ETH")

        assert await cache.get("ETH", now=1_000.0) is None
        assert (await cache.get("BTC", now=1_000.0)).price == 60000.0

    def test_evict_expired(self):
        cache = PriceCache(stale_max_age=300, max_keys=2)
        cache._quotes = {
            "OLD": quote("OLD", fetched_at=0.0),
            "A": quote("A", fetched_at=900.0),
            "B": quote("B", fetched_at=950.0),
            "C": quote("C", fetched_at=990.0),
        }

        removed = cache.evict_expired(now=1_000.0)

        assert removed == 2
        assert set(cache._quotes) == {"B", "C"}

    @pytest.mark.asyncio
    async def test_eviction_on_write_uses_callers_clock(self):
        cache = PriceCache(stale_max_age=300, max_keys=1)
        await cache.set(quote("A", fetched_at=1_000.0), now=1_000.0)
        await cache.set(quote("B", fetched_at=1_001.0), now=1_001.0)

        # Only the size limit applies; neither quote is stale at now=1_001
        assert len(cache) == 1
        assert await cache.get("B", now=1_001.0) is not None


class TestRedisPriceCache:
    """Tests for the Redis-backed cache."""

    @pytest.mark.asyncio
    async def test_set_writes_through(self):
        cache = RedisPriceCache(stale_max_age=300)
        q = quote()

        with patch.object(price_cache.cache, "set_json", new_callable=AsyncMock, return_value=True) as mock_set:
            await cache.set(q)

            mock_set.assert_called_once_with("price:ETH", q.to_dict(), ttl=300)

    @pytest.mark.asyncio
    async def test_get_reads_shared_copy(self):
        cache = RedisPriceCache(stale_max_age=300)
        shared = quote(price=2100.0)

        with patch.object(price_cache.cache, "is_cache_available", return_value=True):
            with patch.object(price_cache.cache, "get_json", new_callable=AsyncMock, return_value=shared.to_dict()) as mock_get:
                result = await cache.get("ETH", now=1_010.0)

                mock_get.assert_called_once_with("price:ETH")
                assert result.price == 2100.0
                assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_get_prefers_memory(self):
        cache = RedisPriceCache()
        with patch.object(price_cache.cache, "set_json", new_callable=AsyncMock, return_value=True):
            await cache.set(quote())

        with patch.object(price_cache.cache, "get_json", new_callable=AsyncMock) as mock_get:
            assert (await cache.get("ETH", now=1_000.0)).price == 2000.0
            mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_shared_copy_is_not_fresh(self):
        cache = RedisPriceCache(stale_max_age=300)
        shared = quote(fetched_at=900.0)

        with patch.object(price_cache.cache, "is_cache_available", return_value=True):
            with patch.object(price_cache.cache, "get_json", new_callable=AsyncMock, return_value=shared.to_dict()):
                assert await cache.get("ETH", now=1_000.0) is None
                assert (await cache.get_stale("ETH", now=1_000.0)).price == 2000.0

    @pytest.mark.asyncio
    async def test_invalid_shared_copy_ignored(self):
        cache = RedisPriceCache()

        with patch.object(price_cache.cache, "is_cache_available", return_value=True):
            with patch.object(price_cache.cache, "get_json", new_callable=AsyncMock, return_value={"price": 1}):
                assert await cache.get("ETH", now=1_000.0) is None

    @pytest.mark.asyncio
    async def test_without_redis_behaves_like_memory(self):
        cache = RedisPriceCache()

        with patch.object(price_cache.cache, "is_cache_available", return_value=False):
            assert await cache.get("ETH") is None
            assert await cache.get_stale("ETH") is None


class TestSharedCacheModule:
    """Tests for the module-level Redis helpers."""

    @pytest.mark.asyncio
    async def test_offline_helpers_are_noops(self):
        with patch.object(shared_cache, "_client", None):
            assert await shared_cache.ping() is False
            assert await shared_cache.get_json("price:ETH") is None
            assert await shared_cache.set_json("price:ETH", {"price": 1}) is False

    @pytest.mark.asyncio
    async def test_ping_and_read_through_client(self):
        client = AsyncMock()
        client.ping.return_value = True
        client.get.return_value = orjson.dumps(quote().to_dict())

        with patch.object(shared_cache, "_client", client):
            assert await shared_cache.ping() is True
            data = await shared_cache.get_json("price:ETH")

        assert PriceQuote.from_dict(data).price == 2000.0
        client.get.assert_awaited_once_with("price:ETH")

    @pytest.mark.asyncio
    async def test_ping_reports_connection_errors(self):
        client = AsyncMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        with patch.object(shared_cache, "_client", client):
            assert await shared_cache.ping() is False

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_discarded(self):
        client = AsyncMock()
        client.get.return_value = b"not json"

        with patch.object(shared_cache, "_client", client):
            assert await shared_cache.get_json("price:ETH") is None
