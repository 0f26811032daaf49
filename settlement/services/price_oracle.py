"""Price oracle with per-asset-class source chains.

Routing:
- crypto (symbols and 0x token addresses): DexScreener, then CoinGecko
- stocks, forex, metals, commodities, indices: Yahoo Finance

Every lookup goes through the price cache. Concurrent lookups of the same
key share one upstream fetch. When every source fails, the last quote
still inside the stale window is served; after that the answer is None.
Lookups never raise.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from settlement.clients import CoinGeckoClient, DexScreenerClient, YahooFinanceClient
from settlement.storage.price_cache import PriceCache
from settlement_core.assets import (
    COINGECKO_IDS,
    NATIVE_SYMBOL,
    YAHOO_TICKERS,
    classify,
    is_address,
    normalize_key,
)
from settlement_core.errors import ExternalServiceError
from settlement_core.models import AssetClass, PriceQuote

logger = logging.getLogger(__name__)

PriceSource = Callable[[str, AssetClass], Awaitable[PriceQuote | None]]


class PriceOracle:
    """Resolve the current USD price of any tracked asset."""

    def __init__(
        self,
        cache: PriceCache | None = None,
        dexscreener: DexScreenerClient | None = None,
        coingecko: CoinGeckoClient | None = None,
        yahoo: YahooFinanceClient | None = None,
        ttl: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache or PriceCache()
        self.dexscreener = dexscreener or DexScreenerClient()
        self.coingecko = coingecko or CoinGeckoClient()
        self.yahoo = yahoo or YahooFinanceClient()
        self.ttl = ttl
        self._clock = clock

        # In-flight fetches by key (request coalescing)
        self._inflight: dict[str, asyncio.Task] = {}

        # Identifiers resolved by upstream search (None = known unresolvable)
        self._coingecko_ids: dict[str, str | None] = {}
        self._yahoo_tickers: dict[str, str | None] = {}

        # Metrics
        self.fetch_count = 0
        self.stale_served = 0

    @staticmethod
    def classify(symbol: str) -> AssetClass:
        return classify(symbol)

    async def close(self) -> None:
        await asyncio.gather(
            self.dexscreener.close(),
            self.coingecko.close(),
            self.yahoo.close(),
        )

    # =========================================================================
    # Public lookups
    # =========================================================================

    async def get_quote(self, symbol: str) -> PriceQuote | None:
        """Latest quote for a symbol or token address, or None."""
        key = normalize_key(symbol or "")
        if not key:
            return None

        cached = await self.cache.get(key, self._clock())
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        # A cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    async def get_price(self, symbol: str) -> float | None:
        quote = await self.get_quote(symbol)
        return quote.price if quote is not None else None

    async def get_prices(self, symbols: list[str]) -> dict[str, float]:
        """Prices for many symbols, fetched concurrently.

        Returns:
            Dict mapping normalized key to price; keys without a price are
            omitted
        """
        keys = list(dict.fromkeys(normalize_key(s) for s in symbols if s and s.strip()))
        if not keys:
            return {}

        results = await asyncio.gather(
            *(self.get_quote(key) for key in keys), return_exceptions=True
        )

        prices: dict[str, float] = {}
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.warning(f"Price lookup failed for {key}: {result}")
                continue
            if result is not None:
                prices[key] = result.price
        return prices

    async def get_native_price(self) -> float | None:
        """USD price of the chain's native asset."""
        return await self.get_price(NATIVE_SYMBOL)

    # =========================================================================
    # Fetching
    # =========================================================================

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _refresh(self, key: str) -> PriceQuote | None:
        asset_class = classify(key)
        quote = None
        try:
            quote = await self._fetch(key, asset_class)
        except Exception as e:
            logger.warning(f"Unexpected error fetching price for {key}: {e}")

        if quote is not None:
            await self.cache.set(quote, self._clock())
            return quote

        stale = await self.cache.get_stale(key, self._clock())
        if stale is not None:
            self.stale_served += 1
            logger.info(
                f"All sources failed for {key}, serving stale quote "
                f"({stale.age(self._clock()):.0f}s old)"
            )
            return stale

        logger.info(f"No price available for {key}")
        return None

    def _sources(self, asset_class: AssetClass) -> list[tuple[str, PriceSource]]:
        if asset_class.is_traditional:
            return [("yahoo", self._from_yahoo)]
        return [
            ("dexscreener", self._from_dexscreener),
            ("coingecko", self._from_coingecko),
        ]

    async def _fetch(self, key: str, asset_class: AssetClass) -> PriceQuote | None:
        """Try each source of the asset class's chain in order."""
        self.fetch_count += 1
        for name, source in self._sources(asset_class):
            try:
                quote = await source(key, asset_class)
            except ExternalServiceError as e:
                logger.warning(f"{name} failed for {key}: {e.message}")
                continue
            if quote is not None:
                return quote
            logger.debug(f"{name} has no price for {key}")
        return None

    def _quote(
        self,
        key: str,
        price: float,
        change_24h: float,
        source: str,
        asset_class: AssetClass,
    ) -> PriceQuote:
        return PriceQuote(
            key=key,
            price=price,
            change_24h=change_24h,
            source=source,
            asset_class=asset_class,
            fetched_at=self._clock(),
            ttl=self.ttl,
        )

    async def _from_dexscreener(self, key: str, asset_class: AssetClass) -> PriceQuote | None:
        pair = await self.dexscreener.get_price(key, by_address=is_address(key))
        if pair is None:
            return None
        return self._quote(key, pair.price_usd, pair.change_24h, "dexscreener", asset_class)

    async def _from_coingecko(self, key: str, asset_class: AssetClass) -> PriceQuote | None:
        if is_address(key):
            result = await self.coingecko.token_price(key)
            if result is None:
                return None
            price, change = result
            return self._quote(key, price, change, "coingecko", asset_class)

        coin_id = COINGECKO_IDS.get(key)
        if coin_id is None:
            coin_id = await self._resolve_coingecko_id(key)
        if coin_id is None:
            return None

        prices = await self.coingecko.simple_price([coin_id])
        if coin_id not in prices:
            return None
        price, change = prices[coin_id]
        return self._quote(key, price, change, "coingecko", asset_class)

    async def _from_yahoo(self, key: str, asset_class: AssetClass) -> PriceQuote | None:
        ticker = YAHOO_TICKERS.get(key)
        if ticker is None:
            ticker = await self._resolve_yahoo_ticker(key)
        if ticker is None:
            return None

        quote = await self.yahoo.get_quote(ticker)
        if quote is None:
            return None
        return self._quote(key, quote.price, quote.change_24h, "yahoo", asset_class)

    async def _resolve_coingecko_id(self, symbol: str) -> str | None:
        if symbol not in self._coingecko_ids:
            self._coingecko_ids[symbol] = await self.coingecko.search_coin_id(symbol)
            logger.debug(f"CoinGecko id for {symbol}: {self._coingecko_ids[symbol]}")
        return self._coingecko_ids[symbol]

    async def _resolve_yahoo_ticker(self, symbol: str) -> str | None:
        if symbol not in self._yahoo_tickers:
            self._yahoo_tickers[symbol] = await self.yahoo.search_ticker(symbol)
            logger.debug(f"Yahoo ticker for {symbol}: {self._yahoo_tickers[symbol]}")
        return self._yahoo_tickers[symbol]
