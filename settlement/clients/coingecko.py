"""CoinGecko REST client for aggregated market prices."""

from typing import Any

from settlement.clients.http import JsonHttpClient, RateLimiter

# Free tier allows roughly 30 calls per minute
COINGECKO_CALLS_PER_MINUTE = 30


class CoinGeckoClient(JsonHttpClient):
    """CoinGecko public API client."""

    SOURCE = "coingecko"
    BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("rate_limiter", RateLimiter(COINGECKO_CALLS_PER_MINUTE))
        super().__init__(*args, **kwargs)

    async def simple_price(self, coin_ids: list[str]) -> dict[str, tuple[float, float]]:
        """USD price and 24h change for each coin id.

        Returns:
            Dict mapping coin id to (price, change_24h); ids without a price
            are omitted
        """
        if not coin_ids:
            return {}
        data = await self._request(
            "GET",
            "/simple/price",
            {
                "ids": ",".join(coin_ids),
                "vs_currencies": "usd",
                "include_24hr_change": "true",
            },
        )
        prices: dict[str, tuple[float, float]] = {}
        for coin_id in coin_ids:
            entry: dict[str, Any] = (data or {}).get(coin_id) or {}
            price = entry.get("usd")
            if price is None or float(price) <= 0:
                continue
            prices[coin_id] = (float(price), float(entry.get("usd_24h_change") or 0.0))
        return prices

    async def token_price(
        self, token_address: str, platform: str = "base"
    ) -> tuple[float, float] | None:
        """USD price and 24h change of an on-chain token by contract address."""
        address = token_address.lower()
        data = await self._request(
            "GET",
            f"/simple/token_price/{platform}",
            {
                "contract_addresses": address,
                "vs_currencies": "usd",
                "include_24hr_change": "true",
            },
        )
        entry: dict[str, Any] = (data or {}).get(address) or {}
        price = entry.get("usd")
        if price is None or float(price) <= 0:
            return None
        return float(price), float(entry.get("usd_24h_change") or 0.0)

    async def search_coin_id(self, symbol: str) -> str | None:
        """Resolve a ticker symbol to a coin id (best-ranked exact match)."""
        data = await self._request("GET", "/search", {"query": symbol})
        upper = symbol.upper()
        for coin in (data or {}).get("coins") or []:
            if (coin.get("symbol") or "").upper() == upper and coin.get("id"):
                return coin["id"]
        return None
