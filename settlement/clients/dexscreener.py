"""DexScreener REST client for DEX-liquidity prices."""

from dataclasses import dataclass
from typing import Any

from settlement.clients.http import JsonHttpClient


@dataclass
class DexPair:
    """The price side of a single DEX pair."""

    symbol: str
    token_address: str
    price_usd: float
    liquidity_usd: float
    change_24h: float = 0.0
    chain_id: str = ""


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_pair(item: dict[str, Any]) -> DexPair | None:
    price = _to_float(item.get("priceUsd"))
    if price <= 0:
        return None
    base = item.get("baseToken") or {}
    return DexPair(
        symbol=(base.get("symbol") or "").upper(),
        token_address=(base.get("address") or "").lower(),
        price_usd=price,
        liquidity_usd=_to_float((item.get("liquidity") or {}).get("usd")),
        change_24h=_to_float((item.get("priceChange") or {}).get("h24")),
        chain_id=item.get("chainId") or "",
    )


def best_pair(pairs: list[DexPair]) -> DexPair | None:
    """The pair with the highest USD liquidity."""
    if not pairs:
        return None
    return max(pairs, key=lambda p: p.liquidity_usd)


class DexScreenerClient(JsonHttpClient):
    """DexScreener public API client."""

    SOURCE = "dexscreener"
    BASE_URL = "https://api.dexscreener.com"

    async def get_token_pairs(self, token_address: str) -> list[DexPair]:
        """All pairs quoting ``token_address`` as the base token."""
        data = await self._request("GET", f"/latest/dex/tokens/{token_address}")
        address = token_address.lower()
        pairs = [_parse_pair(item) for item in (data or {}).get("pairs") or []]
        return [p for p in pairs if p is not None and p.token_address == address]

    async def search_pairs(self, symbol: str) -> list[DexPair]:
        """Pairs whose base token symbol equals ``symbol``."""
        data = await self._request("GET", "/latest/dex/search", {"q": symbol})
        upper = symbol.upper()
        pairs = [_parse_pair(item) for item in (data or {}).get("pairs") or []]
        return [p for p in pairs if p is not None and p.symbol == upper]

    async def get_price(self, symbol_or_address: str, by_address: bool) -> DexPair | None:
        """Best-liquidity pair for a token address or symbol."""
        if by_address:
            pairs = await self.get_token_pairs(symbol_or_address)
        else:
            pairs = await self.search_pairs(symbol_or_address)
        return best_pair(pairs)
