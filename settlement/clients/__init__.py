"""Upstream API clients."""

from settlement.clients.blockscout import BlockscoutClient, TokenTransfer
from settlement.clients.coingecko import CoinGeckoClient
from settlement.clients.dexscreener import DexPair, DexScreenerClient
from settlement.clients.http import JsonHttpClient, RateLimiter
from settlement.clients.yahoo import YahooFinanceClient, YahooQuote

__all__ = [
    "BlockscoutClient",
    "TokenTransfer",
    "CoinGeckoClient",
    "DexPair",
    "DexScreenerClient",
    "JsonHttpClient",
    "RateLimiter",
    "YahooFinanceClient",
    "YahooQuote",
]
