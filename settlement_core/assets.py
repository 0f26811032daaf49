"""Static asset tables: classification, upstream identifiers, aliases.

Lookups are keyed by upper-case symbol, or lower-case contract address for
on-chain tokens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from settlement_core.models.quote import AssetClass

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# Symbol -> CoinGecko coin id
COINGECKO_IDS: dict[str, str] = {
    "ETH": "ethereum",
    "WETH": "weth",
    "BTC": "bitcoin",
    "WBTC": "wrapped-bitcoin",
    "CBBTC": "coinbase-wrapped-btc",
    "SOL": "solana",
    "LINK": "chainlink",
    "ARB": "arbitrum",
    "OP": "optimism",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "POL": "polygon-ecosystem-token",
    "DOGE": "dogecoin",
    "UNI": "uniswap",
    "AAVE": "aave",
    "SNX": "havven",
    "PEPE": "pepe",
    "WIF": "dogwifcoin",
    "BONK": "bonk",
    "DEGEN": "degen-base",
    "AERO": "aerodrome-finance",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
}

# Traditional assets. Symbols absent from YAHOO_TICKERS are resolved by
# ticker search at fetch time.
TRADITIONAL_CLASSES: dict[str, AssetClass] = {
    # stocks
    "AAPL": AssetClass.STOCK,
    "MSFT": AssetClass.STOCK,
    "NVDA": AssetClass.STOCK,
    "TSLA": AssetClass.STOCK,
    "AMZN": AssetClass.STOCK,
    "GOOGL": AssetClass.STOCK,
    "META": AssetClass.STOCK,
    "COIN": AssetClass.STOCK,
    "MSTR": AssetClass.STOCK,
    # forex
    "EURUSD": AssetClass.FOREX,
    "GBPUSD": AssetClass.FOREX,
    "USDJPY": AssetClass.FOREX,
    "AUDUSD": AssetClass.FOREX,
    "USDCHF": AssetClass.FOREX,
    # metals
    "XAU": AssetClass.METAL,
    "GOLD": AssetClass.METAL,
    "XAG": AssetClass.METAL,
    "SILVER": AssetClass.METAL,
    # commodities
    "OIL": AssetClass.COMMODITY,
    "WTI": AssetClass.COMMODITY,
    "BRENT": AssetClass.COMMODITY,
    "NATGAS": AssetClass.COMMODITY,
    # indices
    "SPX": AssetClass.INDEX,
    "NDX": AssetClass.INDEX,
    "DJI": AssetClass.INDEX,
    "VIX": AssetClass.INDEX,
}

YAHOO_TICKERS: dict[str, str] = {
    "EURUSD": "EURUSD=X",
    "GBPUSD": "GBPUSD=X",
    "USDJPY": "JPY=X",
    "AUDUSD": "AUDUSD=X",
    "USDCHF": "CHF=X",
    "XAU": "GC=F",
    "GOLD": "GC=F",
    "XAG": "SI=F",
    "SILVER": "SI=F",
    "OIL": "CL=F",
    "WTI": "CL=F",
    "BRENT": "BZ=F",
    "NATGAS": "NG=F",
    "SPX": "^GSPC",
    "NDX": "^NDX",
    "DJI": "^DJI",
    "VIX": "^VIX",
}


@dataclass(frozen=True)
class QuoteToken:
    """A currency a trader spends to open a position."""

    symbol: str
    decimals: int
    is_stable: bool


# Base chain quote tokens by contract address
QUOTE_TOKENS: dict[str, QuoteToken] = {
    "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913": QuoteToken("USDC", 6, True),
    "0x50c5725949a6f0c72e6c4a641f24049a917db0cb": QuoteToken("DAI", 18, True),
    "0xd9aaec86b65d86f6a7b5b1b0c42ffa531710b6ca": QuoteToken("USDbC", 6, True),
    "0xfde4c96c8593536e31f229ea8f37b2ada2699bb2": QuoteToken("USDT", 6, True),
    "0x4200000000000000000000000000000000000006": QuoteToken("WETH", 18, False),
}

STABLE_SYMBOLS = frozenset({"USDC", "USDBC", "USDT", "DAI", "USDS"})
NATIVE_SYMBOLS = frozenset({"ETH", "WETH"})
NATIVE_SYMBOL = "ETH"

# Wrapped/native equivalents are the same asset for mismatch checks
TOKEN_ALIASES: dict[str, str] = {
    "WETH": "ETH",
    "WBTC": "BTC",
    "CBBTC": "BTC",
    "TBTC": "BTC",
    "WSOL": "SOL",
    "USDBC": "USDC",
    "WMATIC": "MATIC",
    "POL": "MATIC",
}


def is_address(value: str) -> bool:
    return bool(ADDRESS_RE.match(value))


def normalize_key(symbol_or_address: str) -> str:
    """Cache/lookup key: lower-case for addresses, upper-case for symbols."""
    value = symbol_or_address.strip()
    if is_address(value):
        return value.lower()
    return value.upper()


def classify(symbol_or_address: str) -> AssetClass:
    """Asset class by static lookup; unknown symbols are treated as crypto."""
    key = normalize_key(symbol_or_address)
    if is_address(key):
        return AssetClass.CRYPTO
    return TRADITIONAL_CLASSES.get(key, AssetClass.CRYPTO)


def canonical_symbol(symbol: str) -> str:
    upper = symbol.upper()
    return TOKEN_ALIASES.get(upper, upper)


def same_asset(a: str, b: str) -> bool:
    """True when two symbols name the same asset, aliases included."""
    return canonical_symbol(a) == canonical_symbol(b)


def quote_token_for(address: str, symbol: str) -> QuoteToken | None:
    """Identify a quote currency by contract address, then by symbol."""
    known = QUOTE_TOKENS.get(address.lower())
    if known is not None:
        return known
    upper = symbol.upper()
    if upper in STABLE_SYMBOLS:
        return QuoteToken(symbol, 18, True)
    if upper == "WETH":
        return QuoteToken(symbol, 18, False)
    return None


# Plausible USD price ranges; prices outside are rejected at submission
DEFAULT_PRICE_BAND: tuple[float, float] = (1e-12, 10_000_000.0)

PRICE_SANITY_BANDS: dict[str, tuple[float, float]] = {
    "BTC": (1_000.0, 1_000_000.0),
    "ETH": (10.0, 100_000.0),
    "SOL": (0.1, 10_000.0),
    "USDC": (0.5, 2.0),
    "USDT": (0.5, 2.0),
    "DAI": (0.5, 2.0),
    "XAU": (100.0, 20_000.0),
    "GOLD": (100.0, 20_000.0),
    "EURUSD": (0.1, 10.0),
}


def price_band(
    symbol: str,
    overrides: dict[str, tuple[float, float]] | None = None,
) -> tuple[float, float]:
    canonical = canonical_symbol(symbol)
    if overrides:
        for key in (symbol.upper(), canonical):
            if key in overrides:
                return overrides[key]
    return PRICE_SANITY_BANDS.get(canonical, DEFAULT_PRICE_BAND)
