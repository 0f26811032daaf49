"""Yahoo Finance chart client for traditional assets."""

from dataclasses import dataclass

from settlement.clients.http import JsonHttpClient


@dataclass
class YahooQuote:
    ticker: str
    price: float
    change_24h: float = 0.0


class YahooFinanceClient(JsonHttpClient):
    """Unofficial Yahoo Finance API client (chart + ticker search)."""

    SOURCE = "yahoo"
    BASE_URL = "https://query1.finance.yahoo.com"
    SEARCH_URL = "https://query2.finance.yahoo.com"
    HEADERS = {
        "Accept": "application/json",
        "User-Agent": "Mozilla/5.0 (compatible; SignalSettlement/1.0)",
    }

    def __init__(self, *args, search_url: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.search_url = (search_url or self.SEARCH_URL).rstrip("/")

    async def get_quote(self, ticker: str) -> YahooQuote | None:
        """Latest regular-market price and change vs previous close."""
        data = await self._request(
            "GET", f"/v8/finance/chart/{ticker}", {"interval": "1d", "range": "1d"}
        )
        results = ((data or {}).get("chart") or {}).get("result") or []
        if not results:
            return None
        meta = results[0].get("meta") or {}
        price = meta.get("regularMarketPrice")
        if price is None or float(price) <= 0:
            return None
        price = float(price)
        previous = meta.get("chartPreviousClose") or meta.get("previousClose")
        change = 0.0
        if previous:
            change = (price - float(previous)) / float(previous) * 100
        return YahooQuote(ticker=ticker, price=price, change_24h=change)

    async def search_ticker(self, query: str) -> str | None:
        """First ticker Yahoo suggests for ``query``."""
        data = await self._request(
            "GET",
            f"{self.search_url}/v1/finance/search",
            {"q": query, "quotesCount": 1, "newsCount": 0},
        )
        for quote in (data or {}).get("quotes") or []:
            if quote.get("symbol"):
                return quote["symbol"]
        return None
