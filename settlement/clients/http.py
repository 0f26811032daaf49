"""Shared plumbing for the JSON-over-HTTP upstream clients."""

import asyncio
import logging
from typing import Any

import httpx

from settlement_core.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 1200):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


class JsonHttpClient:
    """Lazily created ``httpx.AsyncClient`` bound to one upstream.

    Subclasses set ``SOURCE`` and ``BASE_URL``. Transport and HTTP errors
    surface as :class:`ExternalServiceError`.
    """

    SOURCE = "http"
    BASE_URL = ""
    HEADERS: dict[str, str] = {"Accept": "application/json"}

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.HEADERS,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Make an API request, optionally rate limited."""
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        client = await self._get_client()
        try:
            response = await client.request(method, endpoint, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"{self.SOURCE} returned {e.response.status_code} for {endpoint}",
                details={"source": self.SOURCE, "status": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError(
                f"{self.SOURCE} request failed for {endpoint}: {e}",
                details={"source": self.SOURCE},
            ) from e
