"""Webhook notification dispatcher.

Publishing puts an event on an in-process queue and returns at once.
Worker tasks take events off the queue, match them against the active
subscriptions and deliver to every match concurrently. Each delivery has
its own timeout and retry budget, so a slow or broken endpoint never
holds up the others.

Delivery outcomes feed subscription health: success resets the failure
count, and a subscription whose failure count reaches ``max_failures`` is
deactivated for good.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

import httpx

from settlement_core.models import SignalEvent, Subscription
from settlement_core.store import SubscriptionStore

logger = logging.getLogger(__name__)

USER_AGENT = "SignalSettlement-Webhook/2.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDispatcher:
    """Fan out signal events to matching webhook subscriptions."""

    def __init__(
        self,
        store: SubscriptionStore,
        client: httpx.AsyncClient | None = None,
        workers: int = 4,
        queue_size: int = 1000,
        default_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            store: Subscription persistence
            client: Shared HTTP client (created on start if omitted)
            workers: Number of concurrent queue consumers
            queue_size: Max pending events before new ones are dropped
            default_timeout: Upper bound (seconds) for a single delivery attempt
            clock: Returns the current UTC time (for testing)
        """
        self.store = store
        self.workers = max(1, workers)
        self.default_timeout = default_timeout
        self._clock = clock
        self._client = client
        self._owns_client = client is None
        self._queue: asyncio.Queue[SignalEvent] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []

        # Metrics
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> dict:
        return {
            "running": self.running,
            "pending": self.pending,
            "delivered": self.delivered,
            "failed": self.failed,
            "dropped": self.dropped,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self.running:
            return
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT, "Content-Type": "application/json"},
                follow_redirects=False,
            )
            self._owns_client = True
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"webhook-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Webhook dispatcher started with {self.workers} workers")

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
        logger.info(
            f"Webhook dispatcher stopped: {self.delivered} delivered, "
            f"{self.failed} failed, {self.dropped} dropped"
        )

    # =========================================================================
    # Publishing
    # =========================================================================

    async def publish(self, event: SignalEvent) -> None:
        """Queue ``event`` for delivery. Never blocks and never raises."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Webhook queue full, dropping {event.type.value} for {event.signal.id}"
            )

    async def _worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Webhook worker {index} failed on {event.signal.id}: {e}")
            finally:
                self._queue.task_done()

    # =========================================================================
    # Delivery
    # =========================================================================

    async def dispatch(self, event: SignalEvent) -> list[bool]:
        """Deliver ``event`` to every matching active subscription.

        Returns:
            Delivery outcome per matched subscription
        """
        subscriptions = await self.store.list_active()
        matched = [s for s in subscriptions if s.matches(event.signal)]
        if not matched:
            return []

        body = event.to_json()
        results = await asyncio.gather(
            *(self._deliver(sub, event, body) for sub in matched),
            return_exceptions=True,
        )

        outcomes = []
        for sub, result in zip(matched, results):
            if isinstance(result, BaseException):
                logger.error(f"Webhook {sub.id} delivery error: {result}")
                outcomes.append(False)
            else:
                outcomes.append(result)
        return outcomes

    async def _deliver(self, sub: Subscription, event: SignalEvent, body: bytes) -> bool:
        success = await self._post_with_retries(sub, event, body)
        if success:
            self.delivered += 1
        else:
            self.failed += 1

        updated = await self.store.record_delivery(sub.id, success, self._clock())
        if updated is not None and not success and not updated.active:
            logger.warning(
                f"Webhook {sub.id} ({sub.url}) deactivated after "
                f"{updated.failure_count} consecutive failures"
            )
        return success

    async def _post_with_retries(
        self, sub: Subscription, event: SignalEvent, body: bytes
    ) -> bool:
        if self._client is None:
            raise RuntimeError("WebhookDispatcher not started")

        timeout = min(sub.timeout_ms / 1000, self.default_timeout)
        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": "application/json",
            "X-Webhook-Event": event.type.value,
            "X-Webhook-Id": sub.id,
        }

        for attempt in range(1, sub.retry_attempts + 1):
            try:
                response = await self._client.post(
                    sub.url, content=body, headers=headers, timeout=timeout
                )
                if response.is_success:
                    return True
                logger.info(
                    f"Webhook {sub.id} attempt {attempt}/{sub.retry_attempts}: "
                    f"HTTP {response.status_code}"
                )
            except httpx.HTTPError as e:
                logger.info(
                    f"Webhook {sub.id} attempt {attempt}/{sub.retry_attempts}: "
                    f"{type(e).__name__}"
                )
            if attempt < sub.retry_attempts and sub.retry_delay_ms > 0:
                await asyncio.sleep(sub.retry_delay_ms / 1000)
        return False
