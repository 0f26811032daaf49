"""Tests for webhook dispatch."""

import asyncio

import httpx
import orjson
import pytest
import pytest_asyncio

from settlement.services.notifier import USER_AGENT, WebhookDispatcher
from settlement.storage.memory import MemorySubscriptionStore
from settlement_core.models import SignalAction, SignalEvent, Subscription

from tests.conftest import T0, make_signal

HEALTHY = "https://healthy.example.com/hook"
BROKEN = "https://broken.example.com/hook"
SLOW = "https://slow.example.com/hook"


class Receiver:
    """Fake webhook endpoints keyed by host."""

    def __init__(self):
        self.received: dict[str, list[httpx.Request]] = {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.received.setdefault(request.url.host, []).append(request)
        if request.url.host.startswith("broken"):
            return httpx.Response(500)
        if request.url.host.startswith("slow"):
            await asyncio.sleep(0.01)
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"ok": True})

    def count(self, url: str) -> int:
        return len(self.received.get(httpx.URL(url).host, []))


def subscription(url: str, **kwargs) -> Subscription:
    kwargs.setdefault("retry_attempts", 1)
    kwargs.setdefault("retry_delay_ms", 0)
    return Subscription(url=url, **kwargs)


class TestWebhookDispatcher:
    """Tests for WebhookDispatcher."""

    @pytest.fixture
    def receiver(self):
        return Receiver()

    @pytest.fixture
    def store(self):
        return MemorySubscriptionStore()

    @pytest_asyncio.fixture
    async def dispatcher(self, store, receiver, clock):
        client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
        dispatcher = WebhookDispatcher(store, client=client, default_timeout=5.0, clock=clock)
        yield dispatcher
        await dispatcher.stop()
        await client.aclose()

    @pytest.fixture
    def event(self):
        return SignalEvent.for_signal(make_signal())

    @pytest.mark.asyncio
    async def test_delivers_payload(self, dispatcher, store, receiver, event):
        sub = subscription(HEALTHY)
        await store.add(sub)

        outcomes = await dispatcher.dispatch(event)

        assert outcomes == [True]
        request = receiver.received["healthy.example.com"][0]
        assert request.headers["X-Webhook-Event"] == "new_signal"
        assert request.headers["X-Webhook-Id"] == sub.id
        assert request.headers["User-Agent"] == USER_AGENT
        body = orjson.loads(request.content)
        assert body["type"] == "new_signal"
        assert body["signal"]["id"] == event.signal.id

        stored = await store.get(sub.id)
        assert stored.success_count == 1
        assert stored.last_triggered == T0

    @pytest.mark.asyncio
    async def test_only_matching_subscriptions(self, dispatcher, store, receiver, event):
        await store.add(subscription(HEALTHY, token_filter="ETH"))
        await store.add(subscription(SLOW, token_filter="BTC"))
        await store.add(subscription(BROKEN, action_filters=[SignalAction.SHORT]))

        assert await dispatcher.dispatch(event) == [True]
        assert receiver.count(SLOW) == 0
        assert receiver.count(BROKEN) == 0

    @pytest.mark.asyncio
    async def test_failing_endpoint_deactivated_after_max_failures(
        self, dispatcher, store, receiver, event
    ):
        broken = subscription(BROKEN, max_failures=3)
        healthy = subscription(HEALTHY)
        await store.add(broken)
        await store.add(healthy)

        for expected_failures in (1, 2):
            await dispatcher.dispatch(event)
            current = await store.get(broken.id)
            assert current.failure_count == expected_failures
            assert current.active

        await dispatcher.dispatch(event)
        current = await store.get(broken.id)
        assert current.failure_count == 3
        assert not current.active
        assert current.last_failure == T0

        # No further attempts once deactivated
        await dispatcher.dispatch(event)
        assert receiver.count(BROKEN) == 3

        healthy_now = await store.get(healthy.id)
        assert healthy_now.active
        assert healthy_now.failure_count == 0
        assert healthy_now.success_count == 4

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, dispatcher, store, event):
        sub = subscription(HEALTHY, failure_count=5)
        await store.add(sub)

        await dispatcher.dispatch(event)

        assert (await store.get(sub.id)).failure_count == 0

    @pytest.mark.asyncio
    async def test_retries_before_failing(self, dispatcher, store, receiver, event):
        sub = subscription(BROKEN, retry_attempts=3)
        await store.add(sub)

        assert await dispatcher.dispatch(event) == [False]
        assert receiver.count(BROKEN) == 3
        assert (await store.get(sub.id)).failure_count == 1

    @pytest.mark.asyncio
    async def test_timed_out_endpoint_does_not_affect_others(
        self, dispatcher, store, receiver, event
    ):
        slow = subscription(SLOW, timeout_ms=100)
        healthy = subscription(HEALTHY)
        await store.add(slow)
        await store.add(healthy)

        outcomes = await dispatcher.dispatch(event)

        assert sorted(outcomes) == [False, True]
        assert receiver.received["slow.example.com"][0].extensions["timeout"]["read"] == 0.1
        assert (await store.get(slow.id)).failure_count == 1
        assert (await store.get(healthy.id)).success_count == 1

    @pytest.mark.asyncio
    async def test_publish_is_fire_and_forget(self, dispatcher, store, receiver, event):
        await store.add(subscription(HEALTHY))
        await dispatcher.start()

        await dispatcher.publish(event)
        await asyncio.wait_for(dispatcher.join(), timeout=2)

        assert receiver.count(HEALTHY) == 1
        assert dispatcher.get_stats()["delivered"] == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, store, event):
        dispatcher = WebhookDispatcher(store, queue_size=1)

        await dispatcher.publish(event)
        await dispatcher.publish(event)

        assert dispatcher.pending == 1
        assert dispatcher.dropped == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store):
        dispatcher = WebhookDispatcher(store, workers=2)

        await dispatcher.start()
        assert dispatcher.running

        await dispatcher.stop()
        assert not dispatcher.running
