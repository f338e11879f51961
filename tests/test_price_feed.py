import asyncio
import json
import unittest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from epoch_sniper.data.price_feed import FeedState, PriceFeed


class FakeConnection:
    """Stands in for a websockets client connection."""

    def __init__(self, messages=(), hold_open=True):
        self.messages = list(messages)
        self.hold_open = hold_open
        self.sent = []
        self.closed = asyncio.Event()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed.set()
        return False

    async def send(self, message):
        self.sent.append(message)

    async def close(self):
        self.closed.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.hold_open:
            await self.closed.wait()

    def subscriptions(self):
        return [json.loads(m) for m in self.sent if m != "PING"]


class FakeConnector:
    def __init__(self, *connections):
        self.connections = list(connections)
        self.calls = 0

    def __call__(self, url, **kwargs):
        conn = self.connections[min(self.calls, len(self.connections) - 1)]
        self.calls += 1
        return conn


def price_change(asset_id, best_ask):
    return json.dumps({
        "event_type": "price_change",
        "price_changes": [{"asset_id": asset_id, "best_ask": best_ask}]
    })


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


class TestMessageParsing(unittest.TestCase):
    def setUp(self):
        self.feed = PriceFeed(clock=lambda: 123.0)
        self.feed._token_ids = ["a", "b"]
        self.feed._token_set = frozenset(["a", "b"])

    def drain(self):
        quotes = []
        while not self.feed.quotes.empty():
            quotes.append(self.feed.quotes.get_nowait())
        return quotes

    def test_price_change_for_subscribed_token(self):
        self.feed._handle_message(price_change("a", "0.071"))
        quotes = self.drain()

        self.assertEqual(len(quotes), 1)
        self.assertEqual(quotes[0].token_id, "a")
        self.assertEqual(quotes[0].best_ask, 0.071)
        self.assertEqual(quotes[0].received_at, 123.0)

    def test_multiple_changes_in_one_event(self):
        self.feed._handle_message(json.dumps([{
            "event_type": "price_change",
            "price_changes": [
                {"asset_id": "a", "best_ask": "0.40"},
                {"asset_id": "zzz", "best_ask": "0.10"},
                {"asset_id": "b", "best_ask": "0.61"}
            ]
        }]))
        self.assertEqual([q.token_id for q in self.drain()], ["a", "b"])

    def test_ignored_messages(self):
        for message in (
            "PONG",
            "PING",
            "   ",
            "not json",
            json.dumps({"event_type": "book", "asset_id": "a"}),
            json.dumps({"event_type": "price_change"}),
            json.dumps({"event_type": "price_change", "price_changes": [{"asset_id": "a"}]}),
            json.dumps({"event_type": "price_change", "price_changes": [{"asset_id": "a", "best_ask": "abc"}]}),
            json.dumps({"event_type": "price_change", "price_changes": [{"asset_id": "a", "best_ask": "1.7"}]}),
            price_change("other", "0.07"),
            price_change(["a"], "0.07"),
            price_change({"id": "a"}, "0.07"),
        ):
            self.feed._handle_message(message)

        self.assertEqual(self.drain(), [])

    def test_overflow_drops_oldest(self):
        feed = PriceFeed(queue_size=2)
        feed._token_set = frozenset(["a"])
        for ask in ("0.1", "0.2", "0.3"):
            feed._handle_message(price_change("a", ask))

        self.assertEqual(feed.quotes_dropped, 1)
        self.assertEqual(feed.quotes.get_nowait().best_ask, 0.2)
        self.assertEqual(feed.quotes.get_nowait().best_ask, 0.3)


class TestConnectionLifecycle(unittest.IsolatedAsyncioTestCase):
    async def test_subscribes_on_connect_and_publishes(self):
        conn = FakeConnection([price_change("a", "0.07")])
        feed = PriceFeed(connect=FakeConnector(conn), reconnect_delay=0.01)
        await feed.subscribe(["a", "b"])

        task = asyncio.create_task(feed.run())
        quote = await asyncio.wait_for(feed.quotes.get(), 1.0)

        self.assertEqual(quote.token_id, "a")
        self.assertEqual(feed.state, FeedState.SUBSCRIBED)
        self.assertEqual(conn.subscriptions(), [
            {"type": "MARKET", "assets_ids": ["a", "b"], "event_type": "book"}
        ])

        feed.stop()
        await asyncio.wait_for(task, 1.0)
        self.assertEqual(feed.state, FeedState.DISCONNECTED)

    async def test_malformed_change_keeps_connection(self):
        conn = FakeConnection([price_change(["a"], "0.07"), price_change("a", "0.08")])
        connector = FakeConnector(conn)
        feed = PriceFeed(connect=connector, reconnect_delay=0.01)
        await feed.subscribe(["a"])

        task = asyncio.create_task(feed.run())
        quote = await asyncio.wait_for(feed.quotes.get(), 1.0)

        self.assertEqual(quote.best_ask, 0.08)
        self.assertEqual(connector.calls, 1)
        self.assertEqual(feed.reconnect_count, 0)

        feed.stop()
        await asyncio.wait_for(task, 1.0)

    async def test_resubscribe_reuses_open_connection(self):
        conn = FakeConnection()
        connector = FakeConnector(conn)
        feed = PriceFeed(connect=connector, reconnect_delay=0.01)
        await feed.subscribe(["a", "b"])

        task = asyncio.create_task(feed.run())
        await wait_for(lambda: len(conn.subscriptions()) == 1)

        await feed.subscribe(["c", "d"])

        self.assertEqual(connector.calls, 1)
        self.assertEqual(conn.subscriptions()[-1]["assets_ids"], ["c", "d"])

        feed.stop()
        await asyncio.wait_for(task, 1.0)

    async def test_reconnects_with_same_tokens(self):
        dropped = FakeConnection([price_change("a", "0.5")], hold_open=False)
        healthy = FakeConnection()
        connector = FakeConnector(dropped, healthy)
        feed = PriceFeed(connect=connector, reconnect_delay=0.05)
        await feed.subscribe(["a", "b"])

        task = asyncio.create_task(feed.run())
        await asyncio.wait_for(
            wait_for(lambda: len(healthy.subscriptions()) == 1),
            0.5
        )

        self.assertEqual(connector.calls, 2)
        self.assertEqual(feed.reconnect_count, 1)
        self.assertEqual(healthy.subscriptions()[0]["assets_ids"], ["a", "b"])

        feed.stop()
        await asyncio.wait_for(task, 1.0)

    async def test_connect_errors_retry_forever(self):
        attempts = []
        healthy = FakeConnection()

        def flaky(url, **kwargs):
            attempts.append(url)
            if len(attempts) < 4:
                raise OSError("connection refused")
            return healthy

        feed = PriceFeed(connect=flaky, reconnect_delay=0.001)
        await feed.subscribe(["a"])

        task = asyncio.create_task(feed.run())
        await wait_for(lambda: len(healthy.subscriptions()) == 1)

        self.assertEqual(len(attempts), 4)
        self.assertEqual(feed.reconnect_count, 3)

        feed.stop()
        await asyncio.wait_for(task, 1.0)

    async def test_subscribe_before_connect_is_deferred(self):
        feed = PriceFeed()
        await feed.subscribe(["x", "y"])

        self.assertEqual(feed.state, FeedState.DISCONNECTED)
        self.assertEqual(feed.token_ids, ["x", "y"])
        self.assertEqual(feed.subscriptions_sent, 0)


if __name__ == "__main__":
    unittest.main()
