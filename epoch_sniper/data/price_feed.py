"""
Polymarket WebSocket Price Feed
================================

Streams best-ask updates for the current epoch's outcome tokens from
the CLOB market channel and publishes them as PriceQuote values on an
asyncio.Queue.

The connection heals itself: any disconnect is followed by a fixed
backoff and a reconnect with the last requested token set.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

import structlog
import websockets

logger = structlog.get_logger()

KEEPALIVE_MESSAGES = {"PING", "PONG", ""}


@dataclass(frozen=True)
class PriceQuote:
    """Latest best ask for one outcome token."""
    token_id: str
    best_ask: float
    received_at: float


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class PriceFeed:
    """
    Resilient market-channel subscription.

    The token set is plain data on the feed, so a reconnect always
    resubscribes to whatever the scheduler asked for last. Changing
    the set on a live connection only re-sends the subscription.
    """

    def __init__(
        self,
        wss_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market",
        reconnect_delay: float = 2.0,
        ping_interval: float = 10.0,
        queue_size: int = 1000,
        connect: Optional[Callable] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            wss_url: Polymarket market WebSocket URL
            reconnect_delay: Fixed wait before reconnecting
            ping_interval: Seconds between text PING keep-alives
            queue_size: Max buffered quotes; oldest dropped on overflow
            connect: websockets.connect-compatible factory
            clock: Time source for PriceQuote.received_at
        """
        self.wss_url = wss_url
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval
        self._connect = connect or websockets.connect
        self._clock = clock

        self.quotes: "asyncio.Queue[PriceQuote]" = asyncio.Queue(maxsize=queue_size)

        # State
        self.state = FeedState.DISCONNECTED
        self._running = False
        self._ws = None
        self._token_ids: List[str] = []
        self._token_set = frozenset()

        # Stats
        self.messages_received = 0
        self.quotes_published = 0
        self.quotes_dropped = 0
        self.subscriptions_sent = 0
        self.reconnect_count = 0

    @property
    def token_ids(self) -> List[str]:
        return list(self._token_ids)

    async def run(self):
        """
        Connect and stream until stop() is called.
        Reconnects after every disconnect, without limit.
        """
        self._running = True

        logger.info("price_feed_starting", url=self.wss_url)

        while self._running:
            self.state = FeedState.CONNECTING
            reason = "closed"

            try:
                async with self._connect(
                    self.wss_url,
                    ping_interval=30,
                    ping_timeout=10,
                    close_timeout=5
                ) as ws:
                    self._ws = ws
                    self.state = FeedState.SUBSCRIBED
                    logger.info("price_feed_connected")

                    if self._token_ids:
                        await self._send_subscription(ws, self._token_ids)

                    ping_task = asyncio.create_task(self._ping_loop(ws))

                    try:
                        async for message in ws:
                            if not self._running:
                                break

                            self._handle_message(message)
                    finally:
                        ping_task.cancel()

            except websockets.ConnectionClosed as e:
                reason = str(e)
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.error("price_feed_error", error=reason)
            finally:
                self._ws = None
                self.state = FeedState.DISCONNECTED

            if not self._running:
                break

            self.reconnect_count += 1
            logger.warning(
                "price_feed_disconnected",
                reason=reason,
                reconnect_count=self.reconnect_count,
                retry_in=self.reconnect_delay
            )
            await asyncio.sleep(self.reconnect_delay)

        logger.info("price_feed_stopped")

    async def _ping_loop(self, ws):
        """Keep the market channel alive with text pings."""
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await ws.send("PING")
            except websockets.ConnectionClosed:
                return

    async def subscribe(self, token_ids: Iterable[str]):
        """
        Replace the subscribed token set.

        On a live connection only the subscription message is sent;
        otherwise the set is used as soon as the next connect succeeds.
        """
        self._token_ids = list(token_ids)
        self._token_set = frozenset(self._token_ids)

        ws = self._ws
        if self.state is FeedState.SUBSCRIBED and ws is not None:
            try:
                await self._send_subscription(ws, self._token_ids)
            except websockets.ConnectionClosed as e:
                # The reconnect loop resubscribes with the new set
                logger.warning("price_feed_subscribe_failed", error=str(e))

    async def _send_subscription(self, ws, token_ids: List[str]):
        """Send the market-channel subscription message."""
        subscribe_msg = {
            "type": "MARKET",
            "assets_ids": list(token_ids),
            "event_type": "book"
        }

        await ws.send(json.dumps(subscribe_msg))
        self.subscriptions_sent += 1
        logger.info("price_feed_subscribed", tokens=len(token_ids))

    def _handle_message(self, message):
        """Parse one inbound frame; anything unexpected is dropped."""
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")

        if message.strip() in KEEPALIVE_MESSAGES:
            return

        self.messages_received += 1

        try:
            data = json.loads(message)
        except ValueError:
            logger.debug("price_feed_unparseable", size=len(message))
            return

        events = data if isinstance(data, list) else [data]

        for event in events:
            if not isinstance(event, dict):
                continue
            if event.get("event_type") != "price_change":
                continue

            changes = event.get("price_changes")
            if not isinstance(changes, list):
                continue

            for change in changes:
                quote = self._parse_change(change)
                if quote:
                    self._publish(quote)

    def _parse_change(self, change) -> Optional[PriceQuote]:
        if not isinstance(change, dict):
            return None

        token_id = change.get("asset_id")
        if not isinstance(token_id, str) or token_id not in self._token_set:
            return None

        raw_ask = change.get("best_ask")
        if raw_ask in (None, ""):
            return None

        try:
            best_ask = float(raw_ask)
        except (TypeError, ValueError):
            return None

        if not 0.0 <= best_ask <= 1.0:
            return None

        return PriceQuote(
            token_id=token_id,
            best_ask=best_ask,
            received_at=self._clock()
        )

    def _publish(self, quote: PriceQuote):
        try:
            self.quotes.put_nowait(quote)
        except asyncio.QueueFull:
            self.quotes.get_nowait()
            self.quotes_dropped += 1
            self.quotes.put_nowait(quote)

        self.quotes_published += 1

    def stop(self):
        """Stop the feed gracefully."""
        self._running = False
        if self._ws is not None:
            asyncio.create_task(self._ws.close())

    def get_stats(self) -> dict:
        """Return feed statistics."""
        return {
            "state": self.state.value,
            "subscribed_tokens": len(self._token_ids),
            "messages_received": self.messages_received,
            "quotes_published": self.quotes_published,
            "quotes_dropped": self.quotes_dropped,
            "reconnect_count": self.reconnect_count
        }
