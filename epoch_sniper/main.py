"""
Epoch Sniper - Main Entry Point
================================

Snipes Polymarket 5-minute BTC up/down markets: one buy per epoch
when the best ask hits a target price shortly before expiry.

USAGE:
    python -m epoch_sniper.main

IMPORTANT:
    1. Copy .env.example to .env and configure
    2. Start with DRY_RUN=true for paper trading
    3. Only use real money after validating the strategy
"""

import asyncio
import signal
import sys
import time
from typing import Awaitable, Callable, List, Optional

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from pydantic import ValidationError

from config.settings import Settings, load_settings
from epoch_sniper.data.market_resolver import MarketResolver
from epoch_sniper.data.price_feed import PriceFeed, PriceQuote
from epoch_sniper.execution.clob_service import ClobExecutionService
from epoch_sniper.execution.order_executor import OrderExecutor, OrderResult, Side
from epoch_sniper.strategy.trigger_engine import TriggerEngine
from epoch_sniper.utils.epoch_clock import current_epoch, epoch_end, seconds_until_close
from epoch_sniper.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def _cents(price: Optional[float]) -> str:
    return f"{price * 100:.1f}c" if price is not None else "..."


class SniperBot:
    """
    Epoch scheduler.

    The only component that lets wall-clock time pass: it advances
    epochs, points the feed at each new market and sleeps until the
    entry window. Quotes are consumed by a separate task that runs
    them through the trigger engine and the executor.
    """

    def __init__(
        self,
        resolver: MarketResolver,
        feed: PriceFeed,
        engine: TriggerEngine,
        executor: OrderExecutor,
        service: Optional[ClobExecutionService] = None,
        poll_interval: float = 2.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.resolver = resolver
        self.feed = feed
        self.engine = engine
        self.executor = executor
        self.service = service
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

        # State
        self.running = False
        self.current_epoch: Optional[int] = None
        self.last_result: Optional[OrderResult] = None
        self._tasks: List[asyncio.Task] = []

        # Stats
        self.epochs_seen = 0
        self.epochs_skipped = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SniperBot":
        """Wire every component from configuration."""
        service = None
        if not settings.dry_run:
            service = ClobExecutionService(
                private_key=settings.polymarket_private_key,
                host=settings.polymarket_host,
                rpc_url=settings.polygon_rpc_url,
                funder_address=settings.funder_address,
                signature_type=settings.signature_type
            )

        return cls(
            resolver=MarketResolver(
                gamma_api_base=settings.gamma_api,
                slug_prefix=settings.market_slug_prefix
            ),
            feed=PriceFeed(
                wss_url=settings.polymarket_ws,
                reconnect_delay=settings.reconnect_delay_seconds
            ),
            engine=TriggerEngine(
                target_prices=settings.target_prices,
                entry_window_seconds=settings.entry_seconds_before_expiry,
                min_window_seconds=settings.min_seconds_before_expiry
            ),
            executor=OrderExecutor(
                service=service,
                trade_size_usd=settings.trade_size_usd,
                dry_run=settings.dry_run,
                fee_rate_bps=settings.order_fee_rate_bps,
                gas_tip_gwei=settings.gas_tip_gwei,
                gas_max_fee_gwei=settings.gas_max_fee_gwei,
                fallback_max_fee_gwei=settings.fallback_max_fee_gwei
            ),
            service=service,
            poll_interval=settings.poll_interval_seconds
        )

    async def run_epoch(self):
        """One scheduler iteration."""
        now = self._clock()
        epoch = current_epoch(now)
        remaining = seconds_until_close(epoch, now)
        until_close = epoch_end(epoch) - now

        if self.engine.has_traded(epoch):
            await self._sleep(until_close + 1)
            return

        if epoch != self.current_epoch:
            market = await self.resolver.resolve(epoch)
            self.current_epoch = epoch
            self.epochs_seen += 1

            if market is None or market.closed:
                self.engine.clear(epoch)
                self.epochs_skipped += 1
                logger.info(
                    "epoch_skipped",
                    epoch=epoch,
                    reason="closed" if market else "no_market",
                    sleep_seconds=round(until_close + 1, 1)
                )
                await self._sleep(until_close + 1)
                return

            self.engine.start_epoch(market)
            logger.info(
                "epoch_started",
                epoch=epoch,
                question=market.question,
                seconds_remaining=remaining
            )

            await self.feed.subscribe(market.token_ids)

        if remaining > self.engine.entry_window:
            wait = remaining - self.engine.entry_window
            logger.info(
                "waiting_for_entry_window",
                seconds_remaining=remaining,
                sleep_seconds=wait
            )
            await self._sleep(wait)
            return

        logger.info(
            "entry_window",
            seconds_remaining=remaining,
            yes_ask=_cents(self.engine.best_ask(Side.YES)),
            no_ask=_cents(self.engine.best_ask(Side.NO))
        )
        await self._sleep(self.poll_interval)

    async def handle_quote(self, quote: PriceQuote) -> Optional[OrderResult]:
        """Evaluate one quote and, if it fires, place the order."""
        decision = self.engine.evaluate(quote, self._clock())
        if decision is None:
            return None

        result = await self.executor.buy(
            decision.token_id,
            decision.price,
            decision.side,
            decision.epoch
        )
        self.engine.record_result(decision, result)
        self.last_result = result

        if result.success:
            logger.info(
                "order_success",
                epoch=decision.epoch,
                order_id=result.order_id,
                side=result.side.value,
                price=_cents(result.price),
                size=result.size
            )
        else:
            logger.error(
                "order_failed",
                epoch=decision.epoch,
                side=result.side.value,
                price=_cents(result.price),
                error=result.error
            )

        return result

    async def consume_quotes(self):
        """Drain the feed's quote queue for as long as the bot runs."""
        while self.running:
            quote = await self.feed.quotes.get()
            try:
                await self.handle_quote(quote)
            except Exception as e:
                logger.error("quote_handling_error", error=str(e), exc_info=True)

    def _print_startup_banner(self):
        prices = ", ".join(f"{p * 100:.0f}c" for p in self.engine.target_prices)
        banner = f"""
==================================================
  BTC 5-MIN EPOCH SNIPER
==================================================
  Mode:         {'DRY RUN (Paper Trading)' if self.executor.dry_run else 'LIVE TRADING'}
  Trade size:   ${self.executor.trade_size_usd}
  Prices:       {prices}
  Entry window: last {self.engine.entry_window}s (min {self.engine.min_window}s)
==================================================
"""
        print(banner)

    async def run(self):
        """Main bot execution loop. Runs until cancelled."""
        self._print_startup_banner()

        if self.service is not None:
            await asyncio.to_thread(self.service.initialize)

        self.running = True
        self._tasks = [
            asyncio.create_task(self.feed.run()),
            asyncio.create_task(self.consume_quotes())
        ]

        while self.running:
            try:
                await self.run_epoch()
            except Exception as e:
                logger.error("epoch_iteration_error", error=str(e), exc_info=True)
                await self._sleep(self.poll_interval)

    async def shutdown(self):
        """Stop the feed and background tasks and release sessions."""
        logger.info("bot_shutting_down")

        self.running = False
        self.feed.stop()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.resolver.close()

        logger.info(
            "bot_stats",
            epochs_seen=self.epochs_seen,
            epochs_skipped=self.epochs_skipped,
            feed=self.feed.get_stats(),
            engine=self.engine.get_stats(),
            executor=self.executor.get_stats()
        )


async def main(settings: Settings):
    """Entry point."""
    bot = SniperBot.from_settings(settings)
    main_task = asyncio.current_task()

    def signal_handler():
        logger.info("shutdown_signal_received")
        main_task.cancel()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.run()
    except asyncio.CancelledError:
        logger.info("bot_stopped")
    except Exception as e:
        logger.error("bot_crashed", error=str(e), exc_info=True)
        raise
    finally:
        await bot.shutdown()


def cli():
    try:
        settings = load_settings()
    except ValidationError as e:
        configure_logging()
        logger.error("invalid_configuration", error=str(e))
        sys.exit(1)

    configure_logging(level=settings.log_level, json_output=settings.log_json)

    # Optimize event loop on non-Windows systems
    if sys.platform != "win32":
        try:
            import uvloop
            uvloop.install()
        except ImportError:
            pass

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
