"""
Epoch Trigger Engine
=====================

Decides, at most once per epoch, whether a best-ask update should
fire the epoch's buy order.

A quote is eligible when all of these hold:
1. It belongs to the current epoch's market
2. min_window <= seconds remaining <= entry_window
3. The epoch has not traded yet
4. best_ask is within +/-0.005 of a target price (first match wins)

The side comes from the token the quote is for, never from the price.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import structlog

from epoch_sniper.data.market_resolver import MarketInfo
from epoch_sniper.data.price_feed import PriceQuote
from epoch_sniper.execution.order_executor import OrderResult, Side
from epoch_sniper.utils.epoch_clock import current_epoch, seconds_until_close

logger = structlog.get_logger()

PRICE_TOLERANCE = Decimal("0.005")


@dataclass
class EpochTradeState:
    """Per-epoch state. `traded` goes False -> True once and never back."""
    epoch: int
    traded: bool = False
    best_asks: Dict[str, float] = field(default_factory=dict)
    result: Optional[OrderResult] = None


@dataclass(frozen=True)
class TriggerDecision:
    """A fire decision handed to the executor."""
    epoch: int
    token_id: str
    side: Side
    price: float
    target: float
    seconds_remaining: int


def match_target(
    best_ask: float,
    targets: Sequence[float],
    tolerance: Decimal = PRICE_TOLERANCE
) -> Optional[float]:
    """
    First target whose band contains best_ask, in configured order.

    Compared in decimal so that target +/- tolerance is an exact edge.
    """
    ask = Decimal(str(best_ask))
    for target in targets:
        if abs(ask - Decimal(str(target))) <= tolerance:
            return target
    return None


class TriggerEngine:
    """
    Single-fire-per-epoch gate.

    start_epoch() and evaluate() never suspend, so on one event loop
    a rollover replaces market and state in a single step and only one
    evaluation can see an untraded epoch and flip it.
    """

    def __init__(
        self,
        target_prices: Sequence[float],
        entry_window_seconds: int = 60,
        min_window_seconds: int = 5,
        tolerance: float = 0.005
    ):
        """
        Args:
            target_prices: Ask prices to snipe, in priority order
            entry_window_seconds: Firing allowed at or below this many seconds left
            min_window_seconds: No firing below this many seconds left
            tolerance: Half-width of each target's price band
        """
        self.target_prices: List[float] = list(target_prices)
        self.entry_window = entry_window_seconds
        self.min_window = min_window_seconds
        self.tolerance = Decimal(str(tolerance))

        self._market: Optional[MarketInfo] = None
        self._state: Optional[EpochTradeState] = None

        # Stats
        self.quotes_evaluated = 0
        self.stale_quotes = 0
        self.triggers_fired = 0

    @property
    def market(self) -> Optional[MarketInfo]:
        return self._market

    @property
    def state(self) -> Optional[EpochTradeState]:
        return self._state

    def start_epoch(self, market: MarketInfo):
        """Switch to a new epoch's market with fresh trade state."""
        self._market = market
        self._state = EpochTradeState(epoch=market.epoch)

        logger.debug("trigger_epoch_started", epoch=market.epoch)

    def clear(self, epoch: int):
        """Enter an epoch that has no tradable market."""
        self._market = None
        self._state = EpochTradeState(epoch=epoch)

    def has_traded(self, epoch: int) -> bool:
        state = self._state
        return state is not None and state.epoch == epoch and state.traded

    def best_ask(self, side: Side) -> Optional[float]:
        """Last seen best ask for a side of the current market."""
        if self._market is None or self._state is None:
            return None
        token_id = self._market.yes_token_id if side is Side.YES else self._market.no_token_id
        return self._state.best_asks.get(token_id)

    def evaluate(self, quote: PriceQuote, now: float) -> Optional[TriggerDecision]:
        """
        Apply the gate to one quote.

        Marks the epoch traded before returning a decision, so the
        gate stays shut however long the order submission takes.
        """
        market = self._market
        state = self._state
        if market is None or state is None:
            return None

        if quote.token_id == market.yes_token_id:
            side = Side.YES
        elif quote.token_id == market.no_token_id:
            side = Side.NO
        else:
            # Left over from a previous epoch's subscription
            self.stale_quotes += 1
            return None

        self.quotes_evaluated += 1
        state.best_asks[quote.token_id] = quote.best_ask

        if current_epoch(now) != state.epoch:
            return None

        remaining = seconds_until_close(state.epoch, now)
        if remaining > self.entry_window or remaining < self.min_window:
            return None

        if state.traded:
            return None

        target = match_target(quote.best_ask, self.target_prices, self.tolerance)
        if target is None:
            return None

        state.traded = True
        self.triggers_fired += 1

        logger.info(
            "trigger_fired",
            epoch=state.epoch,
            side=side.value,
            best_ask=quote.best_ask,
            target=target,
            seconds_remaining=remaining,
            market=market.question
        )

        return TriggerDecision(
            epoch=state.epoch,
            token_id=quote.token_id,
            side=side,
            price=quote.best_ask,
            target=target,
            seconds_remaining=remaining
        )

    def record_result(self, decision: TriggerDecision, result: OrderResult):
        """Attach the order outcome to its epoch, if still current."""
        state = self._state
        if state is not None and state.epoch == decision.epoch:
            state.result = result

    def get_stats(self) -> dict:
        """Return engine statistics."""
        return {
            "target_prices": self.target_prices,
            "quotes_evaluated": self.quotes_evaluated,
            "stale_quotes": self.stale_quotes,
            "triggers_fired": self.triggers_fired
        }
