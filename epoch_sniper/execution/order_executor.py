"""
Order Executor
===============

Sizes and submits the single buy order of an epoch, and redemption
transactions for the claim job, through an Execution Service.

Never raises past its boundary: every outcome comes back as a result
value. Includes dry-run mode for paper trading.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from enum import Enum
from typing import Optional, Protocol

import structlog

logger = structlog.get_logger()

GWEI = 10 ** 9
MIN_NOTIONAL_USD = Decimal("1")
SHARE_STEP = Decimal("0.01")
# Assumed chain base fee when the RPC cannot tell us
DEFAULT_BASE_FEE_GWEI = 100


class Side(str, Enum):
    YES = "YES"
    NO = "NO"


@dataclass(frozen=True)
class OrderResult:
    """Outcome of one firing. Exactly one of order_id / error is set."""
    success: bool
    side: Side
    price: float
    order_id: Optional[str] = None
    error: Optional[str] = None
    size: float = 0.0


@dataclass(frozen=True)
class GasFees:
    """EIP-1559 fee bid, in wei."""
    max_priority_fee_per_gas: int
    max_fee_per_gas: int

    def as_tx_params(self) -> dict:
        return {
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "maxFeePerGas": self.max_fee_per_gas
        }


@dataclass(frozen=True)
class RedeemResult:
    condition_id: str
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class ExecutionService(Protocol):
    """Signing and broadcast capabilities the executor relies on."""

    def place_buy_order(
        self,
        token_id: str,
        price: float,
        size: float,
        fee_rate_bps: int
    ) -> str:
        ...

    def latest_base_fee(self) -> Optional[int]:
        ...

    def redeem_positions(self, condition_id: str, gas: GasFees) -> str:
        ...


class OrderExecutor:
    """
    Turns a trigger decision into one order submission.

    Share size: ceil(notional / price) to the cent, with notional
    floored at $1. Gas: max fee = max(1.2 * base + tip, floor) unless
    an explicit max is configured, since the bid must clear the next
    block's base fee which is unknown at submission time.
    """

    def __init__(
        self,
        service: Optional[ExecutionService],
        trade_size_usd: float,
        dry_run: bool = True,
        fee_rate_bps: int = 1000,
        gas_tip_gwei: int = 30,
        gas_max_fee_gwei: Optional[int] = None,
        fallback_max_fee_gwei: int = 150
    ):
        """
        Args:
            service: Execution Service (may be None in dry-run mode)
            trade_size_usd: USD notional per order
            dry_run: If True, never contact the service
            fee_rate_bps: Fee rate attached to signed orders
            gas_tip_gwei: Priority fee
            gas_max_fee_gwei: Explicit max fee; computed when None
            fallback_max_fee_gwei: Floor for the computed max fee
        """
        if service is None and not dry_run:
            raise ValueError("an execution service is required for live trading")

        self.service = service
        self.trade_size_usd = trade_size_usd
        self.dry_run = dry_run
        self.fee_rate_bps = fee_rate_bps
        self.gas_tip_gwei = gas_tip_gwei
        self.gas_max_fee_gwei = gas_max_fee_gwei
        self.fallback_max_fee_gwei = fallback_max_fee_gwei

        # Stats
        self.orders_placed = 0
        self.orders_failed = 0
        self.orders_simulated = 0

    def calculate_size(self, price: float) -> float:
        """
        Shares to buy at `price`, rounded up to 0.01.

        Raises:
            ValueError: price is not positive
        """
        p = Decimal(str(price))
        if p <= 0:
            raise ValueError(f"price must be positive, got {price}")

        notional = max(Decimal(str(self.trade_size_usd)), MIN_NOTIONAL_USD)
        shares = (notional / p).quantize(SHARE_STEP, rounding=ROUND_CEILING)
        return float(shares)

    def gas_fees(self, base_fee_wei: Optional[int] = None) -> GasFees:
        """Fee bid for a chain transaction given the latest base fee."""
        priority = self.gas_tip_gwei * GWEI

        if self.gas_max_fee_gwei:
            return GasFees(priority, self.gas_max_fee_gwei * GWEI)

        base = base_fee_wei if base_fee_wei is not None else DEFAULT_BASE_FEE_GWEI * GWEI
        buffered = -(-base * 120 // 100)
        max_fee = max(buffered + priority, self.fallback_max_fee_gwei * GWEI)

        return GasFees(priority, max_fee)

    async def current_gas_fees(self) -> GasFees:
        """Gas fees using the chain's latest base fee when it is needed."""
        if self.gas_max_fee_gwei or self.service is None:
            return self.gas_fees(None)

        try:
            base_fee = await asyncio.to_thread(self.service.latest_base_fee)
        except Exception as e:
            logger.warning("base_fee_lookup_failed", error=str(e))
            base_fee = None

        return self.gas_fees(base_fee)

    async def buy(
        self,
        token_id: str,
        price: float,
        side: Side,
        epoch: int
    ) -> OrderResult:
        """
        Submit a buy for `token_id` at `price`.

        Args:
            token_id: Outcome token to buy
            price: Limit price (the matched best ask)
            side: YES or NO, for reporting
            epoch: Epoch the order belongs to

        Returns:
            OrderResult; failures are captured, never raised
        """
        try:
            size = self.calculate_size(price)
        except ValueError as e:
            self.orders_failed += 1
            logger.error("order_rejected", reason=str(e), side=side.value)
            return OrderResult(success=False, side=side, price=price, error=str(e))

        if self.dry_run:
            order_id = f"dry-{epoch}-{side.value}"
            self.orders_simulated += 1

            logger.info(
                "dry_run_order",
                order_id=order_id,
                token_id=token_id[:16] + "...",
                side=side.value,
                price=price,
                size=size,
                notional=f"${self.trade_size_usd}"
            )

            return OrderResult(
                success=True, side=side, price=price, order_id=order_id, size=size
            )

        try:
            order_id = await asyncio.to_thread(
                self.service.place_buy_order,
                token_id,
                price,
                size,
                self.fee_rate_bps
            )
        except Exception as e:
            self.orders_failed += 1
            error = str(e) or type(e).__name__
            logger.error("order_exception", side=side.value, price=price, error=error)
            return OrderResult(
                success=False, side=side, price=price, error=error, size=size
            )

        self.orders_placed += 1
        logger.info(
            "order_placed",
            order_id=order_id,
            side=side.value,
            price=price,
            size=size
        )

        return OrderResult(
            success=True, side=side, price=price, order_id=order_id, size=size
        )

    async def redeem(
        self,
        condition_id: str,
        gas: GasFees,
        title: str = ""
    ) -> RedeemResult:
        """Redeem a resolved condition; failures are captured."""
        if self.dry_run:
            logger.info("dry_run_redeem", condition_id=condition_id, title=title)
            return RedeemResult(condition_id=condition_id, success=True)

        try:
            tx_hash = await asyncio.to_thread(
                self.service.redeem_positions, condition_id, gas
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("redeem_failed", condition_id=condition_id, error=error)
            return RedeemResult(condition_id=condition_id, success=False, error=error)

        logger.info("redeem_confirmed", condition_id=condition_id, tx_hash=tx_hash)
        return RedeemResult(condition_id=condition_id, success=True, tx_hash=tx_hash)

    def get_stats(self) -> dict:
        """Return executor statistics."""
        return {
            "dry_run": self.dry_run,
            "orders_placed": self.orders_placed,
            "orders_failed": self.orders_failed,
            "orders_simulated": self.orders_simulated
        }
