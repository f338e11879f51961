"""
Claim Winnings
===============

Redeems every resolved position of the configured wallet: fetches
redeemable conditions from the Data API and sends one CTF
redeemPositions transaction per condition.

USAGE:
    python -m epoch_sniper.claim
"""

import asyncio
import sys
from typing import List

from dotenv import load_dotenv

load_dotenv()

from pydantic import ValidationError

from config.settings import Settings, load_settings
from epoch_sniper.data.positions import PositionsClient
from epoch_sniper.execution.clob_service import ClobExecutionService
from epoch_sniper.execution.order_executor import OrderExecutor, RedeemResult
from epoch_sniper.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


async def claim_all(
    owner: str,
    positions_client: PositionsClient,
    executor: OrderExecutor
) -> List[RedeemResult]:
    """
    Redeem all redeemable positions of `owner`.

    One failed redemption does not stop the others.
    """
    positions = await positions_client.get_redeemable(owner)
    if not positions:
        logger.info("no_redeemable_positions", owner=owner)
        return []

    for position in positions:
        logger.info(
            "redeemable_position",
            condition_id=position.condition_id,
            title=position.title,
            size=position.size
        )

    gas = await executor.current_gas_fees()
    if not executor.dry_run:
        logger.info(
            "redeem_gas",
            tip_gwei=gas.max_priority_fee_per_gas / 10 ** 9,
            max_fee_gwei=gas.max_fee_per_gas / 10 ** 9
        )

    results = []
    for position in positions:
        result = await executor.redeem(position.condition_id, gas, title=position.title)
        results.append(result)

    redeemed = sum(1 for r in results if r.success)
    logger.info("claim_complete", redeemed=redeemed, failed=len(results) - redeemed)
    return results


def claim_owner(funder_address: str, signer_address: str) -> str:
    """Wallet whose positions are claimed: the funder, else the signer."""
    return funder_address or signer_address


async def main(settings: Settings) -> int:
    service = ClobExecutionService(
        private_key=settings.polymarket_private_key,
        host=settings.polymarket_host,
        rpc_url=settings.polygon_rpc_url,
        funder_address=settings.funder_address,
        signature_type=settings.signature_type
    )
    executor = OrderExecutor(
        service=service,
        trade_size_usd=settings.trade_size_usd,
        dry_run=settings.dry_run,
        gas_tip_gwei=settings.gas_tip_gwei,
        gas_max_fee_gwei=settings.gas_max_fee_gwei,
        fallback_max_fee_gwei=settings.fallback_max_fee_gwei
    )
    positions_client = PositionsClient(data_api_base=settings.data_api)
    owner = claim_owner(settings.funder_address, service.address)

    logger.info(
        "claim_starting",
        wallet=owner,
        signer=service.address,
        mode="DRY RUN" if settings.dry_run else "LIVE"
    )
    if owner.lower() != service.address.lower():
        # redeemPositions is sent from the signer and pays out to msg.sender
        logger.warning("claim_owner_is_not_signer", owner=owner, signer=service.address)

    try:
        results = await claim_all(owner, positions_client, executor)
    finally:
        await positions_client.close()

    return 0 if all(r.success for r in results) else 1


def cli():
    try:
        settings = load_settings()
    except ValidationError as e:
        configure_logging(process="claim")
        logger.error("invalid_configuration", error=str(e))
        sys.exit(1)

    if not settings.polymarket_private_key:
        configure_logging(process="claim")
        logger.error("invalid_configuration", error="POLYMARKET_PRIVATE_KEY is required")
        sys.exit(1)

    configure_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        process="claim"
    )
    sys.exit(asyncio.run(main(settings)))


if __name__ == "__main__":
    cli()
