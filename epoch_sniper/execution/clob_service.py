"""
CLOB Execution Service
=======================

Signing and broadcast for the executor:
- API credentials and signed orders via py-clob-client
- Base fee lookup and CTF redeemPositions via web3

All methods are blocking; the executor calls them off the event loop.
"""

from typing import Optional

import structlog
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import OrderArgs, OrderType
from py_clob_client.order_builder.constants import BUY
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from epoch_sniper.execution.order_executor import GasFees

logger = structlog.get_logger()

POLYGON_CHAIN_ID = 137
CTF_ADDRESS = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
USDC_E_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
PARENT_COLLECTION_ID = bytes(32)
BINARY_INDEX_SETS = [1, 2]  # YES = 1, NO = 2

CTF_REDEEM_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "collateralToken", "type": "address"},
            {"internalType": "bytes32", "name": "parentCollectionId", "type": "bytes32"},
            {"internalType": "bytes32", "name": "conditionId", "type": "bytes32"},
            {"internalType": "uint256[]", "name": "indexSets", "type": "uint256[]"},
        ],
        "name": "redeemPositions",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]


class ExecutionServiceError(Exception):
    """Raised when the exchange or chain rejects a request."""


def condition_id_bytes32(condition_id: str) -> bytes:
    """Left-pad a hex condition id to 32 bytes."""
    hex_part = condition_id[2:] if condition_id.lower().startswith("0x") else condition_id
    if not hex_part or len(hex_part) > 64:
        raise ValueError(f"invalid condition id: {condition_id!r}")
    return bytes.fromhex(hex_part.rjust(64, "0"))


class ClobExecutionService:
    """
    Owns the credential and connection lifecycle for one signing key.

    Built once at startup and passed to the OrderExecutor; nothing here
    is shared through module globals.
    """

    def __init__(
        self,
        private_key: str,
        host: str = "https://clob.polymarket.com",
        rpc_url: str = "https://polygon-rpc.com",
        funder_address: str = "",
        signature_type: int = 0,
        rpc_timeout: float = 15.0,
        receipt_timeout: float = 180.0
    ):
        self._private_key = private_key
        self.host = host
        self.rpc_url = rpc_url
        self.rpc_timeout = rpc_timeout
        self.receipt_timeout = receipt_timeout

        self.client = ClobClient(
            host=host,
            key=private_key,
            chain_id=POLYGON_CHAIN_ID,
            signature_type=signature_type,
            funder=funder_address or None
        )
        self.address = self.client.get_address()

        self._w3: Optional[Web3] = None
        self.initialized = False

    def initialize(self):
        """
        Derive the API key for this signer, creating one if none exists.

        Raises:
            ExecutionServiceError: neither derive nor create succeeded
        """
        if self.initialized:
            return

        try:
            try:
                creds = self.client.derive_api_key()
            except Exception as e:
                logger.info("api_key_derive_failed", error=str(e))
                creds = self.client.create_api_key()
        except Exception as e:
            raise ExecutionServiceError(f"failed to initialize CLOB client: {e}") from e

        self.client.set_api_creds(creds)
        self.initialized = True

        logger.info("clob_client_initialized", address=self.address)

    def place_buy_order(
        self,
        token_id: str,
        price: float,
        size: float,
        fee_rate_bps: int
    ) -> str:
        """Sign and post a GTC buy; returns the exchange order id."""
        if not self.initialized:
            self.initialize()

        order_args = OrderArgs(
            token_id=token_id,
            price=price,
            size=size,
            side=BUY,
            fee_rate_bps=fee_rate_bps
        )

        signed_order = self.client.create_order(order_args)
        response = self.client.post_order(signed_order, OrderType.GTC)

        logger.debug("order_response", response=response)

        if not isinstance(response, dict):
            raise ExecutionServiceError(f"unexpected order response: {response!r}")

        order_id = response.get("orderID") or response.get("id")
        if not order_id or response.get("success") is False:
            raise ExecutionServiceError(response.get("errorMsg") or str(response))

        return order_id

    def _web3(self) -> Web3:
        if self._w3 is None:
            w3 = Web3(Web3.HTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": self.rpc_timeout}
            ))
            # Polygon blocks carry POA extraData
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._w3 = w3
        return self._w3

    def latest_base_fee(self) -> Optional[int]:
        """Base fee of the latest block in wei, None if not reported."""
        block = self._web3().eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        return int(base_fee) if base_fee is not None else None

    def redeem_positions(self, condition_id: str, gas: GasFees) -> str:
        """
        Call CTF.redeemPositions for a binary condition and wait for it.

        Returns:
            Transaction hash (0x-prefixed)
        """
        w3 = self._web3()
        account = w3.eth.account.from_key(self._private_key)

        ctf = w3.eth.contract(
            address=Web3.to_checksum_address(CTF_ADDRESS),
            abi=CTF_REDEEM_ABI
        )
        fn = ctf.functions.redeemPositions(
            Web3.to_checksum_address(USDC_E_ADDRESS),
            PARENT_COLLECTION_ID,
            condition_id_bytes32(condition_id),
            BINARY_INDEX_SETS
        )

        tx = fn.build_transaction({
            "from": account.address,
            "nonce": w3.eth.get_transaction_count(account.address, "pending"),
            "chainId": POLYGON_CHAIN_ID,
            **gas.as_tx_params()
        })

        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = Web3.to_hex(tx_hash)

        logger.info("redeem_sent", condition_id=condition_id[:18] + "...", tx_hash=tx_hex)

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt.get("status") != 1:
            raise ExecutionServiceError(f"redeem reverted: {tx_hex}")

        return tx_hex
