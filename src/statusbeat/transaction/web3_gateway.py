"""
statusbeat/transaction/web3_gateway.py

TransactionGateway backed by an EVM JSON-RPC endpoint via web3.py.

Transactions are signed locally with the node's key and broadcast as raw
transactions. web3's HTTP provider is blocking, so every RPC round trip
runs in a trio worker thread.
"""

import logging

import trio
from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import Web3Exception

from ..config import (
    GAS_ESTIMATE_MARGIN,
    RECEIPT_POLL_INTERVAL,
    RECEIPT_TIMEOUT,
    RPC_REQUEST_TIMEOUT,
)
from .gateway import TransactionGateway, TransactionError, TxReceipt

logger = logging.getLogger("statusbeat.transaction.web3")

# Errors surfaced by web3 calls: RPC/contract errors, malformed values,
# and transport failures (requests raises OSError subclasses)
_RPC_ERRORS = (Web3Exception, ValueError, OSError)


class Web3TransactionGateway(TransactionGateway):
    """
    Sends signed contract calls through a web3 provider.

    Example:
        gateway = Web3TransactionGateway.from_rpc_url(
            "https://rpc.bt.io", private_key,
        )
        tx_hash = await gateway.send(contract, call_data)
        receipt = await gateway.wait_for_receipt(tx_hash)
    """

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        receipt_timeout: float = RECEIPT_TIMEOUT,
        poll_interval: float = RECEIPT_POLL_INTERVAL,
    ):
        """
        Initialize the gateway.

        Args:
            w3: Connected Web3 instance
            private_key: Hex private key used to sign transactions
            receipt_timeout: Seconds to wait for a receipt
            poll_interval: Seconds between receipt polls
        """
        self._w3 = w3
        self._account = Account.from_key(private_key)
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval

        # Nonce lookup and broadcast must not interleave between sends
        self._send_lock = trio.Lock()

    @classmethod
    def from_rpc_url(cls, rpc_url: str, private_key: str, **kwargs) -> "Web3TransactionGateway":
        """Create a gateway for an HTTP JSON-RPC endpoint."""
        provider = Web3.HTTPProvider(
            rpc_url,
            request_kwargs={"timeout": RPC_REQUEST_TIMEOUT},
        )
        return cls(Web3(provider), private_key, **kwargs)

    @property
    def address(self) -> str:
        """Address of the signing account."""
        return self._account.address

    # ========================================================================
    # TransactionGateway
    # ========================================================================

    async def send(
        self,
        to: str,
        data: bytes,
        value: int = 0,
        description: str = "",
    ) -> str:
        async with self._send_lock:
            return await trio.to_thread.run_sync(
                self._send_sync, to, data, value, description
            )

    async def call(self, to: str, data: bytes) -> bytes:
        return await trio.to_thread.run_sync(self._call_sync, to, data)

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        return await trio.to_thread.run_sync(
            self._wait_for_receipt_sync, tx_hash, abandon_on_cancel=True
        )

    # ========================================================================
    # BLOCKING HELPERS (run in worker threads)
    # ========================================================================

    def _build_transaction(self, to: str, data: bytes, value: int) -> dict:
        eth = self._w3.eth
        tx = {
            "from": self._account.address,
            "to": to_checksum_address(to),
            "data": data,
            "value": value,
            "nonce": eth.get_transaction_count(self._account.address, "pending"),
            "gasPrice": eth.gas_price,
            "chainId": eth.chain_id,
        }
        tx["gas"] = int(eth.estimate_gas(tx) * GAS_ESTIMATE_MARGIN)
        return tx

    def _send_sync(self, to: str, data: bytes, value: int, description: str) -> str:
        try:
            tx = self._build_transaction(to, data, value)
            signed = self._account.sign_transaction(tx)
            tx_hash = Web3.to_hex(self._w3.eth.send_raw_transaction(signed.raw_transaction))
        except _RPC_ERRORS as e:
            raise TransactionError(f"{description or 'transaction'} to {to} failed: {e}") from e

        logger.debug(
            f"Sent {description or 'transaction'}: tx={tx_hash} to={to} "
            f"nonce={tx['nonce']} gas={tx['gas']}"
        )
        return tx_hash

    def _call_sync(self, to: str, data: bytes) -> bytes:
        try:
            result = self._w3.eth.call({"to": to_checksum_address(to), "data": data})
        except _RPC_ERRORS as e:
            raise TransactionError(f"Call to {to} failed: {e}") from e
        return bytes(result)

    def _wait_for_receipt_sync(self, tx_hash: str) -> TxReceipt:
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_interval,
            )
        except _RPC_ERRORS as e:
            raise TransactionError(f"No receipt for {tx_hash}: {e}") from e

        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt.get("gasUsed", 0)),
        )
