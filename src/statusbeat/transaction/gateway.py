"""
statusbeat/transaction/gateway.py

Interface to the ledger used by the status reporter.

The reporter only needs three things from the ledger: submit a contract
call as a transaction, wait for that transaction's receipt, and run a
read-only call against contract state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict


class TransactionError(Exception):
    """Raised when a transaction cannot be sent, queried or confirmed."""
    pass


@dataclass
class TxReceipt:
    """Outcome of a mined transaction."""
    tx_hash: str
    status: int              # 1 = success, 0 = reverted
    block_number: int
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def to_dict(self) -> dict:
        return asdict(self)


class TransactionGateway(ABC):
    """
    Submits contract calls to the ledger.

    Implementations must be safe to call from concurrent trio tasks.
    """

    @abstractmethod
    async def send(
        self,
        to: str,
        data: bytes,
        value: int = 0,
        description: str = "",
    ) -> str:
        """
        Submit a contract call as a transaction.

        Args:
            to: Destination contract address
            data: Encoded call
            value: Native currency to transfer (wei)
            description: Human-readable label for logs

        Returns:
            Transaction hash as 0x-prefixed hex

        Raises:
            TransactionError: If the transaction is rejected or cannot be sent
        """

    @abstractmethod
    async def call(self, to: str, data: bytes) -> bytes:
        """Run a read-only call and return the raw result bytes."""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Block until the transaction is mined and return its receipt."""
