"""
statusbeat/transaction - Ledger access for submitting status reports.

Provides the TransactionGateway interface and a web3.py implementation
for EVM JSON-RPC endpoints.
"""

from .gateway import TransactionGateway, TransactionError, TxReceipt
from .web3_gateway import Web3TransactionGateway

__all__ = [
    "TransactionGateway",
    "TransactionError",
    "TxReceipt",
    "Web3TransactionGateway",
]
