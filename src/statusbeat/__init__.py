"""
statusbeat - Periodic node status reporting to a ledger registry contract

Built on trio and web3.py with:
- Signed identity store shared with the node's signing process
- ABI call encoding for the status heart contract
- Transaction gateway with locally signed JSON-RPC transactions
- Fixed-interval report loop with detached confirmation watchers

Usage:
    import trio
    from statusbeat import (
        SignedIdentityStore,
        Web3TransactionGateway,
        init_status_heart,
    )

    store = SignedIdentityStore()
    gateway = Web3TransactionGateway.from_rpc_url(rpc_url, private_key)

    async def main():
        async with trio.open_nursery() as nursery:
            service = await init_status_heart(gateway, store, nursery)

            # Elsewhere, once the identity is signed
            store.update(peer_id=peer_id, signature=signature, ...)

    trio.run(main)
"""

from .config import (
    REPORT_STATUS_INTERVAL,
    STATUS_HEART_ADDRESS,
    ZERO_HASH,
    ConfigurationError,
)
from .identity import SignedIdentity, SignedIdentityStore
from .contract import CallEncoder, EncodingError, STATUS_HEART_ABI
from .transaction import (
    TransactionGateway,
    TransactionError,
    TxReceipt,
    Web3TransactionGateway,
)
from .report import ReportTask, ReportBuilder, build_report
from .heartbeat import StatusHeartService, init_status_heart

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "REPORT_STATUS_INTERVAL",
    "STATUS_HEART_ADDRESS",
    "ZERO_HASH",
    "ConfigurationError",
    # Identity
    "SignedIdentity",
    "SignedIdentityStore",
    # Contract encoding
    "CallEncoder",
    "EncodingError",
    "STATUS_HEART_ABI",
    # Ledger access
    "TransactionGateway",
    "TransactionError",
    "TxReceipt",
    "Web3TransactionGateway",
    # Reporting
    "ReportTask",
    "ReportBuilder",
    "build_report",
    "StatusHeartService",
    "init_status_heart",
]
