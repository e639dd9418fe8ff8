"""
statusbeat/node.py

Status reporting node.
Run with: python -m statusbeat.node

Environment:
    STATUSBEAT_RPC_URL         JSON-RPC endpoint of the ledger (required)
    STATUSBEAT_PRIVATE_KEY     Key that signs report transactions (required)
    STATUSBEAT_IDENTITY_FILE   JSON signed identity, re-read every interval
    STATUSBEAT_LOG_LEVEL       Logging level (default INFO)
"""

import logging
import sys
from typing import Iterator, Optional

import trio

from .config import REPORT_STATUS_INTERVAL, ConfigurationError, NodeSettings
from .heartbeat import init_status_heart
from .identity import SignedIdentityStore
from .transaction import TransactionGateway, Web3TransactionGateway

logger = logging.getLogger("statusbeat.node")


def refresh_identity(store: SignedIdentityStore, path: str) -> bool:
    """
    Reload the signed identity from its file.

    A missing or unreadable file leaves the current identity in place.

    Returns:
        True if the identity was reloaded
    """
    try:
        identity = store.load_json(path)
    except FileNotFoundError:
        logger.debug(f"Identity file {path} not present yet")
        return False
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Failed to load identity file {path}: {e}")
        return False

    logger.debug(f"Loaded identity for peer={identity.peer_id} nonce={identity.nonce}")
    return True


async def identity_refresh_loop(
    store: SignedIdentityStore,
    path: str,
    interval: float = REPORT_STATUS_INTERVAL,
) -> None:
    """Re-read the identity file so the signer can update it while we run."""
    while True:
        await trio.sleep(interval)
        refresh_identity(store, path)


async def main(settings: NodeSettings, gateway: Optional[TransactionGateway] = None) -> None:
    """
    Run the status reporting node until cancelled.

    Args:
        settings: Deployment settings
        gateway: Ledger gateway (defaults to web3 over settings.rpc_url)
    """
    store = SignedIdentityStore()
    if settings.identity_file:
        refresh_identity(store, settings.identity_file)

    if gateway is None:
        gateway = Web3TransactionGateway.from_rpc_url(settings.rpc_url, settings.private_key)
        logger.info(f"Reporting from account {gateway.address} via {settings.rpc_url}")

    async with trio.open_nursery() as nursery:
        if settings.identity_file:
            nursery.start_soon(identity_refresh_loop, store, settings.identity_file)
        service = await init_status_heart(gateway, store, nursery)
        logger.info(f"Status heart reporting to {service.contract_address}")


def leaf_exceptions(exc: BaseException) -> Iterator[BaseException]:
    """Flatten nursery exception groups into the exceptions that caused them."""
    if isinstance(exc, BaseExceptionGroup):
        for sub in exc.exceptions:
            yield from leaf_exceptions(sub)
    else:
        yield exc


def run() -> int:
    """Console entry point."""
    try:
        settings = NodeSettings.from_env()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Configuration error: {e}")
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    try:
        trio.run(main, settings)
    except KeyboardInterrupt:
        logger.info("Status node stopped")
        return 0
    except Exception as e:
        for cause in leaf_exceptions(e):
            logger.error(f"Status node error: {type(cause).__name__}: {cause}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
