"""
statusbeat/heartbeat.py

Periodic status reporting to the status heart registry contract.

Every REPORT_STATUS_INTERVAL seconds the node encodes its current signed
identity into a "reportStatus" call and submits it as a transaction.
Each submitted transaction gets its own watcher task that waits for the
receipt and logs the outcome.

Key Features:
- Skips silently until the signed identity is established
- Failed reports are logged and retried on the next tick only
- Ticks never overlap; overrun ticks skip missed intervals
- Confirmation watchers can never fail the caller or the loop

Usage:
    async with trio.open_nursery() as nursery:
        service = await init_status_heart(gateway, identity_store, nursery)
        ...
        service.stop()
"""

import logging
from typing import Any, Dict, Optional

import trio

from .config import (
    REPORT_STATUS_INTERVAL,
    STATUS_HEART_ADDRESS,
    ZERO_HASH,
    ConfigurationError,
)
from .contract import CallEncoder, GEN_HASH_EXT
from .identity import SignedIdentity, SignedIdentityStore
from .report import ReportBuilder, ReportTask
from .transaction import TransactionGateway

logger = logging.getLogger("statusbeat.heartbeat")


class StatusHeartService:
    """
    Reports node status to the status heart contract.

    Construct through init_status_heart(), which performs the startup
    report and starts the periodic loop. The nursery passed in hosts the
    loop and all confirmation watchers, so it must outlive the service.
    """

    def __init__(
        self,
        contract_address: str,
        gateway: TransactionGateway,
        identity_store: SignedIdentityStore,
        nursery: trio.Nursery,
        interval: float = REPORT_STATUS_INTERVAL,
        encoder: Optional[CallEncoder] = None,
    ):
        """
        Initialize the service.

        Args:
            contract_address: Status heart contract address
            gateway: Ledger gateway used to submit reports
            identity_store: Source of the node's signed identity
            nursery: Nursery for the report loop and confirmation watchers
            interval: Seconds between reports
            encoder: Call encoder (defaults to the status heart ABI)
        """
        self.gateway = gateway
        self.identity_store = identity_store
        self.interval = interval

        self._nursery = nursery
        self._builder = ReportBuilder(contract_address, encoder)
        self._cancel_scope: Optional[trio.CancelScope] = None
        self._is_running = False

        # Counters for get_stats()
        self._reports_sent = 0
        self._reports_skipped = 0
        self._reports_failed = 0
        self._confirmed = 0
        self._reverted = 0
        self._confirmation_failures = 0
        self._last_tx_hash: Optional[str] = None

    @property
    def contract_address(self) -> str:
        return self._builder.contract_address

    @property
    def encoder(self) -> CallEncoder:
        return self._builder.encoder

    @property
    def is_running(self) -> bool:
        """Whether the periodic report loop is active."""
        return self._is_running

    # ========================================================================
    # REPORTING
    # ========================================================================

    async def report_status(self) -> str:
        """
        Report the current signed identity once.

        Returns:
            Hash of the submitted transaction, or ZERO_HASH if the
            identity is not established yet

        Raises:
            EncodingError: If the identity cannot be encoded
            TransactionError: If the gateway fails to submit
        """
        identity = self.identity_store.read()

        try:
            task = self._builder.build(identity)
            if task is None:
                self._reports_skipped += 1
                logger.debug("Signed identity not established, nothing to report")
                return ZERO_HASH

            task.tx_hash = await self.gateway.send(
                task.to,
                task.payload,
                value=task.value,
                description=task.description,
            )
        except Exception:
            self._reports_failed += 1
            raise

        self._reports_sent += 1
        self._last_tx_hash = task.tx_hash
        logger.info(
            f"Reported heart status: tx={task.tx_hash} peer={identity.peer_id} "
            f"nonce={identity.nonce}"
        )

        try:
            self._nursery.start_soon(self._watch_confirmation, task)
        except RuntimeError as e:
            # Nursery already closing (shutdown in progress)
            logger.warning(f"Not tracking confirmation of {task.tx_hash}: {e}")

        return task.tx_hash

    async def check_report_status(self) -> None:
        """
        Report once and log any failure.

        Raises:
            Whatever report_status() raised, after logging it
        """
        try:
            await self.report_status()
        except Exception as e:
            logger.error(f"ReportStatus err: {type(e).__name__}: {e}")
            raise

    async def _watch_confirmation(self, task: ReportTask) -> None:
        """Wait for a report's receipt and log the outcome. Never raises."""
        try:
            receipt = await self.gateway.wait_for_receipt(task.tx_hash)
            if receipt.succeeded:
                self._confirmed += 1
                logger.info(
                    f"Heart status confirmed: tx={task.tx_hash} block={receipt.block_number}"
                )
            else:
                self._reverted += 1
                logger.warning(
                    f"Heart status reverted: tx={task.tx_hash} block={receipt.block_number}"
                )
        except Exception as e:
            self._confirmation_failures += 1
            logger.error(f"ReportHeartStatus recovered: tx={task.tx_hash} {type(e).__name__}: {e}")

    async def query_status_hash(self, identity: Optional[SignedIdentity] = None) -> bytes:
        """
        Ask the contract for the hash it derives from an identity.

        Read-only diagnostic; nothing is submitted.

        Args:
            identity: Identity to hash (defaults to the current one)

        Returns:
            32-byte hash computed by the contract
        """
        identity = identity or self.identity_store.read()
        data = self.encoder.encode(
            GEN_HASH_EXT,
            identity.peer_id,
            identity.created_time,
            identity.version,
            identity.nonce,
            identity.chain_address,
        )
        result = await self.gateway.call(self.contract_address, data)
        (digest,) = self.encoder.decode_result(GEN_HASH_EXT, result)
        logger.debug(f"genHashExt for peer={identity.peer_id}: 0x{digest.hex()}")
        return digest

    # ========================================================================
    # SCHEDULING
    # ========================================================================

    async def run_report_loop(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """
        Report every interval until stop() is called.

        The first report fires one interval after start; the startup
        report is made by init_status_heart(). Use with nursery.start().
        """
        if self._is_running:
            task_status.started()
            return

        with trio.CancelScope() as cancel_scope:
            self._cancel_scope = cancel_scope
            self._is_running = True
            task_status.started()
            logger.info(f"Status report loop started (interval: {self.interval}s)")

            try:
                next_run = trio.current_time() + self.interval
                while True:
                    await trio.sleep_until(next_run)
                    try:
                        await self.check_report_status()
                    except Exception:
                        logger.debug("Status report tick failed, retrying next interval")
                    next_run = self._next_run_after(next_run)
            finally:
                self._is_running = False
                self._cancel_scope = None

        logger.info("Status report loop stopped")

    def _next_run_after(self, scheduled: float) -> float:
        """Next tick on the original schedule, skipping missed intervals."""
        now = trio.current_time()
        next_run = scheduled + self.interval
        skipped = 0
        while next_run <= now:
            next_run += self.interval
            skipped += 1
        if skipped:
            logger.warning(f"Status report tick overran, skipped {skipped} intervals")
        return next_run

    def stop(self) -> None:
        """Stop the periodic loop. Pending confirmation watchers keep running."""
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    def get_stats(self) -> Dict[str, Any]:
        """Get report counters."""
        return {
            'contract_address': self.contract_address,
            'interval_s': self.interval,
            'running': self._is_running,
            'reports_sent': self._reports_sent,
            'reports_skipped': self._reports_skipped,
            'reports_failed': self._reports_failed,
            'confirmed': self._confirmed,
            'reverted': self._reverted,
            'confirmation_failures': self._confirmation_failures,
            'last_tx_hash': self._last_tx_hash,
        }


async def init_status_heart(
    gateway: TransactionGateway,
    identity_store: SignedIdentityStore,
    nursery: trio.Nursery,
    contract_address: str = STATUS_HEART_ADDRESS,
    interval: float = REPORT_STATUS_INTERVAL,
    encoder: Optional[CallEncoder] = None,
) -> StatusHeartService:
    """
    Create the status heart service and start reporting.

    Reports once immediately; a failure there aborts initialization.
    Later failures are only logged by the loop.

    Args:
        gateway: Ledger gateway used to submit reports
        identity_store: Source of the node's signed identity
        nursery: Long-lived nursery for background tasks
        contract_address: Status heart contract address
        interval: Seconds between reports
        encoder: Call encoder (defaults to the status heart ABI)

    Returns:
        The running service

    Raises:
        ConfigurationError: If no contract address is configured
        EncodingError, TransactionError: If the startup report fails
    """
    if not contract_address:
        raise ConfigurationError("no known status heart address for this network")

    service = StatusHeartService(
        contract_address,
        gateway,
        identity_store,
        nursery,
        interval=interval,
        encoder=encoder,
    )

    await service.check_report_status()  # report when the node starts
    await nursery.start(service.run_report_loop)
    return service
