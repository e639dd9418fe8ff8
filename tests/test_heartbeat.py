"""
Tests for statusbeat/heartbeat.py

Tests status reporting, confirmation tracking and the periodic loop.
Loop tests run on trio's MockClock so intervals elapse instantly.
"""

import logging
from typing import List, Optional, Tuple
from unittest.mock import Mock

import pytest
import trio
import trio.testing
from eth_abi import encode
from eth_utils import to_checksum_address

from statusbeat.config import ConfigurationError, ZERO_HASH
from statusbeat.contract import CallEncoder, EncodingError, GEN_HASH_EXT, REPORT_STATUS
from statusbeat.heartbeat import StatusHeartService, init_status_heart
from statusbeat.identity import SignedIdentity, SignedIdentityStore
from statusbeat.transaction import TransactionError, TransactionGateway, TxReceipt


# ============================================================================
# TEST DATA
# ============================================================================

CONTRACT = "0xE42016a68511BFfdcE74E04DD35DCD7bf75582c8"
TEST_ADDRESS = "0x" + "ab" * 20
INTERVAL = 10


def create_test_identity(**overrides) -> SignedIdentity:
    fields = dict(
        peer_id="p1",
        created_time=100,
        version="1.0",
        nonce=1,
        chain_address=TEST_ADDRESS,
        signed_time=200,
        signature=b"\x5a" * 65,
    )
    fields.update(overrides)
    return SignedIdentity(**fields)


class FakeGateway(TransactionGateway):
    """In-memory gateway recording every call."""

    def __init__(self, send_delay: float = 0):
        self.send_delay = send_delay
        self.send_error: Optional[Exception] = None
        self.receipt_error: Optional[Exception] = None
        self.receipt_status = 1
        self.call_result = b""

        self.sent: List[Tuple[float, str, bytes, int, str]] = []
        self.calls: List[Tuple[str, bytes]] = []
        self.receipt_waits: List[str] = []
        self.active_sends = 0
        self.max_active_sends = 0

    async def send(self, to, data, value=0, description=""):
        self.active_sends += 1
        self.max_active_sends = max(self.max_active_sends, self.active_sends)
        try:
            self.sent.append((trio.current_time(), to, data, value, description))
            if self.send_delay:
                await trio.sleep(self.send_delay)
            if self.send_error is not None:
                raise self.send_error
            return "0x" + f"{len(self.sent):064x}"
        finally:
            self.active_sends -= 1

    async def call(self, to, data):
        self.calls.append((to, data))
        return self.call_result

    async def wait_for_receipt(self, tx_hash):
        self.receipt_waits.append(tx_hash)
        await trio.sleep(0)
        if self.receipt_error is not None:
            raise self.receipt_error
        return TxReceipt(tx_hash=tx_hash, status=self.receipt_status, block_number=42)


def run_with_mock_clock(async_fn):
    """Run an async test function with virtual time."""
    return trio.run(async_fn, clock=trio.testing.MockClock(autojump_threshold=0))


# ============================================================================
# REPORT STATUS TESTS
# ============================================================================

class TestReportStatus:
    """Tests for StatusHeartService.report_status."""

    def test_empty_identity_skips(self):
        """Test nothing is encoded or sent before the identity exists."""
        gateway = FakeGateway()
        encoder = Mock(spec=CallEncoder)
        store = SignedIdentityStore()

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery, encoder=encoder)
                result = await service.report_status()
            return result, service

        result, service = trio.run(run_test)

        assert result == ZERO_HASH
        encoder.encode.assert_not_called()
        assert gateway.sent == []
        assert service.get_stats()['reports_skipped'] == 1

    def test_submits_report(self):
        """Test a populated identity is submitted to the contract."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                tx_hash = await service.report_status()
            return tx_hash, service

        tx_hash, service = trio.run(run_test)

        assert tx_hash == "0x" + f"{1:064x}"
        assert len(gateway.sent) == 1

        _, to, data, value, description = gateway.sent[0]
        assert to == CONTRACT
        assert value == 0
        assert description == "Report Heart Status"

        name, args = CallEncoder().decode_call(data)
        assert name == REPORT_STATUS
        assert args == (
            "p1", 100, "1.0", 1, to_checksum_address(TEST_ADDRESS), 200, b"\x5a" * 65,
        )

        stats = service.get_stats()
        assert stats['reports_sent'] == 1
        assert stats['last_tx_hash'] == tx_hash

    def test_confirmation_tracked(self):
        """Test a watcher waits for the receipt of each submission."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                tx_hash = await service.report_status()
            return tx_hash, service

        tx_hash, service = trio.run(run_test)

        assert gateway.receipt_waits == [tx_hash]
        assert service.get_stats()['confirmed'] == 1

    def test_reverted_receipt_counted(self):
        """Test a reverted transaction is recorded but not raised."""
        gateway = FakeGateway()
        gateway.receipt_status = 0
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                await service.report_status()
            return service

        stats = trio.run(run_test).get_stats()
        assert stats['reverted'] == 1
        assert stats['confirmed'] == 0

    def test_confirmation_fault_swallowed(self, caplog):
        """Test a watcher fault reaches neither the caller nor the nursery."""
        gateway = FakeGateway()
        gateway.receipt_error = RuntimeError("receipt watcher exploded")
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                tx_hash = await service.report_status()
                # Caller carries on after the report
                await trio.sleep(0.01)
            return tx_hash, service

        with caplog.at_level(logging.ERROR, logger="statusbeat.heartbeat"):
            tx_hash, service = trio.run(run_test)

        assert tx_hash != ZERO_HASH
        assert service.get_stats()['confirmation_failures'] == 1
        assert "receipt watcher exploded" in caplog.text

    def test_send_failure_raises(self):
        """Test a gateway failure is raised and no watcher is spawned."""
        gateway = FakeGateway()
        gateway.send_error = TransactionError("insufficient funds")
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                with pytest.raises(TransactionError):
                    await service.report_status()
            return service

        service = trio.run(run_test)
        assert gateway.receipt_waits == []
        assert service.get_stats()['reports_failed'] == 1
        assert service.get_stats()['last_tx_hash'] is None

    def test_encoding_failure_raises(self):
        """Test malformed identity data aborts the report before sending."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity(signature="0xnothex"))

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                with pytest.raises(EncodingError):
                    await service.report_status()

        trio.run(run_test)
        assert gateway.sent == []

    def test_null_identity_fields_skip(self):
        """Test an identity file written with nulls is treated as not established."""
        gateway = FakeGateway()
        store = SignedIdentityStore()
        store.set(SignedIdentity.from_dict({'peer_id': None, 'nonce': None, 'signature': None}))

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                return await service.report_status()

        assert trio.run(run_test) == ZERO_HASH
        assert gateway.sent == []

    def test_closed_nursery_skips_tracking(self, caplog):
        """Test a report made after the nursery closed is sent but not watched."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
            return await service.report_status()

        with caplog.at_level(logging.WARNING, logger="statusbeat.heartbeat"):
            tx_hash = trio.run(run_test)

        assert tx_hash == "0x" + f"{1:064x}"
        assert len(gateway.sent) == 1
        assert gateway.receipt_waits == []
        assert "Not tracking confirmation" in caplog.text


class TestCheckReportStatus:
    """Tests for StatusHeartService.check_report_status."""

    def test_success(self):
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                assert await service.check_report_status() is None

        trio.run(run_test)
        assert len(gateway.sent) == 1

    def test_logs_and_raises(self, caplog):
        """Test failures are logged and handed back to the caller."""
        gateway = FakeGateway()
        gateway.send_error = TransactionError("nonce too low")
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                with pytest.raises(TransactionError):
                    await service.check_report_status()

        with caplog.at_level(logging.ERROR, logger="statusbeat.heartbeat"):
            trio.run(run_test)

        assert "ReportStatus err" in caplog.text
        assert "nonce too low" in caplog.text


class TestQueryStatusHash:
    """Tests for the genHashExt diagnostic query."""

    def test_query(self):
        gateway = FakeGateway()
        gateway.call_result = encode(["bytes32"], [b"\x11" * 32])
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery)
                return await service.query_status_hash()

        assert trio.run(run_test) == b"\x11" * 32

        to, data = gateway.calls[0]
        assert to == CONTRACT
        name, args = CallEncoder().decode_call(data)
        assert name == GEN_HASH_EXT
        assert args == ("p1", 100, "1.0", 1, to_checksum_address(TEST_ADDRESS))
        assert gateway.sent == []


# ============================================================================
# INIT TESTS
# ============================================================================

class TestInitStatusHeart:
    """Tests for init_status_heart."""

    def test_missing_address(self):
        """Test that an unset contract address is a configuration error."""
        gateway = FakeGateway()

        async def run_test():
            async with trio.open_nursery() as nursery:
                with pytest.raises(ConfigurationError):
                    await init_status_heart(
                        gateway, SignedIdentityStore(), nursery, contract_address=""
                    )

        trio.run(run_test)
        assert gateway.sent == []

    def test_startup_failure_aborts(self):
        """Test a failing startup report aborts init and starts no loop."""
        gateway = FakeGateway()
        gateway.send_error = TransactionError("rpc unavailable")
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                with pytest.raises(TransactionError):
                    await init_status_heart(gateway, store, nursery, contract_address=CONTRACT)
                # Nursery exits on its own: nothing was left running
                await trio.sleep(INTERVAL * 3)

        run_with_mock_clock(run_test)
        assert len(gateway.sent) == 1

    def test_startup_with_empty_identity(self):
        """Test init succeeds before the identity exists."""
        gateway = FakeGateway()

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = await init_status_heart(
                    gateway, SignedIdentityStore(), nursery, contract_address=CONTRACT
                )
                assert service.is_running
                service.stop()

        run_with_mock_clock(run_test)
        assert gateway.sent == []

    @pytest.mark.timeout(30)
    def test_reports_immediately_then_every_interval(self):
        """Test startup report at t=0 followed by one report per interval."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                start = trio.current_time()
                service = await init_status_heart(
                    gateway, store, nursery, contract_address=CONTRACT, interval=INTERVAL
                )
                await trio.sleep(INTERVAL * 3 + INTERVAL / 2)
                service.stop()
            return start, service

        start, service = run_with_mock_clock(run_test)

        offsets = [t - start for t, *_ in gateway.sent]
        assert offsets == pytest.approx([0, 10, 20, 30])
        assert service.get_stats()['confirmed'] == 4
        assert not service.is_running


# ============================================================================
# LOOP TESTS
# ============================================================================

class TestReportLoop:
    """Tests for StatusHeartService.run_report_loop."""

    @pytest.mark.timeout(30)
    def test_ticks_spaced_and_not_drifting(self):
        """Test N ticks make N reports at least one interval apart."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())
        ticks = 20

        async def run_test():
            async with trio.open_nursery() as nursery:
                start = trio.current_time()
                service = StatusHeartService(CONTRACT, gateway, store, nursery, interval=INTERVAL)
                await nursery.start(service.run_report_loop)
                await trio.sleep(INTERVAL * ticks + INTERVAL / 2)
                service.stop()
            return start

        start = run_with_mock_clock(run_test)

        times = [t for t, *_ in gateway.sent]
        assert len(times) >= ticks
        for earlier, later in zip(times, times[1:]):
            assert later - earlier >= INTERVAL - 1e-6
        # Last tick still lands on the original schedule
        assert times[ticks - 1] - start == pytest.approx(INTERVAL * ticks)

    @pytest.mark.timeout(30)
    def test_slow_ticks_serialize(self):
        """Test an overrunning report delays the next tick instead of overlapping."""
        gateway = FakeGateway(send_delay=25)
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                start = trio.current_time()
                service = StatusHeartService(CONTRACT, gateway, store, nursery, interval=INTERVAL)
                await nursery.start(service.run_report_loop)
                await trio.sleep(100)
                service.stop()
            return start

        start = run_with_mock_clock(run_test)

        assert gateway.max_active_sends == 1
        offsets = [t - start for t, *_ in gateway.sent]
        # Ticks at 10 and 40 overrun to 35 and 65; missed slots are skipped
        assert offsets == pytest.approx([10, 40, 70, 100][:len(offsets)])
        assert len(offsets) >= 3

    @pytest.mark.timeout(30)
    def test_encoding_failure_does_not_stop_loop(self):
        """Test the tick after an encoding failure rebuilds from the current identity."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity(signature="0xzz"))

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery, interval=INTERVAL)
                await nursery.start(service.run_report_loop)
                await trio.sleep(INTERVAL + 2)        # first tick fails to encode
                store.update(signature=b"\x01" * 65, nonce=2)
                await trio.sleep(INTERVAL)            # second tick reports
                assert service.is_running
                service.stop()
            return service

        service = run_with_mock_clock(run_test)

        assert len(gateway.sent) == 1
        _, args = CallEncoder().decode_call(gateway.sent[0][2])
        assert args[3] == 2
        assert args[6] == b"\x01" * 65
        assert service.get_stats()['reports_failed'] == 1

    @pytest.mark.timeout(30)
    def test_send_failure_does_not_stop_loop(self):
        """Test gateway failures are swallowed by the loop."""
        gateway = FakeGateway()
        gateway.send_error = TransactionError("rpc down")
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery, interval=INTERVAL)
                await nursery.start(service.run_report_loop)
                await trio.sleep(INTERVAL * 2 + 5)    # two failing ticks
                gateway.send_error = None
                await trio.sleep(INTERVAL)            # recovers on the next tick
                service.stop()
            return service

        stats = run_with_mock_clock(run_test).get_stats()

        assert len(gateway.sent) == 3
        assert stats['reports_failed'] == 2
        assert stats['reports_sent'] == 1

    @pytest.mark.timeout(30)
    def test_watcher_fault_does_not_stop_loop(self):
        """Test watcher faults leave the loop and nursery running."""
        gateway = FakeGateway()
        gateway.receipt_error = ValueError("bad receipt")
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery, interval=INTERVAL)
                await nursery.start(service.run_report_loop)
                await trio.sleep(INTERVAL * 3 + 5)
                assert service.is_running
                service.stop()
            return service

        stats = run_with_mock_clock(run_test).get_stats()
        assert stats['reports_sent'] == 3
        assert stats['confirmation_failures'] == 3

    def test_stop_before_start(self):
        """Test stop() is harmless when no loop is running."""
        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(
                    CONTRACT, FakeGateway(), SignedIdentityStore(), nursery
                )
                service.stop()
                assert not service.is_running

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_second_start_is_noop(self):
        """Test starting the loop twice runs a single loop."""
        gateway = FakeGateway()
        store = SignedIdentityStore(create_test_identity())

        async def run_test():
            async with trio.open_nursery() as nursery:
                service = StatusHeartService(CONTRACT, gateway, store, nursery, interval=INTERVAL)
                await nursery.start(service.run_report_loop)
                await nursery.start(service.run_report_loop)
                await trio.sleep(INTERVAL * 2 + 5)
                service.stop()

        run_with_mock_clock(run_test)
        assert len(gateway.sent) == 2
