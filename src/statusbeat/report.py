"""
statusbeat/report.py

Builds status reports from the node's signed identity.

A report is a "reportStatus" contract call carrying the identity fields
in a fixed order:

    (peer_id, created_time, version, nonce, chain_address, signed_time, signature)
     string   uint32        string   uint32 address        uint32       bytes

Nothing is built until the identity has a peer_id.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .config import REPORT_DESCRIPTION
from .contract import CallEncoder, EncodingError, REPORT_STATUS
from .identity import SignedIdentity

logger = logging.getLogger("statusbeat.report")


@dataclass
class ReportTask:
    """One status report on its way to the ledger."""
    payload: bytes
    to: str
    value: int = 0
    description: str = REPORT_DESCRIPTION
    tx_hash: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'payload': "0x" + self.payload.hex(),
            'to': self.to,
            'value': self.value,
            'description': self.description,
            'tx_hash': self.tx_hash,
        }


def decode_signature(signature: Union[bytes, str]) -> bytes:
    """
    Get raw signature bytes.

    Hex strings may carry a 0x prefix.

    Raises:
        EncodingError: If the hex is malformed
    """
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    if not isinstance(signature, str):
        raise EncodingError(f"Unsupported signature type: {type(signature).__name__}")
    if signature.startswith("0x"):
        signature = signature[2:]
    try:
        return bytes.fromhex(signature)
    except ValueError as e:
        raise EncodingError(f"Malformed signature hex: {e}") from e


def report_args(identity: SignedIdentity) -> tuple:
    """Get reportStatus arguments from an identity, in contract order."""
    return (
        identity.peer_id,
        identity.created_time,
        identity.version,
        identity.nonce,
        identity.chain_address,
        identity.signed_time,
        decode_signature(identity.signature),
    )


def build_report(
    identity: SignedIdentity,
    contract_address: str,
    encoder: CallEncoder,
) -> Optional[ReportTask]:
    """
    Build the status report for an identity snapshot.

    Args:
        identity: Snapshot of the signed identity
        contract_address: Status heart contract to report to
        encoder: Call encoder for the status heart contract

    Returns:
        ReportTask, or None if the identity is not established yet

    Raises:
        EncodingError: If a field cannot be encoded
    """
    if not identity.is_populated():
        return None

    args = report_args(identity)
    logger.debug(
        f"Building status report: peer={identity.peer_id} created={identity.created_time} "
        f"version={identity.version} nonce={identity.nonce} "
        f"address={identity.chain_address} signed={identity.signed_time}"
    )

    payload = encoder.encode(REPORT_STATUS, *args)
    return ReportTask(payload=payload, to=contract_address)


class ReportBuilder:
    """Builds reports for one contract address."""

    def __init__(self, contract_address: str, encoder: Optional[CallEncoder] = None):
        self.contract_address = contract_address
        self.encoder = encoder or CallEncoder()

    def build(self, identity: SignedIdentity) -> Optional[ReportTask]:
        return build_report(identity, self.contract_address, self.encoder)
