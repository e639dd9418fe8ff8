"""
statusbeat/identity/store.py

Process-wide record of the node's signed identity.

The record is written by whatever process signs the node's identity
(onboarding, periodic re-signing) and read by the status reporter.
Records are immutable and swapped under a lock, so a reader observes a
concurrent update either fully or not at all.
"""

import json
import logging
import threading
from dataclasses import dataclass, asdict, replace
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger("statusbeat.identity")


@dataclass(frozen=True)
class SignedIdentity:
    """
    A node identity statement and its signature.

    An empty peer_id means onboarding has not finished yet and there is
    nothing to report.
    """
    peer_id: str = ""
    created_time: int = 0            # uint32, identity creation time
    version: str = ""
    nonce: int = 0                   # uint32, distinguishes signed statements
    chain_address: str = ""          # 20-byte ledger address, hex
    signed_time: int = 0             # uint32, signing time
    signature: Union[bytes, str] = b""   # raw bytes or hex

    def is_populated(self) -> bool:
        """Check whether the identity has been established."""
        return len(self.peer_id) > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        if isinstance(self.signature, bytes):
            data['signature'] = "0x" + self.signature.hex()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedIdentity":
        """
        Create a SignedIdentity from a dict.

        Missing or null keys fall back to the empty identity's values. The
        signature is kept as given (hex string) and decoded at encode time.
        """
        return cls(
            peer_id=data.get('peer_id') or '',
            created_time=int(data.get('created_time') or 0),
            version=data.get('version') or '',
            nonce=int(data.get('nonce') or 0),
            chain_address=data.get('chain_address') or '',
            signed_time=int(data.get('signed_time') or 0),
            signature=data.get('signature') or b'',
        )


EMPTY_IDENTITY = SignedIdentity()


class SignedIdentityStore:
    """
    Thread-safe holder for the current SignedIdentity.

    Usage:
        store = SignedIdentityStore()

        # Signing side
        store.update(peer_id="16Uiu2...", nonce=4, signature=sig)

        # Reporting side
        identity = store.read()
        if identity.is_populated():
            ...
    """

    def __init__(self, identity: SignedIdentity = EMPTY_IDENTITY):
        self._lock = threading.Lock()
        self._identity = identity

    def read(self) -> SignedIdentity:
        """Get a consistent snapshot of the current identity."""
        with self._lock:
            return self._identity

    def set(self, identity: SignedIdentity) -> None:
        """Replace the whole identity record."""
        with self._lock:
            self._identity = identity
        logger.debug(f"Signed identity set: peer_id={identity.peer_id} nonce={identity.nonce}")

    def update(self, **fields) -> SignedIdentity:
        """
        Update selected fields of the identity.

        Returns:
            The identity as stored after the update
        """
        with self._lock:
            self._identity = replace(self._identity, **fields)
            return self._identity

    def clear(self) -> None:
        """Reset to the empty (not yet established) identity."""
        self.set(EMPTY_IDENTITY)

    def load_json(self, path: Union[str, Path]) -> SignedIdentity:
        """
        Replace the identity with the contents of a JSON file.

        Args:
            path: File holding a SignedIdentity.to_dict() document

        Returns:
            The loaded identity
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        identity = SignedIdentity.from_dict(data)
        self.set(identity)
        return identity
