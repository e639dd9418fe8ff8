"""
statusbeat/contract/encoder.py

Contract call encoding using eth-abi.

A call is the 4-byte function selector followed by the ABI encoding of
the typed arguments, in the order the interface description declares them.
"""

import logging
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import encode, decode
from eth_abi.exceptions import DecodingError, EncodingError as AbiEncodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .abi import STATUS_HEART_ABI

logger = logging.getLogger("statusbeat.contract.encoder")


class EncodingError(Exception):
    """Raised when arguments or call data cannot be encoded or decoded."""
    pass


def _normalize_address(value: Any) -> str:
    try:
        return to_checksum_address(value)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Invalid address {value!r}: {e}") from e


class CallEncoder:
    """
    Encodes and decodes calls for the functions of one contract.

    Example:
        encoder = CallEncoder(STATUS_HEART_ABI)
        data = encoder.encode("reportStatus", peer, created, version,
                              nonce, address, signed_time, signature)
        name, args = encoder.decode_call(data)
    """

    def __init__(self, abi: Sequence[Dict[str, Any]] = STATUS_HEART_ABI):
        self._inputs: Dict[str, List[str]] = {}
        self._outputs: Dict[str, List[str]] = {}
        self._selectors: Dict[bytes, str] = {}

        for entry in abi:
            if entry.get("type") != "function":
                continue
            name = entry["name"]
            inputs = [arg["type"] for arg in entry.get("inputs", [])]
            self._inputs[name] = inputs
            self._outputs[name] = [arg["type"] for arg in entry.get("outputs", [])]
            self._selectors[self.selector(name)] = name

    @property
    def functions(self) -> List[str]:
        return list(self._inputs)

    def input_types(self, name: str) -> List[str]:
        """Get the declared argument types of a function."""
        if name not in self._inputs:
            raise EncodingError(f"Unknown function: {name}")
        return list(self._inputs[name])

    def selector(self, name: str) -> bytes:
        """Get the 4-byte selector of a function."""
        signature = f"{name}({','.join(self.input_types(name))})"
        return function_signature_to_4byte_selector(signature)

    def encode(self, name: str, *args: Any) -> bytes:
        """
        Encode a call to a contract function.

        Args:
            name: Function name from the interface description
            *args: Arguments in declared order

        Returns:
            Selector followed by the encoded arguments

        Raises:
            EncodingError: On unknown function, wrong argument count,
                or a value that does not fit its declared type
        """
        types = self.input_types(name)
        if len(args) != len(types):
            raise EncodingError(
                f"{name} takes {len(types)} arguments, got {len(args)}"
            )

        values = [
            _normalize_address(value) if abi_type == "address" else value
            for abi_type, value in zip(types, args)
        ]

        try:
            encoded = encode(types, values)
        except AbiEncodingError as e:
            raise EncodingError(f"Failed to encode {name}: {e}") from e

        return self.selector(name) + encoded

    def decode_call(self, data: bytes) -> Tuple[str, tuple]:
        """
        Decode call data back into function name and arguments.

        Addresses are returned checksummed.
        """
        if len(data) < 4:
            raise EncodingError("Call data shorter than a selector")

        name = self._selectors.get(bytes(data[:4]))
        if name is None:
            raise EncodingError(f"Unknown selector: 0x{bytes(data[:4]).hex()}")

        types = self._inputs[name]
        try:
            values = decode(types, bytes(data[4:]))
        except DecodingError as e:
            raise EncodingError(f"Failed to decode {name} call: {e}") from e

        return name, tuple(
            to_checksum_address(value) if abi_type == "address" else value
            for abi_type, value in zip(types, values)
        )

    def decode_result(self, name: str, data: bytes) -> tuple:
        """Decode the return data of a read-only call."""
        if name not in self._outputs:
            raise EncodingError(f"Unknown function: {name}")
        try:
            return tuple(decode(self._outputs[name], bytes(data)))
        except DecodingError as e:
            raise EncodingError(f"Failed to decode {name} result: {e}") from e
