"""
statusbeat/contract - Call encoding for the status heart registry contract.
"""

from .abi import STATUS_HEART_ABI, REPORT_STATUS, GEN_HASH_EXT
from .encoder import CallEncoder, EncodingError

__all__ = [
    "STATUS_HEART_ABI",
    "REPORT_STATUS",
    "GEN_HASH_EXT",
    "CallEncoder",
    "EncodingError",
]
