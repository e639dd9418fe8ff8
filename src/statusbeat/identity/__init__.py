"""
statusbeat/identity - Signed node identity shared with the status reporter.
"""

from .store import SignedIdentity, SignedIdentityStore, EMPTY_IDENTITY

__all__ = [
    "SignedIdentity",
    "SignedIdentityStore",
    "EMPTY_IDENTITY",
]
