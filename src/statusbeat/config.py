"""
statusbeat/config.py

Configuration constants for statusbeat.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional


# Status heart registry contract
STATUS_HEART_ADDRESS = "0xE42016a68511BFfdcE74E04DD35DCD7bf75582c8"

# Report cadence
REPORT_STATUS_INTERVAL = 10          # seconds between status reports
REPORT_DESCRIPTION = "Report Heart Status"

# Confirmation tracking
RECEIPT_TIMEOUT = 120.0              # seconds to wait for a receipt
RECEIPT_POLL_INTERVAL = 1.0          # seconds between receipt polls

# Returned when there is nothing to report
ZERO_HASH = "0x" + "00" * 32

# Gas settings for the web3 gateway
GAS_ESTIMATE_MARGIN = 1.2            # multiplier over estimate_gas
RPC_REQUEST_TIMEOUT = 30             # seconds per JSON-RPC request

# Environment variables read by the node runner
ENV_RPC_URL = "STATUSBEAT_RPC_URL"
ENV_PRIVATE_KEY = "STATUSBEAT_PRIVATE_KEY"
ENV_IDENTITY_FILE = "STATUSBEAT_IDENTITY_FILE"
ENV_LOG_LEVEL = "STATUSBEAT_LOG_LEVEL"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass
class NodeSettings:
    """Deployment settings for the node runner."""
    rpc_url: str
    private_key: str = field(repr=False)
    identity_file: Optional[str] = None
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls, environ=None) -> "NodeSettings":
        """
        Load settings from environment variables.

        Raises:
            ConfigurationError: If a required variable is unset
        """
        environ = os.environ if environ is None else environ

        rpc_url = environ.get(ENV_RPC_URL, "")
        if not rpc_url:
            raise ConfigurationError(f"{ENV_RPC_URL} is not set")

        private_key = environ.get(ENV_PRIVATE_KEY, "")
        if not private_key:
            raise ConfigurationError(f"{ENV_PRIVATE_KEY} is not set")

        level_name = environ.get(ENV_LOG_LEVEL, "INFO").upper()
        log_level = logging.getLevelName(level_name)
        if not isinstance(log_level, int):
            raise ConfigurationError(f"Unknown log level: {level_name}")

        return cls(
            rpc_url=rpc_url,
            private_key=private_key,
            identity_file=environ.get(ENV_IDENTITY_FILE) or None,
            log_level=log_level,
        )
