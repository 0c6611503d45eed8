"""
Asset Provenance Registry - Ledger Configuration
"""

import os
from dataclasses import dataclass
from typing import Optional

from .abi import is_address
from .contracts import (
    AENEID_CHAIN_ID,
    AENEID_RPC_URL,
    DEFAULT_GAS_LIMIT,
    IP_ASSET_REGISTRY_ADDRESS,
    PUBLIC_TOKEN_CONTRACT_ADDRESS,
    REGISTRATION_WORKFLOWS_ADDRESS,
)


@dataclass
class LedgerConfig:
    """Configuration for the ledger JSON-RPC connection and contract addresses."""
    rpc_url: str = AENEID_RPC_URL
    chain_id: int = AENEID_CHAIN_ID
    timeout: int = 30
    ssl_verify: bool = True
    # Transport-level retries stay off; callers own retry policy
    max_retries: int = 0
    registration_workflows: str = REGISTRATION_WORKFLOWS_ADDRESS
    token_contract: str = PUBLIC_TOKEN_CONTRACT_ADDRESS
    # None means resolve from the workflows contract on first use
    ip_asset_registry: Optional[str] = IP_ASSET_REGISTRY_ADDRESS
    sender_address: Optional[str] = None
    gas_limit: int = DEFAULT_GAS_LIMIT
    confirmation_timeout: float = 120.0
    confirmation_poll_interval: float = 2.0
    pool_maxsize: int = 10

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.rpc_url:
            raise ValueError("rpc_url is required")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

        for name in ('registration_workflows', 'token_contract', 'ip_asset_registry', 'sender_address'):
            value = getattr(self, name)
            if value is not None and not is_address(value):
                raise ValueError(f"Invalid {name} address: {value}")

    @classmethod
    def from_env(cls) -> 'LedgerConfig':
        """Create ledger config from environment variables."""
        return cls(
            rpc_url=os.getenv("LEDGER_RPC_URL", AENEID_RPC_URL),
            chain_id=int(os.getenv("LEDGER_CHAIN_ID", str(AENEID_CHAIN_ID))),
            timeout=int(os.getenv("LEDGER_RPC_TIMEOUT", "30")),
            ssl_verify=os.getenv("LEDGER_RPC_SSL_VERIFY", "true").lower() == "true",
            registration_workflows=os.getenv("LEDGER_REGISTRATION_WORKFLOWS", REGISTRATION_WORKFLOWS_ADDRESS),
            token_contract=os.getenv("LEDGER_TOKEN_CONTRACT", PUBLIC_TOKEN_CONTRACT_ADDRESS),
            ip_asset_registry=os.getenv("LEDGER_IP_ASSET_REGISTRY", IP_ASSET_REGISTRY_ADDRESS) or None,
            sender_address=os.getenv("LEDGER_SENDER_ADDRESS"),
            gas_limit=int(os.getenv("LEDGER_GAS_LIMIT", str(DEFAULT_GAS_LIMIT))),
            confirmation_timeout=float(os.getenv("LEDGER_CONFIRMATION_TIMEOUT", "120")),
        )
