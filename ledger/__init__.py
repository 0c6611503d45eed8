"""
Asset Provenance Registry - Ledger Access

This package provides the JSON-RPC transport, contract ABI handling, revert
decoding, and the read/simulate/submit client used by the registration and
ownership components.
"""

from .abi import (
    ABIError,
    ContractEvent,
    ContractFunction,
    ZERO_ADDRESS,
    is_address,
    keccak256,
    same_address,
    to_checksum_address,
)

from .client import (
    ConfirmationTimeout,
    LedgerClient,
    LedgerWaitError,
    LogEntry,
    Receipt,
    SimulationResult,
    TransactionParams,
    WaitCancelled,
)

from .config import LedgerConfig
from .errors import DecodedRevert, decode_revert
from .rpc import LedgerRPCClient, RPCAuthError, RPCConnectionError, RPCError, RPCTimeoutError

__all__ = [
    "ABIError",
    "ContractEvent",
    "ContractFunction",
    "ZERO_ADDRESS",
    "is_address",
    "keccak256",
    "same_address",
    "to_checksum_address",
    "ConfirmationTimeout",
    "LedgerClient",
    "LedgerWaitError",
    "LogEntry",
    "Receipt",
    "SimulationResult",
    "TransactionParams",
    "WaitCancelled",
    "LedgerConfig",
    "DecodedRevert",
    "decode_revert",
    "LedgerRPCClient",
    "RPCAuthError",
    "RPCConnectionError",
    "RPCError",
    "RPCTimeoutError",
]
