"""
Asset Provenance Registry - Ledger Client

This module provides the read, simulate, and write primitives the registration
and ownership components are built on, on top of the JSON-RPC transport.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .abi import ContractFunction, hex_to_int, int_to_hex, is_address
from .config import LedgerConfig
from .contracts import IP_ASSET_REGISTRY_GETTER, IP_ID
from .errors import DecodedRevert, decode_revert, extract_revert_data
from .rpc import LedgerRPCClient, RPCAuthError, RPCConnectionError, RPCError, RPCTimeoutError


class LedgerWaitError(Exception):
    """Base exception for blocking waits on the ledger."""
    pass


class ConfirmationTimeout(LedgerWaitError):
    """Transaction was not mined within the allowed time."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Transaction {tx_hash} not confirmed after {timeout}s")


class WaitCancelled(LedgerWaitError):
    """A blocking wait was abandoned through its cancellation event."""
    pass


# Errors that say nothing about the call itself
TRANSPORT_ERRORS = (RPCConnectionError, RPCTimeoutError, RPCAuthError)


@dataclass
class LogEntry:
    """A decoded-enough log record as returned by the node."""
    address: str
    topics: List[str]
    data: str
    block_number: int
    log_index: int
    transaction_hash: Optional[str] = None

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> 'LogEntry':
        return cls(
            address=raw.get("address", ""),
            topics=[t.lower() for t in raw.get("topics", [])],
            data=raw.get("data", "0x"),
            block_number=hex_to_int(raw.get("blockNumber", "0x0")),
            log_index=hex_to_int(raw.get("logIndex", "0x0")),
            transaction_hash=raw.get("transactionHash"),
        )


@dataclass
class Receipt:
    """Transaction receipt."""
    transaction_hash: str
    block_number: int
    status: bool
    logs: List[LogEntry] = field(default_factory=list)
    gas_used: Optional[int] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> 'Receipt':
        gas_used = raw.get("gasUsed")
        return cls(
            transaction_hash=raw.get("transactionHash", ""),
            block_number=hex_to_int(raw.get("blockNumber", "0x0")),
            status=hex_to_int(raw.get("status", "0x1")) == 1,
            logs=[LogEntry.from_rpc(log) for log in raw.get("logs", [])],
            gas_used=hex_to_int(gas_used) if gas_used is not None else None,
            from_address=raw.get("from"),
            to_address=raw.get("to"),
        )


@dataclass
class TransactionParams:
    """Parameters of a state-changing call."""
    from_address: str
    to: str
    data: str
    gas: Optional[int] = None
    value: int = 0

    def __post_init__(self):
        if not is_address(self.from_address):
            raise ValueError(f"Invalid sender address: {self.from_address}")
        if not is_address(self.to):
            raise ValueError(f"Invalid target address: {self.to}")

    def to_rpc(self) -> Dict[str, Any]:
        params = {
            "from": self.from_address,
            "to": self.to,
            "data": self.data,
            "value": int_to_hex(self.value),
        }
        if self.gas is not None:
            params["gas"] = int_to_hex(self.gas)
        return params


@dataclass
class SimulationResult:
    """Outcome of a dry-run call."""
    ok: bool
    return_data: Optional[str] = None
    revert: Optional[DecodedRevert] = None

    @property
    def decoded_reason(self) -> Optional[str]:
        return self.revert.describe() if self.revert else None


class LedgerClient:
    """
    Read, simulate, and submit operations against the ledger.

    One instance is shared by every component of a workflow and may be used
    from several threads at once.
    """

    def __init__(self, rpc: Optional[LedgerRPCClient] = None, config: Optional[LedgerConfig] = None):
        """
        Initialize ledger client.

        Args:
            rpc: JSON-RPC transport (created from config if None)
            config: Ledger configuration (uses the transport's or environment if None)
        """
        self.config = config or (rpc.config if rpc is not None else LedgerConfig.from_env())
        self.rpc = rpc or LedgerRPCClient(self.config)
        self.logger = logging.getLogger(__name__)

        self._registry_address = self.config.ip_asset_registry
        self._registry_lock = threading.Lock()

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    def registry_address(self) -> str:
        """
        Asset registry address, resolved once from the workflows contract
        when not configured and reused afterwards.
        """
        address = self._registry_address
        if address is not None:
            return address

        with self._registry_lock:
            if self._registry_address is None:
                resolved = self.read_view(
                    self.config.registration_workflows, IP_ASSET_REGISTRY_GETTER
                )
                self.logger.info(f"Resolved asset registry address: {resolved}")
                self._registry_address = resolved
            return self._registry_address

    def asset_id(self, token_contract: str, token_id: int) -> str:
        """Asset identifier the registry derives from (chain id, token contract, token id)."""
        return self.read_view(self.registry_address(), IP_ID, self.chain_id, token_contract, token_id)

    def read_view(self, contract: str, function: ContractFunction, *args: Any,
                  block: Any = "latest") -> Any:
        """
        Call a view function and decode its result.

        Raises:
            RPCError: If the node rejects the call
            ABIError: If the returned data cannot be decoded
        """
        call = {"to": contract, "data": function.encode_call(*args)}
        return function.decode_output(self.rpc.call(call, block))

    def simulate(self, transaction: TransactionParams) -> SimulationResult:
        """
        Dry-run a state-changing call.

        Transport failures propagate; node-reported execution failures are
        decoded and returned as an unsuccessful result.
        """
        try:
            return_data = self.rpc.call(transaction.to_rpc())
        except TRANSPORT_ERRORS:
            raise
        except RPCError as e:
            revert = decode_revert(extract_revert_data(e.data), e.message)
            self.logger.warning(f"Simulation reverted: {revert.describe()}")
            return SimulationResult(ok=False, revert=revert)

        return SimulationResult(ok=True, return_data=return_data)

    def submit(self, transaction: TransactionParams) -> str:
        """Broadcast a transaction and return its hash."""
        tx_hash = self.rpc.send_transaction(transaction.to_rpc())
        self.logger.info(f"Submitted transaction {tx_hash}")
        return tx_hash

    def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None,
                           poll_interval: Optional[float] = None,
                           cancel_event: Optional[threading.Event] = None) -> Receipt:
        """
        Poll for a receipt until the transaction is mined.

        Args:
            tx_hash: Transaction hash
            timeout: Seconds to wait (config default if None)
            poll_interval: Seconds between polls (config default if None)
            cancel_event: Set to abandon the wait

        Raises:
            ConfirmationTimeout: If no receipt appears in time
            WaitCancelled: If cancel_event is set
        """
        timeout = self.config.confirmation_timeout if timeout is None else timeout
        poll_interval = self.config.confirmation_poll_interval if poll_interval is None else poll_interval
        deadline = time.monotonic() + timeout

        while True:
            try:
                raw = self.rpc.get_transaction_receipt(tx_hash)
            except (RPCConnectionError, RPCTimeoutError) as e:
                self.logger.warning(f"Receipt poll for {tx_hash} failed: {e}")
                raw = None

            if raw:
                receipt = Receipt.from_rpc(raw)
                self.logger.info(
                    f"Transaction {tx_hash} mined in block {receipt.block_number} "
                    f"(status={'success' if receipt.succeeded else 'reverted'})"
                )
                return receipt

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeout(tx_hash, timeout)

            delay = min(poll_interval, remaining)
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise WaitCancelled(f"Confirmation wait for {tx_hash} cancelled")
            else:
                time.sleep(delay)

    def replay_revert(self, transaction: TransactionParams, block_number: int) -> Optional[DecodedRevert]:
        """Re-run a failed transaction as a call at its block to recover the revert reason."""
        replay_block = max(block_number - 1, 0)
        try:
            self.rpc.call(transaction.to_rpc(), replay_block)
        except TRANSPORT_ERRORS as e:
            self.logger.warning(f"Could not replay transaction: {e}")
            return None
        except RPCError as e:
            return decode_revert(extract_revert_data(e.data), e.message)
        return None

    def get_balance(self, address: str) -> int:
        return self.rpc.get_balance(address)

    def get_code(self, address: str) -> str:
        return self.rpc.get_code(address)

    def block_number(self) -> int:
        return self.rpc.block_number()

    def node_chain_id(self) -> int:
        """Chain id reported by the node, as opposed to the configured one."""
        return self.rpc.chain_id()

    def block_timestamp(self, block_number: int) -> Optional[int]:
        block = self.rpc.get_block_by_number(block_number)
        if not block:
            return None
        return hex_to_int(block.get("timestamp", "0x0"))

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        raw = self.rpc.get_transaction_receipt(tx_hash)
        return Receipt.from_rpc(raw) if raw else None

    def get_logs(self, address: str, topics: Sequence[Optional[str]],
                 from_block: int, to_block: Any = "latest") -> List[LogEntry]:
        """
        Query logs emitted by a contract.

        Args:
            address: Emitting contract
            topics: Topic filter; None matches any value in that position
            from_block: First block (inclusive)
            to_block: Last block (inclusive) or tag
        """
        log_filter = {
            "address": address,
            "topics": list(topics),
            "fromBlock": int_to_hex(max(from_block, 0)),
            "toBlock": int_to_hex(to_block) if isinstance(to_block, int) else to_block,
        }
        return [LogEntry.from_rpc(raw) for raw in self.rpc.get_logs(log_filter)]

    def close(self):
        self.rpc.close()
