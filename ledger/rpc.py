"""
Asset Provenance Registry - Ledger JSON-RPC Client

This module provides the JSON-RPC transport to the ledger node with connection
pooling, error mapping, and per-method statistics. It performs no retries of its
own; callers decide the retry policy for each operation.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .abi import hex_to_int, int_to_hex
from .config import LedgerConfig


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class RPCConnectionError(RPCError):
    """Exception for RPC connection failures."""
    pass


class RPCAuthError(RPCError):
    """Exception for RPC authentication failures."""
    pass


class RPCTimeoutError(RPCError):
    """Exception for RPC timeout errors."""
    pass


@dataclass
class RPCResponse:
    """Represents an RPC response with metadata."""
    result: Any
    error: Optional[Dict[str, Any]] = None
    id: Optional[Union[str, int]] = None
    request_time: float = 0.0
    response_time: float = 0.0

    def is_success(self) -> bool:
        return self.error is None

    def get_error_code(self) -> Optional[int]:
        return self.error.get("code") if self.error else None

    def get_error_message(self) -> Optional[str]:
        return self.error.get("message") if self.error else None


class ConnectionPool:
    """HTTP connection pool for JSON-RPC requests."""

    def __init__(self, config: LedgerConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.session = requests.Session()

        # raise_on_status=False hands exhausted-retry responses back for mapping below
        retry_strategy = Retry(
            total=config.max_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=config.pool_maxsize)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self._request_counter = 0
        self._stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "total_time": 0.0,
            "last_request_time": None
        }
        self._stats_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._stats_lock:
            self._request_counter += 1
            return self._request_counter

    def _record_failure(self):
        with self._stats_lock:
            self._stats["failed_requests"] += 1

    def request(self, method: str, params: List[Any]) -> RPCResponse:
        """Make a JSON-RPC request."""
        start_time = time.time()

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._next_id()
        }

        headers = {
            "Content-Type": "application/json",
            "User-Agent": "provenance-registry/1.0"
        }

        try:
            response = self.session.post(
                self.config.rpc_url,
                data=json.dumps(payload),
                headers=headers,
                timeout=self.config.timeout,
                verify=self.config.ssl_verify
            )

            request_time = time.time() - start_time

            with self._stats_lock:
                self._stats["total_requests"] += 1
                self._stats["total_time"] += request_time
                self._stats["last_request_time"] = datetime.now(timezone.utc)

            if response.status_code in (401, 403):
                self._record_failure()
                raise RPCAuthError(response.status_code, "Authentication failed")

            if response.status_code != 200:
                self._record_failure()
                raise RPCConnectionError(
                    response.status_code,
                    f"HTTP {response.status_code}: {response.reason}"
                )

            try:
                response_data = response.json()
            except ValueError as e:
                self._record_failure()
                raise RPCError(-32700, f"Invalid JSON response: {e}")

            rpc_response = RPCResponse(
                result=response_data.get("result"),
                error=response_data.get("error"),
                id=response_data.get("id"),
                request_time=start_time,
                response_time=time.time()
            )

            if rpc_response.error:
                self._record_failure()
                raise RPCError(
                    rpc_response.get_error_code(),
                    rpc_response.get_error_message(),
                    rpc_response.error.get("data")
                )

            with self._stats_lock:
                self._stats["successful_requests"] += 1

            return rpc_response

        except requests.exceptions.Timeout:
            self._record_failure()
            raise RPCTimeoutError(-1, f"Request timed out after {self.config.timeout}s")

        except requests.exceptions.ConnectionError as e:
            self._record_failure()
            raise RPCConnectionError(-1, f"Connection error: {e}")

        except requests.exceptions.RequestException as e:
            self._record_failure()
            raise RPCError(-1, f"Request failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        with self._stats_lock:
            stats = self._stats.copy()

        total = stats["total_requests"]
        return {
            **stats,
            "average_request_time": stats["total_time"] / total if total > 0 else 0,
            "success_rate": stats["successful_requests"] / total if total > 0 else 0,
            "config": {
                "rpc_url": self.config.rpc_url,
                "timeout": self.config.timeout,
                "max_retries": self.config.max_retries
            }
        }

    def close(self):
        if self.session:
            self.session.close()


class LedgerRPCClient:
    """
    JSON-RPC client exposing the node methods the registry depends on.

    Quantities are converted to and from Python integers; everything else is
    passed through as returned by the node.
    """

    def __init__(self, config: Optional[LedgerConfig] = None):
        """
        Initialize ledger RPC client.

        Args:
            config: Ledger configuration (uses environment if None)
        """
        self.config = config or LedgerConfig.from_env()
        self.pool = ConnectionPool(self.config)
        self.logger = logging.getLogger(__name__)

        self._method_stats: Dict[str, Dict[str, Any]] = {}
        self._method_stats_lock = threading.Lock()

    def _method_entry(self, method: str) -> Dict[str, Any]:
        if method not in self._method_stats:
            self._method_stats[method] = {
                "calls": 0,
                "total_time": 0.0,
                "errors": 0,
                "last_call": None
            }
        return self._method_stats[method]

    def _call(self, method: str, *params) -> Any:
        """
        Make an RPC call and return the result.

        Raises:
            RPCError: If the call fails at the transport or node level
        """
        start_time = time.time()

        try:
            response = self.pool.request(method, list(params))
        except RPCError as e:
            with self._method_stats_lock:
                self._method_entry(method)["errors"] += 1
            self.logger.debug(f"RPC call {method} failed: {e}")
            raise

        with self._method_stats_lock:
            stats = self._method_entry(method)
            stats["calls"] += 1
            stats["total_time"] += time.time() - start_time
            stats["last_call"] = datetime.now(timezone.utc)

        return response.result

    # Chain state

    def chain_id(self) -> int:
        return hex_to_int(self._call("eth_chainId"))

    def block_number(self) -> int:
        return hex_to_int(self._call("eth_blockNumber"))

    def get_balance(self, address: str, block: str = "latest") -> int:
        """Native balance in wei."""
        return hex_to_int(self._call("eth_getBalance", address, block))

    def get_code(self, address: str, block: str = "latest") -> str:
        return self._call("eth_getCode", address, block) or "0x"

    def get_block_by_number(self, number: Union[int, str], full_transactions: bool = False) -> Optional[Dict[str, Any]]:
        tag = int_to_hex(number) if isinstance(number, int) else number
        return self._call("eth_getBlockByNumber", tag, full_transactions)

    # Calls and transactions

    def call(self, transaction: Dict[str, Any], block: Union[int, str] = "latest") -> str:
        """
        Execute a message call without creating a transaction.

        Args:
            transaction: Call object (from, to, data, gas, value)
            block: Block number or tag to execute against

        Returns:
            Hex return data
        """
        tag = int_to_hex(block) if isinstance(block, int) else block
        return self._call("eth_call", transaction, tag)

    def send_transaction(self, transaction: Dict[str, Any]) -> str:
        """Submit a transaction signed by the node-managed sender account."""
        return self._call("eth_sendTransaction", transaction)

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt for a mined transaction, or None while pending."""
        return self._call("eth_getTransactionReceipt", tx_hash)

    def get_logs(self, log_filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Query logs.

        Args:
            log_filter: Filter object with address, topics, fromBlock and toBlock

        Returns:
            Raw log objects
        """
        return self._call("eth_getLogs", log_filter) or []

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        with self._method_stats_lock:
            method_stats = {name: dict(stats) for name, stats in self._method_stats.items()}

        return {
            "connection": self.pool.get_stats(),
            "methods": method_stats
        }

    def close(self):
        self.pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
