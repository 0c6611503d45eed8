"""
Asset Provenance Registry - Incremental Transfer Index

Keeps the latest transfer of every token of one contract, advanced from a
checkpoint (the last scanned block) instead of rescanning a fixed window on
every query. The index can be persisted to a JSON file between runs.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ledger.abi import ABIError, same_address
from ledger.client import LedgerClient
from ledger.contracts import TRANSFER

from .models import TransferEvent, fold_transfers, owned_token_ids


class IndexStorageError(Exception):
    """Raised when an index snapshot cannot be read or written."""
    pass


class TransferIndex:
    """Checkpointed latest-transfer-per-token index for one token contract."""

    def __init__(self, token_contract: str, start_block: int = 0, chunk_size: int = 10_000,
                 path: Optional[Union[str, Path]] = None):
        """
        Initialize transfer index.

        Args:
            token_contract: Contract whose Transfer events are indexed
            start_block: First block to scan when no checkpoint exists
            chunk_size: Blocks per log query
            path: JSON file the index is saved to after every chunk
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.token_contract = token_contract
        self.start_block = start_block
        self.chunk_size = chunk_size
        self.path = Path(path) if path else None
        self.last_scanned_block: Optional[int] = None
        self.latest: Dict[int, TransferEvent] = {}
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()

    def refresh(self, ledger: LedgerClient, to_block: Optional[int] = None) -> int:
        """
        Scan new blocks up to to_block (chain head if None).

        A chunk's events are applied and the checkpoint advanced only after the
        whole chunk was read, so a failed query leaves the index consistent.

        Returns:
            Number of transfer events applied
        """
        with self._lock:
            head = ledger.block_number() if to_block is None else to_block
            start = self.start_block if self.last_scanned_block is None else self.last_scanned_block + 1
            applied = 0

            for chunk_start in range(start, head + 1, self.chunk_size):
                chunk_end = min(chunk_start + self.chunk_size - 1, head)
                logs = ledger.get_logs(
                    self.token_contract, [TRANSFER.topic],
                    from_block=chunk_start, to_block=chunk_end
                )
                events = []
                for log in logs:
                    try:
                        events.append(TransferEvent.from_log(log))
                    except ABIError as e:
                        self.logger.warning(f"Skipping undecodable transfer in block {log.block_number}: {e}")
                self.apply(events)
                self.last_scanned_block = chunk_end
                applied += len(events)

                if self.path:
                    self.save()

            if applied:
                self.logger.info(
                    f"Indexed {applied} transfers up to block {self.last_scanned_block}"
                )
            return applied

    def apply(self, events: List[TransferEvent]):
        with self._lock:
            self.latest = fold_transfers(events, self.latest)

    def owned_by(self, owner: str) -> List[int]:
        with self._lock:
            return owned_token_ids(self.latest, owner)

    def owner_of(self, token_id: int) -> Optional[str]:
        with self._lock:
            event = self.latest.get(token_id)
            return event.to_address if event else None

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "token_contract": self.token_contract,
                "last_scanned_block": self.last_scanned_block,
                "tokens": {str(k): v.to_dict() for k, v in sorted(self.latest.items())}
            }

    def save(self, path: Optional[Union[str, Path]] = None):
        """Write the index atomically (temporary file, then rename)."""
        target = Path(path) if path else self.path
        if target is None:
            raise IndexStorageError("No path configured for the transfer index")

        target.parent.mkdir(parents=True, exist_ok=True)
        temp_file = target.with_suffix(target.suffix + '.tmp')
        try:
            with open(temp_file, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)
            temp_file.replace(target)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise IndexStorageError(f"Failed to write transfer index: {e}")

    @classmethod
    def load(cls, path: Union[str, Path], token_contract: str, **kwargs) -> 'TransferIndex':
        """
        Load a saved index, or start an empty one if the file does not exist.

        Raises:
            IndexStorageError: If the file is unreadable or belongs to another contract
        """
        index = cls(token_contract, path=path, **kwargs)
        path = Path(path)
        if not path.exists():
            return index

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise IndexStorageError(f"Failed to read transfer index: {e}")

        if not same_address(data.get("token_contract"), token_contract):
            raise IndexStorageError(
                f"Index at {path} tracks {data.get('token_contract')}, not {token_contract}"
            )

        index.last_scanned_block = data.get("last_scanned_block")
        index.latest = {
            int(token_id): TransferEvent.from_dict(event)
            for token_id, event in data.get("tokens", {}).items()
        }
        return index
