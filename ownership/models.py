"""
Asset Provenance Registry - Ownership Models

Transfer events are the append-only source of truth for token ownership;
ownership records are views derived from them on demand.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ledger.abi import ZERO_ADDRESS, same_address
from ledger.client import LogEntry
from ledger.contracts import TRANSFER


@dataclass(frozen=True)
class TransferEvent:
    """A token changing hands."""
    from_address: str
    to_address: str
    token_id: int
    block_number: int
    log_index: int
    tx_hash: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def is_mint(self) -> bool:
        return same_address(self.from_address, ZERO_ADDRESS)

    @classmethod
    def from_log(cls, log: LogEntry) -> 'TransferEvent':
        values = TRANSFER.decode_log(log.topics, log.data)
        return cls(
            from_address=values["from"],
            to_address=values["to"],
            token_id=values["tokenId"],
            block_number=log.block_number,
            log_index=log.log_index,
            tx_hash=log.transaction_hash,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "token_id": self.token_id,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "tx_hash": self.tx_hash
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferEvent':
        return cls(
            from_address=data["from"],
            to_address=data["to"],
            token_id=int(data["token_id"]),
            block_number=int(data["block_number"]),
            log_index=int(data["log_index"]),
            tx_hash=data.get("tx_hash"),
        )


@dataclass(frozen=True)
class OwnershipRecord:
    """Current ownership of one registered asset."""
    asset_id: str
    token_id: int
    owner: str
    token_contract: str
    registered_at: Optional[datetime] = None
    metadata_uri: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "token_id": self.token_id,
            "owner": self.owner,
            "token_contract": self.token_contract,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "metadata_uri": self.metadata_uri
        }


def fold_transfers(events: Iterable[TransferEvent],
                   latest: Optional[Dict[int, TransferEvent]] = None) -> Dict[int, TransferEvent]:
    """
    Replay transfers in (block, log index) order, keeping the latest per token.

    Args:
        events: Transfer events in any order, duplicates allowed
        latest: Existing fold to continue from

    Returns:
        Mapping of token id to the event that last moved it
    """
    latest = dict(latest or {})
    for event in sorted(set(events), key=lambda e: e.sort_key):
        current = latest.get(event.token_id)
        if current is None or event.sort_key >= current.sort_key:
            latest[event.token_id] = event
    return latest


def owned_token_ids(latest: Dict[int, TransferEvent], owner: str) -> List[int]:
    """Token ids whose latest transfer went to the owner."""
    return sorted(
        token_id for token_id, event in latest.items()
        if same_address(event.to_address, owner)
    )
