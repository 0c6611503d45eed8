"""
Asset Provenance Registry - Ownership Indexer

This module answers "which assets does this address own". The token contract
cannot enumerate tokens by owner, so ownership is rebuilt from Transfer events:
transfers to and from the owner in a recent block window are replayed in
(block, log index) order, the surviving candidates are confirmed with ownerOf,
and each confirmed token is mapped to its asset identifier. When the window
holds nothing but the owner has a balance, the newest token ids are checked
directly instead.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ledger.abi import ABIError, address_topic, is_address, same_address, to_checksum_address
from ledger.client import LedgerClient
from ledger.contracts import BALANCE_OF, IP_REGISTERED, OWNER_OF, TOTAL_SUPPLY, TRANSFER
from ledger.rpc import RPCError

from .checkpoint import TransferIndex
from .exceptions import OwnershipQueryError
from .models import OwnershipRecord, TransferEvent, fold_transfers, owned_token_ids


@dataclass
class IndexerConfig:
    """Configuration for ownership reconstruction."""
    block_window: int = 50_000
    verify_batch_size: int = 10
    brute_force_window: int = 1000
    brute_force_batch_size: int = 50
    # Split log queries into ranges of at most this many blocks (None = single query)
    max_block_range: Optional[int] = None
    resolve_metadata_uris: bool = True
    resolve_timestamps: bool = True
    # Blocks searched for registrations older than the window (None = from genesis)
    registration_lookup_window: Optional[int] = None

    def __post_init__(self):
        if self.verify_batch_size <= 0 or self.brute_force_batch_size <= 0:
            raise ValueError("Batch sizes must be positive")
        if self.block_window <= 0:
            raise ValueError("block_window must be positive")

    @classmethod
    def from_env(cls) -> 'IndexerConfig':
        max_range = os.getenv("INDEXER_MAX_BLOCK_RANGE")
        lookup_window = os.getenv("INDEXER_REGISTRATION_LOOKUP_WINDOW")
        return cls(
            block_window=int(os.getenv("INDEXER_BLOCK_WINDOW", "50000")),
            verify_batch_size=int(os.getenv("INDEXER_VERIFY_BATCH_SIZE", "10")),
            brute_force_window=int(os.getenv("INDEXER_BRUTE_FORCE_WINDOW", "1000")),
            brute_force_batch_size=int(os.getenv("INDEXER_BRUTE_FORCE_BATCH_SIZE", "50")),
            max_block_range=int(max_range) if max_range else None,
            registration_lookup_window=int(lookup_window) if lookup_window else None,
        )


class OwnershipIndexer:
    """Reconstructs current ownership from the transfer log."""

    def __init__(self, ledger: LedgerClient, token_contract: Optional[str] = None,
                 config: Optional[IndexerConfig] = None,
                 transfer_index: Optional[TransferIndex] = None):
        """
        Initialize ownership indexer.

        Args:
            ledger: Shared ledger client
            token_contract: Ownership token contract (ledger default if None)
            config: Indexer configuration
            transfer_index: Incremental index used instead of the window scan
        """
        self.ledger = ledger
        self.token_contract = token_contract or ledger.config.token_contract
        self.config = config or IndexerConfig()
        self.transfer_index = transfer_index
        self.logger = logging.getLogger(__name__)

    def owned_assets(self, owner: str) -> List[OwnershipRecord]:
        """
        List the registered assets an address currently owns.

        Args:
            owner: Address to query

        Returns:
            Ownership records ordered by token id

        Raises:
            OwnershipQueryError: If the balance or chain head cannot be read
        """
        if not is_address(owner):
            raise ValueError(f"Invalid owner address: {owner}")

        try:
            balance = self.ledger.read_view(self.token_contract, BALANCE_OF, owner)
        except (RPCError, ABIError) as e:
            self.logger.error(f"Balance query for {owner} failed: {e}")
            raise OwnershipQueryError(f"balanceOf({owner}) failed: {e}", step="balance") from e
        if balance == 0:
            self.logger.debug(f"{owner} holds no tokens")
            return []

        try:
            head = self.ledger.block_number()
        except RPCError as e:
            self.logger.error(f"Chain head unavailable: {e}")
            raise OwnershipQueryError(f"Block number query failed: {e}", step="head") from e
        latest: Dict[int, TransferEvent] = {}
        try:
            latest = self._latest_transfers(owner, head)
            candidates = owned_token_ids(latest, owner)
        except RPCError as e:
            self.logger.warning(f"Transfer scan failed, falling back to direct checks: {e}")
            candidates = []

        if candidates:
            verified = self.verify_owners(candidates, owner)
        else:
            self.logger.info(
                f"No transfers for {owner} in scanned blocks but balance is {balance}; "
                f"checking the newest {self.config.brute_force_window} tokens"
            )
            verified = self._brute_force(owner, balance)

        records = self._build_records(verified, owner, latest, head)
        self.logger.info(f"{owner} owns {len(records)} assets (balance {balance})")
        return records

    def verify_owners(self, token_ids: Sequence[int], owner: str) -> List[int]:
        """
        Confirm ownership of each token with ownerOf, in concurrent batches.

        Tokens whose check fails or names another owner are dropped.
        """
        results = self._run_batches(
            token_ids,
            lambda token_id: self.ledger.read_view(self.token_contract, OWNER_OF, token_id),
            self.config.verify_batch_size,
        )
        verified = []
        for token_id in token_ids:
            actual = results.get(token_id)
            if actual is None:
                continue
            if same_address(actual, owner):
                verified.append(token_id)
            else:
                self.logger.debug(f"Token {token_id} now belongs to {actual}, not {owner}")
        return sorted(verified)

    def _latest_transfers(self, owner: str, head: int) -> Dict[int, TransferEvent]:
        if self.transfer_index is not None:
            self.transfer_index.refresh(self.ledger, head)
            return {
                token_id: event for token_id, event in self.transfer_index.latest.items()
                if same_address(event.to_address, owner) or same_address(event.from_address, owner)
            }

        from_block = max(head - self.config.block_window, 0)
        owner_topic = address_topic(owner)
        received = self._query_transfers([TRANSFER.topic, None, owner_topic], from_block, head)
        sent = self._query_transfers([TRANSFER.topic, owner_topic], from_block, head)
        return fold_transfers(received + sent)

    def _query_transfers(self, topics: List[Optional[str]], from_block: int, to_block: int) -> List[TransferEvent]:
        step = self.config.max_block_range or (to_block - from_block + 1)
        events = []
        for start in range(from_block, to_block + 1, step):
            end = min(start + step - 1, to_block)
            for log in self.ledger.get_logs(self.token_contract, topics, start, end):
                try:
                    events.append(TransferEvent.from_log(log))
                except ABIError as e:
                    self.logger.warning(f"Skipping undecodable transfer in block {log.block_number}: {e}")
        return events

    def _brute_force(self, owner: str, balance: int) -> List[int]:
        try:
            total = self.ledger.read_view(self.token_contract, TOTAL_SUPPLY)
        except (RPCError, ABIError) as e:
            self.logger.warning(f"Total supply unavailable: {e}")
            return []

        lowest = max(total - self.config.brute_force_window + 1, 1)
        found: List[int] = []
        upper = total

        while upper >= lowest and len(found) < balance:
            lower = max(upper - self.config.brute_force_batch_size + 1, lowest)
            batch = list(range(upper, lower - 1, -1))
            found.extend(self.verify_owners(batch, owner))
            upper = lower - 1

        return sorted(found)

    def _build_records(self, token_ids: List[int], owner: str,
                       latest: Dict[int, TransferEvent], head: int) -> List[OwnershipRecord]:
        if not token_ids:
            return []

        asset_ids = self._run_batches(
            token_ids,
            lambda token_id: self.ledger.asset_id(self.token_contract, token_id),
            self.config.verify_batch_size,
        )
        resolve = self.config.resolve_metadata_uris or self.config.resolve_timestamps
        registrations = self._registrations(head) if resolve else {}
        timestamps: Dict[int, Optional[datetime]] = {}
        owner = to_checksum_address(owner)

        records = []
        for token_id in token_ids:
            asset_id = asset_ids.get(token_id)
            if asset_id is None:
                continue

            registration = registrations.get(asset_id.lower())
            if registration is None and resolve:
                registration = self._registration_of(asset_id, head)
            uri, registered_block = registration or (None, None)

            # A mint in the transfer history marks the registration block too
            event = latest.get(token_id)
            if registered_block is None and event is not None and event.is_mint:
                registered_block = event.block_number

            registered_at = None
            if self.config.resolve_timestamps and registered_block is not None:
                registered_at = self._block_time(registered_block, timestamps)

            records.append(OwnershipRecord(
                asset_id=asset_id,
                token_id=token_id,
                owner=owner,
                token_contract=self.token_contract,
                registered_at=registered_at,
                metadata_uri=uri if self.config.resolve_metadata_uris else None,
            ))
        return records

    def _registrations(self, head: int) -> Dict[str, Tuple[str, int]]:
        """Metadata URI and registration block per asset id registered in the window."""
        from_block = max(head - self.config.block_window, 0)
        try:
            logs = self.ledger.get_logs(
                self.ledger.registry_address(), [IP_REGISTERED.topic], from_block, head
            )
        except RPCError as e:
            self.logger.warning(f"Registration event scan failed: {e}")
            return {}
        return self._decode_registrations(logs)

    def _registration_of(self, asset_id: str, head: int) -> Optional[Tuple[str, int]]:
        if self.config.registration_lookup_window is None:
            from_block = 0
        else:
            from_block = max(head - self.config.registration_lookup_window, 0)
        try:
            logs = self.ledger.get_logs(
                self.ledger.registry_address(),
                [IP_REGISTERED.topic, None, address_topic(asset_id)],
                from_block, head
            )
        except RPCError as e:
            self.logger.warning(f"Registration lookup for {asset_id} failed: {e}")
            return None
        return self._decode_registrations(logs).get(asset_id.lower())

    def _decode_registrations(self, logs) -> Dict[str, Tuple[str, int]]:
        registrations = {}
        for log in logs:
            try:
                values = IP_REGISTERED.decode_log(log.topics, log.data)
            except ABIError as e:
                self.logger.warning(f"Skipping undecodable registration in block {log.block_number}: {e}")
                continue
            registrations[values["ipId"].lower()] = (values["ipMetadataURI"], log.block_number)
        return registrations

    def _block_time(self, block_number: int, cache: Dict[int, Optional[datetime]]) -> Optional[datetime]:
        if block_number not in cache:
            try:
                timestamp = self.ledger.block_timestamp(block_number)
            except RPCError as e:
                self.logger.debug(f"Block {block_number} timestamp unavailable: {e}")
                timestamp = None
            cache[block_number] = (
                datetime.fromtimestamp(timestamp, timezone.utc) if timestamp is not None else None
            )
        return cache[block_number]

    def _run_batches(self, items: Sequence[int], call: Callable[[int], Any],
                     batch_size: int) -> Dict[int, Any]:
        """
        Run call for every item, batch_size at a time.

        Each batch runs concurrently and is joined before the next starts.
        Items whose call fails are left out of the result.
        """
        results: Dict[int, Any] = {}
        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for offset in range(0, len(items), batch_size):
                batch = items[offset:offset + batch_size]
                futures = {executor.submit(call, item): item for item in batch}
                for future in as_completed(futures):
                    item = futures[future]
                    try:
                        results[item] = future.result()
                    except (RPCError, ABIError) as e:
                        self.logger.debug(f"Lookup for token {item} failed: {e}")
        return results
