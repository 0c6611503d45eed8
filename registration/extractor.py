"""
Asset Provenance Registry - Identifier Extractor

This module resolves the asset identifier and token id produced by a confirmed
registration transaction. Three sources are tried in order, each only when the
previous one yields nothing:

1. the registration event in the receipt logs,
2. a log query for the registration event near the receipt block, filtered
   by transaction hash,
3. the token contract's total supply (the newest token id) passed through the
   registry's deterministic identifier function.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from ledger.abi import ABIError, ZERO_ADDRESS, same_address
from ledger.client import LedgerClient, LogEntry, Receipt
from ledger.contracts import IP_REGISTERED, OWNER_OF, TOTAL_SUPPLY
from ledger.rpc import RPCError

from .exceptions import IdentifierNotFound
from .models import ExtractionPath


@dataclass
class ExtractorConfig:
    """Configuration for identifier extraction."""
    # Blocks before the receipt block searched by the log query fallback
    event_lookback_blocks: int = 1000

    @classmethod
    def from_env(cls) -> 'ExtractorConfig':
        return cls(event_lookback_blocks=int(os.getenv("EXTRACTOR_LOOKBACK_BLOCKS", "1000")))


@dataclass(frozen=True)
class ExtractedIdentifier:
    asset_id: str
    token_id: int
    path: ExtractionPath


class IdentifierExtractor:
    """Determines which asset a confirmed registration created."""

    def __init__(self, ledger: LedgerClient, config: Optional[ExtractorConfig] = None):
        self.ledger = ledger
        self.config = config or ExtractorConfig()
        self.logger = logging.getLogger(__name__)

    def derive_asset_id(self, token_contract: str, token_id: int) -> str:
        """Asset identifier of (chain id, token contract, token id) from the registry view."""
        return self.ledger.asset_id(token_contract, token_id)

    def extract(self, receipt: Receipt, token_contract: str,
                expected_owner: Optional[str] = None) -> ExtractedIdentifier:
        """
        Resolve the identifier created by a confirmed transaction.

        Args:
            receipt: Receipt of the confirmed registration
            token_contract: Ownership token contract used for the mint
            expected_owner: Recipient of the mint, used to sanity-check the supply fallback

        Raises:
            IdentifierNotFound: If every source comes up empty
        """
        identifier = (
            self._from_receipt(receipt)
            or self._from_event_query(receipt)
            or self._from_total_supply(token_contract, expected_owner)
        )
        if identifier is None:
            self.logger.error(f"Could not extract asset identifier for {receipt.transaction_hash}")
            raise IdentifierNotFound(receipt.transaction_hash)

        self.logger.info(
            f"Asset {identifier.asset_id} (token {identifier.token_id}) "
            f"extracted via {identifier.path.value}"
        )
        return identifier

    def from_transaction(self, tx_hash: str) -> Optional[ExtractedIdentifier]:
        """
        Look up the identifier of a past registration by transaction hash.

        Only event-based sources are used: the current total supply says
        nothing about historical mints.
        """
        receipt = self.ledger.get_transaction_receipt(tx_hash)
        if receipt is None or not receipt.succeeded:
            return None
        return self._from_receipt(receipt) or self._from_event_query(receipt)

    def _decode(self, log: LogEntry, path: ExtractionPath) -> Optional[ExtractedIdentifier]:
        try:
            values = IP_REGISTERED.decode_log(log.topics, log.data)
        except ABIError as e:
            self.logger.warning(f"Undecodable registration event in block {log.block_number}: {e}")
            return None
        return ExtractedIdentifier(asset_id=values["ipId"], token_id=values["tokenId"], path=path)

    def _from_receipt(self, receipt: Receipt) -> Optional[ExtractedIdentifier]:
        for log in receipt.logs:
            if IP_REGISTERED.matches(log.topics):
                identifier = self._decode(log, ExtractionPath.RECEIPT_LOG)
                if identifier is not None:
                    return identifier
        self.logger.warning(f"No registration event in receipt of {receipt.transaction_hash}")
        return None

    def _from_event_query(self, receipt: Receipt) -> Optional[ExtractedIdentifier]:
        from_block = receipt.block_number - self.config.event_lookback_blocks
        try:
            logs = self.ledger.get_logs(
                self.ledger.registry_address(), [IP_REGISTERED.topic],
                from_block=from_block, to_block=receipt.block_number
            )
        except RPCError as e:
            self.logger.warning(f"Registration event query failed: {e}")
            return None

        tx_hash = receipt.transaction_hash.lower()
        for log in logs:
            if log.transaction_hash and log.transaction_hash.lower() == tx_hash:
                identifier = self._decode(log, ExtractionPath.EVENT_QUERY)
                if identifier is not None:
                    return identifier

        self.logger.warning(
            f"No registration event for {receipt.transaction_hash} in blocks "
            f"{max(from_block, 0)}-{receipt.block_number}"
        )
        return None

    def _from_total_supply(self, token_contract: str,
                           expected_owner: Optional[str]) -> Optional[ExtractedIdentifier]:
        try:
            token_id = self.ledger.read_view(token_contract, TOTAL_SUPPLY)
            if token_id <= 0:
                return None

            if expected_owner is not None:
                owner = self.ledger.read_view(token_contract, OWNER_OF, token_id)
                if not same_address(owner, expected_owner):
                    # Another mint landed after ours
                    self.logger.warning(
                        f"Newest token {token_id} belongs to {owner}, not {expected_owner}"
                    )
                    return None

            asset_id = self.derive_asset_id(token_contract, token_id)
        except (RPCError, ABIError) as e:
            self.logger.warning(f"Total supply fallback failed: {e}")
            return None

        if same_address(asset_id, ZERO_ADDRESS):
            return None

        return ExtractedIdentifier(asset_id=asset_id, token_id=token_id, path=ExtractionPath.TOTAL_SUPPLY)
