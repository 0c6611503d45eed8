"""
Asset Provenance Registry - Asset Lookup

Single-asset queries: find the registration of an asset identifier and check
who owns it now.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ledger.abi import ABIError, address_topic, is_address, same_address, to_checksum_address
from ledger.client import LedgerClient
from ledger.contracts import IP_REGISTERED, OWNER_OF
from ledger.rpc import RPCError

from .models import OwnershipRecord


@dataclass
class OwnershipVerification:
    """Outcome of checking an asset against an expected owner."""
    asset_id: str
    expected_owner: str
    actual_owner: Optional[str]
    is_owner: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "expected_owner": self.expected_owner,
            "actual_owner": self.actual_owner,
            "is_owner": self.is_owner,
            "error": self.error
        }


class AssetLookup:
    """Looks up registered assets by identifier."""

    def __init__(self, ledger: LedgerClient, token_contract: Optional[str] = None,
                 lookup_window: int = 20_000):
        """
        Initialize asset lookup.

        Args:
            ledger: Shared ledger client
            token_contract: Only report assets minted on this contract (any if None)
            lookup_window: Blocks before the head searched for the registration event
        """
        self.ledger = ledger
        self.token_contract = token_contract
        self.lookup_window = lookup_window
        self.logger = logging.getLogger(__name__)

    def get_asset(self, asset_id: str) -> Optional[OwnershipRecord]:
        """
        Find an asset's registration and current owner.

        Returns:
            Ownership record, or None if no registration event is in the window
        """
        if not is_address(asset_id):
            raise ValueError(f"Invalid asset identifier: {asset_id}")

        head = self.ledger.block_number()
        logs = self.ledger.get_logs(
            self.ledger.registry_address(),
            [IP_REGISTERED.topic, None, address_topic(asset_id)],
            from_block=head - self.lookup_window,
            to_block=head
        )

        for log in logs:
            try:
                values = IP_REGISTERED.decode_log(log.topics, log.data)
            except ABIError as e:
                self.logger.warning(f"Undecodable registration event in block {log.block_number}: {e}")
                continue
            if not same_address(values["ipId"], asset_id):
                continue

            token_contract = self.token_contract or self.ledger.config.token_contract
            owner = self.ledger.read_view(token_contract, OWNER_OF, values["tokenId"])
            timestamp = self.ledger.block_timestamp(log.block_number)

            return OwnershipRecord(
                asset_id=values["ipId"],
                token_id=values["tokenId"],
                owner=owner,
                token_contract=token_contract,
                registered_at=datetime.fromtimestamp(timestamp, timezone.utc) if timestamp else None,
                metadata_uri=values["ipMetadataURI"],
            )

        self.logger.info(f"No registration of {asset_id} in the last {self.lookup_window} blocks")
        return None

    def verify_ownership(self, asset_id: str, expected_owner: str) -> OwnershipVerification:
        """Check whether expected_owner currently owns the asset."""
        try:
            record = self.get_asset(asset_id)
        except (RPCError, ABIError, ValueError) as e:
            return OwnershipVerification(
                asset_id=asset_id,
                expected_owner=expected_owner,
                actual_owner=None,
                is_owner=False,
                error=str(e)
            )

        if record is None:
            return OwnershipVerification(
                asset_id=asset_id,
                expected_owner=expected_owner,
                actual_owner=None,
                is_owner=False,
                error="Asset not found"
            )

        return OwnershipVerification(
            asset_id=to_checksum_address(asset_id),
            expected_owner=expected_owner,
            actual_owner=record.owner,
            is_owner=same_address(record.owner, expected_owner)
        )
