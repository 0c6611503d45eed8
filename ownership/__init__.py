"""
Asset Provenance Registry - Ownership

This package reconstructs which registered assets an address owns from the
token contract's transfer log, and looks up single assets by identifier.
"""

from .checkpoint import IndexStorageError, TransferIndex
from .exceptions import OwnershipQueryError
from .indexer import IndexerConfig, OwnershipIndexer
from .lookup import AssetLookup, OwnershipVerification
from .models import OwnershipRecord, TransferEvent, fold_transfers, owned_token_ids

__all__ = [
    "IndexStorageError",
    "OwnershipQueryError",
    "TransferIndex",
    "IndexerConfig",
    "OwnershipIndexer",
    "AssetLookup",
    "OwnershipVerification",
    "OwnershipRecord",
    "TransferEvent",
    "fold_transfers",
    "owned_token_ids",
]
