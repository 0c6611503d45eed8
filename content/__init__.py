"""
Asset Provenance Registry - Content Management

This package builds and hashes metadata documents, publishes them to the
content-addressed store, and verifies that gateways serve them intact.
"""

from .exceptions import (
    ContentError,
    ContentUnreachable,
    DigestMismatch,
    GatewayFetchError,
    MetadataError,
    StoreUnavailable,
    VerificationCancelled,
)

from .metadata import (
    AssetMetadata,
    ContentDigest,
    MetadataBuilder,
    MetadataBundle,
    OwnershipTokenMetadata,
    PreparedDocument,
    infer_media_type,
    serialize_document,
)

from .store import ContentStoreClient, Gateway, PublishedContent, StoreConfig
from .verifier import ConsistencyVerifier, VerificationResult, VerificationStatus, VerifierConfig

__all__ = [
    "ContentError",
    "ContentUnreachable",
    "DigestMismatch",
    "GatewayFetchError",
    "MetadataError",
    "StoreUnavailable",
    "VerificationCancelled",
    "AssetMetadata",
    "ContentDigest",
    "MetadataBuilder",
    "MetadataBundle",
    "OwnershipTokenMetadata",
    "PreparedDocument",
    "infer_media_type",
    "serialize_document",
    "ContentStoreClient",
    "Gateway",
    "PublishedContent",
    "StoreConfig",
    "ConsistencyVerifier",
    "VerificationResult",
    "VerificationStatus",
    "VerifierConfig",
]
