"""
Asset Provenance Registry - Metadata Builder

This module builds the two metadata documents published for every registration
(the asset record and the ownership-token record), serializes them to their
canonical compact form, and computes the digests committed on the ledger.
"""

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from jsonschema import Draft7Validator

from .exceptions import MetadataError


DIGEST_PREFIX = "0x"
DIGEST_PATTERN = re.compile(r'^0x[0-9a-f]{64}$')

DEFAULT_ASSET_DESCRIPTION = "Digital asset registered with provenance protection"
DEFAULT_TOKEN_DESCRIPTION = "Ownership token for a registered asset"
DEFAULT_MEDIA_TYPE = "image/png"

MEDIA_TYPES = {
    '.svg': 'image/svg+xml',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.mp4': 'video/mp4',
    '.webm': 'video/webm',
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
}

# Order of the base fields is part of the hashed payload.
ASSET_FIELDS = ('title', 'description', 'image', 'mediaUrl', 'mediaType')
TOKEN_FIELDS = ('name', 'description', 'image')

ASSET_METADATA_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": list(ASSET_FIELDS),
    "properties": {
        "title": {"type": "string", "minLength": 1, "maxLength": 256},
        "description": {"type": "string", "maxLength": 4096},
        "image": {"type": "string", "minLength": 1},
        "mediaUrl": {"type": "string", "minLength": 1},
        "mediaType": {"type": "string", "pattern": r"^[a-z]+/[a-z0-9.+-]+$"},
    },
}

TOKEN_METADATA_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": list(TOKEN_FIELDS),
    "properties": {
        "name": {"type": "string", "minLength": 1, "maxLength": 256},
        "description": {"type": "string", "maxLength": 4096},
        "image": {"type": "string", "minLength": 1},
    },
}


def infer_media_type(media_reference: str) -> str:
    """Guess the media type of a media reference from its data-URI header or extension."""
    if media_reference.startswith('data:'):
        header = media_reference[5:].split(',', 1)[0]
        mime = header.split(';', 1)[0]
        if mime:
            return mime

    path = urlparse(media_reference).path.lower()
    for extension, mime in MEDIA_TYPES.items():
        if path.endswith(extension):
            return mime

    if 'svg' in media_reference.lower():
        return MEDIA_TYPES['.svg']

    return DEFAULT_MEDIA_TYPE


def canonical_value(value: Any) -> Any:
    """Normalize an extra metadata value: nested mappings get sorted keys."""
    if isinstance(value, dict):
        return {str(k): canonical_value(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonical_value(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        raise MetadataError(f"Non-finite number in metadata: {value}")
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise MetadataError(f"Unsupported metadata value type: {type(value).__name__}")


def serialize_document(document: Dict[str, Any]) -> bytes:
    """
    Serialize a document to its canonical form: compact separators, key order
    as given, UTF-8 without escaping non-ASCII characters.
    """
    try:
        text = json.dumps(document, separators=(',', ':'), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise MetadataError(f"Metadata is not serializable: {e}")
    return text.encode('utf-8')


def reserialize(payload: bytes) -> bytes:
    """Parse a serialized document and serialize it again in canonical form."""
    try:
        document = json.loads(payload.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise MetadataError(f"Payload is not a JSON document: {e}")
    return serialize_document(document)


@dataclass(frozen=True)
class ContentDigest:
    """SHA-256 digest of a canonical document, hex-encoded with a 0x prefix."""
    value: str

    def __post_init__(self):
        if not DIGEST_PATTERN.match(self.value):
            raise MetadataError(f"Invalid content digest: {self.value}")

    @classmethod
    def of(cls, payload: bytes) -> 'ContentDigest':
        return cls(DIGEST_PREFIX + hashlib.sha256(payload).hexdigest())

    def matches(self, payload: bytes) -> bool:
        return ContentDigest.of(payload) == self

    def __str__(self) -> str:
        return self.value


@dataclass
class AssetMetadata:
    """Asset record: what is registered and where its media lives."""
    title: str
    description: str
    media_reference: str
    media_type: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        document = {
            'title': self.title,
            'description': self.description,
            'image': self.media_reference,
            'mediaUrl': self.media_reference,
            'mediaType': self.media_type,
        }
        for key in sorted(self.extra, key=str):
            document[str(key)] = canonical_value(self.extra[key])
        return document


@dataclass
class OwnershipTokenMetadata:
    """Collectible record minted alongside the asset."""
    name: str
    description: str
    media_reference: str

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'image': self.media_reference,
        }


@dataclass(frozen=True)
class PreparedDocument:
    """A serialized document and the digest computed from exactly those bytes."""
    kind: str
    payload: bytes
    digest: ContentDigest

    @property
    def filename(self) -> str:
        return f"{self.kind}-metadata-{self.digest.value[2:14]}.json"


@dataclass
class MetadataBundle:
    """Both documents of one registration attempt."""
    asset: AssetMetadata
    token: OwnershipTokenMetadata
    asset_document: PreparedDocument
    token_document: PreparedDocument


class MetadataBuilder:
    """Builds and hashes the asset and ownership-token documents."""

    def __init__(self, default_asset_description: str = DEFAULT_ASSET_DESCRIPTION,
                 default_token_description: str = DEFAULT_TOKEN_DESCRIPTION):
        self.default_asset_description = default_asset_description
        self.default_token_description = default_token_description
        self.logger = logging.getLogger(__name__)
        self._asset_validator = Draft7Validator(ASSET_METADATA_SCHEMA)
        self._token_validator = Draft7Validator(TOKEN_METADATA_SCHEMA)

    def build(self, name: str, description: Optional[str], media_reference: str,
              media_type: Optional[str] = None,
              extra: Optional[Dict[str, Any]] = None) -> MetadataBundle:
        """
        Build both metadata documents for one asset.

        Args:
            name: Asset title, also used as the token name
            description: Human description (defaults apply per document if empty)
            media_reference: URI of the media, embedded in both documents
            media_type: Explicit media type (inferred from the reference if None)
            extra: Additional asset fields, appended after the base fields in key order

        Returns:
            MetadataBundle with serialized payloads and their digests

        Raises:
            MetadataError: If inputs are missing or fail schema validation
        """
        if not name or not name.strip():
            raise MetadataError("Asset name is required")
        if not media_reference:
            raise MetadataError("Media reference is required")

        given = extra or {}
        extra = {str(key): value for key, value in given.items()}
        if len(extra) != len(given):
            raise MetadataError("Extra metadata has keys that collide once converted to strings")
        reserved = set(ASSET_FIELDS) & set(extra)
        if reserved:
            raise MetadataError(f"Extra metadata overrides reserved fields: {sorted(reserved)}")

        asset = AssetMetadata(
            title=name,
            description=description or self.default_asset_description,
            media_reference=media_reference,
            media_type=media_type or infer_media_type(media_reference),
            extra=extra,
        )
        token = OwnershipTokenMetadata(
            name=name,
            description=description or self.default_token_description,
            media_reference=media_reference,
        )

        asset_document = asset.to_document()
        token_document = token.to_document()
        self._validate(self._asset_validator, asset_document, "asset")
        self._validate(self._token_validator, token_document, "token")

        bundle = MetadataBundle(
            asset=asset,
            token=token,
            asset_document=self.prepare("asset", asset_document),
            token_document=self.prepare("token", token_document),
        )
        self.logger.debug(
            f"Built metadata for '{name}': asset={bundle.asset_document.digest} "
            f"token={bundle.token_document.digest}"
        )
        return bundle

    @staticmethod
    def prepare(kind: str, document: Dict[str, Any]) -> PreparedDocument:
        """Serialize a document once and digest those bytes."""
        payload = serialize_document(document)
        return PreparedDocument(kind=kind, payload=payload, digest=ContentDigest.of(payload))

    @staticmethod
    def _validate(validator: Draft7Validator, document: Dict[str, Any], kind: str):
        errors = sorted(validator.iter_errors(document), key=lambda e: list(e.path))
        if errors:
            details = "; ".join(
                f"{'.'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
                for error in errors
            )
            raise MetadataError(f"Invalid {kind} metadata: {details}")
