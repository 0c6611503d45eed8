"""
Asset Provenance Registry - Content Store Client

This module publishes metadata documents to a Pinata-backed IPFS store and
fetches them back through public gateways. It performs no retries; callers
own the retry policy of each call site.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .exceptions import GatewayFetchError, StoreUnavailable
from .metadata import ContentDigest, PreparedDocument


@dataclass
class Gateway:
    """IPFS gateway serving published content."""

    name: str
    url: str
    priority: int = 1
    timeout: int = 30

    def construct_url(self, content_id: str) -> str:
        base_url = self.url.rstrip('/')
        if not base_url.endswith('/ipfs'):
            base_url += '/ipfs'
        return f"{base_url}/{content_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "priority": self.priority,
            "timeout": self.timeout
        }


def default_gateways() -> List[Gateway]:
    # ipfs.io comes first: it is also the base of the URIs written on-chain
    return [
        Gateway(name="ipfs.io", url="https://ipfs.io", priority=1, timeout=30),
        Gateway(name="pinata", url="https://gateway.pinata.cloud", priority=2, timeout=10),
    ]


@dataclass
class StoreConfig:
    """Configuration for the pinning service and its gateways."""
    api_url: str = "https://api.pinata.cloud"
    jwt: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    upload_timeout: int = 60
    min_request_interval: float = 0.5
    cid_version: int = 0
    gateways: List[Gateway] = field(default_factory=default_gateways)

    def __post_init__(self):
        if not self.jwt and not (self.api_key and self.api_secret):
            raise ValueError("Either a JWT or an API key and secret must be provided")
        if not self.gateways:
            raise ValueError("At least one gateway is required")
        self.gateways = sorted(self.gateways, key=lambda g: g.priority)

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """Create store config from environment variables."""
        return cls(
            api_url=os.getenv("PINATA_API_URL", "https://api.pinata.cloud"),
            jwt=os.getenv("PINATA_JWT"),
            api_key=os.getenv("PINATA_API_KEY"),
            api_secret=os.getenv("PINATA_SECRET_API_KEY"),
            upload_timeout=int(os.getenv("PINATA_UPLOAD_TIMEOUT", "60")),
            min_request_interval=float(os.getenv("PINATA_MIN_REQUEST_INTERVAL", "0.5")),
        )

    def auth_headers(self) -> Dict[str, str]:
        if self.jwt:
            return {"Authorization": f"Bearer {self.jwt}"}
        return {
            "pinata_api_key": self.api_key,
            "pinata_secret_api_key": self.api_secret,
        }


@dataclass
class PublishedContent:
    """A document that has been accepted by the store."""
    content_id: str
    digest: ContentDigest
    uris: List[str]
    size: int
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def uri(self) -> str:
        """Canonical URI, the one committed on the ledger."""
        return self.uris[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "digest": self.digest.value,
            "uris": list(self.uris),
            "size": self.size,
            "published_at": self.published_at.isoformat()
        }


class RequestThrottle:
    """Enforces a minimum interval between consecutive store requests."""

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self._last_request = None
        self._lock = threading.Lock()

    def wait(self):
        with self._lock:
            if self._last_request is not None:
                delay = self._last_request + self.min_interval - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
            self._last_request = time.monotonic()


class ContentStoreClient:
    """Publishes documents to the pinning service and fetches them via gateways."""

    def __init__(self, config: Optional[StoreConfig] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or StoreConfig.from_env()
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)
        self.throttle = RequestThrottle(self.config.min_request_interval)

        self._stats = {
            "published": 0,
            "publish_failures": 0,
            "bytes_published": 0,
            "fetches": 0,
            "fetch_failures": 0
        }
        self._stats_lock = threading.Lock()

    def _bump(self, key: str, amount: int = 1):
        with self._stats_lock:
            self._stats[key] += amount

    @property
    def gateways(self) -> List[Gateway]:
        return self.config.gateways

    def uris_for(self, content_id: str) -> List[str]:
        return [gateway.construct_url(content_id) for gateway in self.gateways]

    def publish(self, payload: bytes, name: str = "metadata.json") -> str:
        """
        Pin a payload and return its content identifier.

        Args:
            payload: Exact bytes to store
            name: Display name recorded by the pinning service

        Returns:
            Content identifier (CID)

        Raises:
            StoreUnavailable: On network, auth, rate-limit, or service failure
        """
        url = f"{self.config.api_url.rstrip('/')}/pinning/pinFileToIPFS"
        files = {"file": (name, payload, "application/json")}
        data = {
            "pinataMetadata": json.dumps({"name": name}),
            "pinataOptions": json.dumps({"cidVersion": self.config.cid_version}),
        }

        self.throttle.wait()
        try:
            response = self.session.post(
                url,
                files=files,
                data=data,
                headers=self.config.auth_headers(),
                timeout=self.config.upload_timeout
            )
        except requests.exceptions.Timeout:
            self._bump("publish_failures")
            raise StoreUnavailable(f"Store upload timed out after {self.config.upload_timeout}s")
        except requests.exceptions.RequestException as e:
            self._bump("publish_failures")
            raise StoreUnavailable(f"Store unreachable: {e}")

        if response.status_code != 200:
            self._bump("publish_failures")
            status = response.status_code
            retryable = status == 429 or status >= 500
            if status in (401, 403):
                message = "Store rejected credentials"
            elif status == 429:
                message = "Store rate limit exceeded"
            else:
                message = f"Store upload failed: HTTP {status} {response.text[:200]}"
            raise StoreUnavailable(message, status_code=status, retryable=retryable)

        try:
            content_id = response.json()["IpfsHash"]
        except (ValueError, KeyError, TypeError):
            self._bump("publish_failures")
            raise StoreUnavailable("Store response did not include a content identifier",
                                   status_code=response.status_code, retryable=False)

        self._bump("published")
        self._bump("bytes_published", len(payload))
        self.logger.info(f"Published {name} ({len(payload)} bytes) as {content_id}")
        return content_id

    def publish_document(self, document: PreparedDocument) -> PublishedContent:
        """Publish a prepared document, keeping the digest computed at build time."""
        content_id = self.publish(document.payload, name=document.filename)
        return PublishedContent(
            content_id=content_id,
            digest=document.digest,
            uris=self.uris_for(content_id),
            size=len(document.payload),
        )

    def fetch(self, content_id: str, gateway: Gateway) -> bytes:
        """
        Fetch raw content bytes through one gateway.

        Raises:
            GatewayFetchError: If the gateway fails or does not have the content yet
        """
        url = gateway.construct_url(content_id)
        self._bump("fetches")
        try:
            response = self.session.get(url, timeout=gateway.timeout)
        except requests.exceptions.RequestException as e:
            self._bump("fetch_failures")
            raise GatewayFetchError(gateway.name, content_id, message=f"{gateway.name}: {e}")

        if response.status_code != 200:
            self._bump("fetch_failures")
            raise GatewayFetchError(gateway.name, content_id, status_code=response.status_code)

        return response.content

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = self._stats.copy()
        stats["gateways"] = [g.to_dict() for g in self.gateways]
        return stats

    def close(self):
        self.session.close()
