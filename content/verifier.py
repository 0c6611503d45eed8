"""
Asset Provenance Registry - Consistency Verifier

This module confirms that freshly published content is served by the gateways
and hashes to the digest computed before upload. Gateways are eventually
consistent, so a missing document is polled for until a wait budget runs out;
a document with the wrong bytes fails immediately.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import ContentUnreachable, DigestMismatch, GatewayFetchError, MetadataError, VerificationCancelled
from .metadata import ContentDigest, reserialize
from .store import ContentStoreClient, Gateway, PublishedContent


class VerificationStatus(str, Enum):
    """Outcome of a consistency check."""
    OK = "ok"
    MISMATCH = "mismatch"
    UNREACHABLE = "unreachable"


@dataclass
class VerifierConfig:
    """Configuration for gateway consistency polling."""
    max_wait: float = 60.0
    poll_interval: float = 5.0
    # Wait before the first fetch to let the store propagate
    initial_delay: float = 0.0
    # Compare on the re-serialized form when the store may reformat JSON
    store_reformats: bool = False

    def __post_init__(self):
        if self.max_wait < 0 or self.initial_delay < 0:
            raise ValueError("Wait times cannot be negative")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

    @classmethod
    def from_env(cls) -> 'VerifierConfig':
        return cls(
            max_wait=float(os.getenv("VERIFY_MAX_WAIT", "60")),
            poll_interval=float(os.getenv("VERIFY_POLL_INTERVAL", "5")),
            initial_delay=float(os.getenv("VERIFY_INITIAL_DELAY", "0")),
            store_reformats=os.getenv("VERIFY_STORE_REFORMATS", "false").lower() == "true",
        )


@dataclass
class VerificationResult:
    """Result of verifying one content identifier."""
    status: VerificationStatus
    content_id: str
    expected_digest: ContentDigest
    actual_digest: Optional[ContentDigest] = None
    gateway: Optional[str] = None
    attempts: int = 0
    elapsed: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == VerificationStatus.OK

    def raise_for_status(self):
        """Raise the matching content error unless verification succeeded."""
        if self.status == VerificationStatus.MISMATCH:
            raise DigestMismatch(
                self.content_id, self.expected_digest.value,
                self.actual_digest.value if self.actual_digest else "unknown",
                gateway=self.gateway,
            )
        if self.status == VerificationStatus.UNREACHABLE:
            raise ContentUnreachable(self.content_id, self.elapsed, self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "content_id": self.content_id,
            "expected_digest": self.expected_digest.value,
            "actual_digest": self.actual_digest.value if self.actual_digest else None,
            "gateway": self.gateway,
            "attempts": self.attempts,
            "elapsed": self.elapsed,
            "errors": list(self.errors)
        }


class ConsistencyVerifier:
    """Polls gateways until published content is visible and intact."""

    def __init__(self, store: ContentStoreClient, config: Optional[VerifierConfig] = None):
        self.store = store
        self.config = config or VerifierConfig()
        self.logger = logging.getLogger(__name__)

    def _digest_matches(self, payload: bytes, expected: ContentDigest) -> Optional[ContentDigest]:
        """Return None on match, otherwise the digest that was observed."""
        actual = ContentDigest.of(payload)
        if actual == expected:
            return None

        if self.config.store_reformats:
            try:
                canonical = ContentDigest.of(reserialize(payload))
            except MetadataError:
                return actual
            if canonical == expected:
                return None
            return canonical

        return actual

    def _sleep(self, seconds: float, cancel_event: Optional[threading.Event]):
        if seconds <= 0:
            return
        if cancel_event is not None:
            if cancel_event.wait(seconds):
                raise VerificationCancelled("Verification cancelled")
        else:
            time.sleep(seconds)

    def verify(self, content_id: str, expected_digest: ContentDigest,
               gateways: Optional[List[Gateway]] = None,
               max_wait: Optional[float] = None,
               poll_interval: Optional[float] = None,
               cancel_event: Optional[threading.Event] = None) -> VerificationResult:
        """
        Verify that a content identifier serves bytes hashing to the expected digest.

        Args:
            content_id: Identifier returned by the store
            expected_digest: Digest computed before upload
            gateways: Gateways in priority order (store defaults if None)
            max_wait: Seconds to keep polling while content is unreachable
            poll_interval: Seconds between polling rounds
            cancel_event: Set to abandon polling

        Returns:
            VerificationResult with status OK, MISMATCH or UNREACHABLE

        Raises:
            VerificationCancelled: If cancel_event is set while waiting
        """
        gateways = gateways or self.store.gateways
        max_wait = self.config.max_wait if max_wait is None else max_wait
        poll_interval = self.config.poll_interval if poll_interval is None else poll_interval

        self._sleep(self.config.initial_delay, cancel_event)

        start = time.monotonic()
        deadline = start + max_wait
        attempts = 0
        errors: List[str] = []

        while True:
            for gateway in gateways:
                attempts += 1
                try:
                    payload = self.store.fetch(content_id, gateway)
                except GatewayFetchError as e:
                    errors.append(str(e))
                    self.logger.debug(f"Fetch of {content_id} via {gateway.name} failed: {e}")
                    continue

                observed = self._digest_matches(payload, expected_digest)
                elapsed = time.monotonic() - start
                if observed is None:
                    self.logger.info(
                        f"Verified {content_id} via {gateway.name} after {attempts} attempts"
                    )
                    return VerificationResult(
                        status=VerificationStatus.OK,
                        content_id=content_id,
                        expected_digest=expected_digest,
                        actual_digest=expected_digest,
                        gateway=gateway.name,
                        attempts=attempts,
                        elapsed=elapsed,
                        errors=errors,
                    )

                self.logger.error(
                    f"Digest mismatch for {content_id} via {gateway.name}: "
                    f"expected {expected_digest}, got {observed}"
                )
                return VerificationResult(
                    status=VerificationStatus.MISMATCH,
                    content_id=content_id,
                    expected_digest=expected_digest,
                    actual_digest=observed,
                    gateway=gateway.name,
                    attempts=attempts,
                    elapsed=elapsed,
                    errors=errors,
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                elapsed = time.monotonic() - start
                self.logger.warning(
                    f"Content {content_id} unreachable after {attempts} attempts ({elapsed:.1f}s)"
                )
                return VerificationResult(
                    status=VerificationStatus.UNREACHABLE,
                    content_id=content_id,
                    expected_digest=expected_digest,
                    attempts=attempts,
                    elapsed=elapsed,
                    errors=errors,
                )

            self._sleep(min(poll_interval, remaining), cancel_event)

    def verify_published(self, published: PublishedContent, **kwargs) -> VerificationResult:
        return self.verify(published.content_id, published.digest, **kwargs)
