"""
Asset Provenance Registry - Registration Pipeline

This module chains the registration steps: build metadata, publish both
documents, verify them through the gateways, then submit the registration
and resolve the asset identifier.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from content.exceptions import ContentUnreachable, DigestMismatch, MetadataError, StoreUnavailable, VerificationCancelled
from content.metadata import MetadataBuilder, PreparedDocument
from content.store import ContentStoreClient, PublishedContent
from content.verifier import ConsistencyVerifier, VerificationStatus
from ledger.abi import is_address

from .exceptions import (
    ContentNotPropagated,
    ContentStoreUnavailable,
    DigestMismatchError,
    InvalidRequest,
    OperationCancelled,
    RegistrationError,
    describe_error,
)
from .models import RegistrationRequest, RegistrationResult
from .submitter import RegistrationSubmitter
from .tracker import AttemptStatus, RegistrationAttempt, RegistrationTracker


@dataclass
class PublishPolicy:
    """Retry policy for publishing metadata to the store."""
    max_attempts: int = 3
    initial_delay_seconds: float = 2.0
    max_delay_seconds: float = 10.0
    jitter_factor: float = 0.0
    # Pin the same bytes again once if verification finds them unreachable
    republish_on_unreachable: bool = True

    def get_retry_delay(self, attempt: int) -> float:
        if attempt <= 1:
            return 0.0
        delay = min(self.initial_delay_seconds * (2 ** (attempt - 2)), self.max_delay_seconds)
        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()
        return delay


class RegistrationPipeline:
    """End-to-end registration of one asset."""

    def __init__(self, store: ContentStoreClient, verifier: ConsistencyVerifier,
                 submitter: RegistrationSubmitter,
                 builder: Optional[MetadataBuilder] = None,
                 tracker: Optional[RegistrationTracker] = None,
                 publish_policy: Optional[PublishPolicy] = None):
        self.store = store
        self.verifier = verifier
        self.submitter = submitter
        self.builder = builder or MetadataBuilder()
        self.tracker = tracker or RegistrationTracker()
        self.publish_policy = publish_policy or PublishPolicy()
        self.logger = logging.getLogger(__name__)

    def register(self, name: str, description: Optional[str], media_reference: str, owner: str,
                 media_type: Optional[str] = None,
                 extra: Optional[Dict[str, Any]] = None,
                 allow_duplicates: bool = True,
                 cancel_event: Optional[threading.Event] = None) -> RegistrationResult:
        """
        Register an asset for an owner.

        Args:
            name: Asset name
            description: Asset description (defaults apply if empty)
            media_reference: URI of the asset media
            owner: Address receiving the ownership token
            media_type: Explicit media type of the media reference
            extra: Additional asset metadata fields
            allow_duplicates: Permit registering content that is already registered
            cancel_event: Set to abandon the registration at the next wait

        Returns:
            RegistrationResult with asset identifier, token id and transaction hash

        Raises:
            RegistrationError: Subclass naming the failed step and whether a retry can help
        """
        start = time.monotonic()
        try:
            result = self._register(
                name, description, media_reference, owner,
                media_type, extra, allow_duplicates, cancel_event
            )
        except RegistrationError as e:
            info = describe_error(e)
            self.tracker.record(RegistrationAttempt(
                status=AttemptStatus.FAILURE,
                name=name,
                tx_hash=e.tx_hash,
                error=str(e),
                error_code=info.code,
                duration_ms=(time.monotonic() - start) * 1000,
            ))
            raise

        self.tracker.record(RegistrationAttempt(
            status=AttemptStatus.SUCCESS,
            name=name,
            asset_id=result.asset_id,
            token_id=result.token_id,
            tx_hash=result.tx_hash,
            duration_ms=(time.monotonic() - start) * 1000,
        ))
        self.logger.info(f"Registered '{name}' as {result.asset_id} in {result.tx_hash}")
        return result

    def _register(self, name, description, media_reference, owner, media_type, extra,
                  allow_duplicates, cancel_event) -> RegistrationResult:
        if not is_address(owner):
            raise InvalidRequest(f"Invalid owner address: {owner}", step="prepare")

        try:
            bundle = self.builder.build(name, description, media_reference, media_type, extra)
        except MetadataError as e:
            raise InvalidRequest(str(e), step="prepare") from e

        asset_published = self._publish(bundle.asset_document, cancel_event)
        token_published = self._publish(bundle.token_document, cancel_event)

        asset_published = self._verify(asset_published, bundle.asset_document, cancel_event)
        token_published = self._verify(token_published, bundle.token_document, cancel_event)

        request = RegistrationRequest(
            recipient=owner,
            asset_metadata_uri=asset_published.uri,
            asset_metadata_digest=asset_published.digest,
            token_metadata_uri=token_published.uri,
            token_metadata_digest=token_published.digest,
            allow_duplicates=allow_duplicates,
        )
        return self.submitter.register(request, cancel_event=cancel_event)

    def _publish(self, document: PreparedDocument,
                 cancel_event: Optional[threading.Event]) -> PublishedContent:
        policy = self.publish_policy
        last_error: Optional[StoreUnavailable] = None

        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1:
                delay = policy.get_retry_delay(attempt)
                self.logger.warning(
                    f"Retrying publish of {document.kind} metadata "
                    f"(attempt {attempt}/{policy.max_attempts}) in {delay:.1f}s: {last_error}"
                )
                self._wait(delay, cancel_event, "publish")

            try:
                return self.store.publish_document(document)
            except StoreUnavailable as e:
                if not e.retryable:
                    raise ContentStoreUnavailable(str(e), step="publish", retryable=False) from e
                last_error = e

        raise ContentStoreUnavailable(
            f"Publishing {document.kind} metadata failed after {policy.max_attempts} attempts: {last_error}",
            step="publish",
        ) from last_error

    def _verify(self, published: PublishedContent, document: PreparedDocument,
                cancel_event: Optional[threading.Event]) -> PublishedContent:
        try:
            result = self.verifier.verify_published(published, cancel_event=cancel_event)

            if result.status == VerificationStatus.UNREACHABLE and self.publish_policy.republish_on_unreachable:
                self.logger.warning(f"{published.content_id} unreachable, publishing again")
                republished = self._publish(document, cancel_event)
                if republished.content_id != published.content_id:
                    self.logger.warning(
                        f"Store returned {republished.content_id} for bytes previously "
                        f"published as {published.content_id}"
                    )
                published = republished
                result = self.verifier.verify_published(published, cancel_event=cancel_event)

            result.raise_for_status()
        except VerificationCancelled as e:
            raise OperationCancelled(str(e), step="verify") from e
        except DigestMismatch as e:
            raise DigestMismatchError(str(e), e.expected, e.actual, step="verify") from e
        except ContentUnreachable as e:
            raise ContentNotPropagated(str(e), step="verify") from e

        return published

    def _wait(self, seconds: float, cancel_event: Optional[threading.Event], step: str):
        if cancel_event is not None:
            if cancel_event.wait(seconds):
                raise OperationCancelled("Registration cancelled", step=step)
        elif seconds > 0:
            time.sleep(seconds)
