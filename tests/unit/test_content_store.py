"""
Tests for the content store client and the gateway consistency verifier.
"""

import threading
from unittest.mock import Mock

import pytest
import requests

from content.exceptions import ContentUnreachable, DigestMismatch, GatewayFetchError, StoreUnavailable, VerificationCancelled
from content.metadata import ContentDigest, MetadataBuilder
from content.store import ContentStoreClient, Gateway, StoreConfig
from content.verifier import ConsistencyVerifier, VerificationStatus, VerifierConfig


@pytest.fixture
def document():
    bundle = MetadataBuilder().build("Sunset", "Oil on canvas", "https://ipfs.io/ipfs/QmMedia")
    return bundle.asset_document


class TestStoreConfig:
    """Test store configuration."""

    def test_credentials_required(self):
        with pytest.raises(ValueError):
            StoreConfig()
        with pytest.raises(ValueError):
            StoreConfig(api_key="key")

    def test_auth_headers(self):
        assert StoreConfig(jwt="token").auth_headers() == {"Authorization": "Bearer token"}
        headers = StoreConfig(api_key="key", api_secret="secret").auth_headers()
        assert headers == {"pinata_api_key": "key", "pinata_secret_api_key": "secret"}

    def test_gateways_sorted_by_priority(self):
        config = StoreConfig(jwt="token", gateways=[
            Gateway("slow", "https://slow.example", priority=5),
            Gateway("fast", "https://fast.example", priority=1),
        ])
        assert [g.name for g in config.gateways] == ["fast", "slow"]

    def test_gateway_url(self):
        assert Gateway("io", "https://ipfs.io/").construct_url("QmX") == "https://ipfs.io/ipfs/QmX"


class TestContentStoreClient:
    """Test publishing and fetching."""

    def test_publish_document(self, store, store_session, document):
        published = store.publish_document(document)

        assert published.content_id in store_session.pinned
        assert store_session.pinned[published.content_id] == document.payload
        assert published.digest == document.digest
        assert published.uri == f"https://ipfs.io/ipfs/{published.content_id}"
        assert published.size == len(document.payload)
        assert store.get_stats()["published"] == 1

    @pytest.mark.parametrize("status, retryable", [
        (429, True),
        (500, True),
        (503, True),
        (401, False),
        (403, False),
        (400, False),
    ])
    def test_publish_failure_classification(self, store, store_session, status, retryable):
        store_session.upload_failures = [status]

        with pytest.raises(StoreUnavailable) as exc_info:
            store.publish(b"{}")

        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is retryable

    def test_publish_network_error(self):
        session = Mock()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        client = ContentStoreClient(StoreConfig(jwt="token", min_request_interval=0), session=session)

        with pytest.raises(StoreUnavailable) as exc_info:
            client.publish(b"{}")
        assert exc_info.value.retryable

    def test_publish_without_content_id(self):
        session = Mock()
        session.post.return_value = Mock(status_code=200, json=Mock(return_value={"unexpected": True}))
        client = ContentStoreClient(StoreConfig(jwt="token", min_request_interval=0), session=session)

        with pytest.raises(StoreUnavailable) as exc_info:
            client.publish(b"{}")
        assert not exc_info.value.retryable

    def test_fetch_missing_content(self, store):
        with pytest.raises(GatewayFetchError) as exc_info:
            store.fetch("QmMissing", store.gateways[0])
        assert exc_info.value.status_code == 404


class TestConsistencyVerifier:
    """Test the OK / Mismatch / Unreachable outcomes."""

    def test_matching_content(self, store, verifier, document):
        published = store.publish_document(document)

        result = verifier.verify_published(published)

        assert result.status == VerificationStatus.OK
        assert result.ok
        assert result.gateway == "ipfs.io"
        result.raise_for_status()

    def test_falls_through_to_next_gateway(self, store, store_session, verifier, document):
        published = store.publish_document(document)
        store_session.down_hosts.add("ipfs.io")

        result = verifier.verify_published(published)

        assert result.ok
        assert result.gateway == "pinata"
        assert result.attempts == 2

    def test_one_byte_difference_is_mismatch(self, store, store_session, verifier, document):
        published = store.publish_document(document)
        tampered = bytearray(document.payload)
        tampered[-2] ^= 0x01
        store_session.tampered[published.content_id] = bytes(tampered)

        result = verifier.verify_published(published)

        assert result.status == VerificationStatus.MISMATCH
        assert result.actual_digest == ContentDigest.of(bytes(tampered))
        with pytest.raises(DigestMismatch) as exc_info:
            result.raise_for_status()
        assert exc_info.value.expected == document.digest.value

    def test_mismatch_is_not_retried(self, store, store_session, document):
        published = store.publish_document(document)
        store_session.tampered[published.content_id] = b"{}"
        verifier = ConsistencyVerifier(store, VerifierConfig(max_wait=30, poll_interval=10))

        result = verifier.verify_published(published)

        assert result.status == VerificationStatus.MISMATCH
        assert len(store_session.fetched) == 1

    def test_unreachable_when_never_pinned(self, verifier, document):
        result = verifier.verify("QmNeverPinned", document.digest)

        assert result.status == VerificationStatus.UNREACHABLE
        assert result.attempts == 2
        assert len(result.errors) == 2
        with pytest.raises(ContentUnreachable):
            result.raise_for_status()

    def test_keeps_polling_until_max_wait(self, store, store_session, document):
        verifier = ConsistencyVerifier(store, VerifierConfig(max_wait=0.2, poll_interval=0.05))

        result = verifier.verify("QmNeverPinned", document.digest)

        assert result.status == VerificationStatus.UNREACHABLE
        assert result.attempts > 2
        assert result.elapsed >= 0.2
        assert all("QmNeverPinned" in url for url in store_session.fetched)
        with pytest.raises(ContentUnreachable):
            result.raise_for_status()

    def test_polls_until_content_appears(self, store, store_session, document):
        published = store.publish_document(document)
        store_session.down_hosts.update({"ipfs.io", "pinata"})
        verifier = ConsistencyVerifier(store, VerifierConfig(max_wait=5, poll_interval=0.01))

        original_get = store_session.get

        def recover_after_three(url, timeout=None):
            if len(store_session.fetched) >= 3:
                store_session.down_hosts.clear()
            return original_get(url, timeout)

        store_session.get = recover_after_three
        result = verifier.verify_published(published)

        assert result.ok
        assert result.attempts > 2

    def test_reformatting_store_tolerated_when_configured(self, store, store_session, document):
        published = store.publish_document(document)
        store_session.tampered[published.content_id] = document.payload.replace(b',', b', ')

        strict = ConsistencyVerifier(store, VerifierConfig(max_wait=0))
        lenient = ConsistencyVerifier(store, VerifierConfig(max_wait=0, store_reformats=True))

        assert strict.verify_published(published).status == VerificationStatus.MISMATCH
        assert lenient.verify_published(published).ok

    def test_cancelled_while_waiting(self, store, document):
        verifier = ConsistencyVerifier(store, VerifierConfig(max_wait=30, poll_interval=10))
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(VerificationCancelled):
            verifier.verify("QmNeverPinned", document.digest, cancel_event=cancel)
