"""
Pytest configuration and fixtures for Asset Provenance Registry tests.
"""

import pytest

from content.store import ContentStoreClient, StoreConfig
from content.verifier import ConsistencyVerifier, VerifierConfig
from ledger.client import LedgerClient
from registration.extractor import IdentifierExtractor
from registration.submitter import RegistrationSubmitter, SubmissionConfig

from tests.fakes import OWNER_A, FakeNode, FakeStoreSession


@pytest.fixture
def node():
    """Fake node with a funded first owner."""
    fake = FakeNode()
    fake.balances[OWNER_A.lower()] = 10 ** 18
    return fake


@pytest.fixture
def ledger(node):
    return LedgerClient(rpc=node, config=node.config)


@pytest.fixture
def submission_config():
    """Retry policy without waits."""
    return SubmissionConfig(initial_delay_seconds=0, max_delay_seconds=0)


@pytest.fixture
def submitter(ledger, submission_config):
    return RegistrationSubmitter(ledger, IdentifierExtractor(ledger), submission_config)


@pytest.fixture
def store_session():
    return FakeStoreSession()


@pytest.fixture
def store(store_session):
    config = StoreConfig(jwt="test-jwt", min_request_interval=0)
    return ContentStoreClient(config, session=store_session)


@pytest.fixture
def verifier(store):
    return ConsistencyVerifier(store, VerifierConfig(max_wait=0, poll_interval=0.01))


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file paths."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
