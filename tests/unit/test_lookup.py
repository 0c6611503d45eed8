"""
Tests for single-asset lookups.
"""

from datetime import datetime, timezone

import pytest

from ownership.lookup import AssetLookup

from tests.fakes import BLOCK_TIME_BASE, OWNER_A, OWNER_B


@pytest.fixture
def lookup(ledger):
    return AssetLookup(ledger)


class TestGetAsset:
    def test_registered_asset(self, node, lookup):
        node.mint(OWNER_A, block=1200, uri="https://ipfs.io/ipfs/QmLookup")
        asset_id = node.asset_id(1)

        record = lookup.get_asset(asset_id.lower())

        assert record.asset_id == asset_id
        assert record.token_id == 1
        assert record.owner == OWNER_A
        assert record.metadata_uri == "https://ipfs.io/ipfs/QmLookup"
        assert record.registered_at == datetime.fromtimestamp(BLOCK_TIME_BASE + 1200, timezone.utc)

    def test_reports_current_owner(self, node, lookup):
        node.mint(OWNER_A)
        node.transfer(1, OWNER_B)

        assert lookup.get_asset(node.asset_id(1)).owner == OWNER_B

    def test_unknown_asset(self, node, lookup):
        node.mint(OWNER_A)

        assert lookup.get_asset("0x" + "ab" * 20) is None

    def test_outside_window(self, node, ledger):
        node.mint(OWNER_A, block=1001)
        node.head = 50_000

        assert AssetLookup(ledger, lookup_window=100).get_asset(node.asset_id(1)) is None

    def test_invalid_identifier(self, lookup):
        with pytest.raises(ValueError):
            lookup.get_asset("asset-1")


class TestVerifyOwnership:
    def test_owner(self, node, lookup):
        node.mint(OWNER_A)

        result = lookup.verify_ownership(node.asset_id(1), OWNER_A)

        assert result.is_owner
        assert result.actual_owner == OWNER_A
        assert result.error is None

    def test_not_owner(self, node, lookup):
        node.mint(OWNER_A)

        result = lookup.verify_ownership(node.asset_id(1), OWNER_B)

        assert not result.is_owner
        assert result.to_dict()["actual_owner"] == OWNER_A

    def test_missing_asset(self, lookup):
        result = lookup.verify_ownership("0x" + "ab" * 20, OWNER_A)

        assert not result.is_owner
        assert result.error == "Asset not found"

    def test_lookup_failure_is_reported(self, node, lookup):
        node.fail_log_queries = True

        result = lookup.verify_ownership("0x" + "ab" * 20, OWNER_A)

        assert not result.is_owner
        assert "10000 results" in result.error
