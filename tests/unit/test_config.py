"""
Tests for hierarchical configuration loading.
"""

import json
import os

import pytest
import yaml

from content.store import ContentStoreClient
from ledger.contracts import AENEID_CHAIN_ID, AENEID_RPC_URL
from registration.config import ConfigurationManager, create_pipeline
from registration.pipeline import RegistrationPipeline


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep user and project config files and PROVENANCE_* variables out of tests."""
    monkeypatch.setattr("registration.config.CONFIG_SEARCH_PATHS", [])
    for key in list(os.environ):
        if key.startswith("PROVENANCE_"):
            monkeypatch.delenv(key)


class TestLoading:
    """Test source precedence."""

    def test_defaults(self):
        manager = ConfigurationManager()

        assert manager.get("ledger.rpc_url") == AENEID_RPC_URL
        assert manager.get("ledger.chain_id") == AENEID_CHAIN_ID
        assert manager.get("submission.max_attempts") == 3
        assert manager.get("missing.key", "fallback") == "fallback"
        assert manager.get_config_info()["sources"] == ["defaults"]

    def test_profile(self):
        manager = ConfigurationManager(profile="development")

        assert manager.get("ledger.rpc_url") == "http://localhost:8545"
        assert manager.get("ledger.chain_id") == AENEID_CHAIN_ID
        assert manager.get("verifier.max_wait") == 10.0

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            ConfigurationManager(profile="mainnet").load()

    def test_yaml_file_overrides_profile(self, tmp_path):
        path = tmp_path / "provenance.yml"
        path.write_text(yaml.safe_dump({
            "ledger": {"rpc_url": "http://node.internal:8545"},
            "store": {"jwt": "file-jwt"},
        }))

        manager = ConfigurationManager(config_file=str(path), profile="development")

        assert manager.get("ledger.rpc_url") == "http://node.internal:8545"
        assert manager.get("ledger.confirmation_timeout") == 30.0
        assert manager.get("store.jwt") == "file-jwt"
        assert manager.get_config_info()["sources"] == [
            "defaults", "profile:development", f"file:{path}"
        ]

    def test_json_file(self, tmp_path):
        path = tmp_path / "provenance.json"
        path.write_text(json.dumps({"indexer": {"block_window": 1234}}))

        assert ConfigurationManager(config_file=str(path)).get("indexer.block_window") == 1234

    def test_unreadable_file_is_skipped(self, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("ledger: [unclosed")

        manager = ConfigurationManager(config_file=str(path))

        assert manager.get("ledger.rpc_url") == AENEID_RPC_URL
        assert manager.get_config_info()["sources"] == ["defaults"]

    def test_environment_wins(self, tmp_path, monkeypatch):
        path = tmp_path / "provenance.yml"
        path.write_text(yaml.safe_dump({"ledger": {"rpc_url": "http://from-file:8545"}}))
        monkeypatch.setenv("PROVENANCE_LEDGER__RPC_URL", "http://from-env:8545")
        monkeypatch.setenv("PROVENANCE_SUBMISSION__MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PROVENANCE_VERIFIER__STORE_REFORMATS", "yes")
        monkeypatch.setenv("PROVENANCE_INDEXER__MAX_BLOCK_RANGE", "null")

        manager = ConfigurationManager(config_file=str(path))

        assert manager.get("ledger.rpc_url") == "http://from-env:8545"
        assert manager.get("submission.max_attempts") == 5
        assert manager.get("verifier.store_reformats") is True
        assert manager.get("indexer.max_block_range") is None
        assert manager.get_config_info()["sources"][-1] == "environment"

    @pytest.mark.parametrize("raw, parsed", [
        ("42", 42),
        ("0.5", 0.5),
        ("true", True),
        ("no", False),
        ('["a", "b"]', ["a", "b"]),
        ("http://localhost:8545", "http://localhost:8545"),
    ])
    def test_parse_env_value(self, raw, parsed):
        assert ConfigurationManager()._parse_env_value(raw) == parsed

    def test_set_and_save(self, tmp_path):
        manager = ConfigurationManager()
        manager.set("store.jwt", "saved-jwt")
        path = tmp_path / "out" / "config.yml"

        manager.save(str(path))

        assert yaml.safe_load(path.read_text())["store"]["jwt"] == "saved-jwt"
        assert ConfigurationManager(config_file=str(path)).get("store.jwt") == "saved-jwt"


class TestValidation:
    def test_missing_store_credentials(self):
        errors = ConfigurationManager().validate()

        assert len(errors) == 1
        assert "credentials" in errors[0]

    def test_valid_configuration(self):
        manager = ConfigurationManager()
        manager.set("store.jwt", "jwt")

        assert manager.validate() == []

    def test_invalid_values(self):
        manager = ConfigurationManager()
        manager.set("store.jwt", "jwt")
        manager.set("ledger.token_contract", "0x123")
        manager.set("submission.max_attempts", 0)
        manager.set("publish.initial_delay_seconds", 20.0)
        manager.set("indexer.verify_batch_size", 0)

        errors = manager.validate()

        assert len(errors) == 4
        assert any("token_contract" in e for e in errors)


class TestSettings:
    """Test building typed configs and wiring the pipeline."""

    def test_build_settings(self):
        manager = ConfigurationManager(profile="development")
        manager.set("store.api_key", "key")
        manager.set("store.api_secret", "secret")

        settings = manager.build_settings()

        assert settings.ledger.rpc_url == "http://localhost:8545"
        assert settings.store.auth_headers()["pinata_api_key"] == "key"
        assert [g.name for g in settings.store.gateways] == ["ipfs.io", "pinata"]
        assert settings.submission.max_delay_seconds == 5.0
        assert settings.indexer.block_window == 50_000
        assert settings.extractor.event_lookback_blocks == 1000

    def test_store_optional_for_read_only_use(self):
        settings = ConfigurationManager().build_settings(require_store=False)

        assert settings.store is None
        with pytest.raises(ValueError):
            create_pipeline(settings)

    def test_store_required_by_default(self):
        with pytest.raises(ValueError):
            ConfigurationManager().build_settings()

    def test_create_pipeline(self):
        manager = ConfigurationManager()
        manager.set("store.jwt", "jwt")

        pipeline = create_pipeline(manager.build_settings())

        assert isinstance(pipeline, RegistrationPipeline)
        assert isinstance(pipeline.store, ContentStoreClient)
        assert pipeline.submitter.config.max_attempts == 3
        assert pipeline.verifier.store is pipeline.store
