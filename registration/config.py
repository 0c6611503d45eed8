"""
Asset Provenance Registry - Configuration Management

Handles hierarchical configuration loading, environment variable mapping,
validation, and construction of the typed component configs.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from content.store import ContentStoreClient, Gateway, StoreConfig
from content.verifier import ConsistencyVerifier, VerifierConfig
from ledger.abi import is_address
from ledger.client import LedgerClient
from ledger.config import LedgerConfig
from ledger.contracts import (
    AENEID_CHAIN_ID,
    AENEID_RPC_URL,
    DEFAULT_GAS_LIMIT,
    IP_ASSET_REGISTRY_ADDRESS,
    PUBLIC_TOKEN_CONTRACT_ADDRESS,
    REGISTRATION_WORKFLOWS_ADDRESS,
)
from ownership.indexer import IndexerConfig

from .extractor import ExtractorConfig, IdentifierExtractor
from .pipeline import PublishPolicy, RegistrationPipeline
from .submitter import RegistrationSubmitter, SubmissionConfig

# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.provenance.yml',
    Path.cwd() / '.provenance.json',
    Path.cwd() / 'provenance.config.yml',
    Path.cwd() / 'provenance.config.json',
    Path.home() / '.provenance' / 'config.yml',
    Path.home() / '.provenance' / 'config.json',
]

# Environment variable prefix; '__' separates nesting levels
ENV_PREFIX = 'PROVENANCE_'
ENV_NESTING = '__'

DEFAULT_CONFIG = {
    'ledger': {
        'rpc_url': AENEID_RPC_URL,
        'chain_id': AENEID_CHAIN_ID,
        'timeout': 30,
        'ssl_verify': True,
        'max_retries': 0,
        'registration_workflows': REGISTRATION_WORKFLOWS_ADDRESS,
        'token_contract': PUBLIC_TOKEN_CONTRACT_ADDRESS,
        'ip_asset_registry': IP_ASSET_REGISTRY_ADDRESS,
        'sender_address': None,
        'gas_limit': DEFAULT_GAS_LIMIT,
        'confirmation_timeout': 120.0,
        'confirmation_poll_interval': 2.0,
    },

    'store': {
        'api_url': 'https://api.pinata.cloud',
        'jwt': None,
        'api_key': None,
        'api_secret': None,
        'upload_timeout': 60,
        'min_request_interval': 0.5,
        'gateways': [
            {'name': 'ipfs.io', 'url': 'https://ipfs.io', 'priority': 1, 'timeout': 30},
            {'name': 'pinata', 'url': 'https://gateway.pinata.cloud', 'priority': 2, 'timeout': 10},
        ],
    },

    'verifier': {
        'max_wait': 60.0,
        'poll_interval': 5.0,
        'initial_delay': 0.0,
        'store_reformats': False,
    },

    'submission': {
        'max_attempts': 3,
        'initial_delay_seconds': 5.0,
        'max_delay_seconds': 30.0,
        'jitter_factor': 0.0,
        'min_balance_wei': 1,
        'check_token_contract': True,
        'check_chain_id': True,
    },

    'publish': {
        'max_attempts': 3,
        'initial_delay_seconds': 2.0,
        'max_delay_seconds': 10.0,
        'republish_on_unreachable': True,
    },

    'extractor': {
        'event_lookback_blocks': 1000,
    },

    'indexer': {
        'block_window': 50_000,
        'verify_batch_size': 10,
        'brute_force_window': 1000,
        'brute_force_batch_size': 50,
        'max_block_range': None,
        'resolve_metadata_uris': True,
        'resolve_timestamps': True,
        'registration_lookup_window': None,
    },
}

PROFILES = {
    'aeneid': {
        'ledger': {'chain_id': AENEID_CHAIN_ID, 'rpc_url': AENEID_RPC_URL},
    },
    'development': {
        'ledger': {'rpc_url': 'http://localhost:8545', 'confirmation_timeout': 30.0},
        'verifier': {'max_wait': 10.0, 'poll_interval': 1.0},
        'submission': {'initial_delay_seconds': 1.0, 'max_delay_seconds': 5.0},
        'store': {'min_request_interval': 0.0},
    },
}


@dataclass
class Settings:
    """Typed component configurations built from the merged configuration."""
    ledger: LedgerConfig
    store: Optional[StoreConfig]
    verifier: VerifierConfig
    submission: SubmissionConfig
    publish: PublishPolicy
    extractor: ExtractorConfig
    indexer: IndexerConfig


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to load (aeneid, development)
        """
        self.logger = logging.getLogger(__name__)
        self.config_file = config_file
        self.profile = profile
        self._config_cache = None
        self._config_sources = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        self._config_sources = ["defaults"]
        configs = [copy.deepcopy(DEFAULT_CONFIG)]

        if self.profile:
            if self.profile not in PROFILES:
                raise ValueError(f"Unknown profile: {self.profile}")
            configs.append(PROFILES[self.profile])
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            config_data = self._load_config_file(Path(self.config_file))
            if config_data:
                configs.append(config_data)
                self._config_sources.append(f"file:{self.config_file}")
        else:
            for config_path in CONFIG_SEARCH_PATHS:
                if config_path.exists():
                    config_data = self._load_config_file(config_path)
                    if config_data:
                        configs.append(config_data)
                        self._config_sources.append(f"file:{config_path}")
                        self.logger.debug(f"Loaded config from {config_path}")
                        break  # First found file wins

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        return self._config_cache

    def _load_config_file(self, path: Path) -> Optional[Dict[str, Any]]:
        """Load configuration from file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ['.yml', '.yaml']:
                    return yaml.safe_load(f)
                elif path.suffix == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unknown config file format: {path}")
                    return None
        except (OSError, ValueError, yaml.YAMLError) as e:
            self.logger.error(f"Failed to load config from {path}: {e}")
            return None

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            # PROVENANCE_LEDGER__RPC_URL -> {'ledger': {'rpc_url': value}}
            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING)
            current = env_config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, None, list, dict]:
        """Parse environment variable value to appropriate type."""
        try:
            return json.loads(value)
        except ValueError:
            pass

        if value.lower() in ['true', 'yes']:
            return True
        elif value.lower() in ['false', 'no']:
            return False

        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value

        return result

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'ledger.rpc_url')
            default: Default value if key not found
        """
        current = self.load()
        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set(self, key_path: str, value: Any):
        """Set configuration value by dot-notation path."""
        config = self.load()

        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})

        current[keys[-1]] = value
        self._config_cache = config

    def save(self, path: Optional[str] = None, format: str = 'yaml'):
        """
        Save current configuration to file.

        Args:
            path: File path to save to (default: project config file)
            format: Output format ('yaml' or 'json')
        """
        config = self.load()

        if not path:
            path = Path.cwd() / ('.provenance.yml' if format == 'yaml' else '.provenance.json')

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            if format == 'yaml':
                yaml.dump(config, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(config, f, indent=2)

        self.logger.info(f"Configuration saved to {path}")

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        ledger = config.get('ledger', {})
        if not ledger.get('rpc_url'):
            errors.append("Ledger RPC URL is required")
        if not isinstance(ledger.get('chain_id'), int) or ledger['chain_id'] <= 0:
            errors.append("Ledger chain id must be a positive integer")
        for key in ('registration_workflows', 'token_contract'):
            if not is_address(ledger.get(key)):
                errors.append(f"Invalid ledger.{key} address: {ledger.get(key)}")
        for key in ('ip_asset_registry', 'sender_address'):
            if ledger.get(key) is not None and not is_address(ledger[key]):
                errors.append(f"Invalid ledger.{key} address: {ledger[key]}")
        for key in ('timeout', 'confirmation_timeout', 'confirmation_poll_interval', 'gas_limit'):
            if not isinstance(ledger.get(key), (int, float)) or ledger[key] <= 0:
                errors.append(f"ledger.{key} must be positive")

        store = config.get('store', {})
        if not store.get('jwt') and not (store.get('api_key') and store.get('api_secret')):
            errors.append("Store credentials missing: set store.jwt or store.api_key and store.api_secret")
        if not store.get('gateways'):
            errors.append("At least one store gateway is required")

        verifier = config.get('verifier', {})
        if verifier.get('max_wait', 0) < 0:
            errors.append("verifier.max_wait must not be negative")
        if verifier.get('poll_interval', 0) <= 0:
            errors.append("verifier.poll_interval must be positive")

        for section in ('submission', 'publish'):
            policy = config.get(section, {})
            if policy.get('max_attempts', 0) < 1:
                errors.append(f"{section}.max_attempts must be at least 1")
            if policy.get('max_delay_seconds', 0) < policy.get('initial_delay_seconds', 0):
                errors.append(f"{section}.max_delay_seconds must not be below initial_delay_seconds")

        indexer = config.get('indexer', {})
        for key in ('block_window', 'verify_batch_size', 'brute_force_batch_size'):
            if indexer.get(key, 0) <= 0:
                errors.append(f"indexer.{key} must be positive")

        return errors

    def build_settings(self, require_store: bool = True) -> Settings:
        """
        Turn the merged configuration into typed component configs.

        Args:
            require_store: Fail when store credentials are missing (read-only
                tools such as the ownership indexer can pass False)

        Raises:
            ValueError: If a section holds invalid values
        """
        config = self.load()

        store_section = dict(config.get('store', {}))
        has_credentials = store_section.get('jwt') or (
            store_section.get('api_key') and store_section.get('api_secret')
        )
        store = None
        if has_credentials or require_store:
            gateways = [Gateway(**g) for g in store_section.pop('gateways', [])]
            store = StoreConfig(gateways=gateways, **store_section)

        return Settings(
            ledger=LedgerConfig(**config.get('ledger', {})),
            store=store,
            verifier=VerifierConfig(**config.get('verifier', {})),
            submission=SubmissionConfig(**config.get('submission', {})),
            publish=PublishPolicy(**config.get('publish', {})),
            extractor=ExtractorConfig(**config.get('extractor', {})),
            indexer=IndexerConfig(**config.get('indexer', {})),
        )

    def get_config_info(self) -> Dict[str, Any]:
        self.load()
        return {
            'profile': self.profile,
            'config_file': self.config_file,
            'sources': list(self._config_sources),
        }


def create_pipeline(settings: Settings) -> RegistrationPipeline:
    """Wire a registration pipeline from typed settings."""
    if settings.store is None:
        raise ValueError("Store configuration is required to register assets")

    ledger = LedgerClient(config=settings.ledger)
    store = ContentStoreClient(settings.store)
    return RegistrationPipeline(
        store=store,
        verifier=ConsistencyVerifier(store, settings.verifier),
        submitter=RegistrationSubmitter(
            ledger,
            extractor=IdentifierExtractor(ledger, settings.extractor),
            config=settings.submission,
        ),
        publish_policy=settings.publish,
    )
