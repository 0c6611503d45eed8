"""
Asset Provenance Registry - Registration Models
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from content.metadata import ContentDigest
from ledger.abi import is_address

from .exceptions import InvalidRequest


class RegistrationState(str, Enum):
    """States of a single registration."""
    PREPARING = "preparing"
    SIMULATED = "simulated"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    EXTRACTING_IDENTIFIER = "extracting_identifier"
    DONE = "done"
    FAILED = "failed"


class ExtractionPath(str, Enum):
    """How the asset identifier was obtained."""
    RECEIPT_LOG = "receipt_log"
    EVENT_QUERY = "event_query"
    TOTAL_SUPPLY = "total_supply"


@dataclass
class RegistrationRequest:
    """Everything the registration call needs, after metadata is published."""
    recipient: str
    asset_metadata_uri: str
    asset_metadata_digest: ContentDigest
    token_metadata_uri: str
    token_metadata_digest: ContentDigest
    allow_duplicates: bool = True

    def __post_init__(self):
        if not is_address(self.recipient):
            raise InvalidRequest(f"Invalid recipient address: {self.recipient}", step="prepare")
        if not self.asset_metadata_uri or not self.token_metadata_uri:
            raise InvalidRequest("Metadata URIs are required", step="prepare")

    def metadata_tuple(self) -> tuple:
        return (
            self.asset_metadata_uri,
            self.asset_metadata_digest.value,
            self.token_metadata_uri,
            self.token_metadata_digest.value,
        )


@dataclass(frozen=True)
class RegistrationResult:
    """Terminal record of a successful registration."""
    asset_id: str
    token_id: int
    tx_hash: str
    block_number: int
    token_contract: str
    chain_id: int
    extraction_path: ExtractionPath
    registered_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "token_id": self.token_id,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "token_contract": self.token_contract,
            "chain_id": self.chain_id,
            "extraction_path": self.extraction_path.value,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None
        }


@dataclass
class StateTransition:
    state: RegistrationState
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SubmissionRecord:
    """Progress of one submission through the state machine."""
    request: RegistrationRequest
    state: RegistrationState = RegistrationState.PREPARING
    transitions: List[StateTransition] = field(default_factory=list)
    attempts: int = 0
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    def advance(self, state: RegistrationState, detail: Optional[str] = None):
        self.state = state
        self.transitions.append(StateTransition(state=state, detail=detail))

    def fail(self, error: Exception):
        self.error = str(error)
        self.advance(RegistrationState.FAILED, detail=type(error).__name__)
