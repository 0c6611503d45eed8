"""
Asset Provenance Registry - Registration

This package drives an asset registration from metadata to a confirmed
on-chain record: publishing and verifying metadata, simulating and submitting
the registration transaction, and resolving the resulting asset identifier.
"""

from .exceptions import (
    ConfirmationTimedOut,
    ContentNotPropagated,
    ContentStoreUnavailable,
    DigestMismatchError,
    ErrorInfo,
    IdentifierNotFound,
    InsufficientFunds,
    InvalidRequest,
    InvalidTokenContract,
    LedgerUnavailable,
    OperationCancelled,
    RegistrationError,
    Reverted,
    SimulationFailed,
    TransientSubmissionFailure,
    UserRejected,
    WrongNetwork,
    describe_error,
)

from .extractor import ExtractedIdentifier, ExtractorConfig, IdentifierExtractor
from .models import (
    ExtractionPath,
    RegistrationRequest,
    RegistrationResult,
    RegistrationState,
    SubmissionRecord,
)
from .pipeline import PublishPolicy, RegistrationPipeline
from .submitter import RegistrationSubmitter, SubmissionConfig
from .tracker import AttemptStatus, RegistrationAttempt, RegistrationTracker
from .config import ConfigurationManager, Settings, create_pipeline

__all__ = [
    "ConfirmationTimedOut",
    "ContentNotPropagated",
    "ContentStoreUnavailable",
    "DigestMismatchError",
    "ErrorInfo",
    "IdentifierNotFound",
    "InsufficientFunds",
    "InvalidRequest",
    "InvalidTokenContract",
    "LedgerUnavailable",
    "OperationCancelled",
    "RegistrationError",
    "Reverted",
    "SimulationFailed",
    "TransientSubmissionFailure",
    "UserRejected",
    "WrongNetwork",
    "describe_error",
    "ExtractedIdentifier",
    "ExtractorConfig",
    "IdentifierExtractor",
    "ExtractionPath",
    "RegistrationRequest",
    "RegistrationResult",
    "RegistrationState",
    "SubmissionRecord",
    "PublishPolicy",
    "RegistrationPipeline",
    "RegistrationSubmitter",
    "SubmissionConfig",
    "AttemptStatus",
    "RegistrationAttempt",
    "RegistrationTracker",
    "ConfigurationManager",
    "Settings",
    "create_pipeline",
]
