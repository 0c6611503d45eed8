"""
Asset Provenance Registry - Registration Exceptions

This module defines the registration error taxonomy. Every error carries the
step that failed and whether retrying the registration can help, and can be
turned into a user-facing description with describe_error().
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from content.exceptions import ContentError, ContentUnreachable, DigestMismatch, StoreUnavailable
from ledger.errors import DecodedRevert
from ledger.rpc import RPCAuthError, RPCError


class RegistrationError(Exception):
    """Base exception for registration failures."""
    code = "REGISTRATION_ERROR"
    retryable = False
    user_message = "Registration failed."
    suggestion: Optional[str] = None

    def __init__(self, message: str, step: Optional[str] = None, tx_hash: Optional[str] = None,
                 retryable: Optional[bool] = None):
        self.step = step
        self.tx_hash = tx_hash
        if retryable is not None:
            self.retryable = retryable
        super().__init__(f"[{step}] {message}" if step else message)


class InvalidRequest(RegistrationError):
    """Exception raised for malformed registration input."""
    code = "INVALID_REQUEST"
    user_message = "The registration request is invalid."
    suggestion = "Check the recipient address and metadata fields."


class ContentStoreUnavailable(RegistrationError):
    """The content store could not accept the metadata."""
    code = "STORE_UNAVAILABLE"
    retryable = True
    user_message = "The content store is unavailable or rate limited."
    suggestion = "Wait a moment and try again. Check store credentials if this persists."


class DigestMismatchError(RegistrationError):
    """Published content does not hash to the digest computed before upload."""
    code = "DIGEST_MISMATCH"
    user_message = "Published metadata does not match what was uploaded."
    suggestion = "The upload or serialization was corrupted. Rebuild the metadata before retrying."

    def __init__(self, message: str, expected: str, actual: str, step: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message, step=step)


class ContentNotPropagated(RegistrationError):
    """Published content never became reachable through the gateways."""
    code = "CONTENT_UNREACHABLE"
    retryable = True
    user_message = "Metadata is not yet reachable through the content gateways."
    suggestion = "Gateway propagation can take a while. Wait 10-30 seconds and retry."


class LedgerUnavailable(RegistrationError):
    """The ledger node could not be reached."""
    code = "LEDGER_UNAVAILABLE"
    retryable = True
    user_message = "The ledger node could not be reached."
    suggestion = "Check the RPC endpoint and your connection."


class InsufficientFunds(RegistrationError):
    """The paying account cannot cover gas."""
    code = "INSUFFICIENT_FUNDS"
    user_message = "Insufficient native balance to pay for registration."
    suggestion = "Fund the sending account and try again."

    def __init__(self, address: str, available: int = 0, message: Optional[str] = None,
                 step: Optional[str] = None):
        self.address = address
        self.available = available
        if message is None:
            message = f"Insufficient funds: {address} holds {available} wei"
        super().__init__(message, step=step)


class UserRejected(RegistrationError):
    """The signer declined the transaction."""
    code = "USER_REJECTED"
    user_message = "The transaction was rejected by the signer."
    suggestion = "Approve the transaction to complete registration."


class InvalidTokenContract(RegistrationError):
    """The ownership token contract has no code at the configured address."""
    code = "INVALID_TOKEN_CONTRACT"
    user_message = "The configured token contract is not deployed."
    suggestion = "Check the token contract address for the selected network."


class WrongNetwork(RegistrationError):
    """The ledger node serves a different chain than the one configured."""
    code = "WRONG_NETWORK"
    user_message = "The ledger node is connected to the wrong network."
    suggestion = "Point the RPC URL at the configured chain, or fix the configured chain id."

    def __init__(self, expected: int, actual: int, step: Optional[str] = "preflight"):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Node is on chain {actual}, expected {expected}", step=step)


class SimulationFailed(RegistrationError):
    """The dry run of the registration call reverted."""
    code = "SIMULATION_FAILED"
    user_message = "The registration contract rejected the request during simulation."

    def __init__(self, decoded_reason: DecodedRevert, step: Optional[str] = "simulate"):
        self.decoded_reason = decoded_reason
        super().__init__(
            f"Simulation failed: {decoded_reason.describe()}",
            step=step,
            retryable=decoded_reason.transient,
        )

    @property
    def suggestion(self) -> str:
        if self.decoded_reason.transient:
            return "Metadata may still be propagating. Wait 10-30 seconds and retry."
        return "Check metadata accessibility, hash values, and the token contract."


class TransientSubmissionFailure(RegistrationError):
    """Submission failed for a reason that may clear on its own."""
    code = "SUBMISSION_FAILED"
    retryable = True
    user_message = "The transaction could not be submitted."
    suggestion = "Try again in a moment."

    def __init__(self, message: str, attempts: int = 1, step: Optional[str] = "submit"):
        self.attempts = attempts
        super().__init__(message, step=step)


class Reverted(RegistrationError):
    """The transaction was mined but failed."""
    code = "REVERTED"
    user_message = "The registration transaction reverted on-chain."
    suggestion = "Inspect the revert reason; the transaction cannot succeed as submitted."

    def __init__(self, tx_hash: str, decoded_reason: Optional[DecodedRevert] = None,
                 step: Optional[str] = "confirm"):
        self.decoded_reason = decoded_reason
        reason = decoded_reason.describe() if decoded_reason else "no reason available"
        super().__init__(f"Transaction {tx_hash} reverted: {reason}", step=step, tx_hash=tx_hash)


class ConfirmationTimedOut(RegistrationError):
    """The transaction was not mined in time; it may still confirm later."""
    code = "CONFIRMATION_TIMEOUT"
    user_message = "The transaction has not been confirmed yet."
    suggestion = "Look the transaction up before submitting again to avoid a duplicate."


class IdentifierNotFound(RegistrationError):
    """The transaction confirmed but the asset identifier could not be determined."""
    code = "IDENTIFIER_NOT_FOUND"
    user_message = "Registration succeeded but the asset identifier could not be determined."
    suggestion = "Look the transaction up manually to find the registered asset."

    def __init__(self, tx_hash: str, step: Optional[str] = "extract"):
        super().__init__(
            f"No asset identifier found for transaction {tx_hash}",
            step=step,
            tx_hash=tx_hash,
        )


class OperationCancelled(RegistrationError):
    """The caller abandoned the registration."""
    code = "CANCELLED"
    user_message = "Registration was cancelled."


@dataclass
class ErrorInfo:
    """User-facing description of a failure."""
    code: str
    message: str
    user_message: str
    retryable: bool
    suggestion: Optional[str] = None
    step: Optional[str] = None
    tx_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
            "suggestion": self.suggestion,
            "step": self.step,
            "tx_hash": self.tx_hash
        }


def describe_error(error: BaseException) -> ErrorInfo:
    """Classify any exception for display, including ones from lower layers."""
    if isinstance(error, RegistrationError):
        return ErrorInfo(
            code=error.code,
            message=str(error),
            user_message=error.user_message,
            retryable=error.retryable,
            suggestion=error.suggestion,
            step=error.step,
            tx_hash=error.tx_hash,
        )

    if isinstance(error, StoreUnavailable):
        return ErrorInfo(
            code=ContentStoreUnavailable.code,
            message=str(error),
            user_message=ContentStoreUnavailable.user_message,
            retryable=error.retryable,
            suggestion=ContentStoreUnavailable.suggestion,
        )

    if isinstance(error, DigestMismatch):
        return ErrorInfo(
            code=DigestMismatchError.code,
            message=str(error),
            user_message=DigestMismatchError.user_message,
            retryable=False,
            suggestion=DigestMismatchError.suggestion,
        )

    if isinstance(error, ContentUnreachable):
        return ErrorInfo(
            code=ContentNotPropagated.code,
            message=str(error),
            user_message=ContentNotPropagated.user_message,
            retryable=True,
            suggestion=ContentNotPropagated.suggestion,
        )

    if isinstance(error, ContentError):
        return ErrorInfo(
            code="CONTENT_ERROR",
            message=str(error),
            user_message="The asset metadata is invalid.",
            retryable=error.retryable,
        )

    if isinstance(error, RPCAuthError):
        return ErrorInfo(
            code="LEDGER_AUTH_ERROR",
            message=str(error),
            user_message="The ledger node rejected the credentials.",
            retryable=False,
            suggestion="Check the RPC endpoint credentials.",
        )

    if isinstance(error, RPCError):
        return ErrorInfo(
            code=LedgerUnavailable.code,
            message=str(error),
            user_message=LedgerUnavailable.user_message,
            retryable=True,
            suggestion=LedgerUnavailable.suggestion,
        )

    return ErrorInfo(
        code="UNKNOWN_ERROR",
        message=str(error),
        user_message="An unexpected error occurred.",
        retryable=False,
    )
