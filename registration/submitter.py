"""
Asset Provenance Registry - Registration Submitter

This module drives a registration through
Preparing -> Simulated -> Submitted -> Confirmed -> ExtractingIdentifier -> Done,
with Failed reachable from any state. A registration is never submitted
unless its simulation succeeded; transient submission failures are retried
with capped exponential backoff, re-simulating before every attempt.
"""

import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ledger.client import (
    TRANSPORT_ERRORS,
    ConfirmationTimeout,
    LedgerClient,
    Receipt,
    SimulationResult,
    TransactionParams,
    WaitCancelled,
)
from ledger.contracts import MINT_AND_REGISTER_IP
from ledger.rpc import RPCError

from .exceptions import (
    ConfirmationTimedOut,
    InsufficientFunds,
    InvalidTokenContract,
    LedgerUnavailable,
    OperationCancelled,
    RegistrationError,
    Reverted,
    SimulationFailed,
    TransientSubmissionFailure,
    UserRejected,
    WrongNetwork,
)
from .extractor import IdentifierExtractor
from .models import RegistrationRequest, RegistrationResult, RegistrationState, SubmissionRecord


# EIP-1193 code for a request the signer declined
USER_REJECTED_CODE = 4001


@dataclass
class SubmissionConfig:
    """Configuration for registration submission."""
    max_attempts: int = 3
    initial_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.0
    # Balance below this fails preflight; zero always does
    min_balance_wei: int = 1
    low_balance_warning_wei: int = 10 ** 15
    check_token_contract: bool = True
    check_chain_id: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds cannot be below initial_delay_seconds")
        self.min_balance_wei = max(self.min_balance_wei, 1)

    def get_retry_delay(self, attempt: int) -> float:
        """Delay before the given attempt (1-based); the first attempt has none."""
        if attempt <= 1:
            return 0.0

        delay = self.initial_delay_seconds * (self.exponential_base ** (attempt - 2))
        delay = min(delay, self.max_delay_seconds)

        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()

        return delay

    @classmethod
    def from_env(cls) -> 'SubmissionConfig':
        return cls(
            max_attempts=int(os.getenv("SUBMIT_MAX_ATTEMPTS", "3")),
            initial_delay_seconds=float(os.getenv("SUBMIT_INITIAL_DELAY", "5")),
            max_delay_seconds=float(os.getenv("SUBMIT_MAX_DELAY", "30")),
            jitter_factor=float(os.getenv("SUBMIT_JITTER", "0")),
        )


class RegistrationSubmitter:
    """Simulates, submits, confirms, and resolves a registration transaction."""

    def __init__(self, ledger: LedgerClient, extractor: Optional[IdentifierExtractor] = None,
                 config: Optional[SubmissionConfig] = None):
        """
        Initialize submitter.

        Args:
            ledger: Shared ledger client
            extractor: Identifier extractor (built on the same ledger if None)
            config: Submission configuration
        """
        self.ledger = ledger
        self.extractor = extractor or IdentifierExtractor(ledger)
        self.config = config or SubmissionConfig()
        self.logger = logging.getLogger(__name__)

    @property
    def token_contract(self) -> str:
        return self.ledger.config.token_contract

    def build_transaction(self, request: RegistrationRequest) -> TransactionParams:
        sender = self.ledger.config.sender_address or request.recipient
        return TransactionParams(
            from_address=sender,
            to=self.ledger.config.registration_workflows,
            data=MINT_AND_REGISTER_IP.encode_call(
                self.token_contract,
                request.recipient,
                request.metadata_tuple(),
                request.allow_duplicates,
            ),
            gas=self.ledger.config.gas_limit,
        )

    def register(self, request: RegistrationRequest,
                 cancel_event: Optional[threading.Event] = None,
                 record: Optional[SubmissionRecord] = None) -> RegistrationResult:
        """
        Run the full submission state machine for one request.

        Args:
            request: Registration request with published metadata
            cancel_event: Set to abandon the registration at the next wait
            record: Progress record to update (a new one if None)

        Returns:
            RegistrationResult for the confirmed registration

        Raises:
            RegistrationError: Subclass describing the failed step
        """
        record = record or SubmissionRecord(request=request)
        record.advance(RegistrationState.PREPARING)

        try:
            transaction = self.build_transaction(request)
            self._check_cancelled(cancel_event, "preflight")
            self.preflight(transaction.from_address)

            tx_hash = self._simulate_and_submit(transaction, record, cancel_event)
            receipt = self._confirm(transaction, tx_hash, record, cancel_event)

            record.advance(RegistrationState.EXTRACTING_IDENTIFIER)
            identifier = self.extractor.extract(
                receipt, self.token_contract, expected_owner=request.recipient
            )

            result = RegistrationResult(
                asset_id=identifier.asset_id,
                token_id=identifier.token_id,
                tx_hash=tx_hash,
                block_number=receipt.block_number,
                token_contract=self.token_contract,
                chain_id=self.ledger.chain_id,
                extraction_path=identifier.path,
                registered_at=self._block_time(receipt.block_number),
            )
            record.advance(RegistrationState.DONE, detail=result.asset_id)
            return result

        except RegistrationError as e:
            record.fail(e)
            self.logger.error(f"Registration failed: {e}")
            raise

    def preflight(self, sender: str):
        """
        Check the node serves the configured chain, the sender can pay for gas
        and the token contract exists.

        Raises:
            InsufficientFunds: If the sender balance is below the minimum
            WrongNetwork: If the node serves another chain than the configured one
            InvalidTokenContract: If no code is deployed at the token contract
            LedgerUnavailable: If the checks cannot be performed
        """
        if self.config.check_chain_id:
            try:
                node_chain = self.ledger.node_chain_id()
            except RPCError as e:
                raise LedgerUnavailable(f"Chain id check failed: {e}", step="preflight") from e
            if node_chain != self.ledger.chain_id:
                raise WrongNetwork(self.ledger.chain_id, node_chain)

        try:
            balance = self.ledger.get_balance(sender)
        except RPCError as e:
            raise LedgerUnavailable(f"Balance check failed: {e}", step="preflight") from e

        if balance < self.config.min_balance_wei:
            raise InsufficientFunds(sender, balance, step="preflight")

        if balance < self.config.low_balance_warning_wei:
            self.logger.warning(f"Low balance for {sender}: {balance} wei")

        if self.config.check_token_contract:
            try:
                code = self.ledger.get_code(self.token_contract)
            except RPCError as e:
                raise LedgerUnavailable(f"Contract check failed: {e}", step="preflight") from e
            if code in ("", "0x", "0x0"):
                raise InvalidTokenContract(
                    f"No contract deployed at {self.token_contract}", step="preflight"
                )

    def classify_submission_error(self, error: RPCError, sender: str, attempt: int) -> RegistrationError:
        """Map a node error from submission onto the taxonomy."""
        message = (error.message or "").lower()

        if error.code == USER_REJECTED_CODE or "user rejected" in message or "user denied" in message:
            return UserRejected(f"Transaction rejected: {error.message}", step="submit")

        if "insufficient funds" in message:
            return InsufficientFunds(sender, message=f"Insufficient funds: {error.message}", step="submit")

        return TransientSubmissionFailure(str(error), attempts=attempt)

    def _simulate(self, transaction: TransactionParams) -> SimulationResult:
        try:
            return self.ledger.simulate(transaction)
        except TRANSPORT_ERRORS as e:
            raise TransientSubmissionFailure(f"Simulation unavailable: {e}", step="simulate") from e

    def _simulate_and_submit(self, transaction: TransactionParams, record: SubmissionRecord,
                             cancel_event: Optional[threading.Event]) -> str:
        last_error: Optional[RegistrationError] = None

        for attempt in range(1, self.config.max_attempts + 1):
            record.attempts = attempt

            if attempt > 1:
                delay = self.config.get_retry_delay(attempt)
                self.logger.warning(
                    f"Retrying submission (attempt {attempt}/{self.config.max_attempts}) "
                    f"in {delay:.1f}s after: {last_error}"
                )
                self._wait(delay, cancel_event, "submit")
            else:
                self._check_cancelled(cancel_event, "simulate")

            # Content consistency is not re-verified here, only chain state
            try:
                simulation = self._simulate(transaction)
            except TransientSubmissionFailure as e:
                last_error = e
                continue

            if not simulation.ok:
                error = SimulationFailed(simulation.revert)
                if error.retryable and attempt < self.config.max_attempts:
                    last_error = error
                    continue
                raise error

            record.advance(RegistrationState.SIMULATED, detail=f"attempt {attempt}")
            self.logger.info(f"Simulation succeeded (attempt {attempt})")

            try:
                tx_hash = self.ledger.submit(transaction)
            except RPCError as e:
                error = self.classify_submission_error(e, transaction.from_address, attempt)
                if not error.retryable:
                    raise error from e
                last_error = error
                continue

            record.tx_hash = tx_hash
            record.advance(RegistrationState.SUBMITTED, detail=tx_hash)
            return tx_hash

        if isinstance(last_error, SimulationFailed):
            raise last_error
        raise TransientSubmissionFailure(
            f"Submission failed after {self.config.max_attempts} attempts: {last_error}",
            attempts=self.config.max_attempts,
        )

    def _confirm(self, transaction: TransactionParams, tx_hash: str, record: SubmissionRecord,
                 cancel_event: Optional[threading.Event]) -> Receipt:
        try:
            receipt = self.ledger.await_confirmation(tx_hash, cancel_event=cancel_event)
        except ConfirmationTimeout as e:
            raise ConfirmationTimedOut(str(e), step="confirm", tx_hash=tx_hash) from e
        except WaitCancelled as e:
            raise OperationCancelled(str(e), step="confirm", tx_hash=tx_hash) from e
        except RPCError as e:
            raise LedgerUnavailable(f"Receipt lookup failed: {e}", step="confirm", tx_hash=tx_hash) from e

        if not receipt.succeeded:
            decoded = self.ledger.replay_revert(transaction, receipt.block_number)
            raise Reverted(tx_hash, decoded)

        record.advance(RegistrationState.CONFIRMED, detail=f"block {receipt.block_number}")
        return receipt

    def _block_time(self, block_number: int) -> Optional[datetime]:
        try:
            timestamp = self.ledger.block_timestamp(block_number)
        except RPCError as e:
            self.logger.debug(f"Block {block_number} timestamp unavailable: {e}")
            return None
        if timestamp is None:
            return None
        return datetime.fromtimestamp(timestamp, timezone.utc)

    def _check_cancelled(self, cancel_event: Optional[threading.Event], step: str):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Registration cancelled", step=step)

    def _wait(self, seconds: float, cancel_event: Optional[threading.Event], step: str):
        if cancel_event is not None:
            if cancel_event.wait(seconds):
                raise OperationCancelled("Registration cancelled", step=step)
        elif seconds > 0:
            time.sleep(seconds)
