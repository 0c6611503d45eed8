"""
Tests for the registration submitter state machine.
"""

import threading

import pytest

from content.metadata import ContentDigest
from ledger.abi import encode_abi
from ledger.errors import KNOWN_ERRORS
from ledger.rpc import RPCConnectionError, RPCError
from registration.exceptions import (
    InsufficientFunds,
    InvalidRequest,
    InvalidTokenContract,
    OperationCancelled,
    Reverted,
    SimulationFailed,
    TransientSubmissionFailure,
    UserRejected,
    WrongNetwork,
)
from registration.models import ExtractionPath, RegistrationRequest, RegistrationState, SubmissionRecord
from registration.submitter import RegistrationSubmitter, SubmissionConfig

from tests.fakes import OWNER_A, OWNER_B


def revert(name: str, types=(), values=()) -> RPCError:
    definition = next(e for e in KNOWN_ERRORS if e.name == name)
    data = definition.selector + encode_abi(types, values).hex()
    return RPCError(3, "execution reverted", {"data": data})


@pytest.fixture
def request_():
    return RegistrationRequest(
        recipient=OWNER_A,
        asset_metadata_uri="https://ipfs.io/ipfs/QmAsset",
        asset_metadata_digest=ContentDigest.of(b'{"title":"A"}'),
        token_metadata_uri="https://ipfs.io/ipfs/QmToken",
        token_metadata_digest=ContentDigest.of(b'{"name":"A"}'),
    )


class TestRegistrationRequest:
    """Test request validation."""

    def test_invalid_recipient(self):
        with pytest.raises(InvalidRequest):
            RegistrationRequest(
                recipient="not-an-address",
                asset_metadata_uri="https://ipfs.io/ipfs/QmAsset",
                asset_metadata_digest=ContentDigest.of(b"a"),
                token_metadata_uri="https://ipfs.io/ipfs/QmToken",
                token_metadata_digest=ContentDigest.of(b"b"),
            )

    def test_metadata_tuple_order(self, request_):
        assert request_.metadata_tuple() == (
            "https://ipfs.io/ipfs/QmAsset",
            request_.asset_metadata_digest.value,
            "https://ipfs.io/ipfs/QmToken",
            request_.token_metadata_digest.value,
        )


class TestSubmissionConfig:
    """Test retry delay computation."""

    def test_default_backoff(self):
        config = SubmissionConfig()
        delays = [config.get_retry_delay(attempt) for attempt in range(1, 7)]
        assert delays == [0.0, 5.0, 10.0, 20.0, 30.0, 30.0]

    def test_invalid_delays(self):
        with pytest.raises(ValueError):
            SubmissionConfig(initial_delay_seconds=10, max_delay_seconds=5)
        with pytest.raises(ValueError):
            SubmissionConfig(max_attempts=0)


class TestRegistrationSubmitter:
    """Test the simulate, submit, confirm and extract sequence."""

    def test_successful_registration(self, node, submitter, request_):
        record = SubmissionRecord(request=request_)

        result = submitter.register(request_, record=record)

        assert result.token_id == 1
        assert result.asset_id == node.asset_id(1)
        assert result.extraction_path == ExtractionPath.RECEIPT_LOG
        assert result.chain_id == 1315
        assert result.block_number == node.head
        assert result.registered_at is not None
        assert node.simulations == 1
        assert len(node.sent) == 1
        assert [t.state for t in record.transitions] == [
            RegistrationState.PREPARING,
            RegistrationState.SIMULATED,
            RegistrationState.SUBMITTED,
            RegistrationState.CONFIRMED,
            RegistrationState.EXTRACTING_IDENTIFIER,
            RegistrationState.DONE,
        ]

    def test_transaction_targets_workflows_contract(self, node, submitter, request_):
        transaction = submitter.build_transaction(request_)

        assert transaction.to == node.config.registration_workflows
        assert transaction.from_address == OWNER_A
        assert transaction.gas == 5_000_000
        assert transaction.data.startswith("0x")

    def test_zero_balance_stops_before_simulation(self, node, submitter, request_):
        node.balances.clear()

        with pytest.raises(InsufficientFunds) as exc_info:
            submitter.register(request_)

        assert exc_info.value.step == "preflight"
        assert node.simulations == 0
        assert node.sent == []

    def test_missing_token_contract(self, node, submitter, request_):
        node.code.clear()

        with pytest.raises(InvalidTokenContract):
            submitter.register(request_)
        assert node.sent == []

    def test_wrong_network_stops_before_simulation(self, node, submitter, request_):
        node.chain_id = lambda: 1

        with pytest.raises(WrongNetwork) as exc_info:
            submitter.register(request_)

        assert exc_info.value.expected == node.config.chain_id
        assert exc_info.value.actual == 1
        assert exc_info.value.step == "preflight"
        assert node.simulations == 0
        assert node.sent == []

    def test_failed_simulation_never_submits(self, node, submitter, request_):
        node.simulation_errors = [revert("InvalidRecipient", ('address',), [OWNER_B])]

        with pytest.raises(SimulationFailed) as exc_info:
            submitter.register(request_)

        assert exc_info.value.decoded_reason.name == "InvalidRecipient"
        assert not exc_info.value.retryable
        assert node.simulations == 1
        assert node.sent == []

    def test_transient_simulation_failure_is_retried(self, node, submitter, request_):
        node.simulation_errors = [revert("MetadataNotAccessible", ('string',), ["https://ipfs.io/ipfs/QmAsset"])]

        result = submitter.register(request_)

        assert result.token_id == 1
        assert node.simulations == 2
        assert len(node.sent) == 1

    def test_transient_simulation_failure_exhausts_attempts(self, node, submitter, request_):
        node.simulation_errors = [
            revert("MetadataNotAccessible", ('string',), ["https://ipfs.io/ipfs/QmAsset"])
        ] * 3

        with pytest.raises(SimulationFailed) as exc_info:
            submitter.register(request_)

        assert exc_info.value.retryable
        assert node.simulations == 3
        assert node.sent == []

    def test_simulation_transport_failure_is_retried(self, node, submitter, request_):
        node.simulation_errors = [RPCConnectionError(-1, "Connection refused")]

        result = submitter.register(request_)

        assert result.token_id == 1
        assert node.simulations == 2

    def test_submission_retry_resimulates(self, node, submitter, request_):
        node.send_errors = [RPCError(-32000, "nonce too low"), RPCError(-32000, "replacement underpriced")]

        result = submitter.register(request_)

        assert result.token_id == 1
        assert len(node.sent) == 3
        assert node.simulations == 3

    def test_submission_gives_up_after_max_attempts(self, node, submitter, request_):
        node.send_errors = [RPCError(-32000, "nonce too low")] * 3

        with pytest.raises(TransientSubmissionFailure) as exc_info:
            submitter.register(request_)

        assert exc_info.value.attempts == 3
        assert exc_info.value.retryable
        assert len(node.sent) == 3

    def test_user_rejection_is_terminal(self, node, submitter, request_):
        node.send_errors = [RPCError(4001, "User rejected the request")]

        with pytest.raises(UserRejected):
            submitter.register(request_)

        assert len(node.sent) == 1
        assert node.simulations == 1

    def test_insufficient_funds_on_submit(self, node, submitter, request_):
        node.send_errors = [RPCError(-32000, "insufficient funds for gas * price + value")]

        with pytest.raises(InsufficientFunds) as exc_info:
            submitter.register(request_)
        assert exc_info.value.step == "submit"

    def test_reverted_transaction_reports_reason(self, node, submitter, request_):
        node.reverting_sends = 1
        node.replay_error = revert("InvalidSPGContract", ('address',), [node.config.token_contract])
        record = SubmissionRecord(request=request_)

        with pytest.raises(Reverted) as exc_info:
            submitter.register(request_, record=record)

        error = exc_info.value
        assert error.tx_hash in node.receipts
        assert error.decoded_reason.name == "InvalidSPGContract"
        assert "InvalidSPGContract" in str(error)
        assert record.state == RegistrationState.FAILED
        assert len(node.sent) == 1

    def test_cancelled_before_start(self, node, submitter, request_):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelled):
            submitter.register(request_, cancel_event=cancel)
        assert node.simulations == 0

    def test_configured_sender_pays(self, node, ledger, request_):
        node.config.sender_address = OWNER_B
        node.balances[OWNER_B.lower()] = 10 ** 18

        submitter = RegistrationSubmitter(ledger, config=SubmissionConfig(initial_delay_seconds=0, max_delay_seconds=0))
        result = submitter.register(request_)

        assert node.sent[0]["from"] == OWNER_B
        assert node.owners[result.token_id] == OWNER_A
