"""
Tests for the two-phase root chain exit.
"""

from unittest.mock import MagicMock

import pytest

from polbridge.exceptions import AlreadyExitedError, ChainTransactionError, ExitFinalizationError
from polbridge.exit_processor import ExitProcessor
from polbridge.models import CheckpointProof, ExitState
from tests.fakes import BURN_TX, ERC20_PREDICATE, POL_SEPOLIA, PROOF_PAYLOAD, WITHDRAW_MANAGER


@pytest.fixture
def proof():
    return CheckpointProof(burn_tx_hash=BURN_TX, payload=PROOF_PAYLOAD)


@pytest.fixture
def processor(root_chain):
    return ExitProcessor(root_chain, ERC20_PREDICATE, WITHDRAW_MANAGER, POL_SEPOLIA)


def test_complete_exit_starts_then_processes(processor, root_chain, proof):
    outcome = processor.complete_exit(proof)

    assert root_chain.functions_called() == ["startExitWithBurntTokens", "processExits"]
    start, process = root_chain.calls
    assert start.address == ERC20_PREDICATE
    assert start.args == [proof.payload_bytes]
    assert process.address == WITHDRAW_MANAGER
    assert process.args == [POL_SEPOLIA]
    assert outcome.state is ExitState.PROCESSED
    assert outcome.start_exit_tx is not None
    assert outcome.process_exits_tx is not None


def test_on_started_sees_start_before_processing(processor, root_chain, proof):
    seen = []

    def on_started(outcome):
        seen.append((outcome.state, root_chain.functions_called()))

    processor.complete_exit(proof, on_started=on_started)

    assert seen == [(ExitState.STARTED, ["startExitWithBurntTokens"])]


def test_already_started_exit_still_finalizes(processor, root_chain, proof):
    root_chain.failures["startExitWithBurntTokens"] = AlreadyExitedError("execution reverted: KNOWN_EXIT")
    on_started = MagicMock()

    outcome = processor.complete_exit(proof, on_started=on_started)

    assert root_chain.functions_called() == ["startExitWithBurntTokens", "processExits"]
    assert outcome.start_exit_tx is None
    assert outcome.process_exits_tx is not None
    assert outcome.state is ExitState.PROCESSED
    started = on_started.call_args.args[0]
    assert started is outcome


def test_other_start_failure_stops_before_processing(processor, root_chain, proof):
    root_chain.failures["startExitWithBurntTokens"] = ChainTransactionError("execution reverted: INVALID_PROOF")

    with pytest.raises(ChainTransactionError, match="INVALID_PROOF"):
        processor.complete_exit(proof)

    assert root_chain.functions_called() == ["startExitWithBurntTokens"]


def test_processing_failure_carries_proof(processor, root_chain, proof):
    root_chain.failures["processExits"] = ChainTransactionError("out of gas")

    with pytest.raises(ExitFinalizationError) as exc_info:
        processor.complete_exit(proof)

    assert exc_info.value.proof == PROOF_PAYLOAD
    assert exc_info.value.details["proof"] == PROOF_PAYLOAD
    assert isinstance(exc_info.value.__cause__, ChainTransactionError)


def test_explicit_token_overrides_root_token(processor, root_chain, proof):
    other = "0x9999999999999999999999999999999999999999"
    processor.complete_exit(proof, other)
    assert root_chain.calls[-1].args == [other]


def test_finalize_exit_is_a_single_process_call(processor, root_chain):
    record = processor.finalize_exit()

    assert root_chain.functions_called() == ["processExits"]
    assert root_chain.calls[0].args == [POL_SEPOLIA]
    assert record.confirmed
