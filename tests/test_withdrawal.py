"""
Tests for the withdrawal state machine: burn, checkpoint polling, exit and resume.
"""

import dataclasses
from unittest.mock import MagicMock

import pytest

from polbridge.exceptions import (
    AlreadyExitedError,
    ChainTransactionError,
    CheckpointTimeoutError,
    ConfigurationError,
    ContractNotFoundError,
    ExitFinalizationError,
    InsufficientBalanceError,
)
from polbridge.exit_processor import ExitProcessor
from polbridge.models import CheckpointStatus, ExitState, TransferAmount, WithdrawalState
from polbridge.proof_service import ProofServiceClient
from polbridge.withdrawal import WithdrawalOrchestrator
from tests.fakes import (
    BURN_TX,
    ERC20_PREDICATE,
    ONE_POL,
    POL_SEPOLIA,
    PROOF_PAYLOAD,
    WITHDRAW_MANAGER,
    FakeResponse,
    make_session,
    proof_response,
)

FULL_PATH = [
    WithdrawalState.IDLE,
    WithdrawalState.BURNING,
    WithdrawalState.BURNED,
    WithdrawalState.POLLING_CHECKPOINT,
    WithdrawalState.CHECKPOINTED,
    WithdrawalState.EXITING_STARTED,
    WithdrawalState.EXITING_PROCESSED,
    WithdrawalState.DONE,
]


@pytest.fixture
def session():
    return make_session(FakeResponse(400), FakeResponse(400), proof_response())


@pytest.fixture
def make_orchestrator(config, child_chain, root_chain, session):
    def _make(auto_complete=False, max_attempts=360, **kwargs):
        cfg = dataclasses.replace(config, auto_complete=auto_complete, max_poll_attempts=max_attempts)
        return WithdrawalOrchestrator(
            child_chain,
            ProofServiceClient(session=session),
            ExitProcessor(root_chain, ERC20_PREDICATE, WITHDRAW_MANAGER, POL_SEPOLIA),
            cfg,
            sleep=kwargs.pop("sleep", lambda _: None),
            **kwargs,
        )

    return _make


def test_burn_sends_amount_as_argument_and_value(make_orchestrator, child_chain, config):
    record = make_orchestrator().burn(TransferAmount.parse("3"))

    (call,) = child_chain.calls
    assert call.function == "withdraw"
    assert call.address == config.pol_amoy
    assert call.args == [3 * ONE_POL]
    assert call.value == 3 * ONE_POL
    assert record.confirmed


def test_insufficient_balance_sends_nothing(make_orchestrator, child_chain, session):
    child_chain.balance = ONE_POL

    with pytest.raises(InsufficientBalanceError) as exc_info:
        make_orchestrator(auto_complete=True).withdraw(TransferAmount.parse("5"))

    assert exc_info.value.required == 5 * ONE_POL
    assert exc_info.value.available == ONE_POL
    assert child_chain.calls == []
    session.get.assert_not_called()


def test_exact_balance_is_enough(make_orchestrator, child_chain):
    child_chain.balance = 2 * ONE_POL
    make_orchestrator().burn(TransferAmount.parse("2"))
    assert child_chain.functions_called() == ["withdraw"]


def test_missing_token_contract(make_orchestrator, child_chain):
    child_chain.code_present = False
    with pytest.raises(ContractNotFoundError):
        make_orchestrator().burn(TransferAmount.parse("1"))
    assert child_chain.calls == []


def test_withdraw_without_auto_complete_hands_off(make_orchestrator, child_chain, root_chain, session):
    child_chain.balance = 10 * ONE_POL

    result = make_orchestrator(auto_complete=False).withdraw(TransferAmount.parse("5"))

    assert result.state is WithdrawalState.MANUAL_HANDOFF
    assert result.history == [
        WithdrawalState.IDLE,
        WithdrawalState.BURNING,
        WithdrawalState.BURNED,
        WithdrawalState.MANUAL_HANDOFF,
    ]
    assert result.burn_tx_hash == result.burn_tx.tx_hash
    session.get.assert_not_called()
    assert root_chain.calls == []


def test_withdraw_with_auto_complete_runs_to_done(make_orchestrator, child_chain, root_chain, session):
    child_chain.balance = 100 * ONE_POL
    transitions = []
    sleep = MagicMock()

    orchestrator = make_orchestrator(
        auto_complete=True,
        sleep=sleep,
        on_transition=lambda state, result: transitions.append(state),
    )
    result = orchestrator.withdraw(TransferAmount.parse("20"))

    assert result.state is WithdrawalState.DONE
    assert result.history == FULL_PATH
    assert transitions == FULL_PATH[1:]
    assert child_chain.calls[0].args == [20 * ONE_POL]
    assert root_chain.functions_called() == ["startExitWithBurntTokens", "processExits"]
    assert result.proof.payload == PROOF_PAYLOAD
    assert result.exit.state is ExitState.PROCESSED
    assert session.get.call_count == 3
    assert sleep.call_count == 2
    sleep.assert_called_with(orchestrator.config.poll_interval)


def test_explicit_flag_overrides_config(make_orchestrator, session):
    result = make_orchestrator(auto_complete=True).withdraw(TransferAmount.parse("1"), auto_complete=False)
    assert result.state is WithdrawalState.MANUAL_HANDOFF
    session.get.assert_not_called()


def test_exit_with_duplicate_start_still_completes(make_orchestrator, root_chain):
    root_chain.failures["startExitWithBurntTokens"] = AlreadyExitedError("execution reverted: KNOWN_EXIT")
    seen = {}

    def on_transition(state, result):
        if state is WithdrawalState.EXITING_STARTED:
            seen["exit_state"] = result.exit.state

    result = make_orchestrator(on_transition=on_transition).exit(BURN_TX.upper().replace("0X", "0x"))

    assert result.state is WithdrawalState.DONE
    assert result.burn_tx_hash == BURN_TX
    assert seen["exit_state"] is ExitState.ALREADY_STARTED
    assert root_chain.functions_called() == ["startExitWithBurntTokens", "processExits"]
    assert result.exit.start_exit_tx is None
    assert result.history == [WithdrawalState.BURNED] + FULL_PATH[3:]


def test_exit_does_not_touch_child_chain(make_orchestrator, child_chain):
    make_orchestrator().exit(BURN_TX)
    assert child_chain.calls == []


def test_timeout_then_resume_with_same_hash(config, child_chain, root_chain):
    pending = make_session(FakeResponse(400))
    first = WithdrawalOrchestrator(
        child_chain,
        ProofServiceClient(session=pending),
        ExitProcessor(root_chain, ERC20_PREDICATE, WITHDRAW_MANAGER, POL_SEPOLIA),
        dataclasses.replace(config, max_poll_attempts=3),
        sleep=lambda _: None,
    )
    with pytest.raises(CheckpointTimeoutError) as exc_info:
        first.exit(BURN_TX)
    assert exc_info.value.details["burn_tx_hash"] == BURN_TX
    assert pending.get.call_count == 3
    assert root_chain.calls == []

    # A later invocation only needs the burn hash.
    ready = make_session(proof_response())
    second = WithdrawalOrchestrator(
        child_chain,
        ProofServiceClient(session=ready),
        ExitProcessor(root_chain, ERC20_PREDICATE, WITHDRAW_MANAGER, POL_SEPOLIA),
        config,
        sleep=lambda _: None,
    )
    resumed = second.exit(BURN_TX)
    again = second.check(BURN_TX)

    assert resumed.state is WithdrawalState.DONE
    assert again.status is CheckpointStatus.CHECKPOINTED
    assert again.proof == resumed.proof


def test_auto_complete_timeout_keeps_burn_hash(make_orchestrator, child_chain, root_chain):
    orchestrator = make_orchestrator(auto_complete=True, max_attempts=2)
    orchestrator.proof_service.session = make_session(FakeResponse(404))

    with pytest.raises(CheckpointTimeoutError) as exc_info:
        orchestrator.withdraw(TransferAmount.parse("1"))

    assert child_chain.functions_called() == ["withdraw"]
    assert exc_info.value.details["burn_tx_hash"] == exc_info.value.tx_hash
    assert root_chain.calls == []


def test_finalization_failure_keeps_proof_and_hash(make_orchestrator, root_chain):
    root_chain.failures["processExits"] = ChainTransactionError("execution reverted")

    with pytest.raises(ExitFinalizationError) as exc_info:
        make_orchestrator().exit(BURN_TX)

    assert exc_info.value.details["proof"] == PROOF_PAYLOAD
    assert exc_info.value.details["burn_tx_hash"] == BURN_TX


def test_check_is_a_single_lookup(make_orchestrator, session):
    lookup = make_orchestrator().check(BURN_TX)
    assert lookup.status is CheckpointStatus.PENDING
    assert session.get.call_count == 1


def test_finalize_processes_exits_once(make_orchestrator, root_chain):
    record = make_orchestrator().finalize()
    assert root_chain.functions_called() == ["processExits"]
    assert root_chain.calls[0].args == [POL_SEPOLIA]
    assert record.confirmed


def test_close_releases_proof_session(make_orchestrator, session):
    with make_orchestrator():
        pass
    session.close.assert_called_once_with()


def _amoy_only(config, child_chain, session):
    return WithdrawalOrchestrator(child_chain, ProofServiceClient(session=session), None, config, sleep=lambda _: None)


def test_manual_withdraw_needs_no_exit_processor(config, child_chain, session):
    result = _amoy_only(config, child_chain, session).withdraw(TransferAmount.parse("5"), auto_complete=False)

    assert result.state is WithdrawalState.MANUAL_HANDOFF
    assert child_chain.functions_called() == ["withdraw"]


def test_auto_complete_without_exit_processor_fails_before_burning(config, child_chain, session):
    with pytest.raises(ConfigurationError):
        _amoy_only(config, child_chain, session).withdraw(TransferAmount.parse("5"), auto_complete=True)

    assert child_chain.calls == []
    session.get.assert_not_called()


def test_exit_without_exit_processor_keeps_burn_hash(config, child_chain, session):
    with pytest.raises(ConfigurationError) as exc_info:
        _amoy_only(config, child_chain, session).exit(BURN_TX)

    assert exc_info.value.details["burn_tx_hash"] == BURN_TX
    session.get.assert_not_called()
