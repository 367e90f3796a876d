"""
Child-to-root withdrawal state machine.

    IDLE -> BURNING -> BURNED -> POLLING_CHECKPOINT -> CHECKPOINTED
         -> EXITING_STARTED -> EXITING_PROCESSED -> DONE
    BURNED -> MANUAL_HANDOFF  (auto-completion disabled)

The orchestrator keeps nothing between calls. The burn transaction hash is the
only handle: ``check``, ``exit`` and ``finalize`` rebuild their position from
the proof service and the chain, so a withdrawal can be resumed from any later
invocation.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from polbridge.abis import CHILD_WITHDRAW_ABI
from polbridge.chain_client import ChainClient
from polbridge.config import BridgeConfig
from polbridge.exceptions import (
    BridgeError,
    ConfigurationError,
    ContractNotFoundError,
    InsufficientBalanceError,
)
from polbridge.exit_processor import ExitProcessor
from polbridge.models import (
    CheckpointProof,
    ExitOutcome,
    ProofLookup,
    TransactionRecord,
    TransferAmount,
    WithdrawalResult,
    WithdrawalState,
    normalize_tx_hash,
)
from polbridge.proof_service import ProofServiceClient

logger = logging.getLogger(__name__)

TransitionHook = Callable[[WithdrawalState, WithdrawalResult], None]
AttemptHook = Callable[[int, int, ProofLookup], None]


class WithdrawalOrchestrator:
    def __init__(
        self,
        child_chain: ChainClient,
        proof_service: ProofServiceClient,
        exit_processor: Optional[ExitProcessor],
        config: BridgeConfig,
        *,
        on_transition: Optional[TransitionHook] = None,
        on_attempt: Optional[AttemptHook] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.child_chain = child_chain
        self.proof_service = proof_service
        self.exit_processor = exit_processor
        self.config = config
        self.on_transition = on_transition
        self.on_attempt = on_attempt
        self.sleep = sleep

    def __enter__(self) -> "WithdrawalOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.proof_service.close()

    def _exits(self) -> ExitProcessor:
        if self.exit_processor is None:
            raise ConfigurationError("Exit processing is not configured for this orchestrator")
        return self.exit_processor

    def _advance(self, result: WithdrawalResult, state: WithdrawalState) -> None:
        result.state = state
        result.history.append(state)
        logger.debug(
            "Withdrawal state -> %s",
            state.value,
            extra={"event": "withdrawal.state", "state": state.value, "tx_hash": result.burn_tx_hash},
        )
        if self.on_transition is not None:
            self.on_transition(state, result)

    def balance(self) -> int:
        return self.child_chain.balance_of(self.config.pol_amoy)

    def burn(self, amount: TransferAmount) -> TransactionRecord:
        """Validate against the current balance, then burn ``amount`` on the child chain.

        Raises:
            ContractNotFoundError: POL_AMOY holds no contract code
            InsufficientBalanceError: amount exceeds balance; nothing is submitted
        """
        token = self.config.pol_amoy
        if not self.child_chain.has_code(token):
            raise ContractNotFoundError(token)

        available = self.balance()
        if amount.wei > available:
            raise InsufficientBalanceError(amount.wei, available)

        # The native token contract requires msg.value == amount.
        return self.child_chain.transact(token, CHILD_WITHDRAW_ABI, "withdraw", [amount.wei], value=amount.wei)

    def withdraw(self, amount: TransferAmount, auto_complete: Optional[bool] = None) -> WithdrawalResult:
        """Burn ``amount`` and, when auto-completion is on, drive the exit to the end."""
        if auto_complete is None:
            auto_complete = self.config.auto_complete
        if auto_complete:
            self._exits()

        result = WithdrawalResult(state=WithdrawalState.IDLE, burn_tx_hash="", amount=amount)
        result.history.append(WithdrawalState.IDLE)
        self._advance(result, WithdrawalState.BURNING)

        burn_tx = self.burn(amount)
        result.burn_tx = burn_tx
        result.burn_tx_hash = burn_tx.tx_hash
        self._advance(result, WithdrawalState.BURNED)

        if not auto_complete:
            self._advance(result, WithdrawalState.MANUAL_HANDOFF)
            return result
        return self._complete(result)

    def check(self, tx_hash: str) -> ProofLookup:
        return self.proof_service.lookup(tx_hash)

    def exit(self, tx_hash: str) -> WithdrawalResult:
        """Resume a withdrawal from its burn hash: wait for the proof, then exit."""
        tx_hash = normalize_tx_hash(tx_hash)
        result = WithdrawalResult(state=WithdrawalState.BURNED, burn_tx_hash=tx_hash)
        result.history.append(WithdrawalState.BURNED)
        return self._complete(result)

    def finalize(self) -> TransactionRecord:
        return self._exits().finalize_exit()

    def _complete(self, result: WithdrawalResult) -> WithdrawalResult:
        try:
            exits = self._exits()
            self._advance(result, WithdrawalState.POLLING_CHECKPOINT)
            proof = self._poll(result.burn_tx_hash)
            result.proof = proof
            self._advance(result, WithdrawalState.CHECKPOINTED)

            outcome = exits.complete_exit(
                proof,
                self.config.pol_sepolia,
                on_started=lambda started: self._exit_started(result, started),
            )
            result.exit = outcome
            self._advance(result, WithdrawalState.EXITING_PROCESSED)
        except BridgeError as exc:
            exc.details.setdefault("burn_tx_hash", result.burn_tx_hash)
            raise

        self._advance(result, WithdrawalState.DONE)
        return result

    def _exit_started(self, result: WithdrawalResult, outcome: ExitOutcome) -> None:
        result.exit = outcome
        self._advance(result, WithdrawalState.EXITING_STARTED)

    def _poll(self, tx_hash: str) -> CheckpointProof:
        return self.proof_service.poll_for_proof(
            tx_hash,
            interval=self.config.poll_interval,
            max_attempts=self.config.max_poll_attempts,
            sleep=self.sleep,
            on_attempt=self.on_attempt,
        )


__all__ = ["WithdrawalOrchestrator"]
