"""
Two-phase exit on the root chain: start the exit with a burn proof, then
process queued exits for the token to release funds.

Testnet deployments have no challenge period, so process-exits runs directly
after start-exit.
"""

from __future__ import annotations

import logging
from typing import Callable

from polbridge.abis import ERC20_PREDICATE_ABI, WITHDRAW_MANAGER_ABI
from polbridge.chain_client import ChainClient
from polbridge.exceptions import AlreadyExitedError, ChainTransactionError, ExitFinalizationError
from polbridge.models import CheckpointProof, ExitOutcome, ExitState, TransactionRecord

logger = logging.getLogger(__name__)


class ExitProcessor:
    def __init__(self, root_chain: ChainClient, erc20_predicate: str, withdraw_manager: str, root_token: str) -> None:
        self.root_chain = root_chain
        self.erc20_predicate = erc20_predicate
        self.withdraw_manager = withdraw_manager
        self.root_token = root_token

    def start_exit(self, proof: CheckpointProof) -> TransactionRecord:
        return self.root_chain.transact(
            self.erc20_predicate,
            ERC20_PREDICATE_ABI,
            "startExitWithBurntTokens",
            [proof.payload_bytes],
        )

    def process_exits(self, token_address: str) -> TransactionRecord:
        return self.root_chain.transact(
            self.withdraw_manager,
            WITHDRAW_MANAGER_ABI,
            "processExits",
            [token_address],
        )

    def complete_exit(
        self,
        proof: CheckpointProof,
        token_address: str | None = None,
        on_started: Callable[[ExitOutcome], None] | None = None,
    ) -> ExitOutcome:
        """Submit ``proof`` to the predicate, then process exits for ``token_address``.

        An exit that was already started is not an error; finalisation still runs.

        Raises:
            ChainTransactionError: start-exit failed for any other reason
            ExitFinalizationError: process-exits failed; the proof is attached
        """
        token_address = token_address or self.root_token
        outcome = ExitOutcome(proof=proof)

        try:
            outcome.start_exit_tx = self.start_exit(proof)
            outcome.state = ExitState.STARTED
        except AlreadyExitedError:
            logger.info(
                "Exit already started for %s, proceeding to finalize",
                proof.burn_tx_hash,
                extra={"event": "exit.already_started", "tx_hash": proof.burn_tx_hash},
            )
            outcome.state = ExitState.ALREADY_STARTED

        if on_started is not None:
            on_started(outcome)

        try:
            outcome.process_exits_tx = self.process_exits(token_address)
        except ChainTransactionError as exc:
            logger.error(
                "Exit processing failed for %s: %s",
                proof.burn_tx_hash,
                exc,
                extra={"event": "exit.finalize_failed", "tx_hash": proof.burn_tx_hash},
            )
            raise ExitFinalizationError(f"Exit processing failed: {exc}", proof=proof.payload) from exc

        outcome.state = ExitState.PROCESSED
        return outcome

    def finalize_exit(self) -> TransactionRecord:
        """Process pending exits for the configured root token only."""
        return self.process_exits(self.root_token)


__all__ = ["ExitProcessor"]
