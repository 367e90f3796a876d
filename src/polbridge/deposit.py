"""
Root-to-child deposit: approve the deposit manager, then deposit for self.

Funds appear on the child chain roughly 25 minutes after confirmation.
"""

from __future__ import annotations

import logging

from polbridge.abis import DEPOSIT_MANAGER_ABI, ERC20_APPROVE_ABI
from polbridge.chain_client import ChainClient
from polbridge.models import DepositResult, TransferAmount

logger = logging.getLogger(__name__)


class DepositFlow:
    def __init__(self, root_chain: ChainClient, root_token: str, deposit_manager: str) -> None:
        self.root_chain = root_chain
        self.root_token = root_token
        self.deposit_manager = deposit_manager

    def deposit(self, amount: TransferAmount) -> DepositResult:
        # transact() blocks on the receipt, so the allowance is mined before the deposit.
        approve_tx = self.root_chain.transact(
            self.root_token,
            ERC20_APPROVE_ABI,
            "approve",
            [self.deposit_manager, amount.wei],
        )
        deposit_tx = self.root_chain.transact(
            self.deposit_manager,
            DEPOSIT_MANAGER_ABI,
            "depositERC20ForUser",
            [self.root_token, self.root_chain.address, amount.wei],
        )
        logger.info(
            "Deposit confirmed: %s",
            deposit_tx.tx_hash,
            extra={"event": "deposit.confirmed", "tx_hash": deposit_tx.tx_hash, "amount_wei": amount.wei},
        )
        return DepositResult(amount=amount, approve_tx=approve_tx, deposit_tx=deposit_tx)


__all__ = ["DepositFlow"]
