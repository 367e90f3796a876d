"""
Signed contract calls against one EVM network via web3.py.

Each ChainClient owns a Web3 session and a local signing account. Transactions
are built with EIP-1559 fee fields, signed locally, broadcast raw and awaited
until a receipt is available. RPC and revert failures are classified into the
polbridge exception hierarchy so callers match on types, not on messages.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import requests
from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.types import TxParams

from polbridge.abis import ERC20_BALANCE_ABI
from polbridge.exceptions import AlreadyExitedError, ChainTransactionError, ConfigurationError
from polbridge.models import TransactionRecord, TxStatus

logger = logging.getLogger(__name__)

# Revert reason emitted by the ERC20 predicate when an exit is already queued.
KNOWN_EXIT_MARKER = "KNOWN_EXIT"

DEFAULT_RPC_TIMEOUT = 30

# HTTPProvider surfaces transport failures as requests/OS errors, not Web3Exception.
RPC_ERRORS = (Web3Exception, ValueError, requests.exceptions.RequestException, OSError)


def classify_chain_error(
    exc: BaseException, chain: str, tx_hash: Optional[str] = None
) -> ChainTransactionError:
    """Map a web3/RPC failure to ChainTransactionError or AlreadyExitedError."""
    message = str(exc) or exc.__class__.__name__
    if KNOWN_EXIT_MARKER in message:
        return AlreadyExitedError(message, tx_hash=tx_hash, chain=chain)
    return ChainTransactionError(message, tx_hash=tx_hash, chain=chain)


class ChainClient:
    """Signing client bound to a single network."""

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        chain: str,
        *,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.w3 = w3
        self.chain = chain
        self.receipt_timeout = receipt_timeout
        try:
            self._account = Account.from_key(private_key)
        except ValueError as exc:
            raise ConfigurationError("PRIVATE_KEY could not be parsed") from exc

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        private_key: str,
        chain: str,
        *,
        poa: bool = False,
        receipt_timeout: float = 120.0,
    ) -> "ChainClient":
        """Open an HTTP provider for ``rpc_url``. POA chains need the extraData middleware."""
        if not rpc_url:
            raise ConfigurationError(f"{chain} RPC URL is not configured")
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": DEFAULT_RPC_TIMEOUT}))
        if poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        logger.debug("Connected %s provider", chain, extra={"event": "chain.connect", "chain": chain})
        return cls(w3, private_key, chain, receipt_timeout=receipt_timeout)

    @property
    def address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def get_code(self, address: str) -> bytes:
        try:
            return bytes(self.w3.eth.get_code(to_checksum_address(address)))
        except RPC_ERRORS as exc:
            raise classify_chain_error(exc, self.chain) from exc

    def has_code(self, address: str) -> bool:
        return len(self.get_code(address)) > 0

    def call(self, address: str, abi: list, function: str, args: Sequence[Any] = ()) -> Any:
        contract = self.w3.eth.contract(address=to_checksum_address(address), abi=abi)
        try:
            return getattr(contract.functions, function)(*args).call()
        except RPC_ERRORS as exc:
            raise classify_chain_error(exc, self.chain) from exc

    def balance_of(self, token: str, owner: Optional[str] = None) -> int:
        return int(self.call(token, ERC20_BALANCE_ABI, "balanceOf", [to_checksum_address(owner or self.address)]))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _build_tx_params(self, *, value_wei: int = 0) -> TxParams:
        w3 = self.w3
        base: TxParams = {
            "from": self.address,
            "value": value_wei,
            "nonce": w3.eth.get_transaction_count(self.address, "pending"),
            "chainId": w3.eth.chain_id,
        }
        latest_block = w3.eth.get_block("latest")
        base_fee = latest_block.get("baseFeePerGas") or w3.eth.gas_price
        try:
            priority_fee = int(w3.eth.max_priority_fee)
        except (Web3Exception, ValueError):
            priority_fee = int(base_fee // 10)
        base["maxPriorityFeePerGas"] = priority_fee
        base["maxFeePerGas"] = base_fee * 2 + priority_fee
        return base

    def transact(
        self,
        address: str,
        abi: list,
        function: str,
        args: Sequence[Any] = (),
        *,
        value: int = 0,
    ) -> TransactionRecord:
        """Submit ``function(*args)`` on ``address`` and block until it is mined.

        Raises:
            AlreadyExitedError: the call reverted with the known-exit reason
            ChainTransactionError: submission failed, the receipt timed out,
                or the transaction reverted on chain
        """
        contract = self.w3.eth.contract(address=to_checksum_address(address), abi=abi)
        logger.info(
            "Submitting %s on %s",
            function,
            self.chain,
            extra={"event": "chain.submit", "chain": self.chain, "function": function, "value": value},
        )
        try:
            tx = getattr(contract.functions, function)(*args).build_transaction(self._build_tx_params(value_wei=value))
            if "gas" not in tx:
                tx["gas"] = self.w3.eth.estimate_gas(tx)
            signed = self._account.sign_transaction(tx)
            tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except RPC_ERRORS as exc:
            logger.warning(
                "%s submission failed on %s: %s",
                function,
                self.chain,
                exc,
                extra={"event": "chain.submit_failed", "chain": self.chain, "function": function},
            )
            raise classify_chain_error(exc, self.chain) from exc

        record = TransactionRecord(tx_hash=tx_hash, chain=self.chain)
        return self.wait_for_confirmation(record)

    def wait_for_confirmation(self, record: TransactionRecord) -> TransactionRecord:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(record.tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as exc:
            raise ChainTransactionError(
                f"Transaction {record.tx_hash} not mined within {self.receipt_timeout:.0f}s",
                tx_hash=record.tx_hash,
                chain=self.chain,
                recoverable=True,
            ) from exc
        except RPC_ERRORS as exc:
            raise classify_chain_error(exc, self.chain, record.tx_hash) from exc

        record.block_number = receipt.get("blockNumber")
        if receipt.get("status") != 1:
            record.status = TxStatus.FAILED
            logger.error(
                "Transaction reverted: %s",
                record.tx_hash,
                extra={"event": "chain.reverted", "chain": self.chain, "tx_hash": record.tx_hash},
            )
            raise ChainTransactionError(
                f"Transaction {record.tx_hash} reverted", tx_hash=record.tx_hash, chain=self.chain
            )
        record.status = TxStatus.CONFIRMED
        logger.info(
            "Transaction confirmed: %s",
            record.tx_hash,
            extra={
                "event": "chain.confirmed",
                "chain": self.chain,
                "tx_hash": record.tx_hash,
                "block": record.block_number,
            },
        )
        return record


__all__ = ["ChainClient", "classify_chain_error", "KNOWN_EXIT_MARKER"]
