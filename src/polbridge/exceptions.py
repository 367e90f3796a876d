"""
Bridge-specific exception hierarchy for polbridge.

Every failure path carries the durable handle (burn transaction hash, proof
payload) needed to resume the workflow from a later invocation.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class BridgeError(Exception):
    """Base exception for all bridge errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried as-is
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


class ConfigurationError(BridgeError):
    """Raised when required configuration is missing or invalid."""
    pass


# ==================== Validation Errors ====================


class InvalidAmountError(BridgeError):
    """Raised when a transfer amount is not strictly positive or too precise."""
    pass


class InsufficientBalanceError(BridgeError):
    """Raised when the sender cannot cover a withdrawal. No transaction is sent."""

    def __init__(self, required: int, available: int, **kwargs: Any) -> None:
        super().__init__(
            f"Insufficient balance: need {required} wei, have {available} wei",
            details={"required": required, "available": available},
            **kwargs,
        )
        self.required = required
        self.available = available


class ContractNotFoundError(BridgeError):
    """Raised when a configured contract address holds no code."""

    def __init__(self, address: str, **kwargs: Any) -> None:
        super().__init__(f"No contract found at {address}", details={"address": address}, **kwargs)
        self.address = address


# ==================== Chain Errors ====================


class ChainTransactionError(BridgeError):
    """Raised when a transaction is rejected, reverts, or cannot be confirmed."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        chain: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.tx_hash = tx_hash
        self.chain = chain


class AlreadyExitedError(ChainTransactionError):
    """Raised when the predicate reports the exit for this burn was already started."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


# ==================== Proof Service Errors ====================


class ProofServiceError(BridgeError):
    """Raised when a single proof lookup fails for a transient reason."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.status_code = status_code


class CheckpointTimeoutError(BridgeError):
    """Raised when the burn was not checkpointed within the poll budget."""

    def __init__(self, tx_hash: str, attempts: int, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(
            f"Checkpoint timeout - {tx_hash} not checkpointed after {attempts} attempts",
            details={"tx_hash": tx_hash, "attempts": attempts},
            **kwargs,
        )
        self.tx_hash = tx_hash
        self.attempts = attempts


# ==================== Exit Errors ====================


class ExitFinalizationError(BridgeError):
    """Raised when process-exits fails; keeps the proof for manual resubmission."""

    def __init__(self, message: str, proof: str, **kwargs: Any) -> None:
        super().__init__(message, details={"proof": proof}, **kwargs)
        self.proof = proof


__all__ = [
    "BridgeError",
    "ConfigurationError",
    "InvalidAmountError",
    "InsufficientBalanceError",
    "ContractNotFoundError",
    "ChainTransactionError",
    "AlreadyExitedError",
    "ProofServiceError",
    "CheckpointTimeoutError",
    "ExitFinalizationError",
]
