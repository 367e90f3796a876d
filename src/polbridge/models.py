"""
Value types shared by the deposit, proof and withdrawal flows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Any

from polbridge.exceptions import InvalidAmountError

_PRECISION = 80


class TxStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ExitState(Enum):
    """Progress of the two-phase exit for one burn transaction."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    ALREADY_STARTED = "already_started"
    PROCESSED = "processed"


class WithdrawalState(Enum):
    IDLE = "idle"
    BURNING = "burning"
    BURNED = "burned"
    POLLING_CHECKPOINT = "polling_checkpoint"
    CHECKPOINTED = "checkpointed"
    EXITING_STARTED = "exiting_started"
    EXITING_PROCESSED = "exiting_processed"
    DONE = "done"
    MANUAL_HANDOFF = "manual_handoff"


class CheckpointStatus(Enum):
    CHECKPOINTED = "checkpointed"
    PENDING = "pending"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class TransferAmount:
    """A token quantity held in the token's smallest unit."""

    wei: int
    decimals: int = 18

    def __post_init__(self) -> None:
        if self.wei <= 0:
            raise InvalidAmountError(f"Amount must be strictly positive, got {self.wei} wei")

    @classmethod
    def parse(cls, value: str | int | Decimal, decimals: int = 18) -> "TransferAmount":
        """Parse a decimal token quantity such as ``"2.5"`` into smallest units."""
        try:
            quantity = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise InvalidAmountError(f"Invalid amount: {value!r}") from exc
        if not quantity.is_finite():
            raise InvalidAmountError(f"Invalid amount: {value!r}")
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            scaled = quantity.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmountError(
                f"Amount {value} has more than {decimals} decimal places"
            )
        return cls(int(scaled), decimals)

    @property
    def tokens(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return Decimal(self.wei).scaleb(-self.decimals).normalize()

    def format(self) -> str:
        """Render the amount in whole-token notation without exponent."""
        return format(self.tokens, "f")

    def __str__(self) -> str:
        return self.format()


@dataclass
class TransactionRecord:
    """A submitted transaction. Frozen in practice once confirmed."""

    tx_hash: str
    chain: str
    status: TxStatus = TxStatus.PENDING
    block_number: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status is TxStatus.CONFIRMED

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "chain": self.chain,
            "status": self.status.value,
            "block_number": self.block_number,
        }


@dataclass(frozen=True)
class CheckpointProof:
    """Exit payload returned by the proof service for a checkpointed burn."""

    burn_tx_hash: str
    payload: str

    @property
    def payload_bytes(self) -> bytes:
        return bytes.fromhex(self.payload[2:] if self.payload.startswith("0x") else self.payload)

    def __len__(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class ProofLookup:
    """Outcome of a single proof service query."""

    tx_hash: str
    status: CheckpointStatus
    proof: CheckpointProof | None = None
    http_status: int | None = None
    error: str | None = None

    @property
    def checkpointed(self) -> bool:
        return self.status is CheckpointStatus.CHECKPOINTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "http_status": self.http_status,
            "proof_length": len(self.proof) if self.proof else None,
            "error": self.error,
        }


@dataclass
class ExitOutcome:
    proof: CheckpointProof
    state: ExitState = ExitState.NOT_STARTED
    start_exit_tx: TransactionRecord | None = None
    process_exits_tx: TransactionRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "start_exit_tx": self.start_exit_tx.to_dict() if self.start_exit_tx else None,
            "process_exits_tx": self.process_exits_tx.to_dict() if self.process_exits_tx else None,
        }


@dataclass
class DepositResult:
    amount: TransferAmount
    approve_tx: TransactionRecord
    deposit_tx: TransactionRecord

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": self.amount.format(),
            "amount_wei": str(self.amount.wei),
            "approve_tx": self.approve_tx.to_dict(),
            "deposit_tx": self.deposit_tx.to_dict(),
        }


@dataclass
class WithdrawalResult:
    """Where a single orchestrator pass stopped, and the handles it produced."""

    state: WithdrawalState
    burn_tx_hash: str
    history: list[WithdrawalState] = field(default_factory=list)
    burn_tx: TransactionRecord | None = None
    amount: TransferAmount | None = None
    proof: CheckpointProof | None = None
    exit: ExitOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "burn_tx_hash": self.burn_tx_hash,
            "history": [s.value for s in self.history],
            "amount": self.amount.format() if self.amount else None,
            "amount_wei": str(self.amount.wei) if self.amount else None,
            "proof": self.proof.payload if self.proof else None,
            "exit": self.exit.to_dict() if self.exit else None,
        }


def normalize_tx_hash(tx_hash: str) -> str:
    cleaned = tx_hash.strip()
    if not cleaned:
        raise ValueError("Transaction hash is empty")
    if not cleaned.startswith(("0x", "0X")):
        cleaned = f"0x{cleaned}"
    return "0x" + cleaned[2:].lower()


__all__ = [
    "TxStatus",
    "ExitState",
    "WithdrawalState",
    "CheckpointStatus",
    "TransferAmount",
    "TransactionRecord",
    "CheckpointProof",
    "ProofLookup",
    "ExitOutcome",
    "DepositResult",
    "WithdrawalResult",
    "normalize_tx_hash",
]
