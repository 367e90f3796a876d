"""
polbridge - POL token bridge between Ethereum Sepolia and Polygon Amoy

Main Components:
- Deposit: approve and deposit POL from the root chain to the child chain
- Withdrawal: burn on the child chain, wait for checkpoint, exit on the root chain
- Proof service: checkpoint status and exit payloads keyed by burn hash
- CLI: the ``polbridge`` command

Withdrawals are resumable from the burn transaction hash alone.
"""

__version__ = "0.1.0"

from polbridge.config import BridgeConfig  # noqa: F401
from polbridge.exceptions import BridgeError  # noqa: F401
from polbridge.models import TransferAmount, WithdrawalState  # noqa: F401

__all__ = ["BridgeConfig", "BridgeError", "TransferAmount", "WithdrawalState", "__version__"]
