"""
polbridge configuration

Settings come from environment variables, optionally seeded from a .env file.

SECURITY NOTICE:
- PRIVATE_KEY MUST be provided via the environment or an uncommitted .env file
- Never commit secrets to version control
- Do not run two invocations with the same key at once (nonce collisions)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address

from polbridge.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PROOF_API_URL = "https://proof-generator.polygon.technology/api/v1"
DEFAULT_PROOF_NETWORK = "amoy"
# keccak256 of the child token's Withdraw event
DEFAULT_EXIT_EVENT_SIGNATURE = "0xebff2602b3f468259e1e99f613fed6691f3a6526effe6ef3e768ba7ae7a36c4f"
DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_MAX_POLL_ATTEMPTS = 360
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 120.0
DEFAULT_TOKEN_DECIMALS = 18
DEFAULT_SEPOLIA_EXPLORER = "https://sepolia.etherscan.io"
DEFAULT_AMOY_EXPLORER = "https://amoy.polygonscan.com"


def _get_required(env: Mapping[str, str], name: str, hint: str = "") -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"Set {name}{hint} in .env", details={"variable": name})
    return value


def _get_address(env: Mapping[str, str], name: str, required: bool = False, hint: str = "") -> str:
    value = _get_required(env, name, hint) if required else env.get(name, "").strip()
    if not value:
        return ""
    if not is_address(value):
        raise ConfigurationError(f"{name} is not a valid address: {value}", details={"variable": name})
    return to_checksum_address(value)


def _get_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be numeric, got {raw!r}", details={"variable": name}) from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}", details={"variable": name})
    return value


@dataclass(frozen=True)
class BridgeConfig:
    """Everything one invocation needs to reach both chains and the proof API."""

    private_key: str
    pol_amoy: str
    sepolia_rpc: str = ""
    amoy_rpc: str = ""
    deposit_manager: str = ""
    pol_sepolia: str = ""
    erc20_predicate: str = ""
    withdraw_manager: str = ""
    auto_complete: bool = False
    proof_api_url: str = DEFAULT_PROOF_API_URL
    proof_network: str = DEFAULT_PROOF_NETWORK
    exit_event_signature: str = DEFAULT_EXIT_EVENT_SIGNATURE
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS
    token_decimals: int = DEFAULT_TOKEN_DECIMALS
    sepolia_explorer: str = DEFAULT_SEPOLIA_EXPLORER
    amoy_explorer: str = DEFAULT_AMOY_EXPLORER

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        env_file: Optional[Path] = None,
    ) -> "BridgeConfig":
        """Build configuration from ``env`` (defaults to ``os.environ`` after loading .env).

        Raises:
            ConfigurationError: PRIVATE_KEY or POL_AMOY missing, or a value is malformed
        """
        if env is None:
            load_dotenv(dotenv_path=env_file)
            env = os.environ

        config = cls(
            private_key=_get_required(env, "PRIVATE_KEY"),
            pol_amoy=_get_address(env, "POL_AMOY", required=True, hint=" (the child-chain POL token address)"),
            sepolia_rpc=env.get("SEPOLIA_RPC", "").strip(),
            amoy_rpc=env.get("AMOY_RPC", "").strip(),
            deposit_manager=_get_address(env, "DEPOSIT_MANAGER"),
            pol_sepolia=_get_address(env, "POL_SEPOLIA"),
            erc20_predicate=_get_address(env, "ERC20_PREDICATE"),
            withdraw_manager=_get_address(env, "WITHDRAW_MANAGER"),
            auto_complete=env.get("AUTO_COMPLETE", "").strip().lower() == "true",
            proof_api_url=env.get("PROOF_API_URL", "").strip().rstrip("/") or DEFAULT_PROOF_API_URL,
            proof_network=env.get("PROOF_NETWORK", "").strip() or DEFAULT_PROOF_NETWORK,
            exit_event_signature=env.get("EXIT_EVENT_SIGNATURE", "").strip() or DEFAULT_EXIT_EVENT_SIGNATURE,
            poll_interval=_get_number(env, "POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS, float),
            max_poll_attempts=_get_number(env, "MAX_POLL_ATTEMPTS", DEFAULT_MAX_POLL_ATTEMPTS, int),
            receipt_timeout=_get_number(env, "RECEIPT_TIMEOUT_SECONDS", DEFAULT_RECEIPT_TIMEOUT_SECONDS, float),
            token_decimals=_get_number(env, "TOKEN_DECIMALS", DEFAULT_TOKEN_DECIMALS, int),
            sepolia_explorer=env.get("SEPOLIA_EXPLORER", "").strip().rstrip("/") or DEFAULT_SEPOLIA_EXPLORER,
            amoy_explorer=env.get("AMOY_EXPLORER", "").strip().rstrip("/") or DEFAULT_AMOY_EXPLORER,
        )
        logger.debug(
            "Configuration loaded",
            extra={"event": "config.loaded", "auto_complete": config.auto_complete, "proof_network": config.proof_network},
        )
        return config

    def require(self, *fields: str) -> None:
        """Fail with ConfigurationError if any named field is empty."""
        missing = [name.upper() for name in fields if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"Missing configuration: {', '.join(missing)}", details={"missing": missing}
            )

    def redacted(self) -> dict:
        """Return a display-safe view of the configuration."""
        return {
            "sepolia_rpc": self.sepolia_rpc,
            "amoy_rpc": self.amoy_rpc,
            "pol_amoy": self.pol_amoy,
            "pol_sepolia": self.pol_sepolia,
            "deposit_manager": self.deposit_manager,
            "erc20_predicate": self.erc20_predicate,
            "withdraw_manager": self.withdraw_manager,
            "auto_complete": self.auto_complete,
            "proof_api_url": self.proof_api_url,
            "proof_network": self.proof_network,
        }


__all__ = ["BridgeConfig", "ConfigurationError"]
