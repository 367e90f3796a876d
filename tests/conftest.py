"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add project root and src to Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(src_path))

import pytest

from polbridge.config import BridgeConfig
from tests.fakes import (
    DEPOSIT_MANAGER,
    ERC20_PREDICATE,
    ONE_POL,
    POL_AMOY,
    POL_SEPOLIA,
    PRIVATE_KEY,
    WITHDRAW_MANAGER,
    FakeChain,
)


@pytest.fixture
def base_env():
    return {
        "PRIVATE_KEY": PRIVATE_KEY,
        "POL_AMOY": POL_AMOY,
        "SEPOLIA_RPC": "https://sepolia.rpc.test",
        "AMOY_RPC": "https://amoy.rpc.test",
        "POL_SEPOLIA": POL_SEPOLIA,
        "DEPOSIT_MANAGER": DEPOSIT_MANAGER,
        "ERC20_PREDICATE": ERC20_PREDICATE,
        "WITHDRAW_MANAGER": WITHDRAW_MANAGER,
    }


@pytest.fixture
def config(base_env) -> BridgeConfig:
    return BridgeConfig.from_env(env=base_env)


@pytest.fixture
def child_chain() -> FakeChain:
    return FakeChain("amoy", balance=100 * ONE_POL)


@pytest.fixture
def root_chain() -> FakeChain:
    return FakeChain("sepolia")
