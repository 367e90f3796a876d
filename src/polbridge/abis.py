"""
Minimal ABI fragments for the contract entry points the bridge touches.
"""

ERC20_APPROVE_ABI = [
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    }
]

ERC20_BALANCE_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    }
]

# Native POL on Amoy wraps the gas token: msg.value must equal amount.
CHILD_WITHDRAW_ABI = [
    {
        "type": "function",
        "name": "withdraw",
        "stateMutability": "payable",
        "inputs": [{"name": "amount", "type": "uint256"}],
        "outputs": [],
    }
]

DEPOSIT_MANAGER_ABI = [
    {
        "type": "function",
        "name": "depositERC20ForUser",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_token", "type": "address"},
            {"name": "_user", "type": "address"},
            {"name": "_amount", "type": "uint256"},
        ],
        "outputs": [],
    }
]

ERC20_PREDICATE_ABI = [
    {
        "type": "function",
        "name": "startExitWithBurntTokens",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "data", "type": "bytes"}],
        "outputs": [],
    }
]

WITHDRAW_MANAGER_ABI = [
    {
        "type": "function",
        "name": "processExits",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "_token", "type": "address"}],
        "outputs": [],
    }
]
