"""Constants and metadata for the PAB gateway bridge."""

from typing import Dict

# Chain 0 denotes the XRP Ledger side of every bridge.
XRPL_CHAIN_ID = 0

CHAIN_NAMES: Dict[int, str] = {
    XRPL_CHAIN_ID: "XRPL",
    1: "Ethereum",
    10: "Optimism",
    56: "BSC",
    137: "Polygon",
    8453: "Base",
    42161: "Arbitrum",
}

UNKNOWN_CHAIN_NAME = "Unknown"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = "0x" + "00" * 32

DEFAULT_CONFIRMATION_DEPTH = 6
DEFAULT_STALL_TIMEOUT_BLOCKS = 100

# Minimal ABI for PAB_Gateway covering the entry points the relayer drives.
GATEWAY_ABI = [
    {
        "name": "register",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "xrplAddress", "type": "bytes32"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "deposit",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "bridgeTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "destinationChainId", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "claimBridge",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [],
    },
    {
        "name": "confirmBridge",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "xrplTxHash", "type": "bytes32"},
        ],
        "outputs": [],
    },
    {
        "name": "forceReceive",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "name": "approveForcedReceive",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [],
    },
    {
        "name": "withdraw",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "name": "addSupportedChain",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "chainId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "removeSupportedChain",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "chainId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "agents",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "address"}],
        "outputs": [
            {"name": "xrplAddress", "type": "bytes32"},
            {"name": "depositAmount", "type": "uint256"},
            {"name": "lastDepositBlock", "type": "uint256"},
        ],
    },
    {
        "name": "atomicBridge",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "address"}],
        "outputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "destinationChain", "type": "uint256"},
            {"name": "claimedBlock", "type": "uint256"},
            {"name": "agentAddress", "type": "address"},
            {"name": "xrplTxHash", "type": "bytes32"},
            {"name": "requestedForceReceive", "type": "bool"},
            {"name": "forceReceived", "type": "bool"},
        ],
    },
    {
        "name": "getSupportedChains",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
    {
        "name": "isChainSupported",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "chainId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


# The slice of IERC20 used to check and grant what the gateway may pull.
ERC20_ABI = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def chain_name(chain_id: int) -> str:
    """Human-readable name for a chain id."""
    return CHAIN_NAMES.get(chain_id, UNKNOWN_CHAIN_NAME)
