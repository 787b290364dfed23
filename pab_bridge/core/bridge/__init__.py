"""
Bridge Module

Mirror of the PAB gateway escrow state plus the machinery that keeps it in
step with the EVM gateway contract and the XRP Ledger.
"""

from .agents import AgentDirectory
from .arbiter import ForceReceiveArbiter
from .chain_registry import ChainRegistry
from .checkpoints import CheckpointStore, InMemoryCheckpointStore, JsonFileCheckpointStore
from .config import BridgeConfig
from .constants import CHAIN_NAMES, XRPL_CHAIN_ID, chain_name
from .coordinator import GatewayCoordinator
from .ledger import BridgeLedger
from .models import (
    Agent,
    BridgeRequest,
    BridgeStatus,
    BridgeTransition,
    FactKind,
    Operation,
    PendingIntent,
    Role,
    Submission,
    SubmissionStatus,
    SupportedChain,
    WatcherFact,
    WithdrawalReceipt,
)
from .roles import RoleResolver
from .runtime import BridgeRuntime, build_runtime, runtime_from_settings
from .watcher import ConfirmationWatcher

__all__ = [
    # Components
    "ChainRegistry",
    "AgentDirectory",
    "BridgeLedger",
    "ConfirmationWatcher",
    "ForceReceiveArbiter",
    "GatewayCoordinator",
    "RoleResolver",
    # Runtime
    "BridgeConfig",
    "BridgeRuntime",
    "build_runtime",
    "runtime_from_settings",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "JsonFileCheckpointStore",
    # Models
    "Agent",
    "BridgeRequest",
    "BridgeStatus",
    "BridgeTransition",
    "FactKind",
    "Operation",
    "PendingIntent",
    "Role",
    "Submission",
    "SubmissionStatus",
    "SupportedChain",
    "WatcherFact",
    "WithdrawalReceipt",
    # Constants
    "CHAIN_NAMES",
    "XRPL_CHAIN_ID",
    "chain_name",
]
