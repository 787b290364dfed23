"""Engine configuration injected at construction time."""

from dataclasses import dataclass
from decimal import Decimal

from .constants import DEFAULT_CONFIRMATION_DEPTH, DEFAULT_STALL_TIMEOUT_BLOCKS


@dataclass(frozen=True)
class BridgeConfig:
    """Tunables for the bridge engine.

    Built from ``pab_bridge.config.Settings`` at the application edge; the
    engine itself never reads the environment.
    """

    owner_address: str = ""
    evm_chain_id: int = 8453

    # Finality
    confirmation_depth: int = DEFAULT_CONFIRMATION_DEPTH
    finality_timeout_seconds: float = 600.0

    # Arbitration
    stall_timeout_blocks: int = DEFAULT_STALL_TIMEOUT_BLOCKS

    # Collateral policy
    collateral_ratio: Decimal = Decimal("1")

    # Delivery verification
    xrpl_amount_scale: int = 1
    xrpl_lookup_max_attempts: int = 10

    # Watcher cadence
    source_poll_interval_seconds: float = 4.0
    destination_poll_interval_seconds: float = 5.0

    # Submission retry
    submission_max_attempts: int = 4
    submission_initial_delay_seconds: float = 1.0
    submission_max_delay_seconds: float = 30.0

    # Custody token: approve the gateway automatically when the allowance is short
    token_auto_approve: bool = False

    # Retention
    history_limit: int = 500
    fact_history_limit: int = 1000
