"""Wiring for a complete bridge engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from ...providers.base import GatewayContract, XrplLedger
from ..recovery.strategies import RetryStrategy
from .agents import AgentDirectory
from .arbiter import ForceReceiveArbiter
from .chain_registry import ChainRegistry
from .checkpoints import CheckpointStore, InMemoryCheckpointStore, JsonFileCheckpointStore
from .config import BridgeConfig
from .coordinator import GatewayCoordinator
from .ledger import BridgeLedger
from .watcher import ConfirmationWatcher

if TYPE_CHECKING:  # pragma: no cover
    from ...config import Settings

logger = logging.getLogger(__name__)


@dataclass
class BridgeRuntime:
    config: BridgeConfig
    registry: ChainRegistry
    agents: AgentDirectory
    ledger: BridgeLedger
    arbiter: ForceReceiveArbiter
    watcher: ConfirmationWatcher
    coordinator: GatewayCoordinator
    gateway: GatewayContract
    checkpoints: CheckpointStore
    xrpl: Optional[XrplLedger] = None

    async def start(self, sync: bool = True) -> None:
        if sync:
            try:
                summary = await self.coordinator.rebuild()
                logger.info(
                    "Mirror rebuilt from gateway: %d chains, %d agents, %d active bridges",
                    len(summary["chains"]),
                    summary["agents"],
                    summary["activeBridges"],
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("Mirror rebuild failed: %s", exc, exc_info=True)
        await self.watcher.start()

    async def stop(self) -> None:
        await self.watcher.stop()

    async def health(self) -> Dict[str, Any]:
        return {
            "watcher": self.watcher.status(),
            "gateway": await self.gateway.health_check(),
            "xrpl": await self.xrpl.health_check() if self.xrpl else {"status": "disabled"},
        }


def build_runtime(
    config: BridgeConfig,
    gateway: GatewayContract,
    xrpl: Optional[XrplLedger] = None,
    checkpoints: Optional[CheckpointStore] = None,
    *,
    retry: Optional[RetryStrategy] = None,
    clock: Optional[Callable[[], float]] = None,
) -> BridgeRuntime:
    registry = ChainRegistry(config.owner_address)
    agents = AgentDirectory(collateral_ratio=config.collateral_ratio)
    ledger = BridgeLedger(registry, agents, config.owner_address)
    arbiter = ForceReceiveArbiter(ledger, config.owner_address, config.stall_timeout_blocks)
    store = checkpoints if checkpoints is not None else InMemoryCheckpointStore()

    watcher_kwargs: Dict[str, Any] = {"config": config}
    if clock is not None:
        watcher_kwargs["clock"] = clock
    watcher = ConfirmationWatcher(
        ledger,
        {gateway.chain_id: gateway},
        xrpl,
        store,
        **watcher_kwargs,
    )
    coordinator = GatewayCoordinator(
        registry=registry,
        agents=agents,
        ledger=ledger,
        arbiter=arbiter,
        watcher=watcher,
        gateway=gateway,
        xrpl=xrpl,
        checkpoints=store,
        config=config,
        retry=retry,
    )
    return BridgeRuntime(
        config=config,
        registry=registry,
        agents=agents,
        ledger=ledger,
        arbiter=arbiter,
        watcher=watcher,
        coordinator=coordinator,
        gateway=gateway,
        checkpoints=store,
        xrpl=xrpl,
    )


def runtime_from_settings(settings: "Settings") -> BridgeRuntime:
    """Build a runtime backed by web3.py and xrpl-py from application settings."""
    from ...providers.gateway import Web3GatewayContract
    from ...providers.xrpl import XrplJsonRpcLedger

    keys = [settings.relayer_private_key.get_secret_value()] if settings.has_signer else []
    gateway = Web3GatewayContract.from_private_keys(
        settings.evm_rpc_url,
        settings.gateway_address,
        settings.evm_chain_id,
        keys,
        token_address=settings.xrp_token_address or None,
    )
    xrpl = XrplJsonRpcLedger(
        settings.xrpl_rpc_url,
        master_seed=settings.xrpl_master_seed.get_secret_value() if settings.has_xrpl_master else None,
    )
    checkpoints = (
        JsonFileCheckpointStore(settings.checkpoint_path, max_facts=settings.checkpoint_max_facts)
        if settings.checkpoint_path
        else InMemoryCheckpointStore(max_facts=settings.checkpoint_max_facts)
    )
    return build_runtime(settings.to_bridge_config(), gateway, xrpl, checkpoints)
