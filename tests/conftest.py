"""
Shared fixtures for the bridge engine tests.
"""

import pytest

from pab_bridge.core.bridge import BridgeConfig, InMemoryCheckpointStore, build_runtime
from pab_bridge.core.recovery import RetryConfig, RetryStrategy

from tests.fakes import GATEWAY_CHAIN, OWNER, POLYGON, FakeClock, FakeGateway, FakeXrpl, no_sleep


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def bridge_config() -> BridgeConfig:
    return BridgeConfig(
        owner_address=OWNER,
        evm_chain_id=GATEWAY_CHAIN,
        confirmation_depth=3,
        stall_timeout_blocks=10,
        finality_timeout_seconds=60,
        xrpl_lookup_max_attempts=2,
        source_poll_interval_seconds=0,
        destination_poll_interval_seconds=0,
        submission_initial_delay_seconds=0,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway(OWNER)
    gw.chains = [POLYGON, 0]
    return gw


@pytest.fixture
def xrpl() -> FakeXrpl:
    return FakeXrpl()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep_retry() -> RetryStrategy:
    return RetryStrategy(RetryConfig(max_attempts=3, initial_delay_seconds=0, jitter=False), sleep=no_sleep)


@pytest.fixture
def checkpoints() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def runtime(bridge_config, gateway, xrpl, clock, no_sleep_retry, checkpoints):
    rt = build_runtime(
        bridge_config,
        gateway,
        xrpl,
        checkpoints,
        retry=no_sleep_retry,
        clock=clock,
    )
    rt.registry.load(gateway.chains)
    return rt


@pytest.fixture
def coordinator(runtime):
    return runtime.coordinator
