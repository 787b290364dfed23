"""
Tests for the ForceReceiveArbiter
"""

import pytest
import pytest_asyncio

from pab_bridge.core.bridge import (
    AgentDirectory,
    BridgeLedger,
    BridgeStatus,
    ChainRegistry,
    ForceReceiveArbiter,
)
from pab_bridge.core.recovery import AuthorizationError, InvalidTransitionError, ValidationError

from tests.fakes import AGENT, OWNER, POLYGON, STRANGER, USER, USER_2, XRPL_BINDING, XRPL_TX


@pytest_asyncio.fixture
async def ledger() -> BridgeLedger:
    registry = ChainRegistry(OWNER)
    registry.load([POLYGON])
    agents = AgentDirectory()
    await agents.register(AGENT, XRPL_BINDING, 1_000)
    ledger = BridgeLedger(registry, agents, OWNER)
    await ledger.bridge_tokens(USER, 100, POLYGON, block=1)
    await ledger.claim_bridge(AGENT, USER, block=100)
    return ledger


@pytest.fixture
def arbiter(ledger) -> ForceReceiveArbiter:
    return ForceReceiveArbiter(ledger, OWNER, stall_timeout_blocks=20)


class TestStallDetection:
    def test_stalled_at_exact_timeout(self, arbiter: ForceReceiveArbiter, ledger):
        request = ledger.get(USER)

        assert not arbiter.is_stalled(request, 119)
        assert arbiter.is_stalled(request, 120)

    def test_check_stalled_lists_claimed_users(self, arbiter: ForceReceiveArbiter):
        assert arbiter.check_stalled(110) == []
        assert arbiter.check_stalled(150) == [USER]

    @pytest.mark.asyncio
    async def test_unclaimed_and_confirmed_never_stall(self, arbiter: ForceReceiveArbiter, ledger):
        await ledger.bridge_tokens(USER_2, 10, POLYGON, block=1)
        await ledger.confirm_bridge(AGENT, USER, XRPL_TX, block=101)

        assert arbiter.check_stalled(10_000) == []

    def test_negative_timeout_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ForceReceiveArbiter(ledger, OWNER, stall_timeout_blocks=-1)


class TestForceReceive:
    @pytest.mark.asyncio
    async def test_too_early(self, arbiter: ForceReceiveArbiter, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await arbiter.request_force_receive(USER, current_block=105)

        assert exc_info.value.code == "FORCE_RECEIVE_TOO_EARLY"
        assert ledger.status(USER) == BridgeStatus.CLAIMED

    @pytest.mark.asyncio
    async def test_after_timeout(self, arbiter: ForceReceiveArbiter):
        request = await arbiter.request_force_receive(USER, current_block=120)

        assert request.status == BridgeStatus.FORCE_REQUESTED
        assert arbiter.check_stalled(500) == []


class TestResolve:
    @pytest.mark.asyncio
    async def test_approve(self, arbiter: ForceReceiveArbiter):
        await arbiter.request_force_receive(USER, current_block=130)

        request = await arbiter.resolve(OWNER, USER, approve=True, block=131)

        assert request.status == BridgeStatus.FORCE_APPROVED

    @pytest.mark.asyncio
    async def test_reject_leaves_slot(self, arbiter: ForceReceiveArbiter, ledger):
        await arbiter.request_force_receive(USER, current_block=130)

        request = await arbiter.resolve(OWNER, USER, approve=False)

        assert request.status == BridgeStatus.FORCE_REQUESTED
        confirmed = await ledger.confirm_bridge(AGENT, USER, XRPL_TX)
        assert confirmed.status == BridgeStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_only_owner_resolves(self, arbiter: ForceReceiveArbiter):
        await arbiter.request_force_receive(USER, current_block=130)

        with pytest.raises(AuthorizationError):
            await arbiter.resolve(STRANGER, USER, approve=True)

    @pytest.mark.asyncio
    async def test_resolve_requires_pending_request(self, arbiter: ForceReceiveArbiter):
        with pytest.raises(InvalidTransitionError):
            await arbiter.resolve(OWNER, USER, approve=True)
