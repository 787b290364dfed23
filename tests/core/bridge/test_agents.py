"""
Tests for the AgentDirectory

Registration, deposits, collateral policy and soft-lock bookkeeping.
"""

import asyncio
from decimal import Decimal

import pytest

from pab_bridge.core.bridge import AgentDirectory
from pab_bridge.core.bridge.models import Agent
from pab_bridge.core.recovery import (
    AlreadyRegisteredError,
    InsufficientCollateralError,
    NotFoundError,
    NotRegisteredError,
    ValidationError,
)

from tests.fakes import AGENT, AGENT_2, XRPL_BINDING, XRPL_BINDING_2


@pytest.fixture
def directory() -> AgentDirectory:
    return AgentDirectory()


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_creates_agent(self, directory: AgentDirectory):
        agent = await directory.register(AGENT, XRPL_BINDING, 500, block=7)

        assert agent.address == AGENT
        assert agent.xrpl_address == XRPL_BINDING
        assert agent.deposit_amount == 500
        assert agent.last_deposit_block == 7
        assert directory.is_registered(AGENT)

    @pytest.mark.asyncio
    async def test_register_twice_fails(self, directory: AgentDirectory):
        await directory.register(AGENT, XRPL_BINDING, 500)
        with pytest.raises(AlreadyRegisteredError):
            await directory.register(AGENT, XRPL_BINDING_2, 100)
        assert directory.get(AGENT).xrpl_address == XRPL_BINDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_register_requires_positive_amount(self, directory: AgentDirectory, amount):
        with pytest.raises(ValidationError):
            await directory.register(AGENT, XRPL_BINDING, amount)
        assert not directory.is_registered(AGENT)

    @pytest.mark.asyncio
    async def test_register_requires_32_byte_binding(self, directory: AgentDirectory):
        with pytest.raises(ValidationError) as exc_info:
            await directory.register(AGENT, "0x1234", 100)
        assert exc_info.value.code == "INVALID_BYTES32"

    @pytest.mark.asyncio
    async def test_binding_accepts_unprefixed_upper_hex(self, directory: AgentDirectory):
        agent = await directory.register(AGENT, "AB" * 32, 100)
        assert agent.xrpl_address == "0x" + "ab" * 32


class TestDeposits:
    @pytest.mark.asyncio
    async def test_deposit_increases_collateral(self, directory: AgentDirectory):
        await directory.register(AGENT, XRPL_BINDING, 100, block=1)
        agent = await directory.deposit(AGENT, 50, block=9)

        assert agent.deposit_amount == 150
        assert agent.last_deposit_block == 9

    @pytest.mark.asyncio
    async def test_deposit_unknown_agent(self, directory: AgentDirectory):
        with pytest.raises(NotRegisteredError) as exc_info:
            await directory.deposit(AGENT, 50)
        assert isinstance(exc_info.value, NotFoundError)

    def test_get_and_find(self, directory: AgentDirectory):
        assert directory.find(AGENT) is None
        with pytest.raises(NotFoundError):
            directory.get(AGENT)


class TestCollateral:
    def test_required_collateral_rounds_up(self):
        directory = AgentDirectory(collateral_ratio=Decimal("1.5"))
        assert directory.required_collateral(3) == 5
        assert directory.required_collateral(4) == 6

    def test_ratio_must_be_positive(self):
        with pytest.raises(ValidationError):
            AgentDirectory(collateral_ratio=Decimal("0"))

    @pytest.mark.asyncio
    async def test_lock_release_and_forfeit(self, directory: AgentDirectory):
        await directory.register(AGENT, XRPL_BINDING, 100)

        locked = await directory.lock(AGENT, 60)
        assert locked == 60
        assert directory.get(AGENT).usable_collateral == 40

        with pytest.raises(InsufficientCollateralError) as exc_info:
            await directory.lock(AGENT, 50)
        assert exc_info.value.available == 40

        await directory.release(AGENT, 60)
        assert directory.get(AGENT).usable_collateral == 100

        await directory.lock(AGENT, 30)
        penalty = await directory.forfeit(AGENT, 30)
        agent = directory.get(AGENT)
        assert penalty == 30
        assert agent.deposit_amount == 70
        assert agent.locked_amount == 0

    @pytest.mark.asyncio
    async def test_concurrent_locks_never_overcommit(self, directory: AgentDirectory):
        await directory.register(AGENT, XRPL_BINDING, 100)

        results = await asyncio.gather(
            *(directory.lock(AGENT, 40) for _ in range(4)),
            return_exceptions=True,
        )

        successes = [r for r in results if r == 40]
        failures = [r for r in results if isinstance(r, InsufficientCollateralError)]
        assert len(successes) == 2
        assert len(failures) == 2
        assert directory.get(AGENT).locked_amount == 80

    @pytest.mark.asyncio
    async def test_load_keeps_local_soft_locks(self, directory: AgentDirectory):
        await directory.register(AGENT, XRPL_BINDING, 100)
        await directory.lock(AGENT, 25)

        directory.load(Agent(address=AGENT, xrpl_address=XRPL_BINDING, deposit_amount=300, last_deposit_block=12))
        directory.load(Agent(address=AGENT_2, xrpl_address=XRPL_BINDING_2, deposit_amount=0))

        agent = directory.get(AGENT)
        assert agent.deposit_amount == 300
        assert agent.locked_amount == 25
        assert not directory.get(AGENT_2).is_active

    @pytest.mark.asyncio
    async def test_hold_skips_usable_check(self, directory: AgentDirectory):
        await directory.register(AGENT, XRPL_BINDING, 100)
        await directory.lock(AGENT, 80)

        held = await directory.hold(AGENT, 50)

        assert held == 50
        assert directory.get(AGENT).locked_amount == 130

        with pytest.raises(NotFoundError):
            await directory.hold(AGENT_2, 10)
