"""Directory of registered agents and their collateral."""

from __future__ import annotations

import asyncio
import logging
import math
from decimal import Decimal
from typing import Dict, List, Optional

from ..recovery.errors import (
    AlreadyRegisteredError,
    InsufficientCollateralError,
    NotFoundError,
    NotRegisteredError,
    ValidationError,
)
from .encoding import normalize_address, to_bytes32_hex
from .models import Agent


class AgentDirectory:
    """
    Tracks agents, their XRPL binding, and collateral.

    Features:
    - One record per address; records are never deleted
    - Soft-locks collateral for outstanding claims
    - Per-address locks for concurrent mutation
    """

    def __init__(
        self,
        collateral_ratio: Decimal = Decimal("1"),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if collateral_ratio <= 0:
            raise ValidationError("Collateral ratio must be positive", code="INVALID_COLLATERAL_RATIO")
        self._ratio = Decimal(collateral_ratio)
        self._agents: Dict[str, Agent] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = logger or logging.getLogger(__name__)

    def _get_lock(self, address: str) -> asyncio.Lock:
        if address not in self._locks:
            self._locks[address] = asyncio.Lock()
        return self._locks[address]

    @staticmethod
    def _check_amount(amount: int) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive integer", code="INVALID_AMOUNT")
        return amount

    # ---------------------------
    # Lookups
    # ---------------------------
    def find(self, address: str) -> Optional[Agent]:
        return self._agents.get(normalize_address(address))

    def get(self, address: str) -> Agent:
        agent = self.find(address)
        if agent is None:
            raise NotRegisteredError(normalize_address(address))
        return agent

    def is_registered(self, address: str) -> bool:
        return normalize_address(address) in self._agents

    def all(self) -> List[Agent]:
        return list(self._agents.values())

    def required_collateral(self, amount: int) -> int:
        """Collateral an agent must have free to claim ``amount``."""
        return int(math.ceil(Decimal(amount) * self._ratio))

    @property
    def collateral_ratio(self) -> Decimal:
        return self._ratio

    # ---------------------------
    # Validation (no mutation)
    # ---------------------------
    def check_register(self, caller: str, xrpl_address: str, amount: int) -> str:
        """Validate a registration and return the normalised XRPL binding."""
        address = normalize_address(caller)
        if address in self._agents:
            raise AlreadyRegisteredError(address)
        self._check_amount(amount)
        return to_bytes32_hex(xrpl_address)

    def check_deposit(self, caller: str, amount: int) -> None:
        self.get(caller)
        self._check_amount(amount)

    def ensure_can_claim(self, address: str, amount: int) -> int:
        """Return the collateral a claim would lock, or raise."""
        agent = self.get(address)
        required = self.required_collateral(amount)
        if agent.usable_collateral < required:
            raise InsufficientCollateralError(agent.address, required, agent.usable_collateral)
        return required

    # ---------------------------
    # Mutations
    # ---------------------------
    async def register(self, caller: str, xrpl_address: str, amount: int, block: int = 0) -> Agent:
        address = normalize_address(caller)
        async with self._get_lock(address):
            binding = self.check_register(address, xrpl_address, amount)
            agent = Agent(
                address=address,
                xrpl_address=binding,
                deposit_amount=amount,
                last_deposit_block=block,
            )
            self._agents[address] = agent
        self.logger.info("Agent registered: %s (deposit=%d)", address, amount)
        return agent

    async def deposit(self, caller: str, amount: int, block: int = 0) -> Agent:
        address = normalize_address(caller)
        async with self._get_lock(address):
            self.check_deposit(address, amount)
            agent = self._agents[address]
            agent.deposit_amount += amount
            agent.last_deposit_block = max(agent.last_deposit_block, block)
        self.logger.info("Agent %s deposited %d (total=%d)", address, amount, agent.deposit_amount)
        return agent

    async def lock(self, address: str, amount: int) -> int:
        """Atomically check collateral for a claim of ``amount`` and soft-lock it."""
        address = normalize_address(address)
        async with self._get_lock(address):
            required = self.ensure_can_claim(address, amount)
            self._agents[address].locked_amount += required
            return required

    async def hold(self, address: str, amount: int) -> int:
        """Soft-lock collateral for a claim the gateway already accepted.

        Unlike ``lock`` there is no usable-collateral check: the claim exists
        on chain whether or not the local figures agree.
        """
        address = normalize_address(address)
        async with self._get_lock(address):
            agent = self._agents.get(address)
            if agent is None:
                raise NotFoundError(f"Agent {address} is not registered", code="NOT_REGISTERED")
            required = self.required_collateral(amount)
            agent.locked_amount += required
            return required

    async def release(self, address: str, locked: int) -> None:
        """Return soft-locked collateral to the agent's usable balance."""
        address = normalize_address(address)
        async with self._get_lock(address):
            agent = self._agents.get(address)
            if agent is None:
                raise NotFoundError(f"Agent {address} is not registered", code="NOT_REGISTERED")
            agent.locked_amount = max(agent.locked_amount - locked, 0)

    async def forfeit(self, address: str, locked: int) -> int:
        """Penalise an agent: the soft-locked collateral is lost.

        Returns the amount actually forfeited.
        """
        address = normalize_address(address)
        async with self._get_lock(address):
            agent = self._agents.get(address)
            if agent is None:
                raise NotFoundError(f"Agent {address} is not registered", code="NOT_REGISTERED")
            penalty = min(locked, agent.deposit_amount)
            agent.locked_amount = max(agent.locked_amount - locked, 0)
            agent.deposit_amount -= penalty
        self.logger.warning("Agent %s forfeited %d collateral", address, penalty)
        return penalty

    def load(self, agent: Agent) -> Agent:
        """Upsert a record read from the gateway, keeping local soft-locks."""
        address = normalize_address(agent.address)
        existing = self._agents.get(address)
        agent.address = address
        if existing is not None:
            agent.locked_amount = existing.locked_amount
        self._agents[address] = agent
        return agent
