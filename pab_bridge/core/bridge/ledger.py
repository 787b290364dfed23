"""
Bridge Ledger

Per-user single-slot state machine for in-flight bridge requests. Every
transition goes through a guard-then-mutate step under the user's slot
lock, so racing operations on one user resolve deterministically while
different users proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from ..recovery.errors import (
    AlreadyClaimedError,
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    RequestInFlightError,
    SlotBusyError,
    ValidationError,
)
from .agents import AgentDirectory
from .chain_registry import ChainRegistry
from .encoding import is_zero_bytes32, normalize_address, to_bytes32_hex
from .models import (
    BridgeRequest,
    BridgeStatus,
    BridgeTransition,
    Operation,
    PendingIntent,
    WithdrawalReceipt,
)


TransitionListener = Callable[[BridgeTransition, Optional[BridgeRequest]], Coroutine[Any, Any, None]]
SlotGuard = Callable[[BridgeRequest], None]


class BridgeLedger:
    """
    Owns every BridgeRequest slot.

    Mutations are two-phase: ``begin`` validates and reserves the slot,
    ``commit`` applies the transition once the external effect is final,
    ``abort`` releases the reservation leaving the slot untouched. The
    convenience methods (``bridge_tokens``, ``claim_bridge``, ...) run both
    phases back to back.
    """

    # Source states each operation may be applied from
    TRANSITIONS: Dict[Operation, Set[BridgeStatus]] = {
        Operation.BRIDGE_TOKENS: {BridgeStatus.EMPTY},
        Operation.CLAIM_BRIDGE: {BridgeStatus.INITIATED},
        Operation.CONFIRM_BRIDGE: {
            BridgeStatus.CLAIMED,
            BridgeStatus.FORCE_REQUESTED,  # a rejected force request can still be confirmed
        },
        Operation.FORCE_RECEIVE: {BridgeStatus.CLAIMED},
        Operation.APPROVE_FORCED_RECEIVE: {BridgeStatus.FORCE_REQUESTED},
        Operation.WITHDRAW: {BridgeStatus.CONFIRMED, BridgeStatus.FORCE_APPROVED},
    }

    def __init__(
        self,
        registry: ChainRegistry,
        agents: AgentDirectory,
        owner_address: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry
        self._agents = agents
        self._owner = normalize_address(owner_address)
        self.logger = logger or logging.getLogger(__name__)

        self._slots: Dict[str, BridgeRequest] = {}
        self._pending: Dict[str, PendingIntent] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._history: Dict[str, List[BridgeTransition]] = {}
        self._receipts: List[WithdrawalReceipt] = []
        self._listeners: List[TransitionListener] = []

    def _get_lock(self, user: str) -> asyncio.Lock:
        if user not in self._locks:
            self._locks[user] = asyncio.Lock()
        return self._locks[user]

    # ---------------------------
    # Reads
    # ---------------------------
    def get(self, user: str) -> Optional[BridgeRequest]:
        """Return a copy of the user's slot, or None when it is empty."""
        slot = self._slots.get(normalize_address(user))
        return replace(slot) if slot else None

    def status(self, user: str) -> BridgeStatus:
        slot = self._slots.get(normalize_address(user))
        return slot.status if slot else BridgeStatus.EMPTY

    def active_users(self) -> List[str]:
        return list(self._slots.keys())

    def snapshot(self) -> List[BridgeRequest]:
        return [replace(slot) for slot in self._slots.values()]

    def pending(self, user: str) -> Optional[PendingIntent]:
        return self._pending.get(normalize_address(user))

    def history(self, user: str) -> List[BridgeTransition]:
        return list(self._history.get(normalize_address(user), []))

    def receipts(self) -> List[WithdrawalReceipt]:
        return list(self._receipts)

    @property
    def escrowed_total(self) -> int:
        return sum(slot.amount for slot in self._slots.values())

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    # ---------------------------
    # Guards
    # ---------------------------
    def _check_guard(self, intent: PendingIntent) -> None:
        slot = self._slots.get(intent.user)
        status = slot.status if slot else BridgeStatus.EMPTY
        op = intent.operation

        if op == Operation.BRIDGE_TOKENS:
            if isinstance(intent.amount, bool) or not isinstance(intent.amount, int) or intent.amount <= 0:
                raise ValidationError("Bridge amount must be a positive integer", code="INVALID_AMOUNT")
            if intent.destination_chain_id is None:
                raise ValidationError("Destination chain is required", code="INVALID_CHAIN_ID")
            self._registry.require_supported(intent.destination_chain_id)
            if slot is not None:
                raise RequestInFlightError(intent.user)
            return

        if slot is None:
            raise InvalidTransitionError(
                op.value, status.value, f"No bridge request for {intent.user}"
            )

        if op == Operation.CLAIM_BRIDGE:
            if slot.agent_address:
                raise AlreadyClaimedError(intent.user, slot.agent_address)
            self._require_status(op, status)
            self._agents.get(intent.actor)
            return

        if op == Operation.CONFIRM_BRIDGE:
            # Identity is checked before anything about the hash or state
            if slot.agent_address and intent.actor != slot.agent_address:
                raise AuthorizationError(
                    "Only the claiming agent may confirm this bridge",
                    caller=intent.actor,
                    required=slot.agent_address,
                )
            self._require_status(op, status)
            if not intent.xrpl_tx_hash or is_zero_bytes32(intent.xrpl_tx_hash):
                raise ValidationError("XRPL transaction hash is required", code="INVALID_BYTES32")
            return

        if op == Operation.FORCE_RECEIVE:
            if intent.actor != intent.user:
                raise AuthorizationError(
                    "Only the requesting user may force receive",
                    caller=intent.actor,
                    required=intent.user,
                )
            self._require_status(op, status)
            return

        if op == Operation.APPROVE_FORCED_RECEIVE:
            if intent.actor != self._owner:
                raise AuthorizationError(
                    "Only the owner may approve a forced receive",
                    caller=intent.actor,
                    required="owner",
                )
            self._require_status(op, status)
            return

        if op == Operation.WITHDRAW:
            self._require_status(op, status)
            if status == BridgeStatus.CONFIRMED:
                allowed = {slot.agent_address, self._owner}
            else:
                allowed = {slot.user}
            if intent.actor not in allowed:
                raise AuthorizationError(
                    f"{intent.actor} may not withdraw a {status.value} bridge",
                    caller=intent.actor,
                )
            return

        raise ValidationError(f"Operation {op.value} does not act on bridge slots", code="INVALID_OPERATION")

    def _require_status(self, op: Operation, status: BridgeStatus) -> None:
        allowed = self.TRANSITIONS[op]
        if status not in allowed:
            raise InvalidTransitionError(
                op.value,
                status.value,
                f"Cannot {op.value} from {status.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}",
            )

    @staticmethod
    def _conflict(user: str, pending: PendingIntent, requested: Operation) -> Exception:
        if requested == Operation.BRIDGE_TOKENS and pending.operation == Operation.BRIDGE_TOKENS:
            return RequestInFlightError(user)
        if requested == Operation.CLAIM_BRIDGE and pending.operation == Operation.CLAIM_BRIDGE:
            return AlreadyClaimedError(user, pending.actor)
        return SlotBusyError(user, pending.operation.value)

    # ---------------------------
    # Two-phase API
    # ---------------------------
    async def begin(
        self,
        operation: Operation,
        actor: str,
        user: str,
        *,
        amount: int = 0,
        destination_chain_id: Optional[int] = None,
        xrpl_tx_hash: Optional[str] = None,
        recipient: Optional[str] = None,
        guard: Optional[SlotGuard] = None,
    ) -> PendingIntent:
        """Validate ``operation`` and reserve the slot for it."""
        if operation not in self.TRANSITIONS:
            raise ValidationError(f"Operation {operation.value} does not act on bridge slots", code="INVALID_OPERATION")
        user = normalize_address(user)
        actor = normalize_address(actor)
        if xrpl_tx_hash is not None:
            xrpl_tx_hash = to_bytes32_hex(xrpl_tx_hash)

        async with self._get_lock(user):
            pending = self._pending.get(user)
            if pending is not None:
                raise self._conflict(user, pending, operation)

            intent = PendingIntent(
                operation=operation,
                actor=actor,
                user=user,
                amount=amount,
                destination_chain_id=destination_chain_id,
                xrpl_tx_hash=xrpl_tx_hash,
                recipient=recipient,
            )
            self._check_guard(intent)
            slot = self._slots.get(user)
            if guard is not None and slot is not None:
                guard(replace(slot))
            if operation == Operation.CLAIM_BRIDGE and slot is not None:
                intent.amount = slot.amount
                intent.locked_collateral = await self._agents.lock(actor, slot.amount)

            self._pending[user] = intent
            self.logger.debug("Reserved %s for %s by %s", operation.value, user, actor)
            return intent

    async def abort(self, intent: PendingIntent) -> None:
        """Drop a reservation; the slot is left exactly as it was."""
        async with self._get_lock(intent.user):
            if self._pending.get(intent.user) is not intent:
                return
            del self._pending[intent.user]
            if intent.locked_collateral:
                await self._agents.release(intent.actor, intent.locked_collateral)
                intent.locked_collateral = 0
        self.logger.info("Aborted %s for %s", intent.operation.value, intent.user)

    async def commit(self, intent: PendingIntent, block: int = 0) -> Optional[WithdrawalReceipt]:
        """Apply a reserved transition. Returns a receipt for withdrawals."""
        async with self._get_lock(intent.user):
            if self._pending.get(intent.user) is not intent:
                raise ValidationError(
                    f"No active reservation {intent.id} for {intent.user}", code="STALE_INTENT"
                )
            try:
                self._check_guard(intent)
                transition, receipt = await self._apply(intent, block)
            except Exception:
                if intent.locked_collateral:
                    await self._agents.release(intent.actor, intent.locked_collateral)
                    intent.locked_collateral = 0
                raise
            finally:
                self._pending.pop(intent.user, None)
            current = self._slots.get(intent.user)

        self.logger.info(
            f"Bridge {intent.user}: {transition.from_status.value} -> {transition.to_status.value} "
            f"({intent.operation.value} by {intent.actor})"
        )
        await self._notify(transition, replace(current) if current else None)
        return receipt

    async def _apply(self, intent: PendingIntent, block: int):
        user = intent.user
        op = intent.operation
        slot = self._slots.get(user)
        from_status = slot.status if slot else BridgeStatus.EMPTY
        receipt: Optional[WithdrawalReceipt] = None

        if op == Operation.BRIDGE_TOKENS:
            slot = BridgeRequest(
                user=user,
                amount=intent.amount,
                destination_chain_id=intent.destination_chain_id,
                recipient=intent.recipient,
                created_block=block,
                updated_block=block,
            )
            self._slots[user] = slot
        elif op == Operation.CLAIM_BRIDGE:
            slot.agent_address = intent.actor
            slot.claimed_block = block
            slot.locked_collateral = intent.locked_collateral
            intent.locked_collateral = 0  # ownership moves to the slot
        elif op == Operation.CONFIRM_BRIDGE:
            slot.xrpl_tx_hash = intent.xrpl_tx_hash
        elif op == Operation.FORCE_RECEIVE:
            slot.requested_force_receive = True
        elif op == Operation.APPROVE_FORCED_RECEIVE:
            slot.force_received = True
        elif op == Operation.WITHDRAW:
            receipt = await self._settle_withdrawal(slot, from_status)
            del self._slots[user]

        if slot is not None and user in self._slots:
            slot.updated_block = block

        to_status = self._slots[user].status if user in self._slots else BridgeStatus.EMPTY
        transition = BridgeTransition(
            user=user,
            from_status=from_status,
            to_status=to_status,
            operation=op,
            actor=intent.actor,
            block=block,
        )
        self._history.setdefault(user, []).append(transition)
        return transition, receipt

    async def _settle_withdrawal(self, slot: BridgeRequest, status: BridgeStatus) -> WithdrawalReceipt:
        if status == BridgeStatus.CONFIRMED:
            if slot.agent_address and slot.locked_collateral:
                await self._agents.release(slot.agent_address, slot.locked_collateral)
            receipt = WithdrawalReceipt(
                user=slot.user,
                recipient=slot.agent_address,
                amount=slot.amount,
                disposition="reimbursed",
                agent_address=slot.agent_address,
            )
        else:
            if slot.agent_address and slot.locked_collateral:
                await self._agents.forfeit(slot.agent_address, slot.locked_collateral)
            receipt = WithdrawalReceipt(
                user=slot.user,
                recipient=slot.user,
                amount=slot.amount,
                disposition="refunded",
                agent_address=slot.agent_address,
            )
        self._receipts.append(receipt)
        return receipt

    async def _notify(self, transition: BridgeTransition, current: Optional[BridgeRequest]) -> None:
        for listener in self._listeners:
            try:
                await listener(transition, current)
            except Exception as e:
                self.logger.error(f"Transition listener error: {e}")

    # ---------------------------
    # Single-step helpers
    # ---------------------------
    async def _run(self, operation: Operation, actor: str, user: str, block: int, **kwargs) -> Optional[WithdrawalReceipt]:
        intent = await self.begin(operation, actor, user, **kwargs)
        return await self.commit(intent, block)

    async def bridge_tokens(
        self,
        user: str,
        amount: int,
        destination_chain_id: int,
        block: int = 0,
        recipient: Optional[str] = None,
    ) -> BridgeRequest:
        await self._run(
            Operation.BRIDGE_TOKENS,
            user,
            user,
            block,
            amount=amount,
            destination_chain_id=destination_chain_id,
            recipient=recipient,
        )
        return self.get(user)

    async def claim_bridge(self, agent: str, user: str, block: int = 0) -> BridgeRequest:
        await self._run(Operation.CLAIM_BRIDGE, agent, user, block)
        return self.get(user)

    async def confirm_bridge(self, agent: str, user: str, xrpl_tx_hash: str, block: int = 0) -> BridgeRequest:
        await self._run(Operation.CONFIRM_BRIDGE, agent, user, block, xrpl_tx_hash=xrpl_tx_hash)
        return self.get(user)

    async def force_receive(
        self,
        user: str,
        block: int = 0,
        guard: Optional[SlotGuard] = None,
    ) -> BridgeRequest:
        await self._run(Operation.FORCE_RECEIVE, user, user, block, guard=guard)
        return self.get(user)

    async def approve_forced_receive(self, owner: str, user: str, block: int = 0) -> BridgeRequest:
        await self._run(Operation.APPROVE_FORCED_RECEIVE, owner, user, block)
        return self.get(user)

    async def withdraw(self, caller: str, user: Optional[str] = None, block: int = 0) -> WithdrawalReceipt:
        return await self._run(Operation.WITHDRAW, caller, user or caller, block)

    # ---------------------------
    # Mirror maintenance
    # ---------------------------
    async def restore(self, user: str, request: Optional[BridgeRequest]) -> None:
        """Overwrite a slot with state read from the gateway (None empties it).

        A claimed slot keeps the claiming agent's collateral soft-locked: the
        lock already held for the same agent is kept, otherwise it is taken
        again for the slot amount.
        """
        user = normalize_address(user)
        async with self._get_lock(user):
            existing = self._slots.get(user)
            held_by = existing.agent_address if existing is not None else None
            held = existing.locked_collateral if existing is not None else 0

            if request is None:
                self._slots.pop(user, None)
                if held_by and held:
                    await self._agents.release(held_by, held)
                return

            request.user = user
            if existing is not None:
                request.recipient = request.recipient or existing.recipient
                request.created_block = existing.created_block
            if request.agent_address and request.agent_address == held_by and held:
                request.locked_collateral = held
            else:
                if held_by and held:
                    await self._agents.release(held_by, held)
                request.locked_collateral = await self._hold_claim(request)
            self._slots[user] = request

    async def _hold_claim(self, request: BridgeRequest) -> int:
        if not request.agent_address:
            return 0
        try:
            return await self._agents.hold(request.agent_address, request.amount)
        except NotFoundError:
            self.logger.warning(
                "Claim on %s by unknown agent %s; no collateral held", request.user, request.agent_address
            )
            return 0

    def invariant_violations(self) -> List[str]:
        """Describe every broken slot invariant; empty when the ledger is sound."""
        problems: List[str] = []
        for user, slot in self._slots.items():
            if slot.user != user:
                problems.append(f"slot keyed {user} belongs to {slot.user}")
            if slot.amount <= 0:
                problems.append(f"{user}: non-positive escrow {slot.amount}")
            status = slot.status
            if status != BridgeStatus.INITIATED and not slot.agent_address:
                problems.append(f"{user}: {status.value} without an agent")
            if slot.agent_address and slot.claimed_block is None:
                problems.append(f"{user}: claimed without a claim block")
            if slot.force_received and not slot.requested_force_receive:
                problems.append(f"{user}: force received without a request")
        for user, intent in self._pending.items():
            if intent.user != user:
                problems.append(f"reservation keyed {user} belongs to {intent.user}")
        return problems

    def assert_invariants(self) -> None:
        problems = self.invariant_violations()
        if problems:
            raise AssertionError("; ".join(problems))
