"""
Gateway Coordinator

Role-gated entry point for every state-changing bridge operation. Each call
is validated locally, submitted to the gateway contract, tracked to
confirmation depth by the watcher, and only then applied to the mirror.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ...providers.base import GatewayContract, XrplLedger, XrplTransaction
from ..recovery.errors import (
    FinalityTimeoutError,
    InsufficientTokenError,
    NotFoundError,
    SlotBusyError,
    TransactionRevertedError,
    ValidationError,
)
from ..recovery.strategies import ExponentialBackoffStrategy, RetryStrategy
from .agents import AgentDirectory
from .arbiter import ForceReceiveArbiter
from .chain_registry import ChainRegistry
from .checkpoints import CheckpointStore, InMemoryCheckpointStore
from .config import BridgeConfig
from .encoding import normalize_address, to_bytes32_hex
from .ledger import BridgeLedger
from .models import (
    Agent,
    BridgeRequest,
    FactKind,
    Operation,
    PendingIntent,
    Role,
    Submission,
    SubmissionStatus,
    WatcherFact,
    WithdrawalReceipt,
)
from .roles import RoleResolver
from .watcher import ConfirmationWatcher

# Address sets kept in the checkpoint store for the mirror rebuild
KNOWN_USERS = "users"
KNOWN_AGENTS = "agents"


@dataclass
class _PendingCall:
    """Everything needed to finish, undo or re-send one submission."""

    submission: Submission
    send: Callable[[], Awaitable[str]]
    on_final: Callable[[int], Awaitable[Any]]
    on_abort: Callable[[], Awaitable[None]]
    effect_present: Callable[[], Awaitable[bool]]
    release_key: Optional[str] = None
    # Set while some coroutine is settling this call
    waiting: bool = False


class GatewayCoordinator:
    """
    Facade over registry, directory, ledger, arbiter and watcher.

    Features:
    - Explicit owner / agent / user capability checks
    - Transient submission failures retried with exponential backoff
    - Mirror updated only after the watcher reports finality
    - Reverts reconciled against contract state before giving up
    - Timed-out submissions kept for ``resubmit``
    - Submissions whose waiter went away settled from watcher facts
    """

    def __init__(
        self,
        *,
        registry: ChainRegistry,
        agents: AgentDirectory,
        ledger: BridgeLedger,
        arbiter: ForceReceiveArbiter,
        watcher: ConfirmationWatcher,
        gateway: GatewayContract,
        xrpl: Optional[XrplLedger] = None,
        checkpoints: Optional[CheckpointStore] = None,
        config: Optional[BridgeConfig] = None,
        retry: Optional[RetryStrategy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.registry = registry
        self.agents = agents
        self.ledger = ledger
        self.arbiter = arbiter
        self.watcher = watcher
        self.gateway = gateway
        self.xrpl = xrpl
        self.checkpoints: CheckpointStore = checkpoints if checkpoints is not None else InMemoryCheckpointStore()
        self.logger = logger or logging.getLogger(__name__)
        self.roles = RoleResolver(self.config.owner_address, agents)
        self._retry = retry or ExponentialBackoffStrategy(
            max_attempts=self.config.submission_max_attempts,
            initial_delay=self.config.submission_initial_delay_seconds,
            max_delay=self.config.submission_max_delay_seconds,
            logger=self.logger,
        )
        self._calls: Dict[str, _PendingCall] = {}
        # Reservations for operations that do not touch a user slot
        self._busy: Dict[str, str] = {}
        watcher.on_fact(self._on_fact)

    @property
    def chain_id(self) -> int:
        return self.gateway.chain_id

    # ---------------------------
    # Submission pipeline
    # ---------------------------
    def _reserve(self, key: str, operation: Operation) -> str:
        if key in self._busy:
            raise SlotBusyError(key, self._busy[key])
        self._busy[key] = operation.value
        return key

    def _release(self, key: Optional[str]) -> None:
        if key is not None:
            self._busy.pop(key, None)

    async def _current_block(self) -> Optional[int]:
        """Head block for bookkeeping once a transaction is out; None when unreadable."""
        try:
            return await self._retry.execute(self.gateway.block_number, "eth_blockNumber")
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Could not read the gateway head block: %s", exc)
            return None

    async def _run(
        self,
        operation: Operation,
        actor: str,
        *,
        send: Callable[[], Awaitable[str]],
        on_final: Callable[[int], Awaitable[Any]],
        effect_present: Callable[[], Awaitable[bool]],
        intent: Optional[PendingIntent] = None,
        user: Optional[str] = None,
        release_key: Optional[str] = None,
        args: Optional[Dict[str, Any]] = None,
        custody: Optional[int] = None,
    ) -> Any:
        async def on_abort() -> None:
            if intent is not None:
                await self.ledger.abort(intent)
            self._release(release_key)

        if user is not None:
            self.checkpoints.remember(KNOWN_USERS, user)

        try:
            if custody is not None:
                await self._ensure_custody(actor, custody)
            tx_hash = await self._retry.execute(send, operation.value)
        except BaseException:
            await on_abort()
            raise

        # From here the transaction is live; failures leave the call open
        submission = Submission(
            operation=operation,
            actor=actor,
            chain_id=self.chain_id,
            tx_hash=tx_hash,
            user=user,
            args=args or {},
        )
        call = _PendingCall(
            submission=submission,
            send=send,
            on_final=on_final,
            on_abort=on_abort,
            effect_present=effect_present,
            release_key=release_key,
        )
        self._calls[submission.id] = call
        self.watcher.track(submission)
        submission.submitted_block = await self._current_block()
        self.logger.info(
            "%s submitted by %s: %s (submission %s)", operation.value, actor, tx_hash, submission.id
        )
        return await self._settle(call)

    async def _settle(self, call: _PendingCall) -> Any:
        call.waiting = True
        try:
            submission = await self.watcher.wait_for_finality(call.submission.id)
            return await self._conclude(call, submission)
        finally:
            call.waiting = False

    async def _conclude(self, call: _PendingCall, submission: Submission) -> Any:
        if submission.status == SubmissionStatus.FINAL:
            return await self._finish(call, submission.receipt_block or 0)

        if submission.status == SubmissionStatus.REVERTED:
            if await call.effect_present():
                self.logger.info(
                    "%s %s reverted but its effect is already on chain; applying",
                    submission.operation.value,
                    submission.tx_hash,
                )
                return await self._finish(call, submission.receipt_block or 0)
            self._calls.pop(submission.id, None)
            self.watcher.forget(submission.id)
            await call.on_abort()
            raise TransactionRevertedError(
                f"{submission.operation.value} reverted",
                tx_hash=submission.tx_hash,
                chain_id=submission.chain_id,
            )

        # Timed out (or still pending): keep the reservation for resubmit
        raise FinalityTimeoutError(submission.id, submission.tx_hash, submission.chain_id)

    async def _finish(self, call: _PendingCall, block: int) -> Any:
        self._calls.pop(call.submission.id, None)
        self.watcher.forget(call.submission.id)
        try:
            return await call.on_final(block)
        finally:
            self._release(call.release_key)

    async def _try_conclude(self, call: _PendingCall) -> Tuple[bool, Any]:
        """Poll once and conclude ``call`` if its outcome is known.

        Returns ``(False, None)`` while the submission is still open.
        """
        submission = call.submission
        call.waiting = True
        try:
            if submission.status == SubmissionStatus.PENDING:
                await self.watcher.poll_source(submission.chain_id)
            if submission.status not in (SubmissionStatus.FINAL, SubmissionStatus.REVERTED):
                return False, None
            return True, await self._conclude(call, submission)
        finally:
            call.waiting = False

    def _open_call(self, submission_id: str) -> _PendingCall:
        call = self._calls.get(submission_id)
        if call is None:
            raise NotFoundError(f"No open submission {submission_id}", code="SUBMISSION_NOT_FOUND")
        if call.waiting:
            raise ValidationError(
                f"Submission {submission_id} is being settled",
                code="SUBMISSION_IN_PROGRESS",
            )
        return call

    async def reconcile(self, submission_id: str) -> Any:
        """Finish or undo an open submission whose receipt has already settled."""
        call = self._open_call(submission_id)
        done, result = await self._try_conclude(call)
        if not done:
            raise ValidationError(
                f"Submission {submission_id} is {call.submission.status.value}, not settled",
                code="NOT_SETTLED",
            )
        return result

    async def resubmit(self, submission_id: str) -> Any:
        """Re-send a timed-out submission and continue its flow.

        A submission that is not timed out is reconciled instead: one whose
        waiter went away is finished (or undone) from its receipt.
        """
        call = self._open_call(submission_id)
        submission = call.submission
        if submission.status != SubmissionStatus.TIMED_OUT:
            return await self.reconcile(submission_id)

        # The original may have landed late
        if await call.effect_present():
            self.logger.info("Timed-out %s already applied on chain", submission.operation.value)
            return await self._finish(call, await self._current_block() or 0)

        tx_hash = await self._retry.execute(call.send, submission.operation.value)
        self.watcher.retrack(submission_id, tx_hash, await self._current_block())
        self.logger.info("Resubmitted %s as %s", submission_id, tx_hash)
        return await self._settle(call)

    async def abandon(self, submission_id: str) -> None:
        """Drop a timed-out submission and release what it reserved."""
        call = self._calls.pop(submission_id, None)
        if call is None:
            raise NotFoundError(f"No open submission {submission_id}", code="SUBMISSION_NOT_FOUND")
        await call.on_abort()
        self.watcher.forget(submission_id)

    async def _on_fact(self, fact: WatcherFact) -> None:
        if fact.kind not in (FactKind.SUBMISSION_FINAL, FactKind.SUBMISSION_REVERTED):
            return
        call = self._calls.get(fact.detail.get("submissionId", ""))
        if call is None or call.waiting:
            return
        self.logger.info("Settling %s %s from watcher", call.submission.operation.value, call.submission.id)
        try:
            await self._settle(call)
        except TransactionRevertedError as exc:
            self.logger.warning("Unattended %s reverted: %s", call.submission.operation.value, exc)

    def open_submissions(self) -> List[Submission]:
        return [call.submission for call in self._calls.values()]

    # ---------------------------
    # Custody token
    # ---------------------------
    async def _ensure_custody(self, owner: str, amount: int) -> None:
        """Check the gateway can pull ``amount`` of the custody token from ``owner``."""
        if self.gateway.token_address is None:
            return
        balance = await self.gateway.token_balance(owner)
        if balance < amount:
            raise InsufficientTokenError(owner, "balance", amount, balance)
        allowance = await self.gateway.token_allowance(owner)
        if allowance >= amount:
            return
        if not self.config.token_auto_approve:
            raise InsufficientTokenError(owner, "allowance", amount, allowance)
        self.logger.info("Allowance of %s is %d; approving %d for the gateway", owner, allowance, amount)
        await self.approve_token(owner, amount)

    async def approve_token(self, caller: str, amount: int) -> int:
        """Let the gateway pull ``amount`` of the caller's custody token.

        Returns the allowance read back once the approval is final.
        """
        caller = self.roles.require(caller, Role.USER)
        if self.gateway.token_address is None:
            raise ValidationError("Custody token address is not configured", code="TOKEN_NOT_CONFIGURED")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive integer", code="INVALID_AMOUNT")
        key = self._reserve(f"token:{caller}", Operation.APPROVE_TOKEN)

        async def effect_present() -> bool:
            return await self.gateway.token_allowance(caller) >= amount

        async def on_final(block: int) -> int:
            return await self.gateway.token_allowance(caller)

        return await self._run(
            Operation.APPROVE_TOKEN,
            caller,
            send=lambda: self.gateway.approve_token(caller, amount),
            on_final=on_final,
            effect_present=effect_present,
            release_key=key,
            args={"amount": amount, "token": self.gateway.token_address},
        )

    async def estimate_bridge_gas(self, caller: str, amount: int, destination_chain_id: int) -> Dict[str, int]:
        user = normalize_address(caller)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Bridge amount must be a positive integer", code="INVALID_AMOUNT")
        self.registry.require_supported(destination_chain_id)
        return await self.gateway.estimate_bridge_gas(user, amount, destination_chain_id)

    # ---------------------------
    # Agents
    # ---------------------------
    async def register_agent(self, caller: str, xrpl_address: str, amount: int) -> Agent:
        caller = self.roles.require(caller, Role.USER)
        binding = self.agents.check_register(caller, xrpl_address, amount)
        key = self._reserve(f"agent:{caller}", Operation.REGISTER)

        async def effect_present() -> bool:
            record = await self.gateway.agents(caller)
            return record is not None and record.xrpl_address == binding

        async def on_final(block: int) -> Agent:
            agent = await self.agents.register(caller, binding, amount, block)
            self.checkpoints.remember(KNOWN_AGENTS, caller)
            return agent

        return await self._run(
            Operation.REGISTER,
            caller,
            send=lambda: self.gateway.register(caller, binding, amount),
            on_final=on_final,
            effect_present=effect_present,
            release_key=key,
            args={"xrplAddress": binding, "amount": amount},
            custody=amount,
        )

    async def deposit(self, caller: str, amount: int) -> Agent:
        caller = self.roles.require(caller, Role.AGENT)
        self.agents.check_deposit(caller, amount)
        key = self._reserve(f"agent:{caller}", Operation.DEPOSIT)
        expected = self.agents.get(caller).deposit_amount + amount

        async def effect_present() -> bool:
            record = await self.gateway.agents(caller)
            return record is not None and record.deposit_amount >= expected

        async def on_final(block: int) -> Agent:
            return await self.agents.deposit(caller, amount, block)

        return await self._run(
            Operation.DEPOSIT,
            caller,
            send=lambda: self.gateway.deposit(caller, amount),
            on_final=on_final,
            effect_present=effect_present,
            release_key=key,
            args={"amount": amount},
            custody=amount,
        )

    async def onboard_agent_on_xrpl(self, caller: str, agent_address: str, regular_key: str) -> XrplTransaction:
        """Bind an active agent's XRPL key to the master account (SetRegularKey)."""
        self.roles.require_owner(caller)
        if self.xrpl is None:
            raise ValidationError("XRPL client is not configured", code="XRPL_NOT_CONFIGURED")
        agent = self.agents.get(agent_address)
        if not agent.is_active:
            raise ValidationError(
                f"Agent {agent.address} has no collateral deposited",
                code="AGENT_INACTIVE",
            )
        result = await self._retry.execute(lambda: self.xrpl.set_regular_key(regular_key), "SetRegularKey")
        if not result.validated or not result.succeeded:
            raise TransactionRevertedError(
                f"SetRegularKey for {agent.address} was not applied ({result.result})",
                tx_hash=result.hash,
                reason=result.result,
            )
        self.logger.info("Agent %s onboarded on XRPL with key %s", agent.address, regular_key)
        return result

    # ---------------------------
    # Bridge lifecycle
    # ---------------------------
    async def _slot_effect(self, user: str, check: Callable[[Optional[BridgeRequest]], bool]) -> bool:
        return check(await self.gateway.atomic_bridge(user))

    def _commit(self, intent: PendingIntent) -> Callable[[int], Awaitable[Optional[BridgeRequest]]]:
        async def on_final(block: int) -> Optional[BridgeRequest]:
            await self.ledger.commit(intent, block)
            return self.ledger.get(intent.user)

        return on_final

    async def bridge_tokens(
        self,
        caller: str,
        amount: int,
        destination_chain_id: int,
        recipient: Optional[str] = None,
    ) -> BridgeRequest:
        user = self.roles.require(caller, Role.USER)
        intent = await self.ledger.begin(
            Operation.BRIDGE_TOKENS,
            user,
            user,
            amount=amount,
            destination_chain_id=destination_chain_id,
            recipient=recipient,
        )

        def landed(slot: Optional[BridgeRequest]) -> bool:
            return (
                slot is not None
                and slot.amount == amount
                and slot.destination_chain_id == destination_chain_id
            )

        return await self._run(
            Operation.BRIDGE_TOKENS,
            user,
            send=lambda: self.gateway.bridge_tokens(user, amount, destination_chain_id),
            on_final=self._commit(intent),
            effect_present=lambda: self._slot_effect(user, landed),
            intent=intent,
            user=user,
            args={"amount": amount, "destinationChainId": destination_chain_id},
            custody=amount,
        )

    async def claim_bridge(self, caller: str, user: str) -> BridgeRequest:
        agent = self.roles.require(caller, Role.AGENT)
        user = normalize_address(user)
        intent = await self.ledger.begin(Operation.CLAIM_BRIDGE, agent, user)
        self.checkpoints.remember(KNOWN_AGENTS, agent)

        return await self._run(
            Operation.CLAIM_BRIDGE,
            agent,
            send=lambda: self.gateway.claim_bridge(agent, user),
            on_final=self._commit(intent),
            effect_present=lambda: self._slot_effect(
                user, lambda slot: slot is not None and slot.agent_address == agent
            ),
            intent=intent,
            user=user,
        )

    async def confirm_bridge(self, caller: str, user: str, xrpl_tx_hash: str) -> BridgeRequest:
        agent = self.roles.require(caller, Role.AGENT)
        user = normalize_address(user)
        tx_hash = to_bytes32_hex(xrpl_tx_hash)
        intent = await self.ledger.begin(Operation.CONFIRM_BRIDGE, agent, user, xrpl_tx_hash=tx_hash)

        return await self._run(
            Operation.CONFIRM_BRIDGE,
            agent,
            send=lambda: self.gateway.confirm_bridge(agent, user, tx_hash),
            on_final=self._commit(intent),
            effect_present=lambda: self._slot_effect(
                user, lambda slot: slot is not None and slot.xrpl_tx_hash == tx_hash
            ),
            intent=intent,
            user=user,
            args={"xrplTxHash": tx_hash},
        )

    async def force_receive(self, caller: str) -> BridgeRequest:
        user = self.roles.require(caller, Role.USER)
        current_block = await self.gateway.block_number()
        intent = await self.ledger.begin(
            Operation.FORCE_RECEIVE,
            user,
            user,
            guard=self.arbiter.timeout_guard(current_block),
        )

        return await self._run(
            Operation.FORCE_RECEIVE,
            user,
            send=lambda: self.gateway.force_receive(user),
            on_final=self._commit(intent),
            effect_present=lambda: self._slot_effect(
                user, lambda slot: slot is not None and slot.requested_force_receive
            ),
            intent=intent,
            user=user,
        )

    async def approve_forced_receive(self, caller: str, user: str) -> BridgeRequest:
        owner = self.roles.require_owner(caller)
        user = self.arbiter.check_resolve(owner, user)
        intent = await self.ledger.begin(Operation.APPROVE_FORCED_RECEIVE, owner, user)

        return await self._run(
            Operation.APPROVE_FORCED_RECEIVE,
            owner,
            send=lambda: self.gateway.approve_forced_receive(owner, user),
            on_final=self._commit(intent),
            effect_present=lambda: self._slot_effect(
                user, lambda slot: slot is not None and slot.force_received
            ),
            intent=intent,
            user=user,
        )

    async def resolve_force_receive(self, caller: str, user: str, approve: bool) -> Optional[BridgeRequest]:
        if approve:
            return await self.approve_forced_receive(caller, user)
        return await self.arbiter.resolve(caller, user, approve=False)

    async def withdraw(self, caller: str, user: Optional[str] = None) -> WithdrawalReceipt:
        actor = self.roles.require(caller, Role.USER)
        user = normalize_address(user) if user else actor
        intent = await self.ledger.begin(Operation.WITHDRAW, actor, user)

        async def on_final(block: int) -> WithdrawalReceipt:
            receipt = await self.ledger.commit(intent, block)
            self.checkpoints.forget_address(KNOWN_USERS, user)
            return receipt

        return await self._run(
            Operation.WITHDRAW,
            actor,
            send=lambda: self.gateway.withdraw(actor),
            on_final=on_final,
            effect_present=lambda: self._slot_effect(user, lambda slot: slot is None),
            intent=intent,
            user=user,
        )

    async def stalled_users(self) -> List[str]:
        return self.arbiter.check_stalled(await self.gateway.block_number())

    # ---------------------------
    # Supported chains
    # ---------------------------
    async def add_supported_chain(self, caller: str, chain_id: int) -> bool:
        """Returns False without submitting when the chain is already supported."""
        owner = self.roles.require_owner(caller)
        if not self.registry.check_add(owner, chain_id):
            self.logger.info("Chain %d already supported; nothing to do", chain_id)
            return False
        key = self._reserve(f"chain:{chain_id}", Operation.ADD_SUPPORTED_CHAIN)

        async def on_final(block: int) -> bool:
            return self.registry.add_chain(owner, chain_id)

        return await self._run(
            Operation.ADD_SUPPORTED_CHAIN,
            owner,
            send=lambda: self.gateway.add_supported_chain(owner, chain_id),
            on_final=on_final,
            effect_present=lambda: self.gateway.is_chain_supported(chain_id),
            release_key=key,
            args={"chainId": chain_id},
        )

    async def remove_supported_chain(self, caller: str, chain_id: int) -> None:
        owner = self.roles.require_owner(caller)
        self.registry.check_remove(owner, chain_id)
        key = self._reserve(f"chain:{chain_id}", Operation.REMOVE_SUPPORTED_CHAIN)

        async def on_final(block: int) -> None:
            self.registry.remove_chain(owner, chain_id)

        async def effect_present() -> bool:
            return not await self.gateway.is_chain_supported(chain_id)

        await self._run(
            Operation.REMOVE_SUPPORTED_CHAIN,
            owner,
            send=lambda: self.gateway.remove_supported_chain(owner, chain_id),
            on_final=on_final,
            effect_present=effect_present,
            release_key=key,
            args={"chainId": chain_id},
        )

    # ---------------------------
    # Mirror rebuild
    # ---------------------------
    async def sync_chains(self) -> List[int]:
        self.registry.load(await self.gateway.get_supported_chains())
        return self.registry.list()

    async def sync_agent(self, address: str) -> Optional[Agent]:
        record = await self.gateway.agents(address)
        if record is None:
            return self.agents.find(address)
        self.checkpoints.remember(KNOWN_AGENTS, record.address)
        return self.agents.load(record)

    async def sync_user(self, user: str) -> Optional[BridgeRequest]:
        """Settle the user's unattended submissions, then mirror their slot.

        While a submission for the user is still unsettled its reservation
        stays and the slot is left as it is.
        """
        user = normalize_address(user)
        for call in [c for c in self._calls.values() if c.submission.user == user and not c.waiting]:
            try:
                done, _ = await self._try_conclude(call)
            except TransactionRevertedError as exc:
                self.logger.warning("Open %s for %s reverted: %s", call.submission.operation.value, user, exc)
                continue
            if not done:
                self.logger.info(
                    "%s for %s still %s", call.submission.operation.value, user, call.submission.status.value
                )

        if self.ledger.pending(user) is not None:
            self.logger.info("Slot of %s has an open reservation; not overwriting it", user)
            return self.ledger.get(user)

        request = await self.gateway.atomic_bridge(user)
        await self.ledger.restore(user, request)
        if request is None:
            self.checkpoints.forget_address(KNOWN_USERS, user)
        else:
            self.checkpoints.remember(KNOWN_USERS, user)
        return self.ledger.get(user)

    async def rebuild(self) -> Dict[str, Any]:
        """Re-read chains, then every known agent, then every known user's slot."""
        chains = await self.sync_chains()
        for address in self.checkpoints.addresses(KNOWN_AGENTS):
            await self.sync_agent(address)
        for user in self.checkpoints.addresses(KNOWN_USERS):
            await self.sync_user(user)
        return {
            "chains": chains,
            "agents": len(self.agents.all()),
            "activeBridges": len(self.ledger.active_users()),
        }
