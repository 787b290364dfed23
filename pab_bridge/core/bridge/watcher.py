"""
Confirmation Watcher

Tracks gateway submissions to confirmation depth and verifies that
confirmed bridges were actually delivered on the XRP Ledger.

Usage:
    watcher = ConfirmationWatcher(ledger, {8453: gateway}, xrpl, config=config)
    watcher.on_fact(my_callback)
    await watcher.start()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Deque, Dict, List, Mapping, Optional, Tuple

from ...providers.base import GatewayContract, XrplLedger, XrplTransaction
from ..recovery.errors import NotFoundError, RecoverableError
from .checkpoints import CheckpointStore, InMemoryCheckpointStore
from .config import BridgeConfig
from .ledger import BridgeLedger
from .models import (
    BridgeRequest,
    BridgeStatus,
    BridgeTransition,
    FactKind,
    Submission,
    SubmissionStatus,
    WatcherFact,
)

MAX_LOOP_BACKOFF = 5


class ConfirmationWatcher:
    """
    One worker per watched EVM chain plus one for the XRPL.

    Facts are keyed by (kind, user, state_hash) and remembered in the
    checkpoint store, so each one is delivered to listeners exactly once
    even across restarts.
    """

    def __init__(
        self,
        ledger: BridgeLedger,
        gateways: Mapping[int, GatewayContract],
        xrpl: Optional[XrplLedger] = None,
        checkpoints: Optional[CheckpointStore] = None,
        *,
        config: Optional[BridgeConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self._ledger = ledger
        self._gateways: Dict[int, GatewayContract] = dict(gateways)
        self._xrpl = xrpl
        self._checkpoints: CheckpointStore = checkpoints or InMemoryCheckpointStore()
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self._ledger_chain_id = self.config.evm_chain_id
        if self._ledger_chain_id not in self._gateways and self._gateways:
            self._ledger_chain_id = next(iter(self._gateways))

        self._submissions: Dict[str, Submission] = {}
        self._tracked_at: Dict[str, float] = {}
        self._events: Dict[str, asyncio.Event] = {}
        self._history: Deque[Submission] = deque(maxlen=self.config.history_limit)
        self._facts: Deque[WatcherFact] = deque(maxlen=self.config.fact_history_limit)
        self._callbacks: List[Callable] = []
        self._lookup_attempts: Dict[Tuple[str, str], int] = {}

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._last_errors: Dict[str, Optional[str]] = {}
        ledger.add_listener(self._on_transition)

    @property
    def confirmation_depth(self) -> int:
        return self.config.confirmation_depth

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def chain_ids(self) -> List[int]:
        return list(self._gateways.keys())

    def on_fact(self, callback: Callable) -> None:
        """Register a callback (sync or async) for newly observed facts."""
        self._callbacks.append(callback)

    # ---------------------------
    # Submissions
    # ---------------------------
    def track(self, submission: Submission) -> Submission:
        if submission.chain_id not in self._gateways:
            raise NotFoundError(f"No gateway watched on chain {submission.chain_id}", code="CHAIN_NOT_WATCHED")
        self._submissions[submission.id] = submission
        self._tracked_at[submission.id] = self._clock()
        event = self._events.get(submission.id)
        if event is None or event.is_set():
            self._events[submission.id] = asyncio.Event()
        self.logger.debug("Tracking %s %s on chain %d", submission.operation.value, submission.tx_hash, submission.chain_id)
        return submission

    def retrack(self, submission_id: str, tx_hash: str, submitted_block: Optional[int] = None) -> Submission:
        """Point a timed-out submission at a replacement transaction."""
        submission = self.get_submission(submission_id)
        submission.tx_hash = tx_hash
        submission.status = SubmissionStatus.PENDING
        submission.attempts += 1
        submission.submitted_block = submitted_block
        submission.receipt_block = None
        submission.confirmations = 0
        submission.submitted_at = datetime.now(timezone.utc)
        submission.settled_at = None
        return self.track(submission)

    def get_submission(self, submission_id: str) -> Submission:
        submission = self._submissions.get(submission_id)
        if submission is None:
            submission = next((s for s in self._history if s.id == submission_id), None)
        if submission is None:
            raise NotFoundError(f"Unknown submission {submission_id}", code="SUBMISSION_NOT_FOUND")
        return submission

    def forget(self, submission_id: str) -> None:
        """Stop tracking a submission; it stays readable in the bounded history."""
        submission = self._submissions.pop(submission_id, None)
        self._tracked_at.pop(submission_id, None)
        self._events.pop(submission_id, None)
        if submission is not None:
            self._history.append(submission)

    def submissions(self) -> List[Submission]:
        """Recently finished submissions, oldest first, then the tracked ones."""
        return list(self._history) + list(self._submissions.values())

    @property
    def tracked_count(self) -> int:
        return len(self._submissions)

    async def _on_transition(self, transition: BridgeTransition, current: Optional[BridgeRequest]) -> None:
        if transition.to_status != BridgeStatus.EMPTY:
            return
        # The slot is gone, nothing keyed on this user can be emitted again
        dropped = self._checkpoints.discard_facts(transition.user)
        for key in [k for k in self._lookup_attempts if k[0] == transition.user]:
            del self._lookup_attempts[key]
        self.logger.debug("Dropped %d checkpointed facts for %s", dropped, transition.user)

    def pending_submissions(self) -> List[Submission]:
        return [s for s in self._submissions.values() if s.status == SubmissionStatus.PENDING]

    def timed_out_submissions(self) -> List[Submission]:
        return [s for s in self._submissions.values() if s.status == SubmissionStatus.TIMED_OUT]

    async def wait_for_finality(self, submission_id: str, timeout: Optional[float] = None) -> Submission:
        """
        Wait until the submission settles (final, reverted or timed out).

        When the worker loops are not running the source chain is polled
        inline. If ``timeout`` elapses first the submission is returned
        still pending; the watcher keeps tracking it.
        """
        submission = self.get_submission(submission_id)
        if submission.is_settled:
            return submission

        try:
            if self._running:
                await asyncio.wait_for(self._events[submission_id].wait(), timeout)
            else:
                await asyncio.wait_for(self._poll_until_settled(submission), timeout)
        except asyncio.TimeoutError:
            self.logger.info("Stopped waiting for %s; still %s", submission_id, submission.status.value)
        return submission

    async def _poll_until_settled(self, submission: Submission) -> None:
        while not submission.is_settled:
            await self.poll_source(submission.chain_id)
            if not submission.is_settled:
                await asyncio.sleep(self.config.source_poll_interval_seconds)

    def _settle(self, submission: Submission, status: SubmissionStatus) -> None:
        submission.status = status
        submission.settled_at = datetime.now(timezone.utc)
        event = self._events.get(submission.id)
        if event is not None:
            event.set()
        self.logger.info(
            "Submission %s (%s) %s on chain %d",
            submission.id,
            submission.operation.value,
            status.value,
            submission.chain_id,
        )

    # ---------------------------
    # Facts
    # ---------------------------
    def facts(self, kind: Optional[FactKind] = None) -> List[WatcherFact]:
        if kind is None:
            return list(self._facts)
        return [f for f in self._facts if f.kind == kind]

    def mismatches(self) -> List[WatcherFact]:
        return self.facts(FactKind.CONFIRMATION_MISMATCH)

    async def _emit(self, fact: WatcherFact) -> bool:
        if self._checkpoints.has_fact(fact.key):
            return False
        self._checkpoints.add_fact(fact.key)
        self._facts.append(fact)

        for callback in self._callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(fact)
                else:
                    callback(fact)
            except Exception as e:
                self.logger.error(f"Fact callback error: {e}")
        return True

    # ---------------------------
    # Source chains
    # ---------------------------
    async def poll_source(self, chain_id: int) -> List[WatcherFact]:
        """One pass over a source chain. Returns the facts it emitted."""
        gateway = self._gateways[chain_id]
        head = await gateway.block_number()
        emitted: List[WatcherFact] = []

        for submission in self.pending_submissions():
            if submission.chain_id != chain_id:
                continue
            fact = await self._check_submission(gateway, submission, head)
            if fact is not None and await self._emit(fact):
                emitted.append(fact)

        if chain_id == self._ledger_chain_id:
            for request in self._ledger.snapshot():
                fact = self._settled_fact(request, head)
                if fact is not None and await self._emit(fact):
                    emitted.append(fact)

        self._checkpoints.set_height(chain_id, head)
        return emitted

    async def _check_submission(
        self,
        gateway: GatewayContract,
        submission: Submission,
        head: int,
    ) -> Optional[WatcherFact]:
        receipt = await gateway.get_receipt(submission.tx_hash)
        if receipt is not None:
            submission.receipt_block = receipt.block_number
            if not receipt.success:
                self._settle(submission, SubmissionStatus.REVERTED)
                return self._submission_fact(FactKind.SUBMISSION_REVERTED, submission)

            submission.confirmations = max(head - receipt.block_number + 1, 0)
            if submission.confirmations >= self.confirmation_depth:
                self._settle(submission, SubmissionStatus.FINAL)
                return self._submission_fact(FactKind.SUBMISSION_FINAL, submission)

        now = self._clock()
        elapsed = now - self._tracked_at.get(submission.id, now)
        if elapsed >= self.config.finality_timeout_seconds:
            self._settle(submission, SubmissionStatus.TIMED_OUT)
            self.logger.warning(
                "Submission %s (%s) not final after %.0fs; kept for resubmission",
                submission.id,
                submission.tx_hash,
                elapsed,
            )
            return self._submission_fact(FactKind.FINALITY_TIMEOUT, submission)
        return None

    @staticmethod
    def _submission_fact(kind: FactKind, submission: Submission) -> WatcherFact:
        return WatcherFact(
            kind=kind,
            user=submission.user,
            state_hash=submission.tx_hash,
            detail={
                "submissionId": submission.id,
                "operation": submission.operation.value,
                "chainId": submission.chain_id,
                "receiptBlock": submission.receipt_block,
                "confirmations": submission.confirmations,
                "attempts": submission.attempts,
            },
        )

    def _settled_fact(self, request: BridgeRequest, head: int) -> Optional[WatcherFact]:
        status = request.status
        if status == BridgeStatus.CLAIMED and request.claimed_block is not None:
            anchor = request.claimed_block
        elif status == BridgeStatus.CONFIRMED:
            anchor = request.updated_block
        else:
            return None
        if head - anchor + 1 < self.confirmation_depth:
            return None
        return WatcherFact(
            kind=FactKind.SETTLED,
            user=request.user,
            state_hash=request.state_hash(),
            detail={"status": status.value, "block": anchor, "head": head},
        )

    # ---------------------------
    # Destination ledger
    # ---------------------------
    def _is_resolved(self, request: BridgeRequest) -> bool:
        state_hash = request.state_hash()
        for kind in (FactKind.DELIVERY_VERIFIED, FactKind.CONFIRMATION_MISMATCH):
            key = WatcherFact(kind=kind, user=request.user, state_hash=state_hash).key
            if self._checkpoints.has_fact(key):
                return True
        return False

    async def poll_destination(self) -> List[WatcherFact]:
        """Verify XRPL delivery for every confirmed bridge not yet resolved."""
        if self._xrpl is None:
            return []
        emitted: List[WatcherFact] = []
        for request in self._ledger.snapshot():
            if request.status != BridgeStatus.CONFIRMED or self._is_resolved(request):
                continue
            try:
                tx = await self._xrpl.get_transaction(request.xrpl_tx_hash)
            except RecoverableError as e:
                self.logger.warning("XRPL lookup for %s failed: %s", request.xrpl_tx_hash, e)
                continue
            fact = self._verify_delivery(request, tx)
            if fact is not None and await self._emit(fact):
                emitted.append(fact)
                if fact.kind == FactKind.CONFIRMATION_MISMATCH:
                    self.logger.warning(
                        "Confirmation mismatch for %s: %s", request.user, fact.detail.get("reason")
                    )
        return emitted

    def _verify_delivery(self, request: BridgeRequest, tx: Optional[XrplTransaction]) -> Optional[WatcherFact]:
        lookup_key = (request.user, request.xrpl_tx_hash)
        detail = {"xrplTxHash": request.xrpl_tx_hash, "agent": request.agent_address}

        if tx is None or not tx.validated:
            attempts = self._lookup_attempts.get(lookup_key, 0) + 1
            self._lookup_attempts[lookup_key] = attempts
            if attempts < self.config.xrpl_lookup_max_attempts:
                return None
            reason = "not_found" if tx is None else "not_validated"
            return self._mismatch(request, reason, {**detail, "attempts": attempts})

        self._lookup_attempts.pop(lookup_key, None)
        if tx.transaction_type != "Payment":
            return self._mismatch(request, "wrong_type", {**detail, "transactionType": tx.transaction_type})
        if not tx.succeeded:
            return self._mismatch(request, "failed", {**detail, "result": tx.result})

        expected = Decimal(request.amount) * self.config.xrpl_amount_scale
        if tx.delivered_amount != expected:
            return self._mismatch(
                request,
                "wrong_amount",
                {**detail, "expected": str(expected), "delivered": str(tx.delivered_amount)},
            )
        if request.recipient and tx.destination != request.recipient:
            return self._mismatch(
                request,
                "wrong_recipient",
                {**detail, "expected": request.recipient, "destination": tx.destination},
            )

        return WatcherFact(
            kind=FactKind.DELIVERY_VERIFIED,
            user=request.user,
            state_hash=request.state_hash(),
            detail={**detail, "delivered": str(tx.delivered_amount), "ledgerIndex": tx.ledger_index},
        )

    @staticmethod
    def _mismatch(request: BridgeRequest, reason: str, detail: Dict) -> WatcherFact:
        return WatcherFact(
            kind=FactKind.CONFIRMATION_MISMATCH,
            user=request.user,
            state_hash=request.state_hash(),
            detail={**detail, "reason": reason},
        )

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        for chain_id in self._gateways:
            resume = self._checkpoints.get_height(chain_id)
            if resume is not None:
                self.logger.info("Chain %d watcher resuming after block %d", chain_id, resume)
            task = asyncio.create_task(self._run_source_loop(chain_id), name=f"watcher-source-{chain_id}")
            self._tasks.append(task)
        if self._xrpl is not None:
            self._tasks.append(asyncio.create_task(self._run_destination_loop(), name="watcher-xrpl"))

        self.logger.info(f"Confirmation watcher started for chains: {self.chain_ids}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.logger.info("Confirmation watcher stopped")

    async def _run_source_loop(self, chain_id: int) -> None:
        await self._run_loop(
            f"source:{chain_id}",
            lambda: self.poll_source(chain_id),
            self.config.source_poll_interval_seconds,
        )

    async def _run_destination_loop(self) -> None:
        await self._run_loop("xrpl", self.poll_destination, self.config.destination_poll_interval_seconds)

    async def _run_loop(self, name: str, poll, interval: float) -> None:
        consecutive_errors = 0
        while self._running:
            try:
                await poll()
                consecutive_errors = 0
                self._last_errors[name] = None
            except asyncio.CancelledError:
                return
            except Exception as e:
                consecutive_errors += 1
                self._last_errors[name] = str(e)
                self.logger.error(f"Watcher loop {name} error: {e}")

            delay = interval * min(max(1, consecutive_errors), MAX_LOOP_BACKOFF)
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                return

    def status(self) -> Dict:
        return {
            "running": self._running,
            "chains": {
                str(chain_id): {"height": self._checkpoints.get_height(chain_id)}
                for chain_id in self._gateways
            },
            "trackedSubmissions": self.tracked_count,
            "pendingSubmissions": len(self.pending_submissions()),
            "timedOutSubmissions": len(self.timed_out_submissions()),
            "facts": len(self._facts),
            "mismatches": len(self.mismatches()),
            "lastErrors": {k: v for k, v in self._last_errors.items() if v},
        }
