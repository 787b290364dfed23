"""Typed models used by the bridge engine."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Capabilities a caller can hold against the gateway."""

    OWNER = "owner"    # chain and force-receive administration
    AGENT = "agent"    # claim / confirm / withdraw reimbursement
    USER = "user"      # bridge / force receive / withdraw refund


class BridgeStatus(str, Enum):
    """Lifecycle of a user's bridge slot."""

    EMPTY = "empty"
    INITIATED = "initiated"
    CLAIMED = "claimed"
    FORCE_REQUESTED = "force_requested"
    FORCE_APPROVED = "force_approved"
    CONFIRMED = "confirmed"


class Operation(str, Enum):
    """State-changing gateway entry points."""

    REGISTER = "register"
    DEPOSIT = "deposit"
    BRIDGE_TOKENS = "bridgeTokens"
    CLAIM_BRIDGE = "claimBridge"
    CONFIRM_BRIDGE = "confirmBridge"
    FORCE_RECEIVE = "forceReceive"
    APPROVE_FORCED_RECEIVE = "approveForcedReceive"
    WITHDRAW = "withdraw"
    ADD_SUPPORTED_CHAIN = "addSupportedChain"
    REMOVE_SUPPORTED_CHAIN = "removeSupportedChain"
    # ERC-20 allowance for the gateway, sent to the token contract
    APPROVE_TOKEN = "approve"


@dataclass
class SupportedChain:
    chain_id: int
    active: bool = True
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"chainId": self.chain_id, "active": self.active, "name": self.name}


@dataclass
class Agent:
    """Registered intermediary with collateral held by the gateway."""

    address: str
    xrpl_address: str
    deposit_amount: int = 0
    last_deposit_block: int = 0
    # Soft-locked collateral backing outstanding claims (mirror only)
    locked_amount: int = 0

    @property
    def usable_collateral(self) -> int:
        return max(self.deposit_amount - self.locked_amount, 0)

    @property
    def is_active(self) -> bool:
        return self.deposit_amount > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "xrplAddress": self.xrpl_address,
            "depositAmount": self.deposit_amount,
            "lastDepositBlock": self.last_deposit_block,
            "lockedAmount": self.locked_amount,
            "usableCollateral": self.usable_collateral,
        }


@dataclass
class BridgeRequest:
    """The single in-flight bridge slot of a user."""

    user: str
    amount: int
    destination_chain_id: int
    agent_address: Optional[str] = None
    claimed_block: Optional[int] = None
    xrpl_tx_hash: Optional[str] = None
    requested_force_receive: bool = False
    force_received: bool = False

    # Off-chain metadata
    recipient: Optional[str] = None
    locked_collateral: int = 0
    created_block: int = 0
    updated_block: int = 0

    @property
    def status(self) -> BridgeStatus:
        if self.xrpl_tx_hash:
            return BridgeStatus.CONFIRMED
        if self.force_received:
            return BridgeStatus.FORCE_APPROVED
        if self.requested_force_receive:
            return BridgeStatus.FORCE_REQUESTED
        if self.agent_address:
            return BridgeStatus.CLAIMED
        return BridgeStatus.INITIATED

    def state_hash(self) -> str:
        """Digest of the on-chain fields; changes on every transition."""
        payload = {
            "user": self.user,
            "amount": self.amount,
            "destinationChainId": self.destination_chain_id,
            "agentAddress": self.agent_address,
            "claimedBlock": self.claimed_block,
            "xrplTxHash": self.xrpl_tx_hash,
            "requestedForceReceive": self.requested_force_receive,
            "forceReceived": self.force_received,
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "status": self.status.value,
            "amount": self.amount,
            "destinationChainId": self.destination_chain_id,
            "agentAddress": self.agent_address,
            "claimedBlock": self.claimed_block,
            "xrplTxHash": self.xrpl_tx_hash,
            "requestedForceReceive": self.requested_force_receive,
            "forceReceived": self.force_received,
            "recipient": self.recipient,
            "lockedCollateral": self.locked_collateral,
            "createdBlock": self.created_block,
            "updatedBlock": self.updated_block,
            "stateHash": self.state_hash(),
        }


@dataclass
class BridgeTransition:
    """Record of an applied slot transition."""

    user: str
    from_status: BridgeStatus
    to_status: BridgeStatus
    operation: Operation
    actor: str
    block: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user,
            "fromStatus": self.from_status.value,
            "toStatus": self.to_status.value,
            "operation": self.operation.value,
            "actor": self.actor,
            "block": self.block,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class WithdrawalReceipt:
    """Where the escrow of a withdrawn slot went."""

    user: str
    recipient: str
    amount: int
    disposition: str  # "reimbursed" or "refunded"
    agent_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "recipient": self.recipient,
            "amount": self.amount,
            "disposition": self.disposition,
            "agentAddress": self.agent_address,
        }


@dataclass
class PendingIntent:
    """A validated operation reserved on a slot while its submission settles."""

    operation: Operation
    actor: str
    user: str
    amount: int = 0
    destination_chain_id: Optional[int] = None
    xrpl_tx_hash: Optional[str] = None
    recipient: Optional[str] = None
    # Collateral soft-locked at reservation time (claims only)
    locked_collateral: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utcnow)


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    FINAL = "final"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"


@dataclass
class Submission:
    """A state-changing call sent to the gateway, awaiting finality."""

    operation: Operation
    actor: str
    chain_id: int
    tx_hash: str
    user: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)
    status: SubmissionStatus = SubmissionStatus.PENDING
    attempts: int = 1
    submitted_block: Optional[int] = None
    receipt_block: Optional[int] = None
    confirmations: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))
    submitted_at: datetime = field(default_factory=_utcnow)
    settled_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.status != SubmissionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation.value,
            "actor": self.actor,
            "chainId": self.chain_id,
            "txHash": self.tx_hash,
            "user": self.user,
            "args": self.args,
            "status": self.status.value,
            "attempts": self.attempts,
            "submittedBlock": self.submitted_block,
            "receiptBlock": self.receipt_block,
            "confirmations": self.confirmations,
            "submittedAt": self.submitted_at.isoformat(),
            "settledAt": self.settled_at.isoformat() if self.settled_at else None,
        }


class FactKind(str, Enum):
    SETTLED = "settled"
    DELIVERY_VERIFIED = "delivery_verified"
    CONFIRMATION_MISMATCH = "confirmation_mismatch"
    SUBMISSION_FINAL = "submission_final"
    SUBMISSION_REVERTED = "submission_reverted"
    FINALITY_TIMEOUT = "finality_timeout"


@dataclass
class WatcherFact:
    """A verified observation surfaced by the confirmation watcher."""

    kind: FactKind
    user: Optional[str]
    state_hash: str
    detail: Dict[str, Any] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.user or '-'}:{self.state_hash}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "user": self.user,
            "stateHash": self.state_hash,
            "detail": self.detail,
            "observedAt": self.observed_at.isoformat(),
        }
