"""
Error Classification

Defines the error taxonomy for the bridge engine.
Errors are classified as recoverable (the relayer may retry) or
unrecoverable (the caller must correct input or a human must arbitrate).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    VALIDATION = "validation"                 # Rejected before any external call
    AUTHORIZATION = "authorization"           # Wrong caller for the operation
    NOT_FOUND = "not_found"                   # Unregistered agent, absent chain
    TRANSIENT_SUBMISSION = "transient_submission"  # RPC/network failure while submitting
    FINALITY_TIMEOUT = "finality_timeout"     # Submitted but never reached depth
    TRANSACTION_REVERTED = "transaction_reverted"  # Gateway contract rejected the call
    UNKNOWN = "unknown"                       # Unclassified error


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors that can be retried.

    These errors are transient:
    - RPC connection failures
    - Timeouts while broadcasting
    - Temporary node outages
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
        code: str = "RECOVERABLE",
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.code = code
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(Exception):
    """
    Base class for errors that must not be retried automatically.

    These need the caller to correct input or a human to step in:
    - Validation failures
    - Authorization failures
    - Contract reverts
    - Submissions stuck below confirmation depth
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
        code: str = "UNRECOVERABLE",
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.code = code
        self.context = context or ErrorContext(category=category, recoverable=False)


# Validation failures
class ValidationError(UnrecoverableError):
    """Input rejected locally; the caller can correct it and try again."""

    def __init__(self, message: str, code: str = "VALIDATION", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            code=code,
            context=ErrorContext(
                category=ErrorCategory.VALIDATION,
                recoverable=False,
                suggested_action="Correct the request and resubmit",
                details=details or {},
            ),
        )


class UnsupportedChainError(ValidationError):
    def __init__(self, chain_id: int):
        super().__init__(
            f"Destination chain {chain_id} is not supported",
            code="UNSUPPORTED_CHAIN",
            details={"chain_id": chain_id},
        )
        self.chain_id = chain_id


class RequestInFlightError(ValidationError):
    """The user already has a bridge request that has not been withdrawn."""

    def __init__(self, user: str):
        super().__init__(
            f"User {user} already has a bridge request in flight",
            code="REQUEST_IN_FLIGHT",
            details={"user": user},
        )
        self.user = user


class AlreadyClaimedError(ValidationError):
    def __init__(self, user: str, agent: Optional[str] = None):
        super().__init__(
            f"Bridge request for {user} is already claimed",
            code="ALREADY_CLAIMED",
            details={"user": user, "agent": agent},
        )
        self.user = user
        self.agent = agent


class AlreadyRegisteredError(ValidationError):
    def __init__(self, address: str):
        super().__init__(
            f"Agent {address} is already registered",
            code="ALREADY_REGISTERED",
            details={"address": address},
        )
        self.address = address


class InsufficientCollateralError(ValidationError):
    def __init__(self, agent: str, required: int, available: int):
        super().__init__(
            f"Agent {agent} has {available} usable collateral, {required} required",
            code="INSUFFICIENT_COLLATERAL",
            details={"agent": agent, "required": required, "available": available},
        )
        self.required = required
        self.available = available


class InsufficientTokenError(ValidationError):
    """The ERC-20 the gateway pulls with transferFrom is not available to it."""

    def __init__(self, owner: str, kind: str, required: int, available: int):
        super().__init__(
            f"{owner} has {available} token {kind}, {required} required",
            code=f"INSUFFICIENT_TOKEN_{kind.upper()}",
            details={"owner": owner, "required": required, "available": available},
        )
        self.kind = kind
        self.required = required
        self.available = available


class InvalidTransitionError(ValidationError):
    """Operation is not allowed from the slot's current state."""

    def __init__(self, operation: str, from_status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot {operation} from state {from_status}",
            code="INVALID_TRANSITION",
            details={"operation": operation, "from_status": from_status},
        )
        self.operation = operation
        self.from_status = from_status


class SlotBusyError(ValidationError):
    """Another operation on the same slot is awaiting finality."""

    def __init__(self, user: str, pending_operation: str):
        super().__init__(
            f"Bridge slot for {user} is busy with a pending {pending_operation}",
            code="SLOT_BUSY",
            details={"user": user, "pending_operation": pending_operation},
        )
        self.pending_operation = pending_operation


# Authorization and lookup failures
class AuthorizationError(UnrecoverableError):
    """Caller lacks the role or identity an operation requires."""

    def __init__(self, message: str = "Unauthorized", caller: Optional[str] = None, required: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.AUTHORIZATION,
            code="UNAUTHORIZED",
            context=ErrorContext(
                category=ErrorCategory.AUTHORIZATION,
                recoverable=False,
                suggested_action="Submit from the authorised account",
                details={"caller": caller, "required": required},
            ),
        )
        self.caller = caller


class NotFoundError(UnrecoverableError):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            code=code,
            context=ErrorContext(category=ErrorCategory.NOT_FOUND, recoverable=False),
        )


class NotRegisteredError(NotFoundError):
    def __init__(self, address: str):
        super().__init__(f"Agent {address} is not registered", code="NOT_REGISTERED")
        self.address = address


# Submission failures
class TransientSubmissionError(RecoverableError):
    """Network or RPC failure submitting to either ledger."""

    def __init__(
        self,
        message: str = "Submission failed",
        operation: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TRANSIENT_SUBMISSION,
            retry_after=retry_after,
            code="TRANSIENT_SUBMISSION",
            context=ErrorContext(
                category=ErrorCategory.TRANSIENT_SUBMISSION,
                recoverable=True,
                retry_after_seconds=retry_after,
                suggested_action="Retry with exponential backoff",
                details={"operation": operation} if operation else {},
            ),
        )
        self.operation = operation


class TransactionRevertedError(UnrecoverableError):
    """Transaction reverted on-chain."""

    def __init__(
        self,
        message: str = "Transaction reverted",
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.TRANSACTION_REVERTED,
            code="REVERTED",
            context=ErrorContext(
                category=ErrorCategory.TRANSACTION_REVERTED,
                recoverable=False,
                tx_hash=tx_hash,
                chain_id=chain_id,
                suggested_action="Review transaction parameters",
                details={"revert_reason": reason} if reason else {},
            ),
        )
        self.tx_hash = tx_hash
        self.reason = reason


class FinalityTimeoutError(UnrecoverableError):
    """
    A submitted call never reached confirmation depth.

    The submission is kept so an operator can resubmit it manually.
    """

    def __init__(
        self,
        submission_id: str,
        tx_hash: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            f"Submission {submission_id} did not reach finality",
            category=ErrorCategory.FINALITY_TIMEOUT,
            code="FINALITY_TIMEOUT",
            context=ErrorContext(
                category=ErrorCategory.FINALITY_TIMEOUT,
                recoverable=False,
                tx_hash=tx_hash,
                chain_id=chain_id,
                suggested_action="Resubmit once the chain has recovered",
                details={"submission_id": submission_id},
            ),
        )
        self.submission_id = submission_id
        self.tx_hash = tx_hash


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Attempts to classify generic RPC/client exceptions based on
    their message and type.
    """
    message = str(error).lower()

    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    revert_patterns = [
        "revert",
        "execution reverted",
        "transaction failed",
        "out of gas",
    ]
    if any(p in message for p in revert_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSACTION_REVERTED,
            recoverable=False,
            suggested_action="Review transaction parameters",
        )

    network_patterns = [
        "connection",
        "network",
        "unreachable",
        "refused",
        "dns",
        "socket",
        "ssl",
        "too many requests",
        "429",
        "502",
        "503",
    ]
    if any(p in message for p in network_patterns) or isinstance(error, (ConnectionError, OSError)):
        return ErrorContext(
            category=ErrorCategory.TRANSIENT_SUBMISSION,
            recoverable=True,
            retry_after_seconds=5.0,
            suggested_action="Check RPC connectivity",
        )

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSIENT_SUBMISSION,
            recoverable=True,
            retry_after_seconds=10.0,
            suggested_action="Retry with longer timeout",
        )

    nonce_patterns = ["nonce too low", "replacement transaction underpriced", "already known"]
    if any(p in message for p in nonce_patterns):
        return ErrorContext(
            category=ErrorCategory.TRANSIENT_SUBMISSION,
            recoverable=True,
            retry_after_seconds=2.0,
            suggested_action="Refresh nonce and resubmit",
        )

    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=False,
        suggested_action="Inspect the error before resubmitting",
    )
