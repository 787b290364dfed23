"""
Error Recovery Module

Provides the bridge error taxonomy, error classification, and retry
strategies for resilient submission to the gateway and the XRP Ledger.
"""

from .errors import (
    ErrorCategory,
    ErrorContext,
    RecoverableError,
    UnrecoverableError,
    ValidationError,
    UnsupportedChainError,
    RequestInFlightError,
    AlreadyClaimedError,
    AlreadyRegisteredError,
    InsufficientCollateralError,
    InsufficientTokenError,
    InvalidTransitionError,
    SlotBusyError,
    AuthorizationError,
    NotFoundError,
    NotRegisteredError,
    TransientSubmissionError,
    TransactionRevertedError,
    FinalityTimeoutError,
    classify_error,
)
from .strategies import ExponentialBackoffStrategy, RetryConfig, RetryStrategy

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "RecoverableError",
    "UnrecoverableError",
    "ValidationError",
    "UnsupportedChainError",
    "RequestInFlightError",
    "AlreadyClaimedError",
    "AlreadyRegisteredError",
    "InsufficientCollateralError",
    "InsufficientTokenError",
    "InvalidTransitionError",
    "SlotBusyError",
    "AuthorizationError",
    "NotFoundError",
    "NotRegisteredError",
    "TransientSubmissionError",
    "TransactionRevertedError",
    "FinalityTimeoutError",
    "classify_error",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
    "ExponentialBackoffStrategy",
]
