"""
Error Classification

Errors raised by the wallet engine, grouped by how the caller should react.
Caller mistakes and local precondition failures are raised synchronously;
reconciliation failures are logged and swallowed by the background loops.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for retry decisions."""

    VALIDATION = "validation"           # Bad request from the caller
    CONFIGURATION = "configuration"     # Chain/provider not wired up
    SIGNING = "signing"                 # Signer refused or failed
    BROADCAST = "broadcast"             # Node rejected the transaction
    STATE = "state"                     # Operation illegal in current status
    NETWORK = "network"                 # Network/connectivity issues
    TIMEOUT = "timeout"                 # Operation timed out
    RATE_LIMIT = "rate_limit"           # API rate limits
    PROVIDER = "provider"               # External provider error
    UNKNOWN = "unknown"                 # Unclassified error


class FailureReason(str, Enum):
    """Terminal outcomes recorded on a transaction instead of being raised."""

    DROPPED = "dropped from mempool"
    REVERTED = "execution reverted"
    SIGNING_FAILED = "signing failed"
    BROADCAST_REJECTED = "broadcast rejected"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    chain: Optional[str] = None
    tx_id: Optional[str] = None
    provider: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class WalletEngineError(Exception):
    """Base class for every error the engine raises."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: Optional[ErrorCategory] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        self.context = context or ErrorContext()


class InvalidRequest(WalletEngineError):
    """The caller supplied an unusable request."""

    category = ErrorCategory.VALIDATION


class TransactionNotFound(InvalidRequest):
    """No transaction with the given id is known to this engine."""

    def __init__(self, tx_id: str):
        super().__init__(f"Unknown transaction: {tx_id}", context=ErrorContext(tx_id=tx_id))


class UnsupportedChain(WalletEngineError):
    """No chain client or metadata is registered for the chain."""

    category = ErrorCategory.CONFIGURATION

    def __init__(self, chain: str):
        super().__init__(f"Unsupported chain: {chain}", context=ErrorContext(chain=chain))


class UnsupportedOperation(WalletEngineError):
    category = ErrorCategory.CONFIGURATION


class SigningFailed(WalletEngineError):
    """The signer could not produce a signature. Never retried automatically."""

    category = ErrorCategory.SIGNING


class BroadcastFailed(WalletEngineError):
    """The node rejected the transaction (insufficient funds, stale nonce, ...).

    The caller may retry with an adjusted fee or nonce.
    """

    category = ErrorCategory.BROADCAST
    recoverable = True


class NotCancellable(WalletEngineError):
    """Cancel or speed-up requested for a transaction that can no longer be replaced."""

    category = ErrorCategory.STATE


class InvalidTransition(WalletEngineError):
    """Raised when a status change is not allowed by the transition table."""

    category = ErrorCategory.STATE

    def __init__(self, from_status: Any, to_status: Any, tx_id: Optional[str] = None):
        super().__init__(
            f"Invalid transition from {getattr(from_status, 'value', from_status)} "
            f"to {getattr(to_status, 'value', to_status)}",
            context=ErrorContext(tx_id=tx_id),
        )
        self.from_status = from_status
        self.to_status = to_status


class ProviderUnavailable(WalletEngineError):
    """A bridge/swap provider failed or timed out. Degrades results, never fatal."""

    category = ErrorCategory.PROVIDER
    recoverable = True

    def __init__(self, provider: str, reason: str, *, category: Optional[ErrorCategory] = None):
        super().__init__(
            f"Provider {provider} unavailable: {reason}",
            category=category,
            context=ErrorContext(provider=provider),
        )
        self.provider = provider


class ReconciliationError(WalletEngineError):
    """A background status check failed; the entity is retried next tick."""

    category = ErrorCategory.NETWORK
    recoverable = True


class ChainRpcError(WalletEngineError):
    """JSON-RPC level error returned by a node."""

    category = ErrorCategory.NETWORK
    recoverable = True

    def __init__(self, method: str, error: Any, chain: Optional[str] = None):
        message = error.get("message") if isinstance(error, dict) else str(error)
        super().__init__(
            f"RPC {method} failed: {message}",
            context=ErrorContext(chain=chain, details={"error": error}),
        )
        self.method = method
        self.error = error


def classify_error(error: BaseException) -> ErrorCategory:
    """Map an arbitrary exception onto an ErrorCategory."""

    if isinstance(error, WalletEngineError):
        return error.category

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorCategory.TIMEOUT

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            return ErrorCategory.RATE_LIMIT
        if status >= 500:
            return ErrorCategory.PROVIDER
        return ErrorCategory.VALIDATION

    if isinstance(error, httpx.RequestError):
        return ErrorCategory.NETWORK

    message = str(error).lower()
    if "timeout" in message or "timed out" in message:
        return ErrorCategory.TIMEOUT
    if "rate limit" in message or "too many requests" in message:
        return ErrorCategory.RATE_LIMIT
    if "connection" in message or "network" in message:
        return ErrorCategory.NETWORK

    return ErrorCategory.UNKNOWN
