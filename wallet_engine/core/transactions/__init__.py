"""
Transaction Lifecycle

Provides the single-transaction lifecycle for every supported chain:
- TransactionStateMachine: build, sign, broadcast, cancel, speed up
- PendingTransactionMonitor: periodic reconciliation of pending transactions
- NonceManager: collision-free nonces per (chain, sender)

Usage:
    from wallet_engine.core.transactions import TransferRequest

    tx = await state_machine.send(
        TransferRequest(
            chain="ethereum",
            from_address="0x...",
            to_address="0x...",
            amount=Decimal("0.1"),
            asset="ETH",
        )
    )
"""

from .models import (
    TERMINAL_STATUSES,
    BlockRef,
    Replacement,
    SignedTransaction,
    Transaction,
    TransactionKind,
    TransactionStatus,
    TransferRequest,
)
from .monitor import PendingTransactionMonitor
from .nonce_manager import NonceManager, NonceState
from .query import SortDirection, SortField, TransactionFilter, TransactionPage, TransactionSort
from .registry import PendingTransactionRegistry
from .state_machine import TransactionStateMachine

__all__ = [
    # Models
    "BlockRef",
    "Replacement",
    "SignedTransaction",
    "TERMINAL_STATUSES",
    "Transaction",
    "TransactionKind",
    "TransactionStatus",
    "TransferRequest",
    # Queries
    "SortDirection",
    "SortField",
    "TransactionFilter",
    "TransactionPage",
    "TransactionSort",
    # Components
    "NonceManager",
    "NonceState",
    "PendingTransactionMonitor",
    "PendingTransactionRegistry",
    "TransactionStateMachine",
]
