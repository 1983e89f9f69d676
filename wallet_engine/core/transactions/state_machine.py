"""
Transaction State Machine

Builds, signs and broadcasts transactions and owns every status change that
follows. The pending monitor drives confirmations through the ``mark_*``
methods; nothing else mutates a Transaction.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Set

from ...chains.base import ChainClient, Signer
from ...chains.metadata import CHAIN_METADATA, is_native_asset, native_symbol
from ...config import settings
from ...runtime.scheduler import Clock, SystemClock
from ..errors import (
    BroadcastFailed,
    ErrorContext,
    FailureReason,
    InvalidRequest,
    InvalidTransition,
    NotCancellable,
    SigningFailed,
    TransactionNotFound,
    UnsupportedChain,
    UnsupportedOperation,
)
from ..events import EngineEvent, EventBus
from ..gas.estimator import GasEstimator, chain_key
from ..store import TRANSACTIONS_KEY, InMemoryStore, Store
from .models import (
    BlockRef,
    Replacement,
    SignedTransaction,
    Transaction,
    TransactionKind,
    TransactionStatus,
    TransferRequest,
    new_local_id,
    payload_digest,
)
from .nonce_manager import NonceManager
from .payloads import build_unsigned_payload, check_transferable
from .query import DEFAULT_PAGE_SIZE, TransactionFilter, TransactionPage, TransactionSort, query_transactions
from .registry import PendingTransactionRegistry

REPLACEMENT_REASONS: Dict[TransactionKind, str] = {
    TransactionKind.CANCEL: "cancelled",
    TransactionKind.SPEED_UP: "sped up",
}
DEFAULT_REPLACEMENT_REASON = "replaced by transaction with same nonce"


class TransactionStateMachine:
    """
    Owns the lifecycle of every transaction of one wallet instance.

    Features:
    - Validates transitions against the allowed transition map
    - Resolves nonces through the NonceManager and fees through the GasEstimator
    - Emits an event and persists the table after every change
    - Keeps the pending registry in sync (terminal entries are removed)
    """

    TRANSITIONS: Dict[TransactionStatus, Set[TransactionStatus]] = {
        TransactionStatus.PENDING: {
            TransactionStatus.CONFIRMING,
            TransactionStatus.CONFIRMED,  # Chains without an inclusion signal
            TransactionStatus.FAILED,
            TransactionStatus.REPLACED,
            TransactionStatus.CANCELLED,
        },
        TransactionStatus.CONFIRMING: {
            TransactionStatus.CONFIRMED,
            TransactionStatus.FAILED,     # Reverted receipt
            TransactionStatus.REPLACED,   # Reorged out, sibling mined instead
        },
        TransactionStatus.CONFIRMED: set(),
        TransactionStatus.FAILED: set(),
        TransactionStatus.REPLACED: set(),
        TransactionStatus.CANCELLED: set(),
    }

    def __init__(
        self,
        chain_clients: Mapping[str, ChainClient],
        signer: Signer,
        gas_estimator: GasEstimator,
        *,
        registry: Optional[PendingTransactionRegistry] = None,
        nonce_manager: Optional[NonceManager] = None,
        events: Optional[EventBus] = None,
        store: Optional[Store] = None,
        clock: Optional[Clock] = None,
        fee_bump_multiplier: Optional[Decimal] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._clients = chain_clients
        self._signer = signer
        self._gas = gas_estimator
        self.registry = registry or PendingTransactionRegistry()
        self.nonces = nonce_manager or NonceManager(chain_clients)
        self.events = events or EventBus()
        self._store = store or InMemoryStore()
        self.clock = clock or SystemClock()
        self.fee_bump_multiplier = Decimal(fee_bump_multiplier or settings.fee_bump_multiplier)
        self.logger = logger or logging.getLogger(__name__)

        self._transactions: Dict[str, Transaction] = {}
        self._aliases: Dict[str, str] = {}          # local id -> network hash
        self._signed: Dict[str, SignedTransaction] = {}  # local id -> last signature
        self._locks: Dict[str, asyncio.Lock] = {}

    # ---------------------------
    # Lookup
    # ---------------------------
    def get(self, tx_id: str) -> Optional[Transaction]:
        tx = self._transactions.get(tx_id)
        if tx is None and tx_id in self._aliases:
            tx = self._transactions.get(self._aliases[tx_id])
        return tx

    def _require(self, tx_id: str) -> Transaction:
        tx = self.get(tx_id)
        if tx is None:
            raise TransactionNotFound(tx_id)
        return tx

    def list(self, status: Optional[TransactionStatus] = None) -> List[Transaction]:
        txs = list(self._transactions.values())
        if status is not None:
            txs = [tx for tx in txs if tx.status == status]
        return sorted(txs, key=lambda tx: tx.created_at)

    def query(
        self,
        tx_filter: Optional[TransactionFilter] = None,
        sort: Optional[TransactionSort] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        """Filtered, sorted and paginated history. Newest first unless ``sort`` says otherwise."""
        return query_transactions(self._transactions.values(), tx_filter, sort, page, limit)

    def account_transactions(
        self,
        address: str,
        chain: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        """Transactions sent by ``address`` on ``chain``, newest first."""
        return self.query(TransactionFilter(chain=chain, from_address=address), TransactionSort(), page, limit)

    def pending(self) -> List[Transaction]:
        return self.registry.snapshot()

    def client_for(self, chain: str) -> ChainClient:
        client = self._clients.get(chain_key(chain))
        if client is None:
            raise UnsupportedChain(chain)
        return client

    def find_confirmed_sibling(self, tx: Transaction) -> Optional[Transaction]:
        """A locally known transaction that already confirmed at ``tx``'s nonce."""
        for other in self._transactions.values():
            if (
                other.id != tx.id
                and other.status == TransactionStatus.CONFIRMED
                and other.nonce_key == tx.nonce_key
            ):
                return other
        return None

    def _lock_for(self, tx: Transaction) -> asyncio.Lock:
        if tx.local_id not in self._locks:
            self._locks[tx.local_id] = asyncio.Lock()
        return self._locks[tx.local_id]

    # ---------------------------
    # Build / sign / broadcast
    # ---------------------------
    async def build(self, req: TransferRequest) -> Transaction:
        """Validate ``req`` and turn it into a Transaction with nonce and fee resolved."""
        amount = Decimal(req.amount)
        if amount < 0 or (amount == 0 and req.kind != TransactionKind.CANCEL):
            raise InvalidRequest(f"Amount must be greater than zero, got {req.amount}")
        if not req.from_address or not req.to_address:
            raise InvalidRequest("Both from_address and to_address are required")
        if req.nonce is not None and req.nonce < 0:
            raise InvalidRequest(f"Nonce must not be negative, got {req.nonce}")

        chain = chain_key(req.chain)
        if chain not in self._clients:
            raise UnsupportedChain(req.chain)

        if req.nonce is not None:
            nonce = req.nonce
            await self.nonces.reserve(chain, req.from_address, nonce)
        else:
            nonce = await self.nonces.get_next_nonce(chain, req.from_address)

        try:
            fee = req.fee
            if fee is None:
                fee = await self._gas.estimate(chain, req.tier, req.gas_limit or self._default_gas_limit(chain, req))
        except Exception:
            if req.replaces is None:
                await self.nonces.release_nonce(chain, req.from_address, nonce)
            raise

        now = self.clock.now()
        tx = Transaction(
            id=new_local_id(),
            chain=chain,
            from_address=req.from_address,
            to_address=req.to_address,
            amount=amount,
            asset=req.asset,
            nonce=nonce,
            fee=fee,
            created_at=now,
            updated_at=now,
            kind=req.kind,
            data=req.data,
            value_override=req.value_override,
            replaces=req.replaces,
        )
        try:
            check_transferable(tx)
        except InvalidRequest:
            if req.replaces is None:
                await self.nonces.release_nonce(chain, req.from_address, nonce)
            raise

        self._transactions[tx.id] = tx
        self.logger.info("Built %s %s on %s nonce=%d", tx.kind.value, tx.id, chain, nonce)
        await self.persist()
        await self.events.emit(EngineEvent.CREATED, tx)
        return tx

    def _default_gas_limit(self, chain: str, req: TransferRequest) -> int:
        if req.data is None and (chain not in CHAIN_METADATA or is_native_asset(chain, req.asset)):
            return settings.default_gas_limit
        return settings.token_transfer_gas_limit

    async def sign(self, tx_or_id) -> SignedTransaction:
        """Hand the unsigned payload to the Signer. Failures are terminal for this transaction."""
        tx = self._require(tx_or_id) if isinstance(tx_or_id, str) else tx_or_id

        async with self._lock_for(tx):
            if tx.is_terminal:
                raise InvalidRequest(f"Transaction {tx.id} is {tx.status.value}")
            if tx.is_broadcast:
                raise InvalidRequest(f"Transaction {tx.id} was already broadcast")

            payload = build_unsigned_payload(tx)
            digest = payload_digest(payload)
            cached = self._signed.get(tx.local_id)
            if cached is not None and cached.payload_digest == digest:
                return cached

            try:
                signed_payload = await self._signer.sign(payload, tx.chain)
            except Exception as exc:
                self.logger.warning("Signing failed for %s: %s", tx.id, exc)
                await self._fail_unsent(tx, f"{FailureReason.SIGNING_FAILED.value}: {exc}")
                raise SigningFailed(
                    f"Signer rejected {tx.id}: {exc}",
                    context=ErrorContext(chain=tx.chain, tx_id=tx.id),
                ) from exc

            signed = SignedTransaction(
                transaction_id=tx.local_id,
                chain=tx.chain,
                payload=signed_payload,
                payload_digest=digest,
            )
            self._signed[tx.local_id] = signed

        await self.events.emit(EngineEvent.SIGNED, tx)
        return signed

    async def broadcast(self, signed: SignedTransaction) -> Transaction:
        """Submit a signed transaction. On success its id becomes the network hash."""
        tx = self._require(signed.transaction_id)
        client = self.client_for(tx.chain)

        async with self._lock_for(tx):
            if tx.is_terminal:
                raise InvalidRequest(f"Transaction {tx.id} is {tx.status.value}")
            if tx.is_broadcast:
                raise InvalidRequest(f"Transaction {tx.id} was already broadcast")
            if payload_digest(build_unsigned_payload(tx)) != signed.payload_digest:
                raise InvalidRequest(f"Signature for {tx.id} does not match its current payload")

            try:
                tx_hash = await client.broadcast(signed.payload)
            except Exception as exc:
                self.logger.warning("Broadcast of %s on %s rejected: %s", tx.id, tx.chain, exc)
                await self._fail_unsent(tx, f"{FailureReason.BROADCAST_REJECTED.value}: {exc}")
                raise BroadcastFailed(
                    f"Broadcast of {tx.id} failed: {exc}",
                    context=ErrorContext(chain=tx.chain, tx_id=tx.id),
                ) from exc

            self._transactions.pop(tx.id, None)
            tx.id = tx_hash
            tx.broadcast_at = self.clock.now()
            tx.updated_at = tx.broadcast_at
            self._transactions[tx.id] = tx
            self._aliases[tx.local_id] = tx.id
            self._signed.pop(tx.local_id, None)
            self.registry.add(tx)

        self.logger.info("Broadcast %s on %s nonce=%d", tx.id, tx.chain, tx.nonce)
        await self.persist()
        await self.events.emit(EngineEvent.BROADCAST, tx)
        return tx

    async def send(self, req: TransferRequest) -> Transaction:
        """build -> sign -> broadcast."""
        tx = await self.build(req)
        signed = await self.sign(tx)
        return await self.broadcast(signed)

    async def _fail_unsent(self, tx: Transaction, reason: str) -> None:
        """Mark a transaction that never reached the network as FAILED. Caller holds the lock."""
        self._apply(tx, TransactionStatus.FAILED)
        tx.failure_reason = reason
        self._signed.pop(tx.local_id, None)
        if tx.replaces is None:
            await self.nonces.release_nonce(tx.chain, tx.from_address, tx.nonce)
        await self.persist()
        await self.events.emit(EngineEvent.FAILED, tx)

    # ---------------------------
    # Replacement
    # ---------------------------
    async def cancel(self, tx_id: str) -> Transaction:
        """Cancel a transaction.

        A transaction that never left this process is marked CANCELLED. A
        broadcast one gets a zero-value self-transfer at the same nonce with a
        bumped fee; the original becomes REPLACED only when that confirms.
        Returns the cancelled transaction or the competing cancel transaction.
        """
        tx = self._require(tx_id)
        if tx.status not in (TransactionStatus.PENDING, TransactionStatus.CONFIRMING):
            raise NotCancellable(
                f"Cannot cancel {tx.id}: status is {tx.status.value}",
                context=ErrorContext(chain=tx.chain, tx_id=tx.id),
            )

        if not tx.is_broadcast:
            async with self._lock_for(tx):
                self._apply(tx, TransactionStatus.CANCELLED)
                self._signed.pop(tx.local_id, None)
            if tx.replaces is None:
                await self.nonces.release_nonce(tx.chain, tx.from_address, tx.nonce)
            self.logger.info("Cancelled unsent transaction %s", tx.id)
            await self.persist()
            await self.events.emit(EngineEvent.DROPPED, tx)
            return tx

        self._ensure_replaceable(tx)
        asset = native_symbol(tx.chain) if tx.chain in CHAIN_METADATA else tx.asset
        req = TransferRequest(
            chain=tx.chain,
            from_address=tx.from_address,
            to_address=tx.from_address,
            amount=Decimal("0"),
            asset=asset,
            nonce=tx.nonce,
            fee=tx.fee.bumped(self.fee_bump_multiplier),
            kind=TransactionKind.CANCEL,
            replaces=tx.id,
        )
        self.logger.info("Cancelling %s with a replacement at nonce %d", tx.id, tx.nonce)
        return await self.send(req)

    async def speed_up(self, tx_id: str) -> Transaction:
        """Rebroadcast the same transfer at the same nonce with a bumped fee."""
        tx = self._require(tx_id)
        if tx.status != TransactionStatus.PENDING:
            raise NotCancellable(
                f"Cannot speed up {tx.id}: status is {tx.status.value}",
                context=ErrorContext(chain=tx.chain, tx_id=tx.id),
            )
        if not tx.is_broadcast:
            raise InvalidRequest(f"Transaction {tx.id} has not been broadcast yet")

        self._ensure_replaceable(tx)
        req = TransferRequest(
            chain=tx.chain,
            from_address=tx.from_address,
            to_address=tx.to_address,
            amount=tx.amount,
            asset=tx.asset,
            nonce=tx.nonce,
            fee=tx.fee.bumped(self.fee_bump_multiplier),
            data=tx.data,
            value_override=tx.value_override,
            kind=TransactionKind.SPEED_UP,
            replaces=tx.id,
        )
        self.logger.info("Speeding up %s at nonce %d", tx.id, tx.nonce)
        return await self.send(req)

    def _ensure_replaceable(self, tx: Transaction) -> None:
        if not self.client_for(tx.chain).supports_replacement:
            raise UnsupportedOperation(
                f"{tx.chain} does not support replacing transactions",
                context=ErrorContext(chain=tx.chain, tx_id=tx.id),
            )

    # ---------------------------
    # Transitions driven by reconciliation
    # ---------------------------
    def can_transition(self, tx: Transaction, to_status: TransactionStatus) -> bool:
        return to_status in self.TRANSITIONS.get(tx.status, set())

    def _apply(self, tx: Transaction, to_status: TransactionStatus) -> None:
        if not self.can_transition(tx, to_status):
            raise InvalidTransition(tx.status, to_status, tx.id)
        from_status = tx.status
        tx.status = to_status
        tx.updated_at = self.clock.now()
        if to_status.is_terminal:
            self.registry.discard(tx.id)
        self.logger.debug("Transaction %s: %s -> %s", tx.id, from_status.value, to_status.value)

    async def mark_confirming(self, tx: Transaction, block_ref: BlockRef, confirmations: int = 0) -> bool:
        async with self._lock_for(tx):
            if tx.status == TransactionStatus.CONFIRMING:
                tx.block_ref = block_ref
                tx.confirmations = confirmations
                return False
            if not self.can_transition(tx, TransactionStatus.CONFIRMING):
                return False
            self._apply(tx, TransactionStatus.CONFIRMING)
            tx.block_ref = block_ref
            tx.confirmations = confirmations
        await self.persist()
        return True

    async def mark_confirmed(
        self,
        tx: Transaction,
        block_ref: BlockRef,
        confirmations: int,
        realized_fee: Optional[Decimal] = None,
    ) -> bool:
        async with self._lock_for(tx):
            if not self.can_transition(tx, TransactionStatus.CONFIRMED):
                return False
            self._apply(tx, TransactionStatus.CONFIRMED)
            tx.block_ref = block_ref
            tx.confirmations = confirmations
            tx.realized_fee = realized_fee
            tx.confirmed_at = tx.updated_at

        self.logger.info("Confirmed %s on %s (%d confirmations)", tx.id, tx.chain, confirmations)
        await self.nonces.confirm_nonce(tx.chain, tx.from_address, tx.nonce)
        await self.persist()
        await self.events.emit(EngineEvent.CONFIRMED, tx)

        reason = REPLACEMENT_REASONS.get(tx.kind, DEFAULT_REPLACEMENT_REASON)
        for sibling in self.registry.siblings(tx):
            await self.mark_replaced(sibling, tx.id, reason)
        return True

    async def mark_failed(
        self,
        tx: Transaction,
        reason: str,
        *,
        dropped: bool = False,
        block_ref: Optional[BlockRef] = None,
        realized_fee: Optional[Decimal] = None,
    ) -> bool:
        async with self._lock_for(tx):
            if not self.can_transition(tx, TransactionStatus.FAILED):
                return False
            self._apply(tx, TransactionStatus.FAILED)
            tx.failure_reason = reason
            if block_ref is not None:
                tx.block_ref = block_ref
            if realized_fee is not None:
                tx.realized_fee = realized_fee

        self.logger.info("Transaction %s failed: %s", tx.id, reason)
        if block_ref is not None:
            # A reverted transaction still consumed its nonce
            await self.nonces.confirm_nonce(tx.chain, tx.from_address, tx.nonce)
        await self.persist()
        await self.events.emit(EngineEvent.DROPPED if dropped else EngineEvent.FAILED, tx)
        return True

    async def mark_replaced(self, tx: Transaction, replacement_id: str, reason: str) -> bool:
        async with self._lock_for(tx):
            if not self.can_transition(tx, TransactionStatus.REPLACED):
                return False
            self._apply(tx, TransactionStatus.REPLACED)
            tx.replacement = Replacement(id=replacement_id, reason=reason)

        self.logger.info("Transaction %s replaced by %s (%s)", tx.id, replacement_id, reason)
        await self.persist()
        await self.events.emit(EngineEvent.REPLACED, tx)
        return True

    # ---------------------------
    # Persistence
    # ---------------------------
    async def persist(self) -> None:
        table = {tx.id: tx.to_dict() for tx in self._transactions.values()}
        await self._store.set(TRANSACTIONS_KEY, table)

    async def load(self) -> int:
        """Restore the table from the store and re-register every non-terminal broadcast entry."""
        table = await self._store.get(TRANSACTIONS_KEY) or {}
        restored = 0
        for data in table.values():
            tx = Transaction.from_dict(data)
            self._transactions[tx.id] = tx
            if tx.local_id != tx.id:
                self._aliases[tx.local_id] = tx.id
            if tx.is_terminal:
                continue
            await self.nonces.reserve(tx.chain, tx.from_address, tx.nonce)
            if tx.is_broadcast and tx.id not in self.registry:
                self.registry.add(tx)
                restored += 1
        self.logger.info("Loaded %d transactions, %d pending", len(table), restored)
        return restored

