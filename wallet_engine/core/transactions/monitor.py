"""
Pending transaction reconciliation.

A repeating sweep checks every registered transaction against its chain and
drives the state machine forward. RPC failures leave the entry untouched for
the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from structlog.contextvars import bound_contextvars

from ...chains.base import ChainClient, TransactionReceipt
from ...chains.metadata import CHAIN_METADATA, from_base_units
from ...config import settings
from ...runtime.scheduler import Scheduler
from ..errors import FailureReason, ReconciliationError, classify_error
from .models import BlockRef, Transaction
from .registry import PendingTransactionRegistry
from .state_machine import DEFAULT_REPLACEMENT_REASON, REPLACEMENT_REASONS, TransactionStateMachine

SWEEP_TASK_NAME = "pending-transaction-sweep"


class PendingTransactionMonitor:
    """Periodic reconciliation over the pending registry."""

    def __init__(
        self,
        state_machine: TransactionStateMachine,
        scheduler: Scheduler,
        *,
        interval_seconds: Optional[float] = None,
        drop_threshold_seconds: Optional[float] = None,
        rpc_timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._sm = state_machine
        self._scheduler = scheduler
        self.interval_seconds = interval_seconds or settings.monitor_interval_seconds
        self.drop_threshold_seconds = drop_threshold_seconds or settings.drop_threshold_seconds
        self.rpc_timeout_seconds = rpc_timeout_seconds or settings.rpc_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._started = False
        self.registry.add_listener(self._on_registry_change)

    @property
    def registry(self) -> PendingTransactionRegistry:
        return self._sm.registry

    @property
    def is_sweeping(self) -> bool:
        return self._scheduler.is_scheduled(SWEEP_TASK_NAME)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    def start(self) -> None:
        self._started = True
        self._ensure_sweeping()

    def stop(self) -> None:
        self._started = False
        self._scheduler.cancel(SWEEP_TASK_NAME)

    def _on_registry_change(self, registry: PendingTransactionRegistry) -> None:
        if not self._started:
            return
        if len(registry):
            self._ensure_sweeping()
        else:
            self._scheduler.cancel(SWEEP_TASK_NAME)

    def _ensure_sweeping(self) -> None:
        if not len(self.registry) or self.is_sweeping:
            return
        self._scheduler.schedule(SWEEP_TASK_NAME, self.interval_seconds, self.sweep)

    # ---------------------------
    # Reconciliation
    # ---------------------------
    async def sweep(self) -> None:
        """Reconcile every pending transaction concurrently. Never raises."""
        entries = self.registry.snapshot()
        if not entries:
            return
        self.logger.debug("Reconciling %d pending transactions", len(entries))
        await asyncio.gather(*(self.reconcile(tx) for tx in entries))

    async def reconcile(self, tx: Transaction) -> None:
        """Check one transaction. Errors are logged and swallowed."""
        if tx.is_terminal:
            return
        with bound_contextvars(tx_id=tx.id, chain=tx.chain):
            try:
                await self._reconcile(tx)
            except Exception as exc:  # noqa: BLE001
                error = ReconciliationError(f"Reconciliation of {tx.id} failed: {exc}", category=classify_error(exc))
                self.logger.warning("%s (category=%s)", error.message, error.category.value, exc_info=True)

    async def _call(self, coro):
        return await asyncio.wait_for(coro, timeout=self.rpc_timeout_seconds)

    async def _reconcile(self, tx: Transaction) -> None:
        client = self._sm.client_for(tx.chain)
        found = await self._call(client.get_transaction_by_hash(tx.id))

        if found is None:
            await self._handle_missing(tx, client)
            return

        if found.block_number is None:
            # Still in the mempool
            return

        receipt = await self._call(client.get_receipt(tx.id))
        block_ref = BlockRef(number=found.block_number, hash=found.block_hash)
        if receipt is None:
            if client.reports_inclusion:
                await self._sm.mark_confirming(tx, block_ref)
            return

        await self._handle_receipt(tx, client, receipt)

    async def _handle_missing(self, tx: Transaction, client: ChainClient) -> None:
        sibling = self._sm.find_confirmed_sibling(tx)
        replacement_id = sibling.id if sibling is not None else None
        if replacement_id is None:
            replacement_id = await self._call(client.find_replacement(tx.from_address, tx.nonce))

        if replacement_id and replacement_id != tx.id:
            reason = REPLACEMENT_REASONS.get(sibling.kind, DEFAULT_REPLACEMENT_REASON) if sibling else DEFAULT_REPLACEMENT_REASON
            await self._sm.mark_replaced(tx, replacement_id, reason)
            return

        since = tx.broadcast_at or tx.created_at
        elapsed = (self._sm.clock.now() - since).total_seconds()
        if elapsed > self.drop_threshold_seconds:
            await self._sm.mark_failed(tx, FailureReason.DROPPED.value, dropped=True)

    async def _handle_receipt(self, tx: Transaction, client: ChainClient, receipt: TransactionReceipt) -> None:
        latest_block = await self._call(client.get_latest_block_number())
        confirmations = max(latest_block - receipt.block_number + 1, 0)
        block_ref = BlockRef(number=receipt.block_number, hash=receipt.block_hash)
        realized_fee = self._realized_fee(tx.chain, receipt)

        if not receipt.success:
            await self._sm.mark_failed(
                tx,
                FailureReason.REVERTED.value,
                block_ref=block_ref,
                realized_fee=realized_fee,
            )
            return

        if confirmations < client.required_confirmations:
            if client.reports_inclusion:
                await self._sm.mark_confirming(tx, block_ref, confirmations)
            return

        await self._sm.mark_confirmed(tx, block_ref, confirmations, realized_fee)

    @staticmethod
    def _realized_fee(chain: str, receipt: TransactionReceipt) -> Decimal:
        decimals = int(CHAIN_METADATA.get(chain, {}).get("native_decimals", 18))
        return from_base_units(receipt.effective_gas_price * receipt.gas_used, decimals)
