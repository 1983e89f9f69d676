"""
Cross-chain execution tracking.

Executes a selected Route one step at a time and follows every leg until it
confirms or fails. On-chain legs go through the TransactionStateMachine;
bridge and swap legs go through their ProviderAdapter. A leg whose input
arrives on another chain waits until its upstream leg has confirmed.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from structlog.contextvars import bound_contextvars

from ...config import settings
from ...providers.base import ExecuteRequest, ProviderAdapter, ProviderState, ProviderTxRef, StepKind
from ...providers.registry import ProviderRegistry
from ...runtime.scheduler import Clock, Scheduler
from ..errors import (
    InvalidRequest,
    ProviderUnavailable,
    ReconciliationError,
    TransactionNotFound,
    classify_error,
)
from ..events import EngineEvent, EventBus
from ..routing.models import Route, RouteStep
from ..store import CROSSCHAIN_KEY, InMemoryStore, Store
from ..transactions.models import Transaction, TransactionKind, TransactionStatus, TransferRequest
from ..transactions.state_machine import TransactionStateMachine
from .models import CrosschainTransaction, Leg, LegStatus, new_crosschain_id

POLL_TASK_NAME = "crosschain-poll"


class CrosschainTransactionTracker:
    """
    Runs routes and converges their legs to a terminal state.

    Features:
    - One lock per record; independent records poll concurrently
    - Start failures mark the leg FAILED instead of raising
    - Polling task runs only while there are active records
    """

    def __init__(
        self,
        state_machine: TransactionStateMachine,
        providers: ProviderRegistry,
        scheduler: Scheduler,
        *,
        events: Optional[EventBus] = None,
        store: Optional[Store] = None,
        clock: Optional[Clock] = None,
        poll_interval_seconds: Optional[float] = None,
        provider_timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._sm = state_machine
        self.providers = providers
        self._scheduler = scheduler
        self.events = events or state_machine.events
        self._store = store or InMemoryStore()
        self.clock = clock or state_machine.clock
        self.poll_interval_seconds = poll_interval_seconds or settings.tracker_poll_interval_seconds
        self.provider_timeout_seconds = provider_timeout_seconds or settings.provider_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

        self._records: Dict[str, CrosschainTransaction] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._started = False

    # ---------------------------
    # Lookup
    # ---------------------------
    def get(self, record_id: str) -> Optional[CrosschainTransaction]:
        return self._records.get(record_id)

    def list(self) -> List[CrosschainTransaction]:
        return sorted(self._records.values(), key=lambda record: record.created_at)

    def active(self) -> List[CrosschainTransaction]:
        return [record for record in self.list() if not record.is_terminal]

    @property
    def is_polling(self) -> bool:
        return self._scheduler.is_scheduled(POLL_TASK_NAME)

    def _lock_for(self, record_id: str) -> asyncio.Lock:
        if record_id not in self._locks:
            self._locks[record_id] = asyncio.Lock()
        return self._locks[record_id]

    # ---------------------------
    # Lifecycle
    # ---------------------------
    def start(self) -> None:
        self._started = True
        self._ensure_polling()

    def stop(self) -> None:
        self._started = False
        self._scheduler.cancel(POLL_TASK_NAME)

    def _ensure_polling(self) -> None:
        if not self._started or self.is_polling or not self.active():
            return
        self._scheduler.schedule(POLL_TASK_NAME, self.poll_interval_seconds, self.poll_all)

    # ---------------------------
    # Execution
    # ---------------------------
    async def execute(
        self,
        route: Route,
        from_address: str,
        recipient: Optional[str] = None,
    ) -> CrosschainTransaction:
        """Start executing ``route``.

        Provider and broadcast failures are recorded on the leg and returned,
        not raised.
        """
        if route is None or not route.steps:
            raise InvalidRequest("Route has no steps to execute")
        if not from_address:
            raise InvalidRequest("from_address is required")

        now = self.clock.now()
        record = CrosschainTransaction(
            id=new_crosschain_id(),
            route=route,
            from_address=from_address,
            recipient=recipient or from_address,
            legs=[
                Leg(
                    step_index=index,
                    kind=step.kind,
                    provider_id=step.provider_id,
                    input_amount=step.from_amount,
                )
                for index, step in enumerate(route.steps)
            ],
            created_at=now,
            updated_at=now,
        )
        self._records[record.id] = record
        self.logger.info(
            "Executing %s route %s: %s %s@%s -> %s@%s",
            route.kind.value,
            record.id,
            route.source_amount,
            route.source_asset,
            route.source_chain,
            route.target_asset,
            route.target_chain,
        )

        with bound_contextvars(crosschain_id=record.id):
            async with self._lock_for(record.id):
                await self._advance(record)
                self._touch(record)

        await self.persist()
        await self.events.emit(EngineEvent.CROSSCHAIN_UPDATED, record)
        self._ensure_polling()
        return record

    async def _advance(self, record: CrosschainTransaction) -> None:
        """Start every WAITING leg whose upstream allows it. Caller holds the lock."""
        steps = record.route.steps
        for index, leg in enumerate(record.legs):
            if leg.status == LegStatus.FAILED:
                return
            if leg.status != LegStatus.WAITING:
                continue

            amount = leg.input_amount
            if index > 0:
                upstream = record.legs[index - 1]
                upstream_step = steps[index - 1]
                if upstream.status == LegStatus.WAITING:
                    return
                if upstream_step.to_chain != upstream_step.from_chain and upstream.status != LegStatus.CONFIRMED:
                    return
                amount = await self._realized_output(upstream, upstream_step)

            started = await self._start_leg(record, leg, steps[index], amount)
            if not started:
                return

    async def _realized_output(self, leg: Leg, step: RouteStep) -> Decimal:
        """Upstream output as reported by its provider, else the quoted amount."""
        if leg.provider_ref is not None:
            adapter = self.providers.get(leg.provider_ref.provider_id)
            if adapter is not None:
                try:
                    status = await asyncio.wait_for(adapter.status(leg.provider_ref), self.provider_timeout_seconds)
                except Exception as exc:  # noqa: BLE001
                    self.logger.warning("Could not re-query %s for realized output: %s", adapter.id, exc)
                else:
                    if status.output_amount is not None:
                        leg.output_amount = status.output_amount
                        return status.output_amount
        if leg.output_amount is not None:
            return leg.output_amount
        return step.to_amount

    async def _start_leg(self, record: CrosschainTransaction, leg: Leg, step: RouteStep, amount: Decimal) -> bool:
        is_last = leg.step_index == len(record.legs) - 1
        # Intermediate outputs land back in the sender's wallet
        recipient = record.recipient if is_last else record.from_address
        leg.input_amount = amount
        leg.started_at = self.clock.now()

        try:
            if step.kind == StepKind.TRANSFER:
                tx = await self._sm.send(
                    TransferRequest(
                        chain=step.from_chain,
                        from_address=record.from_address,
                        to_address=recipient,
                        amount=amount,
                        asset=step.from_asset,
                    )
                )
                leg.onchain_tx_id = tx.id
            else:
                adapter = self._adapter_for(step.provider_id)
                ref = await asyncio.wait_for(
                    adapter.execute(
                        ExecuteRequest(
                            kind=step.kind,
                            from_chain=step.from_chain,
                            to_chain=step.to_chain,
                            from_asset=step.from_asset,
                            to_asset=step.to_asset,
                            amount=amount,
                            from_address=record.from_address,
                            recipient=recipient,
                        )
                    ),
                    self.provider_timeout_seconds,
                )
                leg.provider_ref = ref
                if ref.deposit:
                    tx = await self._broadcast_deposit(record, step, amount, ref)
                    leg.onchain_tx_id = tx.id
        except Exception as exc:  # noqa: BLE001
            self._fail_leg(leg, str(exc) or type(exc).__name__)
            self.logger.warning(
                "Step %d of %s (%s) failed to start: %s",
                leg.step_index,
                record.id,
                step.kind.value,
                exc,
                exc_info=True,
            )
            return False

        leg.status = LegStatus.PENDING
        self.logger.info("Started step %d of %s (%s)", leg.step_index, record.id, step.kind.value)
        return True

    async def _broadcast_deposit(
        self,
        record: CrosschainTransaction,
        step: RouteStep,
        amount: Decimal,
        ref: ProviderTxRef,
    ) -> Transaction:
        deposit = ref.deposit or {}
        return await self._sm.send(
            TransferRequest(
                chain=step.from_chain,
                from_address=record.from_address,
                to_address=deposit["to"],
                amount=amount,
                asset=step.from_asset,
                data=deposit.get("data") or "0x",
                value_override=int(deposit.get("value") or 0),
                kind=TransactionKind.CONTRACT_CALL,
            )
        )

    def _adapter_for(self, provider_id: Optional[str]) -> ProviderAdapter:
        adapter = self.providers.get(provider_id) if provider_id else None
        if adapter is None:
            raise ProviderUnavailable(provider_id or "unknown", "not registered")
        return adapter

    def _fail_leg(self, leg: Leg, error: str) -> None:
        leg.status = LegStatus.FAILED
        leg.error = error
        leg.completed_at = self.clock.now()

    def _confirm_leg(self, leg: Leg, output_amount: Optional[Decimal]) -> None:
        leg.status = LegStatus.CONFIRMED
        leg.output_amount = output_amount
        leg.completed_at = self.clock.now()

    def _touch(self, record: CrosschainTransaction) -> None:
        record.updated_at = self.clock.now()
        if record.is_terminal and record.completed_at is None:
            record.completed_at = record.updated_at

    # ---------------------------
    # Polling
    # ---------------------------
    async def poll(self, record_id: str) -> CrosschainTransaction:
        """Refresh every in-flight leg of one record. Leg errors are logged and retried next tick."""
        record = self._records.get(record_id)
        if record is None:
            raise TransactionNotFound(record_id)
        if record.is_terminal:
            return record

        with bound_contextvars(crosschain_id=record.id):
            async with self._lock_for(record.id):
                before = record.to_dict()
                for leg in record.legs:
                    if leg.status != LegStatus.PENDING:
                        continue
                    try:
                        await self._refresh_leg(record, leg)
                    except Exception as exc:  # noqa: BLE001
                        error = ReconciliationError(
                            f"Status check for step {leg.step_index} of {record.id} failed: {exc}",
                            category=classify_error(exc),
                        )
                        self.logger.warning("%s (category=%s)", error.message, error.category.value, exc_info=True)
                await self._advance(record)
                changed = record.to_dict() != before
                if changed:
                    self._touch(record)

        if changed:
            if record.is_terminal:
                self.logger.info("Cross-chain transaction %s finished: %s", record.id, record.status.value)
            await self.persist()
            await self.events.emit(EngineEvent.CROSSCHAIN_UPDATED, record)
        return record

    async def poll_all(self) -> None:
        """Poll every active record concurrently. Stops the polling task once none remain."""
        active = self.active()
        if active:
            await asyncio.gather(*(self._poll_quietly(record.id) for record in active))
        if not self.active():
            self._scheduler.cancel(POLL_TASK_NAME)

    async def _poll_quietly(self, record_id: str) -> None:
        try:
            await self.poll(record_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Polling %s failed: %s", record_id, exc, exc_info=True)

    async def _refresh_leg(self, record: CrosschainTransaction, leg: Leg) -> None:
        step = record.route.steps[leg.step_index]

        if leg.onchain_tx_id is not None:
            tx = self._follow_replacements(leg)
            if tx is None:
                self._fail_leg(leg, f"Transaction {leg.onchain_tx_id} is unknown")
                return
            if tx.status == TransactionStatus.REPLACED:
                # Replaced by a cancel or by a transaction the engine did not send
                self._fail_leg(leg, self._replacement_error(tx))
                return
            if tx.status in (TransactionStatus.FAILED, TransactionStatus.CANCELLED):
                self._fail_leg(leg, tx.failure_reason or f"Transaction {tx.id} {tx.status.value}")
                return
            if tx.status != TransactionStatus.CONFIRMED:
                return
            if leg.provider_ref is None:
                self._confirm_leg(leg, leg.input_amount)
                return

        if leg.provider_ref is None:
            return
        adapter = self._adapter_for(leg.provider_ref.provider_id)
        status = await asyncio.wait_for(adapter.status(leg.provider_ref), self.provider_timeout_seconds)
        if status.state == ProviderState.COMPLETED:
            output = status.output_amount
            if output is None:
                output = leg.provider_ref.expected_output or step.to_amount
            self._confirm_leg(leg, output)
        elif status.state in (ProviderState.FAILED, ProviderState.REJECTED):
            self._fail_leg(leg, status.error or f"{adapter.id} reported {status.state.value}")

    def _follow_replacements(self, leg: Leg) -> Optional[Transaction]:
        """Current transaction for an on-chain leg, following speed-ups to their replacement."""
        tx = self._sm.get(leg.onchain_tx_id)
        seen = set()
        while tx is not None and tx.status == TransactionStatus.REPLACED and tx.replacement is not None:
            if tx.id in seen:
                break
            seen.add(tx.id)
            replacement = self._sm.get(tx.replacement.id)
            if replacement is None or replacement.kind == TransactionKind.CANCEL:
                return tx
            tx = replacement
            leg.onchain_tx_id = tx.id
        return tx

    def _replacement_error(self, tx: Transaction) -> str:
        if tx.replacement is None:
            return f"Transaction {tx.id} was replaced"
        replacement = self._sm.get(tx.replacement.id)
        if replacement is not None and replacement.kind == TransactionKind.CANCEL:
            return f"Transaction {tx.id} was cancelled by {replacement.id}"
        return f"Transaction {tx.id} replaced by {tx.replacement.id}"

    # ---------------------------
    # Persistence
    # ---------------------------
    async def persist(self) -> None:
        table = {record.id: record.to_dict() for record in self._records.values()}
        await self._store.set(CROSSCHAIN_KEY, table)

    async def load(self) -> int:
        """Restore records from the store. Active ones resume polling once started."""
        table = await self._store.get(CROSSCHAIN_KEY) or {}
        for data in table.values():
            record = CrosschainTransaction.from_dict(data)
            self._records[record.id] = record
        active = len(self.active())
        self.logger.info("Loaded %d cross-chain transactions, %d active", len(table), active)
        self._ensure_polling()
        return active
