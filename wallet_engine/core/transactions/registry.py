from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Optional

from .models import Transaction

logger = logging.getLogger(__name__)

RegistryListener = Callable[["PendingTransactionRegistry"], None]


class PendingTransactionRegistry:
    """Non-terminal transactions keyed by id.

    Listeners are notified after every add/remove so the monitor can start or
    stop its sweep.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Transaction] = {}
        self._listeners: List[RegistryListener] = []

    def add_listener(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Registry listener failed: %s", exc, exc_info=True)

    def add(self, tx: Transaction) -> None:
        if tx.is_terminal:
            raise ValueError(f"Cannot register terminal transaction {tx.id}")
        self._entries[tx.id] = tx
        self._notify()

    def discard(self, tx_id: str) -> Optional[Transaction]:
        removed = self._entries.pop(tx_id, None)
        if removed is not None:
            self._notify()
        return removed

    def get(self, tx_id: str) -> Optional[Transaction]:
        return self._entries.get(tx_id)

    def siblings(self, tx: Transaction) -> List[Transaction]:
        """Other registered transactions competing for the same (chain, sender, nonce)."""
        return [
            entry for entry in self._entries.values()
            if entry.id != tx.id and entry.nonce_key == tx.nonce_key
        ]

    def snapshot(self) -> List[Transaction]:
        return list(self._entries.values())

    def __contains__(self, tx_id: object) -> bool:
        return tx_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._entries.values()))
