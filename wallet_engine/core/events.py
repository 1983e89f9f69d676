"""
Event surface for transaction and cross-chain lifecycle changes.

Subscribers receive a deep copy of the updated entity, so nothing they do can
mutate engine state. Handler failures are logged and never reach the emitter.
"""

from __future__ import annotations

import copy
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class EngineEvent(str, Enum):
    CREATED = "created"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DROPPED = "dropped"
    REPLACED = "replaced"
    CROSSCHAIN_UPDATED = "crosschain_updated"


EventHandler = Callable[[EngineEvent, Any], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe for engine events."""

    def __init__(self) -> None:
        self._handlers: Dict[EngineEvent, List[EventHandler]] = {}
        self._wildcard: List[EventHandler] = []

    def subscribe(self, event: Optional[EngineEvent], handler: EventHandler) -> Callable[[], None]:
        """Register a handler for one event, or for every event when ``event`` is None.

        Returns a callable that removes the subscription.
        """
        bucket = self._wildcard if event is None else self._handlers.setdefault(EngineEvent(event), [])
        bucket.append(handler)

        def _unsubscribe() -> None:
            if handler in bucket:
                bucket.remove(handler)

        return _unsubscribe

    async def emit(self, event: EngineEvent, entity: Any) -> None:
        handlers = [*self._handlers.get(event, []), *self._wildcard]
        if not handlers:
            return
        for handler in handlers:
            snapshot = copy.deepcopy(entity)
            try:
                result = handler(event, snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                logger.warning("Event handler for %s failed: %s", event.value, exc, exc_info=True)
