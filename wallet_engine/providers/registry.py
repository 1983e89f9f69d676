from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from .base import ProviderAdapter, QuoteRequest, StepKind

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Adapters in registration order, looked up by id or capability."""

    def __init__(self, adapters: Optional[List[ProviderAdapter]] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        if adapter.id in self._adapters:
            raise ValueError(f"Provider '{adapter.id}' already registered")
        self._adapters[adapter.id] = adapter
        logger.info("Registered provider %s", adapter.id)

    def unregister(self, provider_id: str) -> None:
        self._adapters.pop(provider_id, None)

    def get(self, provider_id: str) -> Optional[ProviderAdapter]:
        return self._adapters.get(provider_id)

    def capable(self, request: QuoteRequest) -> List[ProviderAdapter]:
        """Adapters whose declared capabilities cover ``request``."""
        return [adapter for adapter in self._adapters.values() if adapter.can_quote(request)]

    def with_kind(self, kind: StepKind) -> List[ProviderAdapter]:
        return [adapter for adapter in self._adapters.values() if kind in adapter.capabilities.kinds]

    def __iter__(self) -> Iterator[ProviderAdapter]:
        return iter(list(self._adapters.values()))

    def __len__(self) -> int:
        return len(self._adapters)
