"""Parsing helpers shared by the provider adapters."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from ..chains.metadata import NATIVE_PLACEHOLDER, TOKEN_REGISTRY, asset_address
from .base import ProviderCapabilities, StepKind


def registry_capabilities(
    chains: Iterable[str],
    kinds: Iterable[StepKind],
    *,
    cross_chain_swaps: bool,
    estimated_minutes: int,
) -> ProviderCapabilities:
    """Capabilities covering every token the registry knows on ``chains``."""
    chains = tuple(chains)
    return ProviderCapabilities(
        kinds=frozenset(kinds),
        supported_chains=frozenset(chains),
        supported_assets={chain: frozenset(TOKEN_REGISTRY.get(chain, {}).keys()) for chain in chains},
        cross_chain_swaps=cross_chain_swaps,
        estimated_minutes=estimated_minutes,
    )


def to_decimal(raw: Any, decimals: int) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        return Decimal(str(raw)) / (Decimal(10) ** int(decimals))
    except (InvalidOperation, TypeError, ValueError):
        return None


def parse_int(raw: Any) -> int:
    """Integers arrive as ints, decimal strings or 0x-prefixed hex."""
    if raw is None or raw == "":
        return 0
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def sum_usd(values: Iterable[Any]) -> Decimal:
    total = Decimal("0")
    for value in values:
        if value is None:
            continue
        try:
            total += Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            continue
    return total


def token_for(chain: str, symbol: str) -> str:
    return asset_address(chain, symbol) or NATIVE_PLACEHOLDER
