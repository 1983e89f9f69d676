from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional


class StepKind(str, Enum):
    TRANSFER = "transfer"
    BRIDGE = "bridge"
    SWAP = "swap"


class ProviderState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ProviderState.COMPLETED, ProviderState.FAILED, ProviderState.REJECTED)


_STATE_ALIASES: Dict[str, ProviderState] = {
    "pending": ProviderState.PENDING,
    "initiated": ProviderState.PENDING,
    "waiting": ProviderState.PENDING,
    "processing": ProviderState.PROCESSING,
    "in progress": ProviderState.PROCESSING,
    "in_progress": ProviderState.PROCESSING,
    "submitted": ProviderState.PROCESSING,
    "completed": ProviderState.COMPLETED,
    "success": ProviderState.COMPLETED,
    "done": ProviderState.COMPLETED,
    "failed": ProviderState.FAILED,
    "failure": ProviderState.FAILED,
    "refunded": ProviderState.FAILED,
    "refund": ProviderState.FAILED,
    "rejected": ProviderState.REJECTED,
    "cancelled": ProviderState.REJECTED,
    "canceled": ProviderState.REJECTED,
}


def map_provider_state(raw: Optional[str]) -> ProviderState:
    """Normalize a provider's free-form status string. Unknown values count as still pending."""
    if not raw:
        return ProviderState.PENDING
    return _STATE_ALIASES.get(str(raw).strip().lower(), ProviderState.PENDING)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static metadata used to pre-filter providers before quoting.

    ``supported_assets`` maps a chain to its asset symbols; ``min_amount`` /
    ``max_amount`` bound the input amount per asset symbol.
    """

    kinds: FrozenSet[StepKind]
    supported_chains: FrozenSet[str]
    supported_assets: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    min_amount: Mapping[str, Decimal] = field(default_factory=dict)
    max_amount: Mapping[str, Decimal] = field(default_factory=dict)
    cross_chain_swaps: bool = False
    estimated_minutes: int = 0

    def supports_chain(self, chain: str) -> bool:
        return chain in self.supported_chains

    def supports_asset(self, chain: str, asset: str) -> bool:
        assets = self.supported_assets.get(chain)
        return assets is not None and asset.upper() in assets

    def amount_in_bounds(self, asset: str, amount: Decimal) -> bool:
        low = self.min_amount.get(asset.upper())
        high = self.max_amount.get(asset.upper())
        if low is not None and amount < low:
            return False
        if high is not None and amount > high:
            return False
        return True

    def can_quote(
        self,
        kind: StepKind,
        from_chain: str,
        to_chain: str,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
    ) -> bool:
        if kind not in self.kinds:
            return False
        if kind == StepKind.SWAP and from_chain != to_chain and not self.cross_chain_swaps:
            return False
        return (
            self.supports_chain(from_chain)
            and self.supports_chain(to_chain)
            and self.supports_asset(from_chain, from_asset)
            and self.supports_asset(to_chain, to_asset)
            and self.amount_in_bounds(from_asset, amount)
        )


@dataclass(frozen=True)
class QuoteRequest:
    kind: StepKind
    from_chain: str
    to_chain: str
    from_asset: str
    to_asset: str
    amount: Decimal
    from_address: Optional[str] = None
    recipient: Optional[str] = None


@dataclass(frozen=True)
class ProviderQuote:
    provider_id: str
    kind: StepKind
    from_chain: str
    to_chain: str
    from_asset: str
    to_asset: str
    from_amount: Decimal
    to_amount: Decimal
    fee_usd: Decimal
    eta_minutes: int
    quote_id: Optional[str] = None


@dataclass(frozen=True)
class ExecuteRequest:
    kind: StepKind
    from_chain: str
    to_chain: str
    from_asset: str
    to_asset: str
    amount: Decimal
    from_address: str
    recipient: str


@dataclass(frozen=True)
class ProviderTxRef:
    """Handle to a provider-side operation.

    ``deposit`` is the on-chain transaction the wallet must broadcast to fund
    the operation (``to``, ``data``, ``value`` in base units), if any.
    """

    provider_id: str
    ref_id: str
    from_chain: str
    to_chain: str
    to_asset: Optional[str] = None
    deposit: Optional[Dict[str, Any]] = None
    expected_output: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "refId": self.ref_id,
            "fromChain": self.from_chain,
            "toChain": self.to_chain,
            "toAsset": self.to_asset,
            "deposit": self.deposit,
            "expectedOutput": str(self.expected_output) if self.expected_output is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderTxRef":
        expected = data.get("expectedOutput")
        return cls(
            provider_id=data["providerId"],
            ref_id=data["refId"],
            from_chain=data["fromChain"],
            to_chain=data["toChain"],
            to_asset=data.get("toAsset"),
            deposit=data.get("deposit"),
            expected_output=Decimal(expected) if expected is not None else None,
        )


@dataclass(frozen=True)
class ProviderStatus:
    state: ProviderState
    output_amount: Optional[Decimal] = None
    error: Optional[str] = None
    destination_tx_hash: Optional[str] = None


class ProviderAdapter(ABC):
    """Uniform contract for bridge and swap providers."""

    id: str
    name: str
    capabilities: ProviderCapabilities
    timeout_s: float = 20

    def can_quote(self, request: QuoteRequest) -> bool:
        return self.capabilities.can_quote(
            request.kind,
            request.from_chain,
            request.to_chain,
            request.from_asset,
            request.to_asset,
            request.amount,
        )

    @abstractmethod
    async def quote(self, request: QuoteRequest) -> List[ProviderQuote]:
        ...

    @abstractmethod
    async def execute(self, request: ExecuteRequest) -> ProviderTxRef:
        ...

    @abstractmethod
    async def status(self, ref: ProviderTxRef) -> ProviderStatus:
        ...
