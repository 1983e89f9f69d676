from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ...providers.base import StepKind


class RouteKind(str, Enum):
    DIRECT = "direct"
    BRIDGE = "bridge"
    SWAP = "swap"
    COMPLEX = "complex"


@dataclass(frozen=True)
class RouteStep:
    kind: StepKind
    from_chain: str
    to_chain: str
    from_asset: str
    to_asset: str
    from_amount: Decimal
    to_amount: Decimal
    fee_usd: Decimal = Decimal("0")
    eta_minutes: int = 0
    provider_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "providerId": self.provider_id,
            "fromChain": self.from_chain,
            "toChain": self.to_chain,
            "fromAsset": self.from_asset,
            "toAsset": self.to_asset,
            "fromAmount": str(self.from_amount),
            "toAmount": str(self.to_amount),
            "feeUsd": str(self.fee_usd),
            "etaMinutes": self.eta_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouteStep":
        return cls(
            kind=StepKind(data["kind"]),
            provider_id=data.get("providerId"),
            from_chain=data["fromChain"],
            to_chain=data["toChain"],
            from_asset=data["fromAsset"],
            to_asset=data["toAsset"],
            from_amount=Decimal(data["fromAmount"]),
            to_amount=Decimal(data["toAmount"]),
            fee_usd=Decimal(data.get("feeUsd", "0")),
            eta_minutes=int(data.get("etaMinutes", 0)),
        )


@dataclass(frozen=True)
class Route:
    """A candidate execution path. Built fresh for every query, never cached.

    Construction checks that the steps form one connected path from the
    source (chain, asset, amount) to the target (chain, asset, amount).
    """

    kind: RouteKind
    source_chain: str
    target_chain: str
    source_asset: str
    target_asset: str
    source_amount: Decimal
    target_amount: Decimal
    total_cost_usd: Decimal
    gas_cost_usd: Decimal
    fee_usd: Decimal
    eta_minutes: int
    steps: Tuple[RouteStep, ...]

    def __post_init__(self) -> None:
        # Accept any sequence but store an immutable tuple
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise ValueError("Route must contain at least one step")

        first, last = self.steps[0], self.steps[-1]
        if first.from_chain != self.source_chain or not _same_asset(first.from_asset, self.source_asset):
            raise ValueError(
                f"First step starts at {first.from_asset}@{first.from_chain}, "
                f"route starts at {self.source_asset}@{self.source_chain}"
            )
        if last.to_chain != self.target_chain or not _same_asset(last.to_asset, self.target_asset):
            raise ValueError(
                f"Last step ends at {last.to_asset}@{last.to_chain}, "
                f"route ends at {self.target_asset}@{self.target_chain}"
            )
        if first.from_amount != self.source_amount:
            raise ValueError("Route source amount does not match its first step")
        if last.to_amount != self.target_amount:
            raise ValueError("Route target amount does not match its last step")

        for index, (current, following) in enumerate(zip(self.steps, self.steps[1:])):
            if current.to_chain != following.from_chain or not _same_asset(current.to_asset, following.from_asset):
                raise ValueError(
                    f"Step {index} ends at {current.to_asset}@{current.to_chain} "
                    f"but step {index + 1} starts at {following.from_asset}@{following.from_chain}"
                )

    @property
    def providers(self) -> Tuple[str, ...]:
        return tuple(step.provider_id for step in self.steps if step.provider_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "sourceChain": self.source_chain,
            "targetChain": self.target_chain,
            "sourceAsset": self.source_asset,
            "targetAsset": self.target_asset,
            "sourceAmount": str(self.source_amount),
            "targetAmount": str(self.target_amount),
            "totalCostUsd": str(self.total_cost_usd),
            "gasCostUsd": str(self.gas_cost_usd),
            "feeUsd": str(self.fee_usd),
            "etaMinutes": self.eta_minutes,
            "steps": [step.to_dict() for step in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        return cls(
            kind=RouteKind(data["kind"]),
            source_chain=data["sourceChain"],
            target_chain=data["targetChain"],
            source_asset=data["sourceAsset"],
            target_asset=data["targetAsset"],
            source_amount=Decimal(data["sourceAmount"]),
            target_amount=Decimal(data["targetAmount"]),
            total_cost_usd=Decimal(data["totalCostUsd"]),
            gas_cost_usd=Decimal(data["gasCostUsd"]),
            fee_usd=Decimal(data["feeUsd"]),
            eta_minutes=int(data["etaMinutes"]),
            steps=tuple(RouteStep.from_dict(step) for step in data["steps"]),
        )


@dataclass(frozen=True)
class RouteOptions:
    include_bridges: bool = True
    include_swaps: bool = True
    prefer_low_fees: bool = True
    prefer_speed: bool = False


@dataclass(frozen=True)
class RouteRequest:
    source_chain: str
    target_chain: str
    source_asset: str
    target_asset: str
    amount: Decimal
    options: RouteOptions = field(default_factory=RouteOptions)
    from_address: Optional[str] = None


def _same_asset(left: str, right: str) -> bool:
    return left.upper() == right.upper()
