"""Fee quote models."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class GasTier(str, Enum):
    SLOW = "slow"
    AVERAGE = "average"
    FAST = "fast"


def _scale_int(value: Optional[int], multiplier: Decimal) -> Optional[int]:
    if value is None:
        return None
    numerator, denominator = Decimal(multiplier).as_integer_ratio()
    return value * numerator // denominator


@dataclass(frozen=True)
class GasQuote:
    """Fee for one transaction at an urgency tier.

    Carries either a legacy ``gas_price`` or an EIP-1559
    ``(max_fee_per_gas, max_priority_fee_per_gas)`` pair. Per-gas values are in
    the chain's smallest unit; ``native_amount`` is the worst-case total in
    whole native units.
    """

    tier: GasTier
    native_amount: Decimal
    usd_amount: Decimal
    eta_minutes: int
    gas_limit: int
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    def __post_init__(self) -> None:
        has_pair = self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None
        if (self.gas_price is None) == (not has_pair):
            raise ValueError("GasQuote needs either gas_price or a max fee / priority fee pair")
        if self.gas_limit <= 0:
            raise ValueError("gas_limit must be positive")

    @property
    def is_eip1559(self) -> bool:
        return self.gas_price is None

    @property
    def fee_per_gas(self) -> int:
        """Highest price per gas the sender may pay."""
        return self.max_fee_per_gas if self.is_eip1559 else self.gas_price  # type: ignore[return-value]

    def bumped(self, multiplier: Decimal) -> "GasQuote":
        """Return a copy with every fee field raised by ``multiplier``, gas limit unchanged."""
        multiplier = Decimal(multiplier)
        return replace(
            self,
            native_amount=self.native_amount * multiplier,
            usd_amount=self.usd_amount * multiplier,
            gas_price=_scale_int(self.gas_price, multiplier),
            max_fee_per_gas=_scale_int(self.max_fee_per_gas, multiplier),
            max_priority_fee_per_gas=_scale_int(self.max_priority_fee_per_gas, multiplier),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "nativeAmount": str(self.native_amount),
            "usdAmount": str(self.usd_amount),
            "etaMinutes": self.eta_minutes,
            "gasLimit": self.gas_limit,
            "gasPrice": str(self.gas_price) if self.gas_price is not None else None,
            "maxFeePerGas": str(self.max_fee_per_gas) if self.max_fee_per_gas is not None else None,
            "maxPriorityFeePerGas": (
                str(self.max_priority_fee_per_gas) if self.max_priority_fee_per_gas is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GasQuote":
        def _opt_int(key: str) -> Optional[int]:
            value = data.get(key)
            return int(value) if value is not None else None

        return cls(
            tier=GasTier(data["tier"]),
            native_amount=Decimal(data["nativeAmount"]),
            usd_amount=Decimal(data["usdAmount"]),
            eta_minutes=int(data["etaMinutes"]),
            gas_limit=int(data["gasLimit"]),
            gas_price=_opt_int("gasPrice"),
            max_fee_per_gas=_opt_int("maxFeePerGas"),
            max_priority_fee_per_gas=_opt_int("maxPriorityFeePerGas"),
        )
