from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from ...providers.base import ProviderTxRef, StepKind
from ..routing.models import Route


class LegStatus(str, Enum):
    WAITING = "waiting"        # Not started, blocked on an upstream leg
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LegStatus.CONFIRMED, LegStatus.FAILED)


class CrosschainStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def new_crosschain_id() -> str:
    return f"xc_{secrets.token_hex(16)}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


@dataclass
class Leg:
    """Execution record for one route step."""

    step_index: int
    kind: StepKind
    input_amount: Decimal
    provider_id: Optional[str] = None
    status: LegStatus = LegStatus.WAITING
    provider_ref: Optional[ProviderTxRef] = None
    onchain_tx_id: Optional[str] = None
    output_amount: Optional[Decimal] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepIndex": self.step_index,
            "kind": self.kind.value,
            "providerId": self.provider_id,
            "status": self.status.value,
            "providerRef": self.provider_ref.to_dict() if self.provider_ref else None,
            "onchainTxId": self.onchain_tx_id,
            "inputAmount": str(self.input_amount),
            "outputAmount": str(self.output_amount) if self.output_amount is not None else None,
            "error": self.error,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Leg":
        ref = data.get("providerRef")
        return cls(
            step_index=int(data["stepIndex"]),
            kind=StepKind(data["kind"]),
            provider_id=data.get("providerId"),
            status=LegStatus(data["status"]),
            provider_ref=ProviderTxRef.from_dict(ref) if ref else None,
            onchain_tx_id=data.get("onchainTxId"),
            input_amount=Decimal(data["inputAmount"]),
            output_amount=_decimal(data.get("outputAmount")),
            error=data.get("error"),
            started_at=_parse_dt(data.get("startedAt")),
            completed_at=_parse_dt(data.get("completedAt")),
        )


@dataclass
class CrosschainTransaction:
    """A route being executed. ``status`` is always derived from the legs."""

    id: str
    route: Route
    from_address: str
    recipient: str
    legs: List[Leg]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> CrosschainStatus:
        if any(leg.status == LegStatus.FAILED for leg in self.legs):
            return CrosschainStatus.FAILED
        if self.legs and all(leg.status == LegStatus.CONFIRMED for leg in self.legs):
            return CrosschainStatus.CONFIRMED
        return CrosschainStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status != CrosschainStatus.PENDING

    @property
    def output_amount(self) -> Optional[Decimal]:
        if not self.legs or self.legs[-1].status != LegStatus.CONFIRMED:
            return None
        return self.legs[-1].output_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "route": self.route.to_dict(),
            "fromAddress": self.from_address,
            "recipient": self.recipient,
            "legs": [leg.to_dict() for leg in self.legs],
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "completedAt": _iso(self.completed_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrosschainTransaction":
        return cls(
            id=data["id"],
            route=Route.from_dict(data["route"]),
            from_address=data["fromAddress"],
            recipient=data["recipient"],
            legs=[Leg.from_dict(leg) for leg in data["legs"]],
            created_at=_parse_dt(data["createdAt"]),
            updated_at=_parse_dt(data["updatedAt"]),
            completed_at=_parse_dt(data.get("completedAt")),
            metadata=dict(data.get("metadata") or {}),
        )
