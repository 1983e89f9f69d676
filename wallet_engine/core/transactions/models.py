"""
Transaction lifecycle models.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..gas.models import GasQuote, GasTier


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REPLACED = "replaced"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TransactionStatus.CONFIRMED,
    TransactionStatus.FAILED,
    TransactionStatus.REPLACED,
    TransactionStatus.CANCELLED,
})


class TransactionKind(str, Enum):
    TRANSFER = "transfer"
    CANCEL = "cancel"
    SPEED_UP = "speed_up"
    CONTRACT_CALL = "contract_call"


def new_local_id() -> str:
    return f"tx_{secrets.token_hex(16)}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class BlockRef:
    number: int
    hash: Optional[str] = None


@dataclass(frozen=True)
class Replacement:
    """Pointer from a superseded transaction to the one that took its nonce."""

    id: str
    reason: str


@dataclass
class TransferRequest:
    """Input to ``TransactionStateMachine.build``."""

    chain: str
    from_address: str
    to_address: str
    amount: Decimal
    asset: str
    nonce: Optional[int] = None
    fee: Optional[GasQuote] = None
    tier: GasTier = GasTier.AVERAGE
    gas_limit: Optional[int] = None
    data: Optional[str] = None
    value_override: Optional[int] = None
    kind: TransactionKind = TransactionKind.TRANSFER
    replaces: Optional[str] = None


@dataclass
class Transaction:
    """One logical on-chain operation.

    ``id`` is a local id until broadcast and the network hash afterwards.
    ``nonce`` cannot change once assigned.
    """

    id: str
    chain: str
    from_address: str
    to_address: str
    amount: Decimal
    asset: str
    nonce: int
    fee: GasQuote
    created_at: datetime
    updated_at: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    kind: TransactionKind = TransactionKind.TRANSFER
    local_id: str = ""
    data: Optional[str] = None
    value_override: Optional[int] = None
    broadcast_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    block_ref: Optional[BlockRef] = None
    confirmations: int = 0
    realized_fee: Optional[Decimal] = None
    replaces: Optional[str] = None
    replacement: Optional[Replacement] = None
    failure_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.local_id:
            self.local_id = self.id

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "nonce" and "nonce" in self.__dict__ and self.__dict__["nonce"] != value:
            raise AttributeError(f"nonce of {self.id} is already assigned")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_broadcast(self) -> bool:
        return self.broadcast_at is not None

    @property
    def nonce_key(self) -> tuple:
        return (self.chain, self.from_address.lower(), self.nonce)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "localId": self.local_id,
            "chain": self.chain,
            "fromAddress": self.from_address,
            "toAddress": self.to_address,
            "amount": str(self.amount),
            "asset": self.asset,
            "nonce": self.nonce,
            "fee": self.fee.to_dict(),
            "status": self.status.value,
            "kind": self.kind.value,
            "data": self.data,
            "valueOverride": str(self.value_override) if self.value_override is not None else None,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "broadcastAt": _iso(self.broadcast_at),
            "confirmedAt": _iso(self.confirmed_at),
            "blockRef": (
                {"number": self.block_ref.number, "hash": self.block_ref.hash} if self.block_ref else None
            ),
            "confirmations": self.confirmations,
            "realizedFee": str(self.realized_fee) if self.realized_fee is not None else None,
            "replaces": self.replaces,
            "replacement": (
                {"id": self.replacement.id, "reason": self.replacement.reason} if self.replacement else None
            ),
            "failureReason": self.failure_reason,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        block_ref = data.get("blockRef")
        replacement = data.get("replacement")
        realized_fee = data.get("realizedFee")
        value_override = data.get("valueOverride")
        return cls(
            id=data["id"],
            local_id=data.get("localId") or data["id"],
            chain=data["chain"],
            from_address=data["fromAddress"],
            to_address=data["toAddress"],
            amount=Decimal(data["amount"]),
            asset=data["asset"],
            nonce=int(data["nonce"]),
            fee=GasQuote.from_dict(data["fee"]),
            status=TransactionStatus(data["status"]),
            kind=TransactionKind(data.get("kind", TransactionKind.TRANSFER.value)),
            data=data.get("data"),
            value_override=int(value_override) if value_override is not None else None,
            created_at=_parse_dt(data["createdAt"]),
            updated_at=_parse_dt(data["updatedAt"]),
            broadcast_at=_parse_dt(data.get("broadcastAt")),
            confirmed_at=_parse_dt(data.get("confirmedAt")),
            block_ref=BlockRef(number=block_ref["number"], hash=block_ref.get("hash")) if block_ref else None,
            confirmations=int(data.get("confirmations") or 0),
            realized_fee=Decimal(realized_fee) if realized_fee is not None else None,
            replaces=data.get("replaces"),
            replacement=Replacement(id=replacement["id"], reason=replacement["reason"]) if replacement else None,
            failure_reason=data.get("failureReason"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class SignedTransaction:
    transaction_id: str
    chain: str
    payload: str
    payload_digest: str


def payload_digest(unsigned_payload: Dict[str, Any]) -> str:
    """Stable digest of an unsigned payload, used to avoid signing the same content twice."""
    encoded = json.dumps(unsigned_payload, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(encoded).hexdigest()
