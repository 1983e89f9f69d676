"""
Transaction history queries: filtering, sorting and page slicing over the
state machine's table.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from ..errors import InvalidRequest
from ..gas.estimator import chain_key
from .models import Transaction, TransactionKind, TransactionStatus

DEFAULT_PAGE_SIZE = 10


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    AMOUNT = "amount"
    FEE = "fee"
    BLOCK_NUMBER = "block_number"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class TransactionFilter:
    """Every set criterion must match. Address and asset matching ignore case."""

    chain: Optional[str] = None
    kinds: FrozenSet[TransactionKind] = field(default_factory=frozenset)
    statuses: FrozenSet[TransactionStatus] = field(default_factory=frozenset)
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    asset: Optional[str] = None

    def matches(self, tx: Transaction) -> bool:
        if self.chain is not None and tx.chain != chain_key(self.chain):
            return False
        if self.kinds and tx.kind not in self.kinds:
            return False
        if self.statuses and tx.status not in self.statuses:
            return False
        if self.from_address is not None and tx.from_address.lower() != self.from_address.lower():
            return False
        if self.to_address is not None and tx.to_address.lower() != self.to_address.lower():
            return False
        if self.start is not None and tx.created_at < self.start:
            return False
        if self.end is not None and tx.created_at > self.end:
            return False
        if self.asset is not None and tx.asset.upper() != self.asset.upper():
            return False
        return True


@dataclass(frozen=True)
class TransactionSort:
    field: SortField = SortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC


@dataclass
class TransactionPage:
    transactions: List[Transaction]
    total: int
    page: int
    limit: int
    pages: int


def _fee_paid(tx: Transaction) -> Decimal:
    if tx.realized_fee is not None:
        return tx.realized_fee
    return tx.fee.native_amount


SORT_KEYS: Dict[SortField, Callable[[Transaction], object]] = {
    SortField.CREATED_AT: lambda tx: tx.created_at,
    SortField.UPDATED_AT: lambda tx: tx.updated_at,
    SortField.AMOUNT: lambda tx: tx.amount,
    SortField.FEE: _fee_paid,
    SortField.BLOCK_NUMBER: lambda tx: tx.block_ref.number if tx.block_ref else 0,
}


def query_transactions(
    transactions: Iterable[Transaction],
    tx_filter: Optional[TransactionFilter] = None,
    sort: Optional[TransactionSort] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> TransactionPage:
    """Filter, sort (newest first by default) and slice out one page."""
    if page < 1:
        raise InvalidRequest("Page must be at least 1")
    if limit < 1:
        raise InvalidRequest("Limit must be at least 1")

    sort = sort or TransactionSort()
    matched = [tx for tx in transactions if tx_filter is None or tx_filter.matches(tx)]
    # sorted() stays stable with reverse=True, so equal keys keep table order
    matched = sorted(matched, key=SORT_KEYS[sort.field], reverse=sort.direction == SortDirection.DESC)

    total = len(matched)
    start = (page - 1) * limit
    return TransactionPage(
        transactions=matched[start:start + limit],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit),
    )
