from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class FeeData:
    """Current fee market for a chain, per-gas values in the smallest unit."""

    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    base_fee_per_gas: Optional[int] = None

    @property
    def is_eip1559(self) -> bool:
        return self.max_priority_fee_per_gas is not None and (
            self.max_fee_per_gas is not None or self.base_fee_per_gas is not None
        )


@dataclass(frozen=True)
class ChainTransaction:
    """A transaction as reported by a node."""

    hash: str
    nonce: Optional[int] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None


@dataclass(frozen=True)
class TransactionReceipt:
    hash: str
    block_number: int
    success: bool
    gas_used: int
    effective_gas_price: int
    block_hash: Optional[str] = None


class ChainClient(ABC):
    """Per-chain RPC capability used by the state machine and monitor."""

    chain: str
    # Whether the node exposes a "mined but not final" signal.
    reports_inclusion: bool = True
    # Whether the chain honours replace-by-fee at the same nonce.
    supports_replacement: bool = True
    required_confirmations: int = 1

    @abstractmethod
    async def get_nonce(self, address: str) -> int:
        """Pending-inclusive transaction count for ``address``."""

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        ...

    @abstractmethod
    async def broadcast(self, signed_payload: str) -> str:
        """Submit a signed transaction and return its network hash."""

    @abstractmethod
    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        ...

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        ...

    @abstractmethod
    async def get_latest_block_number(self) -> int:
        ...

    async def find_replacement(self, address: str, nonce: int) -> Optional[str]:
        """Hash of another transaction mined at ``nonce`` for ``address``, if discoverable.

        Most nodes offer no mempool introspection, so the default reports nothing
        and the monitor falls back to the drop timeout.
        """
        return None


class Signer(ABC):
    """Key custody boundary. The engine never sees private keys."""

    @abstractmethod
    async def sign(self, unsigned_payload: Dict[str, Any], chain: str) -> str:
        """Return the signed, serialized transaction for ``unsigned_payload``."""
