"""JSON-RPC ChainClient for EVM networks."""

from __future__ import annotations

import itertools
import logging
from typing import Any, List, Optional

import httpx

from ..config import settings
from ..core.errors import ChainRpcError
from .base import ChainClient, ChainTransaction, FeeData, TransactionReceipt
from .metadata import chain_info, resolve_chain

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_FEE = 1_000_000_000  # 1 gwei


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(value, 16)


class EvmRpcClient(ChainClient):
    """Thin async JSON-RPC client over httpx for one EVM chain."""

    def __init__(
        self,
        chain: str,
        rpc_url: Optional[str] = None,
        *,
        timeout_s: Optional[float] = None,
        required_confirmations: int = 1,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.chain = resolve_chain(chain)
        self.rpc_url = rpc_url or settings.rpc_urls.get(self.chain, "")
        if not self.rpc_url:
            raise ValueError(f"No RPC URL configured for chain {self.chain}")
        self.required_confirmations = required_confirmations
        self._eip1559 = bool(chain_info(self.chain).get("eip1559", True))
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s or settings.rpc_timeout_seconds)
        self._ids = itertools.count(1)

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            raise ChainRpcError(method, result["error"], chain=self.chain)

        return result.get("result")

    async def get_nonce(self, address: str) -> int:
        result = await self._rpc_call("eth_getTransactionCount", [address, "pending"])
        return int(result, 16)

    async def get_fee_data(self) -> FeeData:
        if not self._eip1559:
            gas_price = await self._rpc_call("eth_gasPrice", [])
            return FeeData(gas_price=int(gas_price, 16))

        fee_history = await self._rpc_call("eth_feeHistory", ["0x1", "latest", [50]])
        base_fee = int(fee_history["baseFeePerGas"][-1], 16)
        rewards = fee_history.get("reward") or []
        priority_fee = int(rewards[0][0], 16) if rewards and rewards[0] else DEFAULT_PRIORITY_FEE

        return FeeData(
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
            base_fee_per_gas=base_fee,
        )

    async def broadcast(self, signed_payload: str) -> str:
        tx_hash = await self._rpc_call("eth_sendRawTransaction", [signed_payload])
        logger.info("Broadcast on %s: %s", self.chain, tx_hash)
        return tx_hash

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[ChainTransaction]:
        result = await self._rpc_call("eth_getTransactionByHash", [tx_hash])
        if not result:
            return None
        return ChainTransaction(
            hash=result.get("hash", tx_hash),
            nonce=_hex_to_int(result.get("nonce")),
            block_number=_hex_to_int(result.get("blockNumber")),
            block_hash=result.get("blockHash"),
        )

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        result = await self._rpc_call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        return TransactionReceipt(
            hash=result.get("transactionHash", tx_hash),
            block_number=int(result["blockNumber"], 16),
            block_hash=result.get("blockHash"),
            success=result.get("status") == "0x1",
            gas_used=int(result.get("gasUsed", "0x0"), 16),
            effective_gas_price=int(result.get("effectiveGasPrice", "0x0"), 16),
        )

    async def get_latest_block_number(self) -> int:
        result = await self._rpc_call("eth_blockNumber", [])
        return int(result, 16)

    async def close(self) -> None:
        await self._client.aclose()
