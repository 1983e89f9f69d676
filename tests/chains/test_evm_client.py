"""
Tests for the EVM JSON-RPC client.

Responses are served by httpx.MockTransport keyed on the RPC method.
"""

import json

import httpx
import pytest

from wallet_engine.chains.evm import DEFAULT_PRIORITY_FEE, EvmRpcClient
from wallet_engine.core.errors import ChainRpcError, ErrorCategory

GWEI = 10**9
RPC_URL = "https://rpc.test"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def calls():
    return []


@pytest.fixture
def results():
    return {
        "eth_getTransactionCount": "0x7",
        "eth_gasPrice": hex(3 * GWEI),
        "eth_feeHistory": {"baseFeePerGas": [hex(30 * GWEI), hex(31 * GWEI)], "reward": [[hex(2 * GWEI)]]},
        "eth_sendRawTransaction": "0xabc",
        "eth_getTransactionByHash": {"hash": "0xabc", "nonce": "0x7", "blockNumber": "0x64", "blockHash": "0xblock"},
        "eth_getTransactionReceipt": {
            "transactionHash": "0xabc",
            "blockNumber": "0x64",
            "blockHash": "0xblock",
            "status": "0x1",
            "gasUsed": hex(21000),
            "effectiveGasPrice": hex(20 * GWEI),
        },
        "eth_blockNumber": "0x66",
    }


@pytest.fixture
def make_client(calls, results):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body)
        result = results.get(body["method"])
        if isinstance(result, Exception):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": str(result)}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def _make(chain: str = "ethereum") -> EvmRpcClient:
        return EvmRpcClient(
            chain,
            RPC_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    return _make


# =============================================================================
# Calls
# =============================================================================

class TestEvmRpcClient:
    """Tests for request encoding and response parsing."""

    @pytest.mark.asyncio
    async def test_get_nonce_uses_pending_tag(self, make_client, calls):
        client = make_client()

        assert await client.get_nonce("0xabc") == 7
        assert calls[0]["method"] == "eth_getTransactionCount"
        assert calls[0]["params"] == ["0xabc", "pending"]
        assert calls[0]["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_request_ids_increase(self, make_client, calls):
        client = make_client()

        await client.get_latest_block_number()
        await client.get_latest_block_number()

        assert [call["id"] for call in calls] == [1, 2]

    @pytest.mark.asyncio
    async def test_eip1559_fee_data(self, make_client):
        fee = await make_client().get_fee_data()

        assert fee.is_eip1559
        assert fee.base_fee_per_gas == 31 * GWEI
        assert fee.max_priority_fee_per_gas == 2 * GWEI
        assert fee.max_fee_per_gas == 64 * GWEI

    @pytest.mark.asyncio
    async def test_missing_reward_uses_default_priority_fee(self, make_client, results):
        results["eth_feeHistory"] = {"baseFeePerGas": [hex(10 * GWEI)], "reward": []}

        fee = await make_client().get_fee_data()

        assert fee.max_priority_fee_per_gas == DEFAULT_PRIORITY_FEE

    @pytest.mark.asyncio
    async def test_legacy_chain_uses_gas_price(self, make_client, calls):
        fee = await make_client("bsc").get_fee_data()

        assert fee.gas_price == 3 * GWEI
        assert fee.is_eip1559 is False
        assert calls[0]["method"] == "eth_gasPrice"

    @pytest.mark.asyncio
    async def test_broadcast_returns_hash(self, make_client, calls):
        assert await make_client().broadcast("0xsigned") == "0xabc"
        assert calls[0]["params"] == ["0xsigned"]

    @pytest.mark.asyncio
    async def test_transaction_and_receipt(self, make_client):
        client = make_client()

        tx = await client.get_transaction_by_hash("0xabc")
        receipt = await client.get_receipt("0xabc")

        assert tx.nonce == 7
        assert tx.block_number == 100
        assert receipt.success is True
        assert receipt.gas_used == 21000
        assert receipt.effective_gas_price == 20 * GWEI
        assert await client.get_latest_block_number() == 102

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, make_client, results):
        results["eth_getTransactionByHash"] = None
        results["eth_getTransactionReceipt"] = None
        client = make_client()

        assert await client.get_transaction_by_hash("0xmissing") is None
        assert await client.get_receipt("0xmissing") is None

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, make_client, results):
        results["eth_getTransactionReceipt"] = dict(results["eth_getTransactionReceipt"], status="0x0")

        receipt = await make_client().get_receipt("0xabc")

        assert receipt.success is False

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self, make_client, results):
        results["eth_sendRawTransaction"] = RuntimeError("nonce too low")

        with pytest.raises(ChainRpcError) as exc_info:
            await make_client().broadcast("0xsigned")

        assert "nonce too low" in exc_info.value.message
        assert exc_info.value.category == ErrorCategory.NETWORK
        assert exc_info.value.context.chain == "ethereum"

    @pytest.mark.asyncio
    async def test_find_replacement_defaults_to_none(self, make_client):
        assert await make_client().find_replacement("0xabc", 7) is None

    def test_requires_rpc_url(self):
        with pytest.raises(ValueError):
            EvmRpcClient("ethereum", "")

    def test_resolves_chain_alias(self, make_client):
        assert make_client("mainnet").chain == "ethereum"
