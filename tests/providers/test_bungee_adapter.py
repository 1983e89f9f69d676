"""
Tests for the Bungee adapter.
"""

from decimal import Decimal

import httpx
import pytest

from wallet_engine.providers.base import (
    ExecuteRequest,
    ProviderState,
    ProviderTxRef,
    QuoteRequest,
    StepKind,
)
from wallet_engine.providers.bungee import BungeeAdapter

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"

MANUAL_ROUTE = {
    "quoteId": "quote-1",
    "requestHash": "0xhash1",
    "input": {"valueInUsd": "100.00"},
    "output": {"amount": "99000000", "valueInUsd": "99.00", "token": {"symbol": "USDC", "decimals": 6}},
    "estimatedTime": 600,
}

AUTO_ROUTE = {
    "quoteId": "quote-2",
    "requestHash": "0xhash2",
    "output": {"amount": "98000000", "token": {"decimals": 6}},
    "routeFee": {"feeInUsd": "0.40"},
    "estimatedTime": 30,
}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def responses():
    return {
        "/api/v1/bungee/quote": {"success": True, "result": {"manualRoutes": [MANUAL_ROUTE], "autoRoute": AUTO_ROUTE}},
        "/api/v1/bungee/build-tx": {
            "success": True,
            "result": {"txData": {"to": "0x5555555555555555555555555555555555555555", "data": "0xbeef", "value": "0x10"}},
        },
        "/api/v1/bungee/status": {
            "success": True,
            "result": [{"bungeeStatusCode": 3, "destinationData": {"amount": "98500000", "txHash": "0xdest"}}],
        },
    }


@pytest.fixture
def adapter(requests_seen, responses) -> BungeeAdapter:
    def handler(request: httpx.Request) -> httpx.Response:
        requests_seen.append(request)
        body = responses.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, json=body)

    return BungeeAdapter(
        api_key="test-key",
        base_url="https://bungee.test",
        transport=httpx.MockTransport(handler),
    )


def quote_request(**overrides) -> QuoteRequest:
    values = dict(
        kind=StepKind.BRIDGE,
        from_chain="ethereum",
        to_chain="arbitrum",
        from_asset="USDC",
        to_asset="USDC",
        amount=Decimal("100"),
    )
    values.update(overrides)
    return QuoteRequest(**values)


def execute_request() -> ExecuteRequest:
    return ExecuteRequest(
        kind=StepKind.BRIDGE,
        from_chain="ethereum",
        to_chain="arbitrum",
        from_asset="USDC",
        to_asset="USDC",
        amount=Decimal("100"),
        from_address=SENDER,
        recipient=RECIPIENT,
    )


def ref(ref_id: str = "0xhash1") -> ProviderTxRef:
    return ProviderTxRef(
        provider_id="bungee",
        ref_id=ref_id,
        from_chain="ethereum",
        to_chain="arbitrum",
        to_asset="USDC",
    )


# =============================================================================
# Quotes
# =============================================================================

class TestBungeeQuote:
    """Tests for quote requests and parsing."""

    @pytest.mark.asyncio
    async def test_every_route_becomes_a_quote(self, adapter: BungeeAdapter):
        quotes = await adapter.quote(quote_request())

        assert [quote.quote_id for quote in quotes] == ["quote-1", "quote-2"]
        manual, auto = quotes
        assert manual.to_amount == Decimal("99")
        # No explicit fee: input minus output value
        assert manual.fee_usd == Decimal("1.00")
        assert manual.eta_minutes == 10
        assert auto.to_amount == Decimal("98")
        assert auto.fee_usd == Decimal("0.40")
        assert auto.eta_minutes == 1

    @pytest.mark.asyncio
    async def test_request_parameters_and_key(self, adapter: BungeeAdapter, requests_seen):
        await adapter.quote(quote_request())

        sent = requests_seen[0]
        assert sent.headers["API-KEY"] == "test-key"
        assert sent.url.params["originChainId"] == "1"
        assert sent.url.params["destinationChainId"] == "42161"
        assert sent.url.params["inputAmount"] == "100000000"
        assert sent.url.params["outputToken"] == "0xaf88d065e77c8cc2239327c5edb3a432268e5831"

    @pytest.mark.asyncio
    async def test_empty_result(self, adapter: BungeeAdapter, responses):
        responses["/api/v1/bungee/quote"] = {"success": True, "result": {}}

        assert await adapter.quote(quote_request()) == []

    def test_bridge_only(self, adapter: BungeeAdapter):
        assert adapter.can_quote(quote_request()) is True
        assert adapter.can_quote(quote_request(kind=StepKind.SWAP, to_chain="ethereum", to_asset="USDT")) is False


# =============================================================================
# Execution and status
# =============================================================================

class TestBungeeExecute:
    """Tests for execute and status."""

    @pytest.mark.asyncio
    async def test_execute_builds_deposit(self, adapter: BungeeAdapter, requests_seen):
        result = await adapter.execute(execute_request())

        assert result.ref_id == "0xhash1"
        assert result.deposit == {
            "to": "0x5555555555555555555555555555555555555555",
            "data": "0xbeef",
            "value": "16",
        }
        assert result.expected_output == Decimal("99")

        build = requests_seen[1]
        assert build.url.path == "/api/v1/bungee/build-tx"
        assert build.url.params["quoteId"] == "quote-1"
        assert build.url.params["routeId"] == "0xhash1"
        assert build.url.params["receiverAddress"] == RECIPIENT

    @pytest.mark.asyncio
    async def test_execute_falls_back_to_auto_route(self, adapter: BungeeAdapter, responses):
        responses["/api/v1/bungee/quote"] = {"success": True, "result": {"manualRoutes": [], "autoRoute": AUTO_ROUTE}}

        result = await adapter.execute(execute_request())

        assert result.ref_id == "0xhash2"

    @pytest.mark.asyncio
    async def test_execute_without_route_fails(self, adapter: BungeeAdapter, responses):
        responses["/api/v1/bungee/quote"] = {"success": True, "result": {}}

        with pytest.raises(ValueError):
            await adapter.execute(execute_request())

    @pytest.mark.asyncio
    async def test_status_code_completed(self, adapter: BungeeAdapter, requests_seen):
        status = await adapter.status(ref())

        assert status.state == ProviderState.COMPLETED
        assert status.output_amount == Decimal("98.5")
        assert status.destination_tx_hash == "0xdest"
        assert requests_seen[0].url.params["requestHash"] == "0xhash1"

    @pytest.mark.asyncio
    async def test_status_refunded_is_failure(self, adapter: BungeeAdapter, responses):
        responses["/api/v1/bungee/status"] = {
            "success": True,
            "result": [{"bungeeStatusCode": 6, "error": "bridge refunded the deposit"}],
        }

        status = await adapter.status(ref())

        assert status.state == ProviderState.FAILED
        assert status.error == "bridge refunded the deposit"
        assert status.output_amount is None

    @pytest.mark.asyncio
    async def test_string_status(self, adapter: BungeeAdapter, responses):
        responses["/api/v1/bungee/status"] = {"success": True, "result": {"status": "PENDING"}}

        status = await adapter.status(ref())

        assert status.state == ProviderState.PENDING
