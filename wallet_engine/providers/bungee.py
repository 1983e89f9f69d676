"""ProviderAdapter for the Bungee (Socket) public API."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from ..chains.metadata import asset_decimals, chain_id_for, to_base_units
from ..config import settings
from .base import (
    ExecuteRequest,
    ProviderAdapter,
    ProviderCapabilities,
    ProviderQuote,
    ProviderState,
    ProviderStatus,
    ProviderTxRef,
    QuoteRequest,
    StepKind,
    map_provider_state,
)
from .common import parse_int, registry_capabilities, sum_usd, to_decimal, token_for
from .http import FallbackHttpClient

BUNGEE_CHAINS = ("ethereum", "base", "arbitrum", "optimism", "polygon", "bsc")

QUOTE_USER_PLACEHOLDER = "0x000000000000000000000000000000000000dEaD"

# Numeric codes returned by /status, see https://docs.bungee.exchange
BUNGEE_STATUS_CODES: Dict[int, str] = {
    0: "pending",
    1: "processing",
    2: "processing",
    3: "completed",
    4: "completed",
    5: "failed",
    6: "refunded",
    7: "cancelled",
}


class BungeeAdapter(ProviderAdapter):
    """Bridge-only adapter; Bungee picks the underlying bridge per route."""

    id = "bungee"
    name = "Bungee"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 20,
        capabilities: Optional[ProviderCapabilities] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.bungee_api_key
        configured = base_url or settings.bungee_base_url
        if configured:
            base_urls = [configured]
        else:
            base_urls = [
                "https://public-backend.bungee.exchange",
                "https://api.socket.tech",
            ]
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["API-KEY"] = self.api_key

        self.timeout_s = timeout_s
        self.capabilities = capabilities or registry_capabilities(
            BUNGEE_CHAINS,
            (StepKind.BRIDGE,),
            cross_chain_swaps=False,
            estimated_minutes=10,
        )
        self._http = FallbackHttpClient(base_urls, headers=headers, timeout_s=timeout_s, transport=transport, label="Bungee")

    def _quote_params(
        self,
        *,
        from_chain: str,
        to_chain: str,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        user: Optional[str],
        recipient: Optional[str],
    ) -> Dict[str, Any]:
        user = user or QUOTE_USER_PLACEHOLDER
        return {
            "originChainId": str(chain_id_for(from_chain)),
            "destinationChainId": str(chain_id_for(to_chain)),
            "inputToken": token_for(from_chain, from_asset),
            "outputToken": token_for(to_chain, to_asset),
            "inputAmount": str(to_base_units(amount, asset_decimals(from_chain, from_asset))),
            "userAddress": user,
            "receiverAddress": recipient or user,
            "enableManual": "true",
        }

    @staticmethod
    def _best_route(data: Dict[str, Any]) -> Dict[str, Any]:
        result = data.get("result") or {}
        manual_routes = result.get("manualRoutes") or []
        return manual_routes[0] if manual_routes else (result.get("autoRoute") or {})

    def _parse_route(
        self,
        request: QuoteRequest,
        route: Dict[str, Any],
    ) -> Optional[ProviderQuote]:
        output = route.get("output") or {}
        decimals = (output.get("token") or {}).get("decimals", asset_decimals(request.to_chain, request.to_asset))
        to_amount = to_decimal(output.get("amount"), decimals)
        if to_amount is None:
            return None

        route_fee = route.get("routeFee") or {}
        if route_fee.get("feeInUsd") is not None:
            fee_usd = sum_usd([route_fee.get("feeInUsd")])
        else:
            input_usd = sum_usd([(route.get("input") or {}).get("valueInUsd")])
            output_usd = sum_usd([output.get("valueInUsd")])
            fee_usd = max(input_usd - output_usd, Decimal("0"))

        try:
            eta_minutes = max(1, math.ceil(float(route.get("estimatedTime")) / 60.0))
        except (TypeError, ValueError):
            eta_minutes = self.capabilities.estimated_minutes

        return ProviderQuote(
            provider_id=self.id,
            kind=request.kind,
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            from_amount=request.amount,
            to_amount=to_amount,
            fee_usd=fee_usd,
            eta_minutes=eta_minutes,
            quote_id=route.get("quoteId"),
        )

    async def quote(self, request: QuoteRequest) -> List[ProviderQuote]:
        params = self._quote_params(
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            amount=request.amount,
            user=request.from_address,
            recipient=request.recipient,
        )
        data = await self._http.get_json("/api/v1/bungee/quote", params=params)
        result = data.get("result") or {}
        routes = list(result.get("manualRoutes") or [])
        if result.get("autoRoute"):
            routes.append(result["autoRoute"])

        quotes = []
        for route in routes:
            parsed = self._parse_route(request, route)
            if parsed is not None:
                quotes.append(parsed)
        return quotes

    async def execute(self, request: ExecuteRequest) -> ProviderTxRef:
        params = self._quote_params(
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            amount=request.amount,
            user=request.from_address,
            recipient=request.recipient,
        )
        data = await self._http.get_json("/api/v1/bungee/quote", params=params)
        route = self._best_route(data)
        quote_id = route.get("quoteId")
        route_id = route.get("requestHash") or route.get("routeId")
        if not quote_id or not route_id:
            raise ValueError("Bungee quote did not include a quoteId/requestHash")

        build = await self._http.get_json(
            "/api/v1/bungee/build-tx",
            params={
                "quoteId": quote_id,
                "routeId": route_id,
                "userAddress": request.from_address,
                "receiverAddress": request.recipient,
            },
        )
        tx_data = (build.get("result") or {}).get("txData") or {}
        deposit = None
        if tx_data.get("to"):
            deposit = {
                "to": tx_data["to"],
                "data": tx_data.get("data") or "0x",
                "value": str(parse_int(tx_data.get("value"))),
            }

        quote_request = QuoteRequest(
            kind=request.kind,
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            amount=request.amount,
        )
        parsed = self._parse_route(quote_request, route)
        return ProviderTxRef(
            provider_id=self.id,
            ref_id=route_id,
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            to_asset=request.to_asset,
            deposit=deposit,
            expected_output=parsed.to_amount if parsed else None,
        )

    async def status(self, ref: ProviderTxRef) -> ProviderStatus:
        data = await self._http.get_json("/api/v1/bungee/status", params={"requestHash": ref.ref_id})
        result = data.get("result")
        entry = result[0] if isinstance(result, list) and result else (result or {})

        raw_status = entry.get("status")
        if raw_status is None and entry.get("bungeeStatusCode") is not None:
            raw_status = BUNGEE_STATUS_CODES.get(parse_int(entry["bungeeStatusCode"]))
        state = map_provider_state(raw_status)

        destination = entry.get("destinationData") or {}
        output_amount = None
        if ref.to_asset and destination.get("amount") is not None:
            output_amount = to_decimal(destination["amount"], asset_decimals(ref.to_chain, ref.to_asset))

        return ProviderStatus(
            state=state,
            output_amount=output_amount,
            error=entry.get("error") if state in (ProviderState.FAILED, ProviderState.REJECTED) else None,
            destination_tx_hash=destination.get("txHash"),
        )
