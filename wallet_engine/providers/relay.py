"""ProviderAdapter for Relay's public bridge and swap API."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from ..chains.metadata import (
    asset_decimals,
    chain_id_for,
    to_base_units,
)
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

RELAY_CHAINS = ("ethereum", "base", "arbitrum", "optimism", "polygon", "bsc")

# Relay requires a user even for indicative quotes
QUOTE_USER_PLACEHOLDER = "0x000000000000000000000000000000000000dEaD"

# Origin gas is costed separately by the route engine
EXCLUDED_FEE_BUCKETS = frozenset({"gas"})


class RelayAdapter(ProviderAdapter):
    """Relay quotes are priced for exact input and executed through a single deposit transaction."""

    id = "relay"
    name = "Relay"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: float = 20,
        capabilities: Optional[ProviderCapabilities] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        configured = base_url or settings.relay_base_url
        base_urls = [configured] if configured else ["https://api.relay.link"]
        self.timeout_s = timeout_s
        self.capabilities = capabilities or registry_capabilities(
            RELAY_CHAINS,
            (StepKind.BRIDGE, StepKind.SWAP),
            cross_chain_swaps=True,
            estimated_minutes=2,
        )
        self._http = FallbackHttpClient(
            base_urls,
            headers={
                "accept": "application/json, text/plain, */*",
                "content-type": "application/json",
            },
            timeout_s=timeout_s,
            transport=transport,
            label="Relay",
        )

    def _quote_payload(
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
            "user": user,
            "recipient": recipient or user,
            "originChainId": chain_id_for(from_chain),
            "destinationChainId": chain_id_for(to_chain),
            "originCurrency": token_for(from_chain, from_asset),
            "destinationCurrency": token_for(to_chain, to_asset),
            "amount": str(to_base_units(amount, asset_decimals(from_chain, from_asset))),
            "tradeType": "EXACT_INPUT",
            "useDepositAddress": False,
        }

    def _parse_quote(
        self,
        kind: StepKind,
        from_chain: str,
        to_chain: str,
        from_asset: str,
        to_asset: str,
        amount: Decimal,
        data: Dict[str, Any],
    ) -> Optional[ProviderQuote]:
        details = data.get("details") or {}
        currency_out = details.get("currencyOut") or {}
        decimals = (currency_out.get("currency") or {}).get("decimals", asset_decimals(to_chain, to_asset))
        to_amount = to_decimal(currency_out.get("amount"), decimals)
        if to_amount is None:
            return None

        fees = data.get("fees") or {}
        fee_usd = sum_usd(
            bucket.get("amountUsd")
            for name, bucket in fees.items()
            if isinstance(bucket, dict) and name not in EXCLUDED_FEE_BUCKETS
        )

        time_estimate = details.get("timeEstimate")
        try:
            eta_minutes = max(1, math.ceil(float(time_estimate) / 60.0))
        except (TypeError, ValueError):
            eta_minutes = self.capabilities.estimated_minutes

        return ProviderQuote(
            provider_id=self.id,
            kind=kind,
            from_chain=from_chain,
            to_chain=to_chain,
            from_asset=from_asset,
            to_asset=to_asset,
            from_amount=amount,
            to_amount=to_amount,
            fee_usd=fee_usd,
            eta_minutes=eta_minutes,
            quote_id=self._request_id(data),
        )

    @staticmethod
    def _request_id(data: Dict[str, Any]) -> Optional[str]:
        for step in data.get("steps") or []:
            if step.get("requestId"):
                return step["requestId"]
        return data.get("requestId") or data.get("id")

    @staticmethod
    def _deposit(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for step in data.get("steps") or []:
            if step.get("kind") != "transaction":
                continue
            for item in step.get("items") or []:
                tx = item.get("data")
                if isinstance(tx, dict) and tx.get("to"):
                    return {
                        "to": tx["to"],
                        "data": tx.get("data") or "0x",
                        "value": str(parse_int(tx.get("value"))),
                    }
        return None

    async def quote(self, request: QuoteRequest) -> List[ProviderQuote]:
        payload = self._quote_payload(
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            amount=request.amount,
            user=request.from_address,
            recipient=request.recipient,
        )
        data = await self._http.post_json("/quote", payload)
        parsed = self._parse_quote(
            request.kind,
            request.from_chain,
            request.to_chain,
            request.from_asset,
            request.to_asset,
            request.amount,
            data,
        )
        return [parsed] if parsed else []

    async def execute(self, request: ExecuteRequest) -> ProviderTxRef:
        payload = self._quote_payload(
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            amount=request.amount,
            user=request.from_address,
            recipient=request.recipient,
        )
        data = await self._http.post_json("/quote", payload)
        request_id = self._request_id(data)
        if not request_id:
            raise ValueError("Relay quote did not include a request id")
        parsed = self._parse_quote(
            request.kind,
            request.from_chain,
            request.to_chain,
            request.from_asset,
            request.to_asset,
            request.amount,
            data,
        )
        return ProviderTxRef(
            provider_id=self.id,
            ref_id=request_id,
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            to_asset=request.to_asset,
            deposit=self._deposit(data),
            expected_output=parsed.to_amount if parsed else None,
        )

    async def status(self, ref: ProviderTxRef) -> ProviderStatus:
        data = await self._http.get_json("/intents/status/v2", params={"requestId": ref.ref_id})
        state = map_provider_state(data.get("status"))
        tx_hashes = data.get("txHashes") or []
        return ProviderStatus(
            state=state,
            output_amount=None,
            error=data.get("details") if state.is_terminal and state != ProviderState.COMPLETED else None,
            destination_tx_hash=tx_hashes[-1] if tx_hashes else None,
        )
