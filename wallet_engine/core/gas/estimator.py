"""Per-chain fee estimation at three urgency tiers."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Mapping, Optional

from ...chains.base import ChainClient, FeeData
from ...chains.metadata import CHAIN_METADATA, from_base_units, resolve_chain, to_base_units
from ...config import settings
from ...providers.prices import PriceOracle
from ..errors import UnsupportedChain
from .models import GasQuote, GasTier

logger = logging.getLogger(__name__)


def chain_key(chain: str) -> str:
    """Canonical name for known chains, the raw key for custom ones."""
    try:
        return resolve_chain(chain)
    except UnsupportedChain:
        return chain


class GasEstimator:
    """Turns live fee data (or a static fallback table) into GasQuotes."""

    def __init__(
        self,
        chain_clients: Mapping[str, ChainClient],
        price_oracle: Optional[PriceOracle] = None,
        *,
        tier_multipliers: Optional[Mapping[str, Decimal]] = None,
        tier_eta_minutes: Optional[Mapping[str, int]] = None,
        default_gas_limit: Optional[int] = None,
    ) -> None:
        self._clients = chain_clients
        self._price_oracle = price_oracle
        multipliers = tier_multipliers or settings.gas_tier_multipliers
        etas = tier_eta_minutes or settings.gas_tier_eta_minutes
        self._multipliers = {GasTier(k): Decimal(str(v)) for k, v in multipliers.items()}
        self._eta_minutes = {GasTier(k): int(v) for k, v in etas.items()}
        self.default_gas_limit = default_gas_limit or settings.default_gas_limit

    def supports(self, chain: str) -> bool:
        key = chain_key(chain)
        return key in self._clients or key in CHAIN_METADATA

    async def estimate(
        self,
        chain: str,
        tier: GasTier = GasTier.AVERAGE,
        gas_limit: Optional[int] = None,
    ) -> GasQuote:
        key = chain_key(chain)
        tier = GasTier(tier)
        gas_limit = gas_limit or self.default_gas_limit
        client = self._clients.get(key)

        if client is not None:
            try:
                fee_data = await client.get_fee_data()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Fee data lookup failed on %s, using fallback table: %s", key, exc)
            else:
                return await self._from_fee_data(key, tier, gas_limit, fee_data)

        if key not in CHAIN_METADATA:
            raise UnsupportedChain(chain)
        return await self._from_fallback(key, tier, gas_limit)

    async def estimate_all(self, chain: str, gas_limit: Optional[int] = None) -> Dict[GasTier, GasQuote]:
        return {tier: await self.estimate(chain, tier, gas_limit) for tier in GasTier}

    async def _from_fee_data(self, chain: str, tier: GasTier, gas_limit: int, fee_data: FeeData) -> GasQuote:
        multiplier = self._multipliers.get(tier, Decimal("1"))

        if fee_data.is_eip1559:
            priority_fee = int(Decimal(fee_data.max_priority_fee_per_gas) * multiplier)
            if fee_data.base_fee_per_gas is not None:
                max_fee = fee_data.base_fee_per_gas * 2 + priority_fee
            else:
                max_fee = int(Decimal(fee_data.max_fee_per_gas) * multiplier)
            max_fee = max(max_fee, priority_fee)
            native_amount = from_base_units(max_fee * gas_limit, self._native_decimals(chain))
            return GasQuote(
                tier=tier,
                native_amount=native_amount,
                usd_amount=await self._to_usd(chain, native_amount),
                eta_minutes=self._eta_minutes.get(tier, 5),
                gas_limit=gas_limit,
                max_fee_per_gas=max_fee,
                max_priority_fee_per_gas=priority_fee,
            )

        if fee_data.gas_price is None:
            raise ValueError(f"Fee data for {chain} carries neither gas price nor priority fee")

        gas_price = int(Decimal(fee_data.gas_price) * multiplier)
        native_amount = from_base_units(gas_price * gas_limit, self._native_decimals(chain))
        return GasQuote(
            tier=tier,
            native_amount=native_amount,
            usd_amount=await self._to_usd(chain, native_amount),
            eta_minutes=self._eta_minutes.get(tier, 5),
            gas_limit=gas_limit,
            gas_price=gas_price,
        )

    async def _from_fallback(self, chain: str, tier: GasTier, gas_limit: int) -> GasQuote:
        table = CHAIN_METADATA[chain].get("fallback_gas", {})
        base_amount = Decimal(str(table.get(tier.value, table.get(GasTier.AVERAGE.value, "0"))))
        # Table values are priced for a plain transfer
        native_amount = base_amount * Decimal(gas_limit) / Decimal(settings.default_gas_limit)
        gas_price = to_base_units(native_amount, self._native_decimals(chain)) // gas_limit
        return GasQuote(
            tier=tier,
            native_amount=native_amount,
            usd_amount=await self._to_usd(chain, native_amount),
            eta_minutes=self._eta_minutes.get(tier, 5),
            gas_limit=gas_limit,
            gas_price=gas_price,
        )

    def _native_decimals(self, chain: str) -> int:
        return int(CHAIN_METADATA.get(chain, {}).get("native_decimals", 18))

    async def _to_usd(self, chain: str, native_amount: Decimal) -> Decimal:
        if self._price_oracle is None:
            return Decimal("0")
        symbol = CHAIN_METADATA.get(chain, {}).get("native_symbol")
        if not symbol:
            return Decimal("0")
        price = await self._price_oracle.get_price_usd(symbol)
        if price is None:
            return Decimal("0")
        return native_amount * price
