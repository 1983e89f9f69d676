"""Native asset USD prices used to express gas and fees in USD."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

COINGECKO_IDS: Dict[str, str] = {
    "ETH": "ethereum",
    "MATIC": "matic-network",
    "POL": "polygon-ecosystem-token",
    "BNB": "binancecoin",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
}


class PriceOracle(ABC):
    @abstractmethod
    async def get_price_usd(self, symbol: str) -> Optional[Decimal]:
        """USD price of one unit of ``symbol`` or None when unknown."""


class StaticPriceOracle(PriceOracle):
    """Fixed prices, for tests and offline use."""

    def __init__(self, prices: Optional[Mapping[str, Decimal]] = None) -> None:
        self._prices = {k.upper(): Decimal(str(v)) for k, v in (prices or {}).items()}

    async def get_price_usd(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get(symbol.upper())


@dataclass
class _CachedPrice:
    value: Decimal
    expires_at: float


class CoingeckoPriceOracle(PriceOracle):
    """Coingecko simple-price lookups with a short TTL cache."""

    name = "coingecko"
    timeout_s = 15

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.coingecko.com/api/v3",
        ttl_seconds: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.coingecko_api_key
        self.base_url = base_url.rstrip("/")
        self.ttl_seconds = ttl_seconds or settings.price_cache_ttl_seconds
        self._cache: Dict[str, _CachedPrice] = {}
        self._lock = asyncio.Lock()
        self._transport = transport

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["X-CG-Demo-API-Key"] = self.api_key
        return headers

    async def get_price_usd(self, symbol: str) -> Optional[Decimal]:
        if not settings.enable_coingecko:
            return None

        coin_id = COINGECKO_IDS.get(symbol.upper())
        if coin_id is None:
            return None

        async with self._lock:
            cached = self._cache.get(coin_id)
            if cached and cached.expires_at > time.time():
                return cached.value

        params = {"ids": coin_id, "vs_currencies": "usd"}
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/simple/price",
                    headers=self._build_headers(),
                    params=params,
                    timeout=self.timeout_s,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Coingecko price lookup failed for %s: %s", symbol, exc)
            return None

        raw = (data.get(coin_id) or {}).get("usd")
        if raw is None:
            return None

        price = Decimal(str(raw))
        async with self._lock:
            self._cache[coin_id] = _CachedPrice(value=price, expires_at=time.time() + self.ttl_seconds)
        return price
