"""
Route computation.

Fans quote requests out to every capable provider in parallel, assembles
direct, bridge, swap and multi-step candidates, costs them with the gas
estimator and ranks them. Read-only: nothing is executed or cached here.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import List, Optional, Sequence

from ...config import settings
from ...providers.base import ProviderAdapter, ProviderQuote, QuoteRequest, StepKind
from ...providers.registry import ProviderRegistry
from ..errors import InvalidRequest, ProviderUnavailable, classify_error
from ..gas import GasEstimator, GasQuote, GasTier, chain_key
from .models import Route, RouteKind, RouteOptions, RouteRequest, RouteStep


class RouteEngine:
    """Finds and ranks candidate routes between two (chain, asset) pairs."""

    def __init__(
        self,
        providers: ProviderRegistry,
        gas_estimator: GasEstimator,
        *,
        provider_timeout_seconds: Optional[float] = None,
        intermediate_asset: Optional[str] = None,
        cost_weight: Optional[float] = None,
        time_weight: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.providers = providers
        self.gas_estimator = gas_estimator
        self.provider_timeout_seconds = provider_timeout_seconds or settings.provider_timeout_seconds
        self.intermediate_asset = (intermediate_asset or settings.route_intermediate_asset).upper()
        self.cost_weight = Decimal(str(settings.route_cost_weight if cost_weight is None else cost_weight))
        self.time_weight = Decimal(str(settings.route_time_weight if time_weight is None else time_weight))
        self.logger = logger or logging.getLogger(__name__)

    async def find_routes(self, request: RouteRequest) -> List[Route]:
        """Return every viable route, best first.

        Candidates are collected as direct, bridge, swap, then complex, each
        in provider registration order; the stable sort keeps that order
        among equally ranked routes.
        """
        if request.amount is None or request.amount <= 0:
            raise InvalidRequest("Amount must be greater than zero")

        source_chain = chain_key(request.source_chain)
        target_chain = chain_key(request.target_chain)
        source_asset = request.source_asset.upper()
        target_asset = request.target_asset.upper()
        amount = Decimal(request.amount)
        options = request.options or RouteOptions()

        source_gas = await self.gas_estimator.estimate(source_chain, GasTier.AVERAGE)

        if source_chain == target_chain and source_asset == target_asset:
            return [self._direct_route(source_chain, source_asset, amount, source_gas)]

        stage_args = (source_chain, target_chain, source_asset, target_asset, amount, request.from_address, source_gas)
        stages = []
        if source_chain == target_chain:
            if options.include_swaps:
                stages.append(self._single_step_routes(RouteKind.SWAP, StepKind.SWAP, *stage_args))
        else:
            if options.include_bridges and source_asset == target_asset:
                stages.append(self._single_step_routes(RouteKind.BRIDGE, StepKind.BRIDGE, *stage_args))
            if options.include_swaps and source_asset != target_asset:
                stages.append(self._single_step_routes(RouteKind.SWAP, StepKind.SWAP, *stage_args))
            if options.include_bridges and options.include_swaps and source_asset != target_asset:
                stages.append(self._guarded_complex_routes(*stage_args))

        # Stages quote concurrently; gather keeps their bridge, swap, complex order
        candidates: List[Route] = []
        for stage_routes in await asyncio.gather(*stages):
            candidates.extend(stage_routes)

        return self._rank(candidates, options)

    # ---------------------------
    # Candidate assembly
    # ---------------------------
    def _direct_route(self, chain: str, asset: str, amount: Decimal, gas: GasQuote) -> Route:
        step = RouteStep(
            kind=StepKind.TRANSFER,
            from_chain=chain,
            to_chain=chain,
            from_asset=asset,
            to_asset=asset,
            from_amount=amount,
            to_amount=amount,
            fee_usd=Decimal("0"),
            eta_minutes=gas.eta_minutes,
        )
        return Route(
            kind=RouteKind.DIRECT,
            source_chain=chain,
            target_chain=chain,
            source_asset=asset,
            target_asset=asset,
            source_amount=amount,
            target_amount=amount,
            total_cost_usd=gas.usd_amount,
            gas_cost_usd=gas.usd_amount,
            fee_usd=Decimal("0"),
            eta_minutes=gas.eta_minutes,
            steps=(step,),
        )

    async def _single_step_routes(
        self,
        route_kind: RouteKind,
        step_kind: StepKind,
        source_chain: str,
        target_chain: str,
        source_asset: str,
        target_asset: str,
        amount: Decimal,
        from_address: Optional[str],
        source_gas: GasQuote,
    ) -> List[Route]:
        quotes = await self._collect_quotes(
            QuoteRequest(
                kind=step_kind,
                from_chain=source_chain,
                to_chain=target_chain,
                from_asset=source_asset,
                to_asset=target_asset,
                amount=amount,
                from_address=from_address,
            )
        )
        routes = []
        for quote in quotes:
            routes.append(self._assemble(route_kind, [self._step_from_quote(quote)], source_gas, None))
        return routes

    async def _guarded_complex_routes(
        self,
        source_chain: str,
        target_chain: str,
        source_asset: str,
        target_asset: str,
        amount: Decimal,
        from_address: Optional[str],
        source_gas: GasQuote,
    ) -> List[Route]:
        """Complex candidates, or none when any piece of the path cannot be costed."""
        try:
            return await self._complex_routes(
                source_chain, target_chain, source_asset, target_asset, amount, from_address, source_gas
            )
        except Exception as exc:  # noqa: BLE001
            error = ProviderUnavailable(
                f"complex route via {self.intermediate_asset}",
                str(exc) or type(exc).__name__,
                category=classify_error(exc),
            )
            self.logger.warning("%s (%s->%s)", error.message, source_chain, target_chain)
            return []

    async def _complex_routes(
        self,
        source_chain: str,
        target_chain: str,
        source_asset: str,
        target_asset: str,
        amount: Decimal,
        from_address: Optional[str],
        source_gas: GasQuote,
    ) -> List[Route]:
        """Swap into the intermediate asset, bridge it, swap out of it.

        Either swap is skipped when the source or target already is the
        intermediate asset.
        """
        intermediate = self.intermediate_asset
        leading_steps: List[RouteStep] = []
        bridge_amount = amount

        if source_asset != intermediate:
            initial = await self._best_quote(
                QuoteRequest(
                    kind=StepKind.SWAP,
                    from_chain=source_chain,
                    to_chain=source_chain,
                    from_asset=source_asset,
                    to_asset=intermediate,
                    amount=amount,
                    from_address=from_address,
                )
            )
            if initial is None:
                return []
            leading_steps.append(self._step_from_quote(initial))
            bridge_amount = initial.to_amount

        bridge_quotes = await self._collect_quotes(
            QuoteRequest(
                kind=StepKind.BRIDGE,
                from_chain=source_chain,
                to_chain=target_chain,
                from_asset=intermediate,
                to_asset=intermediate,
                amount=bridge_amount,
                from_address=from_address,
            )
        )
        if not bridge_quotes:
            return []

        needs_final_swap = target_asset != intermediate
        target_gas: Optional[GasQuote] = None
        if needs_final_swap:
            target_gas = await self.gas_estimator.estimate(target_chain, GasTier.AVERAGE)
            finals = await asyncio.gather(
                *(
                    self._best_quote(
                        QuoteRequest(
                            kind=StepKind.SWAP,
                            from_chain=target_chain,
                            to_chain=target_chain,
                            from_asset=intermediate,
                            to_asset=target_asset,
                            amount=bridge_quote.to_amount,
                            from_address=from_address,
                        )
                    )
                    for bridge_quote in bridge_quotes
                )
            )
        else:
            finals = [None] * len(bridge_quotes)

        routes = []
        for bridge_quote, final in zip(bridge_quotes, finals):
            if needs_final_swap and final is None:
                continue
            steps = leading_steps + [self._step_from_quote(bridge_quote)]
            if final is not None:
                steps.append(self._step_from_quote(final))
            routes.append(self._assemble(RouteKind.COMPLEX, steps, source_gas, target_gas))
        return routes

    def _assemble(
        self,
        kind: RouteKind,
        steps: Sequence[RouteStep],
        source_gas: GasQuote,
        target_gas: Optional[GasQuote],
    ) -> Route:
        first, last = steps[0], steps[-1]
        gas_cost = source_gas.usd_amount
        # Target chain gas is paid only when a step executes there
        if target_gas is not None and any(step.from_chain == last.to_chain != first.from_chain for step in steps):
            gas_cost += target_gas.usd_amount
        fee_usd = sum((step.fee_usd for step in steps), Decimal("0"))
        return Route(
            kind=kind,
            source_chain=first.from_chain,
            target_chain=last.to_chain,
            source_asset=first.from_asset,
            target_asset=last.to_asset,
            source_amount=first.from_amount,
            target_amount=last.to_amount,
            total_cost_usd=gas_cost + fee_usd,
            gas_cost_usd=gas_cost,
            fee_usd=fee_usd,
            eta_minutes=sum(step.eta_minutes for step in steps),
            steps=tuple(steps),
        )

    @staticmethod
    def _step_from_quote(quote: ProviderQuote) -> RouteStep:
        return RouteStep(
            kind=quote.kind,
            provider_id=quote.provider_id,
            from_chain=chain_key(quote.from_chain),
            to_chain=chain_key(quote.to_chain),
            from_asset=quote.from_asset.upper(),
            to_asset=quote.to_asset.upper(),
            from_amount=quote.from_amount,
            to_amount=quote.to_amount,
            fee_usd=quote.fee_usd,
            eta_minutes=quote.eta_minutes,
        )

    # ---------------------------
    # Provider fan-out
    # ---------------------------
    async def _collect_quotes(self, request: QuoteRequest) -> List[ProviderQuote]:
        """Quotes from every capable adapter, in registration order."""
        adapters = self.providers.capable(request)
        if not adapters:
            return []
        results = await asyncio.gather(*(self._quote_adapter(adapter, request) for adapter in adapters))
        quotes = []
        for adapter_quotes in results:
            for quote in adapter_quotes:
                if self._matches(request, quote):
                    quotes.append(quote)
        return quotes

    async def _best_quote(self, request: QuoteRequest) -> Optional[ProviderQuote]:
        best: Optional[ProviderQuote] = None
        for quote in await self._collect_quotes(request):
            # Strict comparison keeps the first quote on ties
            if best is None or quote.to_amount > best.to_amount:
                best = quote
        return best

    async def _quote_adapter(self, adapter: ProviderAdapter, request: QuoteRequest) -> List[ProviderQuote]:
        try:
            return list(await asyncio.wait_for(adapter.quote(request), timeout=self.provider_timeout_seconds))
        except Exception as exc:  # noqa: BLE001
            reason = "timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc) or type(exc).__name__
            error = ProviderUnavailable(adapter.id, reason, category=classify_error(exc))
            self.logger.warning(
                "%s (kind=%s, %s->%s)",
                error.message,
                request.kind.value,
                request.from_chain,
                request.to_chain,
            )
            return []

    @staticmethod
    def _matches(request: QuoteRequest, quote: ProviderQuote) -> bool:
        if quote.to_amount is None or quote.to_amount <= 0:
            return False
        if chain_key(quote.from_chain) != request.from_chain or chain_key(quote.to_chain) != request.to_chain:
            return False
        if quote.from_asset.upper() != request.from_asset.upper():
            return False
        # A bridge that hands back a different asset is really a swap
        return quote.to_asset.upper() == request.to_asset.upper()

    # ---------------------------
    # Ranking
    # ---------------------------
    def _rank(self, routes: List[Route], options: RouteOptions) -> List[Route]:
        if options.prefer_low_fees:
            return sorted(routes, key=lambda route: route.total_cost_usd)
        if options.prefer_speed:
            return sorted(routes, key=lambda route: route.eta_minutes)
        return sorted(routes, key=self.score)

    def score(self, route: Route) -> Decimal:
        """Weighted cost/time score used when no preference is set. Lower is better."""
        return self.cost_weight * route.total_cost_usd + self.time_weight * Decimal(route.eta_minutes)
