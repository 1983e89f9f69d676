"""
Tests for the RouteEngine and Route model

Direct, bridge, swap and complex candidates, provider fan-out with timeouts
and failures, capability filtering, and ranking.
"""

import logging
import time
from decimal import Decimal

import pytest

from wallet_engine.core.errors import InvalidRequest
from wallet_engine.core.routing import Route, RouteEngine, RouteKind, RouteOptions, RouteRequest, RouteStep
from wallet_engine.providers.base import StepKind
from wallet_engine.providers.registry import ProviderRegistry


def request(
    source_chain: str = "ethereum",
    target_chain: str = "arbitrum",
    source_asset: str = "USDT",
    target_asset: str = "USDT",
    amount: str = "100",
    **options,
) -> RouteRequest:
    return RouteRequest(
        source_chain=source_chain,
        target_chain=target_chain,
        source_asset=source_asset,
        target_asset=target_asset,
        amount=Decimal(amount),
        options=RouteOptions(**options),
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def build_engine(gas_estimator):
    def _build(*adapters, **overrides) -> RouteEngine:
        values = dict(
            provider_timeout_seconds=0.05,
            intermediate_asset="USDT",
            cost_weight=Decimal("0.7"),
            time_weight=Decimal("0.3"),
        )
        values.update(overrides)
        return RouteEngine(ProviderRegistry(list(adapters)), gas_estimator, **values)

    return _build


# =============================================================================
# Candidates
# =============================================================================

class TestDirectRoutes:
    """Same chain, same asset."""

    @pytest.mark.asyncio
    async def test_direct_route_costs_gas_only(self, build_engine, make_provider):
        bridge = make_provider("bridge-a")
        engine = build_engine(bridge)

        routes = await engine.find_routes(request(target_chain="ethereum", source_asset="ETH", target_asset="ETH", amount="10"))

        assert len(routes) == 1
        route = routes[0]
        assert route.kind == RouteKind.DIRECT
        assert route.target_amount == Decimal("10")
        assert route.total_cost_usd == Decimal("0.84")
        assert route.fee_usd == Decimal("0")
        assert route.steps[0].kind == StepKind.TRANSFER
        assert bridge.quote_requests == []

    @pytest.mark.asyncio
    async def test_chain_aliases_and_asset_case(self, build_engine):
        engine = build_engine()

        routes = await engine.find_routes(request(target_chain="mainnet", source_asset="eth", target_asset="ETH"))

        assert routes[0].kind == RouteKind.DIRECT
        assert routes[0].source_asset == "ETH"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1"])
    async def test_non_positive_amount_rejected(self, build_engine, amount):
        with pytest.raises(InvalidRequest):
            await build_engine().find_routes(request(amount=amount))


class TestBridgeRoutes:
    """Cross-chain, same asset."""

    @pytest.mark.asyncio
    async def test_single_bridge_route(self, build_engine, make_provider):
        engine = build_engine(make_provider("bridge-a", output_ratio=Decimal("0.995"), eta_minutes=15))

        routes = await engine.find_routes(request())

        assert len(routes) == 1
        route = routes[0]
        assert route.kind == RouteKind.BRIDGE
        assert route.target_amount == Decimal("99.500")
        assert route.eta_minutes == 15
        assert route.fee_usd == Decimal("1")
        assert route.total_cost_usd == Decimal("1.84")
        assert route.providers == ("bridge-a",)

    @pytest.mark.asyncio
    async def test_slow_and_failing_providers_are_skipped(self, build_engine, make_provider):
        slow = make_provider("slow", delay=1)
        broken = make_provider("broken", quote_error=RuntimeError("503 Service Unavailable"))
        healthy = make_provider("healthy")
        engine = build_engine(slow, broken, healthy)

        routes = await engine.find_routes(request())

        assert [route.providers for route in routes] == [("healthy",)]
        assert len(slow.quote_requests) == 1
        assert len(broken.quote_requests) == 1

    @pytest.mark.asyncio
    async def test_no_providers_means_no_routes(self, build_engine):
        assert await build_engine().find_routes(request()) == []

    @pytest.mark.asyncio
    async def test_incapable_provider_not_queried(self, build_engine, make_provider):
        elsewhere = make_provider("elsewhere", chains=("ethereum", "base"))
        too_small = make_provider("too-small", max_amount={"USDT": Decimal("50")})
        engine = build_engine(elsewhere, too_small)

        routes = await engine.find_routes(request())

        assert routes == []
        assert elsewhere.quote_requests == []
        assert too_small.quote_requests == []

    @pytest.mark.asyncio
    async def test_asset_changing_bridge_quote_discarded(self, build_engine, make_provider):
        sloppy = make_provider("sloppy")
        sloppy.to_asset_override = "USDC"
        engine = build_engine(sloppy)

        assert await engine.find_routes(request()) == []

    @pytest.mark.asyncio
    async def test_zero_output_quote_discarded(self, build_engine, make_provider):
        engine = build_engine(make_provider("empty", output_ratio=Decimal("0")))

        assert await engine.find_routes(request()) == []

    @pytest.mark.asyncio
    async def test_bridges_can_be_excluded(self, build_engine, make_provider):
        bridge = make_provider("bridge-a")
        engine = build_engine(bridge)

        assert await engine.find_routes(request(include_bridges=False)) == []
        assert bridge.quote_requests == []


class TestSwapRoutes:
    """Asset changes, on one chain or across chains."""

    @pytest.mark.asyncio
    async def test_same_chain_swap(self, build_engine, make_provider):
        swapper = make_provider("dex", kinds=(StepKind.SWAP,), output_ratio=Decimal("0.5"))
        engine = build_engine(swapper)

        routes = await engine.find_routes(request(target_chain="ethereum", target_asset="USDC"))

        assert [route.kind for route in routes] == [RouteKind.SWAP]
        assert routes[0].target_amount == Decimal("50.0")
        assert routes[0].steps[0].to_asset == "USDC"

    @pytest.mark.asyncio
    async def test_cross_chain_swap_needs_capability(self, build_engine, make_provider):
        local_only = make_provider("local", kinds=(StepKind.SWAP,))
        cross = make_provider("cross", kinds=(StepKind.SWAP,), cross_chain_swaps=True)
        engine = build_engine(local_only, cross)

        routes = await engine.find_routes(request(target_asset="USDC"))

        swaps = [route for route in routes if route.kind == RouteKind.SWAP]
        assert [route.providers for route in swaps] == [("cross",)]

    @pytest.mark.asyncio
    async def test_complex_route_swaps_bridges_and_swaps(self, build_engine, make_provider):
        dex = make_provider("dex", kinds=(StepKind.SWAP,))
        bridge = make_provider("bridge-a", output_ratio=Decimal("0.99"))
        engine = build_engine(dex, bridge)

        routes = await engine.find_routes(request(target_chain="base", source_asset="DAI", target_asset="ETH"))

        assert len(routes) == 1
        route = routes[0]
        assert route.kind == RouteKind.COMPLEX
        assert [(step.kind, step.from_asset, step.to_asset) for step in route.steps] == [
            (StepKind.SWAP, "DAI", "USDT"),
            (StepKind.BRIDGE, "USDT", "USDT"),
            (StepKind.SWAP, "USDT", "ETH"),
        ]
        assert route.steps[2].from_chain == "base"
        assert route.target_amount == Decimal("99.00")
        assert route.fee_usd == Decimal("3")
        assert route.eta_minutes == 30
        # Final swap executes on the target chain, so its gas is included
        assert route.gas_cost_usd > Decimal("0.84")

    @pytest.mark.asyncio
    async def test_complex_route_skips_initial_swap_from_intermediate(self, build_engine, make_provider):
        dex = make_provider("dex", kinds=(StepKind.SWAP,))
        bridge = make_provider("bridge-a")
        engine = build_engine(dex, bridge)

        routes = await engine.find_routes(request(target_chain="base", source_asset="USDT", target_asset="ETH"))

        complex_routes = [route for route in routes if route.kind == RouteKind.COMPLEX]
        assert len(complex_routes) == 1
        assert [step.kind for step in complex_routes[0].steps] == [StepKind.BRIDGE, StepKind.SWAP]

    @pytest.mark.asyncio
    async def test_complex_route_picks_best_swap(self, build_engine, make_provider):
        poor = make_provider("poor-dex", kinds=(StepKind.SWAP,), output_ratio=Decimal("0.9"))
        good = make_provider("good-dex", kinds=(StepKind.SWAP,), output_ratio=Decimal("0.98"))
        bridge = make_provider("bridge-a")
        engine = build_engine(poor, good, bridge)

        routes = await engine.find_routes(request(target_chain="base", source_asset="DAI", target_asset="USDT"))

        assert len(routes) == 1
        assert routes[0].providers == ("good-dex", "bridge-a")
        assert routes[0].gas_cost_usd == Decimal("0.84")

    @pytest.mark.asyncio
    async def test_uncostable_complex_route_keeps_other_candidates(self, build_engine, make_provider, caplog):
        # No chain client or metadata for solana, so target gas cannot be estimated
        bridge = make_provider("bridge-a", chains=("ethereum", "solana"))
        cross = make_provider("cross", kinds=(StepKind.SWAP,), cross_chain_swaps=True, chains=("ethereum", "solana"))
        engine = build_engine(bridge, cross)

        with caplog.at_level(logging.WARNING):
            routes = await engine.find_routes(request(target_chain="solana", source_asset="ETH", target_asset="USDC"))

        assert [route.kind for route in routes] == [RouteKind.SWAP]
        assert routes[0].providers == ("cross",)
        assert len(bridge.quote_requests) == 1
        assert "complex route via USDT unavailable" in caplog.text


# =============================================================================
# Concurrency
# =============================================================================

class TestStageConcurrency:
    """Tests for the swap and complex stages quoting at the same time."""

    @pytest.mark.asyncio
    async def test_slow_stages_cost_one_timeout(self, build_engine, make_provider):
        slow_bridge = make_provider("slow-bridge", delay=5)
        slow_swapper = make_provider("slow-swapper", kinds=(StepKind.SWAP,), cross_chain_swaps=True, delay=5)
        engine = build_engine(slow_bridge, slow_swapper, provider_timeout_seconds=0.3)

        started = time.monotonic()
        routes = await engine.find_routes(request(target_chain="base", source_asset="DAI", target_asset="ETH"))
        elapsed = time.monotonic() - started

        assert routes == []
        # One cross-chain swap quote plus the complex route's leading swap
        assert len(slow_swapper.quote_requests) == 2
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_swap_and_complex_candidates_both_returned(self, build_engine, make_provider):
        dex = make_provider("dex", kinds=(StepKind.SWAP,), cross_chain_swaps=True)
        bridge = make_provider("bridge-a")
        engine = build_engine(dex, bridge)

        routes = await engine.find_routes(request(target_chain="base", source_asset="DAI", target_asset="ETH"))

        assert [route.kind for route in routes] == [RouteKind.SWAP, RouteKind.COMPLEX]
        assert routes[1].providers == ("dex", "bridge-a", "dex")


# =============================================================================
# Ranking
# =============================================================================

class TestRanking:
    """Tests for ordering candidates."""

    @pytest.fixture
    def engine(self, build_engine, make_provider):
        cheap = make_provider("cheap", fee_usd=Decimal("0.5"), eta_minutes=30)
        fast = make_provider("fast", fee_usd=Decimal("5"), eta_minutes=2)
        return build_engine(cheap, fast)

    @pytest.mark.asyncio
    async def test_prefer_low_fees(self, engine):
        routes = await engine.find_routes(request(prefer_low_fees=True))

        assert [route.providers[0] for route in routes] == ["cheap", "fast"]

    @pytest.mark.asyncio
    async def test_low_fees_by_default(self, engine):
        routes = await engine.find_routes(request())

        assert [route.providers[0] for route in routes] == ["cheap", "fast"]

    @pytest.mark.asyncio
    async def test_prefer_speed(self, engine):
        routes = await engine.find_routes(request(prefer_low_fees=False, prefer_speed=True))

        assert [route.providers[0] for route in routes] == ["fast", "cheap"]

    @pytest.mark.asyncio
    async def test_low_fees_wins_over_speed(self, engine):
        routes = await engine.find_routes(request(prefer_low_fees=True, prefer_speed=True))

        assert routes[0].providers[0] == "cheap"

    @pytest.mark.asyncio
    async def test_weighted_score_without_preferences(self, engine):
        routes = await engine.find_routes(request(prefer_low_fees=False))

        assert [route.providers[0] for route in routes] == ["fast", "cheap"]
        assert engine.score(routes[0]) < engine.score(routes[1])

    @pytest.mark.asyncio
    async def test_ties_keep_registration_order(self, build_engine, make_provider):
        engine = build_engine(make_provider("first"), make_provider("second"))

        for _ in range(3):
            routes = await engine.find_routes(request())
            assert [route.providers[0] for route in routes] == ["first", "second"]


# =============================================================================
# Route model
# =============================================================================

class TestRouteModel:
    """Tests for route connectivity and serialization."""

    def _step(self, **overrides) -> RouteStep:
        values = dict(
            kind=StepKind.BRIDGE,
            from_chain="ethereum",
            to_chain="base",
            from_asset="USDT",
            to_asset="USDT",
            from_amount=Decimal("100"),
            to_amount=Decimal("99"),
            provider_id="bridge-a",
        )
        values.update(overrides)
        return RouteStep(**values)

    def _route(self, steps, **overrides) -> Route:
        values = dict(
            kind=RouteKind.BRIDGE,
            source_chain="ethereum",
            target_chain="base",
            source_asset="USDT",
            target_asset="USDT",
            source_amount=Decimal("100"),
            target_amount=Decimal("99"),
            total_cost_usd=Decimal("2"),
            gas_cost_usd=Decimal("1"),
            fee_usd=Decimal("1"),
            eta_minutes=10,
            steps=steps,
        )
        values.update(overrides)
        return Route(**values)

    def test_requires_steps(self):
        with pytest.raises(ValueError):
            self._route([])

    def test_disconnected_steps_rejected(self):
        first = self._step(to_chain="arbitrum")
        second = self._step(from_chain="base", from_amount=Decimal("99"), to_amount=Decimal("99"))

        with pytest.raises(ValueError):
            self._route([first, second])

    def test_endpoint_mismatch_rejected(self):
        with pytest.raises(ValueError):
            self._route([self._step()], target_chain="arbitrum")
        with pytest.raises(ValueError):
            self._route([self._step()], target_amount=Decimal("100"))

    def test_steps_stored_as_tuple(self):
        route = self._route([self._step()])

        assert isinstance(route.steps, tuple)

    def test_dict_round_trip(self):
        route = self._route([self._step()])

        restored = Route.from_dict(route.to_dict())

        assert restored == route
        assert route.to_dict()["steps"][0]["providerId"] == "bridge-a"
