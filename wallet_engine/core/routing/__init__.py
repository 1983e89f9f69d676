"""
Route discovery and ranking.

Usage:
    from wallet_engine.core.routing import RouteEngine, RouteRequest

    routes = await route_engine.find_routes(
        RouteRequest(
            source_chain="ethereum",
            target_chain="base",
            source_asset="USDC",
            target_asset="USDC",
            amount=Decimal("100"),
        )
    )
"""

from .engine import RouteEngine
from .models import Route, RouteKind, RouteOptions, RouteRequest, RouteStep

__all__ = [
    "Route",
    "RouteEngine",
    "RouteKind",
    "RouteOptions",
    "RouteRequest",
    "RouteStep",
]
