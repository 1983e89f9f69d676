"""
Fee estimation.

Usage:
    from wallet_engine.core.gas import GasEstimator, GasTier

    estimator = GasEstimator(chain_clients, price_oracle)
    quote = await estimator.estimate("ethereum", GasTier.FAST)
"""

from .estimator import GasEstimator, chain_key
from .models import GasQuote, GasTier

__all__ = [
    "GasEstimator",
    "GasQuote",
    "GasTier",
    "chain_key",
]
