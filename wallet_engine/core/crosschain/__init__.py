"""
Cross-chain route execution.

Usage:
    from wallet_engine.core.crosschain import CrosschainTransactionTracker

    record = await tracker.execute(route, from_address="0x...")
    record = await tracker.poll(record.id)
"""

from .models import CrosschainStatus, CrosschainTransaction, Leg, LegStatus
from .tracker import CrosschainTransactionTracker

__all__ = [
    "CrosschainStatus",
    "CrosschainTransaction",
    "CrosschainTransactionTracker",
    "Leg",
    "LegStatus",
]
