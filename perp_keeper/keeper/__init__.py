"""
Keeper package.

Control loops that watch the ledger and submit corrective transactions.
"""

from perp_keeper.keeper.active_traders import ActiveTraderTracker
from perp_keeper.keeper.event_feed import TRADER_EVENTS, LedgerEventFeed
from perp_keeper.keeper.liquidator import (
    LiquidationCycleReport,
    LiquidationMonitor,
    LiquidationState,
    TraderCheck,
)
from perp_keeper.keeper.vip_keeper import VIPCheck, VIPCycleReport, VIPTierReconciler
from perp_keeper.keeper.vip_tiers import DEFAULT_TIERS, TierTable

__all__ = [
    "ActiveTraderTracker",
    "DEFAULT_TIERS",
    "LedgerEventFeed",
    "LiquidationCycleReport",
    "LiquidationMonitor",
    "LiquidationState",
    "TRADER_EVENTS",
    "TierTable",
    "TraderCheck",
    "VIPCheck",
    "VIPCycleReport",
    "VIPTierReconciler",
]
