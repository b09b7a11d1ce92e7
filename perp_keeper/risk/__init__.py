"""
Ledger risk controls.
"""

from perp_keeper.risk.ledger_health import LedgerHealth, LedgerHealthConfig

__all__ = [
    "LedgerHealth",
    "LedgerHealthConfig",
]
