"""
Core domain package.

Immutable records, the error taxonomy, typed results and fixed-point helpers.
"""

from perp_keeper.core.errors import (
    ConfigError,
    IndexerError,
    KeeperError,
    LedgerError,
    LedgerInvalid,
    LedgerReadError,
    LedgerReverted,
    LedgerTimeout,
    TransactionFailed,
    classify_exception,
    counts_against_ledger,
)
from perp_keeper.core.fixed_point import WAD, ZERO_ADDRESS, to_fixed, to_float, normalize_address
from perp_keeper.core.models import (
    AccountSnapshot,
    BookLevel,
    BookSnapshot,
    Candle,
    FundingSnapshot,
    LiveOrder,
    OpenOrder,
    Position,
    TradeRecord,
    VIPState,
)
from perp_keeper.core.result import CycleResult, FetchResult

__all__ = [
    "AccountSnapshot",
    "BookLevel",
    "BookSnapshot",
    "Candle",
    "ConfigError",
    "CycleResult",
    "FetchResult",
    "FundingSnapshot",
    "IndexerError",
    "KeeperError",
    "LedgerError",
    "LedgerInvalid",
    "LedgerReadError",
    "LedgerReverted",
    "LedgerTimeout",
    "LiveOrder",
    "OpenOrder",
    "Position",
    "TradeRecord",
    "TransactionFailed",
    "VIPState",
    "WAD",
    "ZERO_ADDRESS",
    "classify_exception",
    "counts_against_ledger",
    "normalize_address",
    "to_fixed",
    "to_float",
]
