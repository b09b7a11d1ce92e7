"""
Infrastructure package.

This package contains the ledger and indexer clients, logging configuration,
and the per-signer transaction lock.
"""

from perp_keeper.infra.indexer import IndexerClient
from perp_keeper.infra.ledger import LIQUIDATE_ALL, LedgerClient, TxReceipt
from perp_keeper.infra.logging_cfg import build_logger, log_event
from perp_keeper.infra.signer_locks import SignerLocks

__all__ = [
    "IndexerClient",
    "LIQUIDATE_ALL",
    "LedgerClient",
    "SignerLocks",
    "TxReceipt",
    "build_logger",
    "log_event",
]
