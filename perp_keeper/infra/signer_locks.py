"""
Per-signer transaction serialization.

The liquidator, the VIP keeper and interactive account actions submit through
LedgerClients that may share one signing key. Every client bound to the same
signer holds the same asyncio.Lock around nonce allocation and broadcast, so
two loops never pick the same pending nonce.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict

from perp_keeper.core.fixed_point import is_zero_address, normalize_address
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


class SignerLocks:
    """
    Usage:
        locks = SignerLocks()
        locks.bind(ledger, signer)
    """

    def __init__(self) -> None:
        # normalized signer address -> lock
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, address: str) -> asyncio.Lock:
        if is_zero_address(address):
            raise ValueError("signer address is empty")
        key = normalize_address(address)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def bind(self, ledger, signer) -> asyncio.Lock:
        """Hand the signer's lock to a ledger client that submits with it."""
        lock = self.lock_for(signer.address)
        ledger.bind_tx_lock(lock)
        log_event(log, "signer_lock_bound", logging.DEBUG, signer=normalize_address(signer.address), signers=len(self))
        return lock
