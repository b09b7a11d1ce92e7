"""
Error taxonomy for ledger, indexer and configuration failures.

Client boundaries (LedgerClient, IndexerClient) translate library exceptions into
these types so loops can decide between "log and retry next cycle", "count towards
ledger invalid" and "surface to the caller".
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    Web3Exception,
)


class KeeperError(Exception):
    """Base class for all perp_keeper errors."""


class ConfigError(KeeperError, ValueError):
    """Invalid or missing configuration."""


class LedgerError(KeeperError):
    """Any failure talking to the exchange contract."""

    def __init__(self, message: str, where: str = "", cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.where = where
        self.cause = cause


class LedgerReadError(LedgerError):
    """Transient RPC/network failure. Retried on the next cycle."""


class LedgerTimeout(LedgerReadError):
    """A read or confirmation wait exceeded its deadline."""


class LedgerInvalid(LedgerError):
    """Target address has no code or returns undecodable output."""


class LedgerReverted(LedgerError):
    """The contract reverted a call."""


class TransactionFailed(LedgerError):
    """A submitted transaction reverted or produced a non-success receipt."""

    def __init__(
        self,
        message: str,
        where: str = "",
        tx_hash: Optional[str] = None,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, where=where, cause=cause)
        self.tx_hash = tx_hash
        self.status = status


class IndexerError(KeeperError):
    """The derived read replica is unavailable or returned GraphQL errors."""


def counts_against_ledger(exc: BaseException) -> bool:
    """True for failures that suggest a misconfigured or dead contract."""
    return isinstance(exc, (LedgerInvalid, LedgerReverted))


def classify_exception(exc: BaseException, where: str = "") -> LedgerError:
    """Map a library exception raised by a ledger call onto the taxonomy."""
    if isinstance(exc, LedgerError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, TimeExhausted, httpx.TimeoutException)):
        return LedgerTimeout(f"{where} timed out", where=where, cause=exc)
    if isinstance(exc, BadFunctionCallOutput):
        return LedgerInvalid(f"{where}: {exc}", where=where, cause=exc)
    if isinstance(exc, ContractLogicError):
        return LedgerReverted(f"{where}: execution reverted: {exc}", where=where, cause=exc)
    msg = str(exc)
    lowered = msg.lower()
    if "execution reverted" in lowered:
        return LedgerReverted(f"{where}: {msg}", where=where, cause=exc)
    if "contract address is invalid" in lowered or "no contract code" in lowered:
        return LedgerInvalid(f"{where}: {msg}", where=where, cause=exc)
    if isinstance(exc, (Web3Exception, httpx.HTTPError, ConnectionError, OSError)):
        return LedgerReadError(f"{where}: {msg}", where=where, cause=exc)
    return LedgerReadError(f"{where}: {type(exc).__name__}: {msg}", where=where, cause=exc)
