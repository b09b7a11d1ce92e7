"""
Fixed-point helpers for 18-decimal ledger integers.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

WAD = 10 ** 18
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def to_float(value: int) -> float:
    """Convert an 18-decimal fixed-point integer to float (display boundary only)."""
    return float(Decimal(int(value)) / WAD)


def to_fixed(value: Union[str, int, float, Decimal]) -> int:
    """Parse a decimal amount ("1.5", 2, 0.1) into an 18-decimal fixed-point integer."""
    if isinstance(value, str):
        value = value.strip() or "0"
    try:
        dec = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a decimal amount: {value!r}") from exc
    return int(dec * WAD)


def to_int_safe(value, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_address(addr: str) -> str:
    """Lower-case an address; the indexer and the tracker key traders this way."""
    return addr.strip().lower()


def is_zero_address(addr: str | None) -> bool:
    return not addr or addr.lower() == ZERO_ADDRESS
