"""
Decoding boundary between external read shapes and domain records.

web3 returns struct outputs either positionally (list/tuple) or, depending on
version and ABI naming, as a mapping / attribute object. The indexer returns
GraphQL JSON with stringified big integers. Every external read passes through
exactly one function here before business logic sees it.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from perp_keeper.core.fixed_point import normalize_address, to_int_safe
from perp_keeper.core.models import Candle, LiveOrder, OpenOrder, Position, TradeRecord, VIPState

ORDER_FIELDS = ("id", "trader", "isBuy", "price", "amount", "initialAmount", "timestamp", "next")
POSITION_FIELDS = ("size", "entryPrice")


class DecodeError(ValueError):
    """The read returned a shape that is neither named nor positional."""


def _field_access(raw: Any, fields: Sequence[str], probe: str) -> Optional[dict]:
    """Return {field: value} for named or positional shapes, None if unrecognised."""
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        if probe in raw:
            return {f: raw.get(f) for f in fields}
        return None
    if hasattr(raw, probe) and not isinstance(raw, (str, bytes)):
        return {f: getattr(raw, f, None) for f in fields}
    if isinstance(raw, (list, tuple)):
        if len(raw) == 1 and isinstance(raw[0], (list, tuple, Mapping)):
            return _field_access(raw[0], fields, probe)
        if len(raw) < len(fields):
            return None
        return {f: raw[i] for i, f in enumerate(fields)}
    return None


def decode_order(raw: Any) -> LiveOrder:
    """
    Normalize one `orders(id)` result. Named access wins over positional when
    both are available. An id of 0 is the contract's empty-slot sentinel.
    """
    fields = _field_access(raw, ORDER_FIELDS, probe="price")
    if fields is None:
        raise DecodeError(f"unrecognised order shape: {type(raw).__name__}")
    trader = fields["trader"] or ""
    return LiveOrder(
        id=to_int_safe(fields["id"]),
        trader=normalize_address(str(trader)) if trader else "",
        is_buy=bool(fields["isBuy"]),
        price=to_int_safe(fields["price"]),
        remaining_amount=to_int_safe(fields["amount"]),
        initial_amount=to_int_safe(fields["initialAmount"]),
        timestamp=to_int_safe(fields["timestamp"]),
        next_id=to_int_safe(fields["next"]),
    )


def decode_position(raw: Any) -> Position:
    fields = _field_access(raw, POSITION_FIELDS, probe="size")
    if fields is None:
        raise DecodeError(f"unrecognised position shape: {type(raw).__name__}")
    return Position(size=to_int_safe(fields["size"]), entry_price=to_int_safe(fields["entryPrice"]))


def decode_vip_state(level: Any, cumulative_volume: Any, volume_to_next: Any, fee_rate_bps: Any) -> VIPState:
    lvl = to_int_safe(level)
    if lvl < 0 or lvl > 4:
        raise DecodeError(f"VIP level out of range: {level!r}")
    return VIPState(
        level=lvl,
        cumulative_volume=to_int_safe(cumulative_volume),
        volume_to_next_tier=to_int_safe(volume_to_next),
        fee_rate_bps=to_int_safe(fee_rate_bps),
    )


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if hasattr(value, "to_0x_hex"):
        return value.to_0x_hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def trade_side(buy_order_id: int, sell_order_id: int) -> str:
    """The later order is the taker: a newer buy id means the aggressor bought."""
    return "buy" if buy_order_id > sell_order_id else "sell"


def decode_trade_log(log: Any) -> TradeRecord:
    """Decode a TradeExecuted event log (web3 AttributeDict or plain dict)."""
    args = _get(log, "args", {}) or {}
    buy_id = to_int_safe(_get(args, "buyOrderId"))
    sell_id = to_int_safe(_get(args, "sellOrderId"))
    tx_hash = _hex(_get(log, "transactionHash"))
    buyer = _get(args, "buyer")
    seller = _get(args, "seller")
    return TradeRecord(
        id=f"{tx_hash}-{to_int_safe(_get(log, 'logIndex'))}",
        price=to_int_safe(_get(args, "price")),
        amount=to_int_safe(_get(args, "amount")),
        side=trade_side(buy_id, sell_id),
        block_number=to_int_safe(_get(log, "blockNumber")),
        buyer=normalize_address(buyer) if buyer else None,
        seller=normalize_address(seller) if seller else None,
        tx_hash=tx_hash,
    )


def decode_indexer_trade(row: Mapping[str, Any], account: Optional[str] = None) -> TradeRecord:
    """
    Decode an indexer Trade row. With `account`, side is from that trader's point
    of view; otherwise from the aggressor's.
    """
    buyer = row.get("buyer")
    seller = row.get("seller")
    if account is not None and buyer is not None:
        side = "buy" if normalize_address(buyer) == normalize_address(account) else "sell"
    else:
        side = trade_side(to_int_safe(row.get("buyOrderId")), to_int_safe(row.get("sellOrderId")))
    return TradeRecord(
        id=str(row.get("id", "")),
        price=to_int_safe(row.get("price")),
        amount=to_int_safe(row.get("amount")),
        side=side,
        timestamp=to_int_safe(row.get("timestamp")) or None,
        buyer=normalize_address(buyer) if buyer else None,
        seller=normalize_address(seller) if seller else None,
        tx_hash=row.get("txHash"),
    )


def decode_candle(row: Mapping[str, Any]) -> Candle:
    return Candle(
        timestamp=to_int_safe(row.get("timestamp")),
        open=to_int_safe(row.get("openPrice")),
        high=to_int_safe(row.get("highPrice")),
        low=to_int_safe(row.get("lowPrice")),
        close=to_int_safe(row.get("closePrice")),
        volume=to_int_safe(row.get("volume")),
    )


def decode_open_order(row: Mapping[str, Any], trader: str) -> OpenOrder:
    return OpenOrder(
        id=to_int_safe(row.get("id")),
        trader=normalize_address(trader),
        is_buy=bool(row.get("isBuy")),
        price=to_int_safe(row.get("price")),
        amount=to_int_safe(row.get("amount")),
        initial_amount=to_int_safe(row.get("initialAmount")),
        timestamp=to_int_safe(row.get("timestamp")),
    )


def event_trader_addresses(event_name: str, args: Any) -> list[str]:
    """Addresses an event makes eligible for risk checks."""
    if event_name == "OrderPlaced":
        keys = ("trader",)
    elif event_name == "TradeExecuted":
        keys = ("buyer", "seller")
    else:
        return []
    out = []
    for k in keys:
        addr = _get(args, k)
        if addr:
            out.append(normalize_address(str(addr)))
    return out
