"""
Ledger read-shape decoding.
"""

from perp_keeper.ledger.decoding import (
    DecodeError,
    decode_candle,
    decode_indexer_trade,
    decode_open_order,
    decode_order,
    decode_position,
    decode_trade_log,
    decode_vip_state,
    event_trader_addresses,
)

__all__ = [
    "DecodeError",
    "decode_candle",
    "decode_indexer_trade",
    "decode_open_order",
    "decode_order",
    "decode_position",
    "decode_trade_log",
    "decode_vip_state",
    "event_trader_addresses",
]
