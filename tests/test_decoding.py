"""
Tests for the read-shape decoding boundary.
"""

from types import SimpleNamespace

import pytest

from perp_keeper.core.fixed_point import WAD
from perp_keeper.ledger.decoding import (
    DecodeError,
    decode_candle,
    decode_indexer_trade,
    decode_order,
    decode_position,
    decode_trade_log,
    decode_vip_state,
    event_trader_addresses,
    trade_side,
)

from conftest import TRADER_A, TRADER_B

RAW = (7, TRADER_A.upper().replace("0X", "0x"), True, 100 * WAD, 2 * WAD, 3 * WAD, 1700, 9)


class TestOrder:
    def test_positional(self):
        o = decode_order(RAW)
        assert (o.id, o.is_buy, o.price, o.remaining_amount, o.initial_amount, o.next_id) == (7, True, 100 * WAD, 2 * WAD, 3 * WAD, 9)
        assert o.trader == TRADER_A

    def test_named_mapping(self):
        raw = dict(zip(("id", "trader", "isBuy", "price", "amount", "initialAmount", "timestamp", "next"), RAW))
        assert decode_order(raw) == decode_order(RAW)

    def test_attribute_object(self):
        raw = SimpleNamespace(id=7, trader=TRADER_A, isBuy=True, price=100 * WAD, amount=2 * WAD,
                              initialAmount=3 * WAD, timestamp=1700, next=9)
        assert decode_order(raw) == decode_order(RAW)

    def test_nested_single_tuple(self):
        assert decode_order([RAW]) == decode_order(RAW)

    def test_zero_sentinel(self):
        o = decode_order((0, "0x" + "00" * 20, False, 0, 0, 0, 0, 0))
        assert o.id == 0
        assert not o.is_live

    @pytest.mark.parametrize("raw", [None, 42, "0xabc", (1, 2, 3), {"foo": 1}])
    def test_unrecognised_shapes(self, raw):
        with pytest.raises(DecodeError):
            decode_order(raw)


class TestOtherReads:
    def test_position_shapes(self):
        assert decode_position((-5, 10)).size == -5
        assert decode_position({"size": 3, "entryPrice": 4}).entry_price == 4
        with pytest.raises(DecodeError):
            decode_position(None)

    def test_vip_state_range(self):
        state = decode_vip_state(2, 2500, 2500, 8)
        assert state.level == 2 and state.fee_rate_bps == 8
        with pytest.raises(DecodeError):
            decode_vip_state(7, 0, 0, 10)


class TestTrades:
    def test_side_from_order_ids(self):
        assert trade_side(10, 3) == "buy"
        assert trade_side(3, 10) == "sell"

    def test_trade_log(self):
        log = {
            "args": {"buyOrderId": 12, "sellOrderId": 4, "price": 100 * WAD, "amount": WAD,
                     "buyer": TRADER_A, "seller": TRADER_B},
            "transactionHash": bytes.fromhex("ab" * 32),
            "logIndex": 3,
            "blockNumber": 55,
        }
        trade = decode_trade_log(log)
        assert trade.side == "buy"
        assert trade.id == "0x" + "ab" * 32 + "-3"
        assert trade.block_number == 55
        assert trade.buyer == TRADER_A

    def test_indexer_trade_from_account_view(self):
        row = {"id": "t1", "price": "100", "amount": "2", "timestamp": "1700",
               "buyer": TRADER_A, "seller": TRADER_B, "buyOrderId": "1", "sellOrderId": "9"}
        assert decode_indexer_trade(row).side == "sell"
        assert decode_indexer_trade(row, account=TRADER_A).side == "buy"
        assert decode_indexer_trade(row, account=TRADER_B).side == "sell"

    def test_candle(self):
        c = decode_candle({"timestamp": "60", "openPrice": "1", "highPrice": "3", "lowPrice": "1", "closePrice": "2", "volume": "9"})
        assert (c.open, c.high, c.low, c.close, c.volume) == (1, 3, 1, 2, 9)


def test_event_trader_addresses():
    assert event_trader_addresses("OrderPlaced", {"trader": TRADER_A}) == [TRADER_A]
    assert event_trader_addresses("TradeExecuted", SimpleNamespace(buyer=TRADER_A, seller=TRADER_B)) == [TRADER_A, TRADER_B]
    assert event_trader_addresses("Liquidated", {"trader": TRADER_A}) == []
