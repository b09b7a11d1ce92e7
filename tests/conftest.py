"""
Pytest configuration and fixtures.

Ledger and indexer clients are replaced with AsyncMock doubles; the order arena
is an in-memory dict keyed by id.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from perp_keeper.config.config import Settings
from perp_keeper.core.errors import LedgerReadError
from perp_keeper.core.fixed_point import WAD
from perp_keeper.core.models import LiveOrder, Position
from perp_keeper.infra.ledger import TxReceipt

TRADER_A = "0x" + "aa" * 20
TRADER_B = "0x" + "bb" * 20
TRADER_C = "0x" + "cc" * 20

SENTINEL = LiveOrder(id=0, trader="", is_buy=False, price=0, remaining_amount=0, initial_amount=0, timestamp=0, next_id=0)


def make_order(order_id, is_buy=True, price=100, amount=1, next_id=0, trader=TRADER_A):
    """Prices and amounts in whole units; stored as 18-decimal integers."""
    return LiveOrder(
        id=order_id,
        trader=trader,
        is_buy=is_buy,
        price=int(price * WAD),
        remaining_amount=int(amount * WAD),
        initial_amount=int(max(amount, 1) * WAD),
        timestamp=1_700_000_000 + order_id,
        next_id=next_id,
    )


class ArenaReader:
    """Order reader over a dict; unknown ids read as the zero sentinel."""

    def __init__(self, orders=(), fail_on=()):
        self.orders = {o.id: o for o in orders}
        self.fail_on = set(fail_on)
        self.reads = []

    async def get_order(self, order_id):
        self.reads.append(order_id)
        if order_id in self.fail_on:
            raise LedgerReadError(f"orders({order_id}) failed", where="orders")
        return self.orders.get(order_id, SENTINEL)


@pytest.fixture
def order():
    return make_order


@pytest.fixture
def arena():
    return ArenaReader


@pytest.fixture
def receipt():
    def _make(tx_hash="0xfeed", status=1, block_number=10):
        return TxReceipt(tx_hash=tx_hash, status=status, block_number=block_number, gas_used=21000)
    return _make


@pytest.fixture
def ledger(receipt):
    """Ledger double with healthy defaults; tests override per method."""
    mock = MagicMock()
    mock.can_sign = True
    mock.has_code = AsyncMock(return_value=True)
    mock.block_number = AsyncMock(return_value=100)
    mock.mark_price = AsyncMock(return_value=101 * WAD)
    mock.index_price = AsyncMock(return_value=100 * WAD)
    mock.best_bid_id = AsyncMock(return_value=0)
    mock.best_ask_id = AsyncMock(return_value=0)
    mock.initial_margin_bps = AsyncMock(return_value=100)
    mock.get_order = AsyncMock(return_value=SENTINEL)
    mock.margin = AsyncMock(return_value=10 * WAD)
    mock.position = AsyncMock(return_value=Position(size=0, entry_price=0))
    mock.can_liquidate = AsyncMock(return_value=False)
    mock.vip_level = AsyncMock(return_value=0)
    mock.cumulative_volume = AsyncMock(return_value=0)
    mock.volume_to_next_vip = AsyncMock(return_value=1000 * WAD)
    mock.fee_rate_bps = AsyncMock(return_value=10)
    mock.referrer = AsyncMock(return_value=None)
    mock.get_logs = AsyncMock(return_value=[])
    for name in ("deposit", "withdraw", "place_order", "cancel_order", "liquidate",
                 "check_vip_upgrade", "set_vip_level", "register_referral"):
        setattr(mock, name, AsyncMock(return_value=receipt()))
    return mock


@pytest.fixture
def indexer():
    mock = MagicMock()
    mock.recent_trades = AsyncMock(return_value=[])
    mock.recent_candles = AsyncMock(return_value=[])
    mock.open_orders = AsyncMock(return_value=[])
    mock.trader_trades = AsyncMock(return_value=[])
    mock.user_volumes = AsyncMock(return_value=[])
    mock.user_volume = AsyncMock(return_value=0)
    return mock


DEFAULT_SETTINGS = dict(
    rpc_url="http://127.0.0.1:8545",
    exchange_address="0x" + "11" * 20,
    deploy_block=0,
    indexer_url=None,
    private_key=None,
    account_address=None,
    chain_id=None,
    market_interval=2.0,
    liquidation_interval=5.0,
    vip_interval=3600.0,
    event_poll_interval=2.0,
    call_timeout=5.0,
    receipt_timeout=120.0,
    indexer_timeout=5.0,
    vip_info_timeout=10.0,
    vip_info_debounce_sec=5.0,
    scan_limit=20,
    max_chain_hops=128,
    ledger_error_threshold=3,
    probe_cooldown_sec=30.0,
    event_max_block_range=2000,
    event_stale_after=30.0,
    metrics_port=9096,
    metrics_token=None,
    log_file=None,
    log_level="INFO",
    watchlist_path="does-not-exist.yaml",
    enable_market_view=True,
    enable_liquidator=True,
    enable_vip_keeper=True,
)


@pytest.fixture
def settings():
    def _make(**overrides):
        return Settings(**{**DEFAULT_SETTINGS, **overrides})
    return _make
