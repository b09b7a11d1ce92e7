"""
Tests for OrderChainReconstructor: bounded walks, slot scan and arena merge.
"""

import pytest

from perp_keeper.book.order_chain import OrderChainReconstructor
from perp_keeper.core.fixed_point import WAD


class TestWalk:
    @pytest.mark.asyncio
    async def test_zero_head_is_empty_chain(self, arena):
        reader = arena()
        walk = await OrderChainReconstructor(reader).walk(0)
        assert walk.orders == []
        assert walk.terminated_by == "empty"
        assert reader.reads == []

    @pytest.mark.asyncio
    async def test_none_head_is_empty_chain(self, arena):
        walk = await OrderChainReconstructor(arena()).walk(None)
        assert walk.orders == []

    @pytest.mark.asyncio
    async def test_follows_next_pointers_to_end(self, arena, order):
        reader = arena([order(3, next_id=1), order(1, next_id=2), order(2, next_id=0)])
        walk = await OrderChainReconstructor(reader).walk(3)
        assert [o.id for o in walk.orders] == [3, 1, 2]
        assert walk.terminated_by == "end"

    @pytest.mark.asyncio
    async def test_cycle_stops_at_first_repeat(self, arena, order):
        reader = arena([order(1, next_id=2), order(2, next_id=3), order(3, next_id=1)])
        walk = await OrderChainReconstructor(reader).walk(1)
        assert [o.id for o in walk.orders] == [1, 2, 3]
        assert walk.terminated_by == "cycle"
        assert reader.reads == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_self_loop(self, arena, order):
        walk = await OrderChainReconstructor(arena([order(5, next_id=5)])).walk(5)
        assert len(walk.orders) == 1
        assert walk.terminated_by == "cycle"

    @pytest.mark.asyncio
    async def test_hop_limit_bounds_long_chain(self, arena, order):
        orders = [order(i, next_id=i + 1) for i in range(1, 301)]
        reader = arena(orders)
        walk = await OrderChainReconstructor(reader, max_hops=128).walk(1)
        assert walk.hops == 128
        assert walk.terminated_by == "hop_limit"
        assert len(reader.reads) == 128

    @pytest.mark.asyncio
    async def test_sentinel_record_ends_walk(self, arena, order):
        # 2 points at an id that reads as the all-zero record
        reader = arena([order(2, next_id=99)])
        walk = await OrderChainReconstructor(reader).walk(2)
        assert [o.id for o in walk.orders] == [2]
        assert walk.terminated_by == "sentinel"

    @pytest.mark.asyncio
    async def test_read_failure_propagates_from_walk(self, arena, order):
        reader = arena([order(1, next_id=2)], fail_on={2})
        with pytest.raises(Exception):
            await OrderChainReconstructor(reader).walk(1)


class TestSlotScan:
    @pytest.mark.asyncio
    async def test_scan_reads_slots_one_to_limit(self, arena, order):
        reader = arena([order(2), order(7, is_buy=False)])
        found, err = await OrderChainReconstructor(reader, scan_limit=10).scan_slots()
        assert [o.id for o in found] == [2, 7]
        assert err is None
        assert reader.reads == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_failing_slot_stops_scan_and_keeps_earlier(self, arena, order):
        reader = arena([order(1), order(2), order(4)], fail_on={3})
        found, err = await OrderChainReconstructor(reader, scan_limit=20).scan_slots()
        assert [o.id for o in found] == [1, 2]
        assert err is not None
        assert reader.reads == [1, 2, 3]


class TestReconstruct:
    @pytest.mark.asyncio
    async def test_zero_heads_and_no_scan_is_empty(self, arena):
        recon = await OrderChainReconstructor(arena(), scan_limit=0).reconstruct(0, 0)
        assert recon.bids == []
        assert recon.asks == []
        assert recon.live_count == 0

    @pytest.mark.asyncio
    async def test_splits_live_orders_by_side(self, arena, order):
        reader = arena([
            order(1, is_buy=True, price=100, next_id=2),
            order(2, is_buy=True, price=99),
            order(3, is_buy=False, price=101, next_id=4),
            order(4, is_buy=False, price=102),
        ])
        recon = await OrderChainReconstructor(reader, scan_limit=0).reconstruct(1, 3)
        assert sorted(o.id for o in recon.bids) == [1, 2]
        assert sorted(o.id for o in recon.asks) == [3, 4]

    @pytest.mark.asyncio
    async def test_filled_orders_are_excluded(self, arena, order):
        reader = arena([order(1, amount=2, next_id=2), order(2, amount=0)])
        recon = await OrderChainReconstructor(reader, scan_limit=5).reconstruct(1, 0)
        assert [o.id for o in recon.bids] == [1]
        assert all(o.remaining_amount > 0 for o in recon.bids + recon.asks)

    @pytest.mark.asyncio
    async def test_scan_recovers_orders_missing_from_stale_head(self, arena, order):
        reader = arena([order(1, is_buy=False), order(2, is_buy=True)])
        recon = await OrderChainReconstructor(reader, scan_limit=5).reconstruct(0, 0)
        assert [o.id for o in recon.bids] == [2]
        assert [o.id for o in recon.asks] == [1]

    @pytest.mark.asyncio
    async def test_last_read_wins_per_id(self, order):
        # chain read sees id 1 live; the later scan read sees it filled
        reads = {}

        class ChangingReader:
            async def get_order(self, order_id):
                reads[order_id] = reads.get(order_id, 0) + 1
                if order_id != 1:
                    return order(0, amount=0)
                if reads[1] == 1:
                    return order(1, amount=5)
                return order(1, amount=0)

        recon = await OrderChainReconstructor(ChangingReader(), scan_limit=3).reconstruct(1, 0)
        assert recon.bids == []
        assert recon.arena[1].remaining_amount == 0

    @pytest.mark.asyncio
    async def test_failed_walk_contributes_nothing_but_scan_runs(self, arena, order):
        reader = arena([order(1, is_buy=False, next_id=0), order(2, is_buy=True)], fail_on={50})
        recon = await OrderChainReconstructor(reader, scan_limit=3).reconstruct(50, 0)
        assert recon.bid_walk.terminated_by == "error"
        assert [o.id for o in recon.bids] == [2]
        assert [o.id for o in recon.asks] == [1]

    @pytest.mark.asyncio
    async def test_cyclic_chain_with_scan_terminates(self, arena, order):
        orders = [order(i, next_id=(i % 4) + 1, amount=i) for i in range(1, 5)]
        recon = await OrderChainReconstructor(arena(orders), scan_limit=20).reconstruct(1, 1)
        assert sorted(o.id for o in recon.bids) == [1, 2, 3, 4]
        assert sum(o.remaining_amount for o in recon.bids) == 10 * WAD
