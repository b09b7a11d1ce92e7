"""
AccountView: one signer's margin, position, VIP state and order/trade history,
plus the interactive write actions.

Reads degrade field by field: a failed read keeps that field's previous value
and indexer-backed lists fall back to empty. Actions are the opposite: every
failure is raised to the caller, and a successful action triggers a refresh.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Optional, Union

from perp_keeper.core.errors import IndexerError, LedgerError, TransactionFailed
from perp_keeper.core.fixed_point import WAD, is_zero_address, normalize_address, to_fixed
from perp_keeper.core.models import AccountSnapshot, VIPState
from perp_keeper.keeper.vip_tiers import DEFAULT_TIERS, TierTable
from perp_keeper.ledger.decoding import DecodeError
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")

MARKET_SLIPPAGE = 100 * WAD
FALLBACK_MARK_PRICE = 1500 * WAD

Amount = Union[str, int, float, Decimal]


def market_order_price(is_buy: bool, mark_price: Optional[int]) -> int:
    """
    Limit price that makes a limit order behave like a market order: mark plus
    the slippage allowance for buys, mark minus it (never below 1 wei) for sells.
    """
    mark = mark_price if mark_price else FALLBACK_MARK_PRICE
    if is_buy:
        return mark + MARKET_SLIPPAGE
    return max(1, mark - MARKET_SLIPPAGE)


def _positive(amount: Amount, what: str) -> int:
    value = to_fixed(amount)
    if value <= 0:
        raise ValueError(f"{what} must be > 0")
    return value


class AccountView:
    """
    Usage:
        account = AccountView(ledger, cfg.resolve_account(), vip_loader, indexer=indexer)
        snap = await account.refresh()
        await account.place_order(True, "0.5", order_type="market")
    """

    def __init__(
        self,
        ledger,
        account: str,
        vip_loader,
        indexer=None,
        market_view=None,
        tiers: TierTable = DEFAULT_TIERS,
        interval: float = 2.0,
        status_board=None,
    ) -> None:
        self.ledger = ledger
        self.account = normalize_address(account)
        self.vip_loader = vip_loader
        self.indexer = indexer
        self.market_view = market_view
        self.tiers = tiers
        self.interval = interval
        self.status_board = status_board
        self.snapshot = AccountSnapshot(account=self.account)
        self._stop = asyncio.Event()

    async def refresh(self) -> AccountSnapshot:
        prev = self.snapshot
        margin, position, referrer = prev.margin, prev.position, prev.referrer
        try:
            margin = await self.ledger.margin(self.account)
        except (LedgerError, DecodeError) as exc:
            log_event(log, "account_read_error", logging.WARNING, field="margin", err=str(exc))
        try:
            position = await self.ledger.position(self.account)
        except (LedgerError, DecodeError) as exc:
            log_event(log, "account_read_error", logging.WARNING, field="position", err=str(exc))
        try:
            referrer = await self.ledger.referrer(self.account)
        except (LedgerError, DecodeError) as exc:
            log_event(log, "account_read_error", logging.WARNING, field="referrer", err=str(exc))

        vip = await self.load_vip(prev.vip)
        open_orders, trades = prev.open_orders, prev.trades
        if self.indexer is not None:
            try:
                open_orders = tuple(await self.indexer.open_orders(self.account))
            except IndexerError as exc:
                log_event(log, "indexer_unavailable", logging.WARNING, where="open_orders", err=str(exc))
                open_orders = ()
            try:
                trades = tuple(await self.indexer.trader_trades(self.account))
            except IndexerError as exc:
                log_event(log, "indexer_unavailable", logging.WARNING, where="my_trades", err=str(exc))
                trades = ()

        self.snapshot = AccountSnapshot(
            account=self.account,
            margin=margin,
            position=position,
            vip=vip,
            referrer=referrer,
            open_orders=open_orders,
            trades=trades,
        )
        return self.snapshot

    async def load_vip(self, previous: Optional[VIPState] = None, force: bool = False) -> VIPState:
        """Skipped loads keep the previous state; failed loads show tier 0 with fallback set."""
        result = await self.vip_loader.load(self.account, force=force)
        if result.skipped and previous is not None:
            return previous
        return result.value_or(self.tiers.default_state())

    def vip_progress(self) -> dict:
        vip = self.snapshot.vip or self.tiers.default_state()
        return {
            "level": vip.level,
            "name": vip.level_name,
            "fee_rate_percent": vip.fee_rate_percent,
            "progress_percent": round(self.tiers.progress_percent(vip.level, vip.cumulative_volume), 2),
            "saving_percent": round(self.tiers.saving_vs_base_percent(vip.level), 2),
            "volume_to_next": str(vip.volume_to_next_tier),
            "fallback": vip.fallback,
        }

    # ------------------------------------------------------------------
    # actions
    # ------------------------------------------------------------------

    async def _after(self, action: str, receipt, **data):
        log_event(log, "action_confirmed", action=action, tx=receipt.tx_hash, **data)
        await self.refresh()
        return receipt

    async def _submit(self, action: str, coro, **data):
        try:
            receipt = await coro
        except TransactionFailed as exc:
            log_event(log, "action_failed", logging.ERROR, action=action, err=str(exc), tx=exc.tx_hash, **data)
            raise
        return await self._after(action, receipt, **data)

    async def deposit(self, amount: Amount):
        value = _positive(amount, "deposit amount")
        return await self._submit("deposit", self.ledger.deposit(value), amount=str(value))

    async def withdraw(self, amount: Amount):
        value = _positive(amount, "withdraw amount")
        return await self._submit("withdraw", self.ledger.withdraw(value), amount=str(value))

    async def current_mark_price(self) -> Optional[int]:
        if self.market_view is not None and self.market_view.funding is not None:
            return self.market_view.funding.mark_price
        try:
            return await self.ledger.mark_price()
        except LedgerError as exc:
            log_event(log, "mark_price_unavailable", logging.WARNING, err=str(exc))
            return None

    async def place_order(
        self,
        is_buy: bool,
        amount: Amount,
        price: Optional[Amount] = None,
        order_type: str = "limit",
        hint_id: int = 0,
    ):
        size = _positive(amount, "order amount")
        if order_type == "market":
            px = market_order_price(is_buy, await self.current_mark_price())
        elif order_type == "limit":
            if price is None:
                raise ValueError("limit order needs a price")
            px = _positive(price, "order price")
        else:
            raise ValueError(f"unknown order type: {order_type}")
        return await self._submit(
            "place_order",
            self.ledger.place_order(is_buy, px, size, hint_id),
            side="buy" if is_buy else "sell",
            price=str(px),
            amount=str(size),
            type=order_type,
        )

    async def cancel_order(self, order_id: int):
        return await self._submit("cancel_order", self.ledger.cancel_order(int(order_id)), order_id=int(order_id))

    async def check_vip_upgrade(self) -> VIPState:
        """Self-service tier upgrade. Returns the freshly loaded VIP state."""
        await self._submit("check_vip_upgrade", self.ledger.check_vip_upgrade())
        vip = await self.load_vip(self.snapshot.vip, force=True)
        self.snapshot = replace(self.snapshot, vip=vip)
        return vip

    async def register_referral(self, referrer: str):
        if is_zero_address(referrer):
            raise ValueError("referrer address is required")
        ref = normalize_address(referrer)
        if ref == self.account:
            raise ValueError("cannot refer yourself")
        if self.snapshot.referrer is not None:
            raise ValueError(f"referrer already set: {self.snapshot.referrer}")
        return await self._submit("register_referral", self.ledger.register_referral(ref), referrer=ref)

    # ------------------------------------------------------------------
    # loop
    # ------------------------------------------------------------------

    def status(self) -> dict:
        snap = self.snapshot
        return {
            "account": snap.account,
            "margin": str(snap.margin),
            "position": {"size": str(snap.position.size), "entry_price": str(snap.position.entry_price)} if snap.position else None,
            "referrer": snap.referrer,
            "open_orders": len(snap.open_orders),
            "trades": len(snap.trades),
            "vip": self.vip_progress(),
            "taken_at": snap.taken_at,
        }

    async def run(self) -> None:
        log_event(log, "account_view_start", account=self.account, interval=self.interval)
        while not self._stop.is_set():
            try:
                await self.refresh()
                if self.status_board is not None:
                    await self.status_board.update("account", self.status())
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_event(log, "account_refresh_error", logging.ERROR, err=str(exc))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
