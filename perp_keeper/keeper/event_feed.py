"""
LedgerEventFeed: cursor-based polling subscription to exchange events.

Logs are pulled with eth_getLogs in bounded block ranges starting from a cursor.
The cursor advances only after every event type in the range was fetched and
dispatched, so a failed poll re-reads the same range on the next attempt and a
transient RPC outage leaves no gap. Handlers must therefore be idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Iterable, List, Optional, Sequence
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")

TRADER_EVENTS = ("OrderPlaced", "TradeExecuted")

EventHandler = Callable[[str, Any], Any]


def _log_args(entry: Any) -> Any:
    if isinstance(entry, dict):
        return entry.get("args", {})
    return getattr(entry, "args", {})


class LedgerEventFeed:
    """
    Usage:
        feed = LedgerEventFeed(ledger, handlers=[tracker.on_event], start_block=cfg.deploy_block)
        task = asyncio.create_task(feed.run())
        ...
        await feed.stop()
    """

    def __init__(
        self,
        ledger,
        handlers: Iterable[EventHandler] = (),
        events: Sequence[str] = TRADER_EVENTS,
        poll_interval: float = 2.0,
        max_block_range: int = 2000,
        stale_after: float = 30.0,
        start_block: Optional[int] = None,
        on_stale: Optional[Callable[[bool], None]] = None,
        metrics=None,
    ) -> None:
        self.ledger = ledger
        self.handlers: List[EventHandler] = list(handlers)
        self.events = tuple(events)
        self.poll_interval = poll_interval
        self.max_block_range = max(1, int(max_block_range))
        self.stale_after = stale_after
        self._start_block = start_block
        self._on_stale = on_stale
        self.metrics = metrics
        self.cursor: Optional[int] = None
        self.last_success: float = 0.0
        self.dispatched: int = 0
        self.error_streak: int = 0
        self._stale = False
        self._backoff_max = 60.0
        self._stop = asyncio.Event()

    @property
    def is_stale(self) -> bool:
        return self._stale

    async def subscribe(self) -> int:
        """
        Position the cursor. An explicit start block (deploy block) backfills from
        there; otherwise delivery starts at the current head.
        """
        if self._start_block is not None and self._start_block > 0:
            self.cursor = int(self._start_block)
        else:
            self.cursor = await self.ledger.block_number()
        log_event(log, "event_feed_subscribed", from_block=self.cursor, events=list(self.events))
        return self.cursor

    def _dispatch(self, event_name: str, entry: Any) -> None:
        args = _log_args(entry)
        for handler in self.handlers:
            try:
                handler(event_name, args)
            except Exception as exc:
                log_event(log, "event_handler_error", logging.ERROR, stream=event_name, err=str(exc))
        self.dispatched += 1
        if self.metrics is not None:
            self.metrics.events_dispatched.labels(event=event_name).inc()

    async def poll_once(self) -> int:
        """
        Fetch and dispatch one block range. Returns the number of logs dispatched.
        Read errors propagate with the cursor untouched.
        """
        if self.cursor is None:
            await self.subscribe()
        head = await self.ledger.block_number()
        if self.cursor > head:
            self._mark_fresh()
            return 0
        to_block = min(head, self.cursor + self.max_block_range - 1)

        batches = []
        for name in self.events:
            batches.append((name, await self.ledger.get_logs(name, self.cursor, to_block)))

        count = 0
        for name, entries in batches:
            for entry in entries:
                self._dispatch(name, entry)
                count += 1
        if count:
            log_event(log, "event_feed_batch", logging.DEBUG, from_block=self.cursor, to_block=to_block, logs=count)
        self.cursor = to_block + 1
        self._mark_fresh()
        return count

    def _mark_fresh(self) -> None:
        self.last_success = time.time()
        if self.error_streak:
            log_event(log, "event_feed_resubscribed", after_errors=self.error_streak, cursor=self.cursor)
            self.error_streak = 0
        self._set_stale(False)

    def _set_stale(self, stale: bool) -> None:
        if stale == self._stale:
            return
        self._stale = stale
        if stale:
            log_event(log, "event_feed_stale", logging.WARNING, gap_sec=round(time.time() - self.last_success, 1), cursor=self.cursor)
        if self._on_stale:
            try:
                self._on_stale(stale)
            except Exception as exc:
                log_event(log, "event_feed_stale_callback_error", logging.WARNING, err=str(exc))

    async def run(self) -> None:
        """
        Poll until stopped. Failures back off exponentially with jitter; after
        `stale_after` seconds without a successful poll the feed reports stale.
        """
        backoff = self.poll_interval
        self.last_success = time.time()
        while not self._stop.is_set():
            try:
                await self.poll_once()
                backoff = self.poll_interval
                delay = self.poll_interval
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.error_streak += 1
                log_event(log, "event_poll_error", logging.WARNING, where="event_feed", err=str(exc), streak=self.error_streak, backoff=backoff)
                if time.time() - self.last_success >= self.stale_after:
                    self._set_stale(True)
                delay = backoff + random.uniform(0, backoff * 0.1)
                backoff = min(self._backoff_max, backoff * 2)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        log_event(log, "event_feed_stopped", cursor=self.cursor, dispatched=self.dispatched)

    async def stop(self) -> None:
        self._stop.set()
