"""
Status board served at /status.

Each keeper loop publishes its section after every cycle:

- market       funding, book depth and history counts from MarketView
- account      the signer's margin, position and VIP progress
- liquidation  last liquidation cycle outcome per state
- vip          last VIP reconciliation outcome

A snapshot returns every published section with its age, and lists the
sections whose loop has been silent for more than STALE_CYCLES of its own
interval.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

SECTIONS = ("market", "account", "liquidation", "vip")
STALE_CYCLES = 3


@dataclass
class Section:
    payload: Dict[str, Any]
    updated_at: float


class StatusBoard:
    """
    Usage:
        board = StatusBoard.from_settings(cfg)
        await board.publish_liquidation(report, tracked=len(tracker))
        body = await board.snapshot()
    """

    def __init__(
        self,
        intervals: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        intervals = dict(intervals or {})
        unknown = set(intervals) - set(SECTIONS)
        if unknown:
            raise ValueError(f"unknown status sections: {sorted(unknown)}")
        self.intervals = intervals
        self._clock = clock
        self._sections: Dict[str, Section] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, cfg) -> "StatusBoard":
        return cls(intervals={
            "market": cfg.market_interval,
            "account": cfg.market_interval,
            "liquidation": cfg.liquidation_interval,
            "vip": cfg.vip_interval,
        })

    async def update(self, section: str, payload: Dict[str, Any]) -> None:
        if section not in SECTIONS:
            raise ValueError(f"unknown status section: {section}")
        async with self._lock:
            self._sections[section] = Section(payload=dict(payload), updated_at=self._clock())

    async def publish_liquidation(self, report, tracked: int) -> None:
        await self.update("liquidation", {
            "tracked": tracked,
            "last_cycle": report.summary(),
            "liquidated": list(report.liquidated),
            "failed": list(report.failed),
            "skipped_reason": report.skipped_reason,
            "duration_ms": round(report.duration_ms, 1),
            "started_at": report.started_at,
        })

    async def publish_vip(self, report) -> None:
        await self.update("vip", {
            "traders": len(report.checks),
            "in_sync": report.count("in_sync"),
            "corrected": report.count("corrected"),
            "pending": report.count("pending"),
            "failed": report.count("failed"),
            "indexer_error": report.indexer_error,
            "duration_ms": round(report.duration_ms, 1),
            "started_at": report.started_at,
        })

    def _stale(self, now: float) -> List[str]:
        return sorted(
            name
            for name, section in self._sections.items()
            if name in self.intervals and now - section.updated_at > self.intervals[name] * STALE_CYCLES
        )

    async def stale_sections(self) -> List[str]:
        async with self._lock:
            return self._stale(self._clock())

    async def snapshot(self) -> Dict[str, Any]:
        async with self._lock:
            now = self._clock()
            sections = {
                name: {**section.payload, "updated_at": section.updated_at, "age_sec": round(now - section.updated_at, 1)}
                for name, section in self._sections.items()
            }
            return {"at": now, "sections": sections, "stale": self._stale(now)}
