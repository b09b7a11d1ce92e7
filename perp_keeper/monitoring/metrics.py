"""
Prometheus metrics and the HTTP surface for metrics, status and health.

- /metrics - Prometheus text exposition (auth required if token set)
- /status  - StatusBoard JSON (auth required if token set)
- /health  - Liveness probe, no auth
- /ready   - Readiness probe, no auth
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")


class KeeperMetrics:
    """Keeper metrics on a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Ledger ===
        self.ledger_errors = Counter(
            'ledger_errors_total',
            'Ledger read failures',
            labelnames=['where', 'kind'],
            registry=reg
        )
        self.ledger_valid = Gauge(
            'ledger_valid',
            'Exchange contract reachable and valid (1=valid, 0=tripped)',
            registry=reg
        )
        self.transactions = Counter(
            'transactions_total',
            'Transactions by contract function and outcome',
            labelnames=['fn', 'outcome'],
            registry=reg
        )

        # === Keeper loops ===
        self.liquidations = Counter(
            'liquidations_total',
            'Liquidation attempts by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.vip_corrections = Counter(
            'vip_corrections_total',
            'VIP tier corrections by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.active_traders = Gauge(
            'active_traders',
            'Traders tracked for liquidation checks',
            registry=reg
        )
        self.events_dispatched = Counter(
            'ledger_events_total',
            'Ledger events dispatched to handlers',
            labelnames=['event'],
            registry=reg
        )

        # === Market view ===
        self.book_levels = Gauge(
            'book_levels',
            'Aggregated price levels per side',
            labelnames=['side'],
            registry=reg
        )
        self.funding_rate = Gauge(
            'funding_rate_estimate',
            'Estimated hourly funding rate',
            registry=reg
        )
        self.mark_price = Gauge(
            'mark_price',
            'Last mark price',
            registry=reg
        )

        # === Operational ===
        self.loop_duration = Histogram(
            'loop_cycle_seconds',
            'Loop cycle duration (seconds)',
            labelnames=['loop'],
            buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
            registry=reg
        )
        self.loop_failures = Counter(
            'loop_failures_total',
            'Failed loop cycles',
            labelnames=['loop'],
            registry=reg
        )

        self.registry = reg

    def render(self) -> bytes:
        return generate_latest(self.registry)


@dataclass
class HealthStatus:
    healthy: bool = True
    ready: bool = False
    last_heartbeat_ms: int = 0
    components: Dict[str, bool] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)


class HealthChecker:
    """
    Component health for the liveness and readiness probes.

    A component reported unhealthy (ledger tripped, event feed stale) turns
    /health red; /ready additionally requires set_ready(True) after startup.
    """

    def __init__(self) -> None:
        self._components: Dict[str, bool] = {}
        self._details: Dict[str, Any] = {}
        self._ready = False
        self._last_heartbeat = int(time.time() * 1000)
        self._callbacks: List[Callable[[str, bool], None]] = []

    def set_component_health(self, name: str, healthy: bool, detail: Optional[str] = None) -> None:
        self._components[name] = healthy
        if detail:
            self._details[name] = detail
        self._last_heartbeat = int(time.time() * 1000)
        for cb in self._callbacks:
            try:
                cb(name, healthy)
            except Exception as exc:
                log_event(log, "health_callback_error", logging.WARNING, component=name, err=str(exc))

    def set_ready(self, ready: bool) -> None:
        self._ready = ready
        self._last_heartbeat = int(time.time() * 1000)

    def register_callback(self, callback: Callable[[str, bool], None]) -> None:
        self._callbacks.append(callback)

    def is_healthy(self) -> bool:
        if not self._components:
            return True
        return all(self._components.values())

    def is_ready(self) -> bool:
        return self._ready and self.is_healthy()

    def get_status(self) -> HealthStatus:
        return HealthStatus(
            healthy=self.is_healthy(),
            ready=self.is_ready(),
            last_heartbeat_ms=self._last_heartbeat,
            components=dict(self._components),
            details=dict(self._details),
        )

    def to_dict(self) -> Dict[str, Any]:
        status = self.get_status()
        return {
            "healthy": status.healthy,
            "ready": status.ready,
            "last_heartbeat_ms": status.last_heartbeat_ms,
            "components": status.components,
            "details": status.details,
        }


def _response(status: bytes, content_type: bytes, body: bytes) -> bytes:
    return (
        b"HTTP/1.1 " + status + b"\r\n"
        b"Content-Type: " + content_type + b"\r\n"
        b"Content-Length: " + str(len(body)).encode() + b"\r\n"
        b"Connection: close\r\n\r\n"
        + body
    )


def parse_request(req: bytes) -> tuple[str, Dict[str, List[str]], Dict[bytes, bytes]]:
    """Return (path, query, lower-cased headers) from a raw HTTP request head."""
    lines = req.split(b"\r\n")
    path_raw = b"/"
    if lines and b" " in lines[0]:
        parts = lines[0].split(b" ")
        if len(parts) > 1:
            path_raw = parts[1]
    headers: Dict[bytes, bytes] = {}
    for line in lines[1:]:
        if b":" in line:
            k, v = line.split(b":", 1)
            headers[k.strip().lower()] = v.strip()
    parsed = urlparse(path_raw.decode("utf-8", errors="ignore"))
    return parsed.path, parse_qs(parsed.query), headers


async def start_metrics_server(
    metrics: KeeperMetrics,
    port: int,
    status_board=None,
    auth_token: Optional[str] = None,
    health_checker: Optional[HealthChecker] = None,
    host: str = "0.0.0.0",
) -> asyncio.AbstractServer:
    """Start the asyncio HTTP server for metrics, status and probes."""

    async def _route(req: bytes) -> bytes:
        path, query, headers = parse_request(req)

        if path == "/health":
            healthy = health_checker.is_healthy() if health_checker else True
            body = json.dumps(health_checker.to_dict() if health_checker else {"healthy": True, "ready": True})
            return _response(b"200 OK" if healthy else b"503 Service Unavailable", b"application/json", body.encode())

        if path == "/ready":
            ready = health_checker.is_ready() if health_checker else True
            body = json.dumps({"ready": ready})
            return _response(b"200 OK" if ready else b"503 Service Unavailable", b"application/json", body.encode())

        if auth_token:
            header_auth = headers.get(b"authorization", b"").decode("utf-8", errors="ignore")
            token_ok = header_auth == f"Bearer {auth_token}" or query.get("token", [""])[0] == auth_token
            if not token_ok:
                return _response(b"401 Unauthorized", b"text/plain", b"unauthorized")

        if path.startswith("/status") and status_board is not None:
            snap = await status_board.snapshot()
            return _response(b"200 OK", b"application/json", json.dumps(snap, default=str).encode())

        return _response(b"200 OK", CONTENT_TYPE_LATEST.encode(), metrics.render())

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            req = await reader.read(2048)
            try:
                resp = await _route(req)
            except Exception as exc:
                log_event(log, "metrics_handler_error", logging.ERROR, err=str(exc))
                resp = _response(b"500 Internal Server Error", b"text/plain", b"error")
            writer.write(resp)
            await writer.drain()
        finally:
            writer.close()

    return await asyncio.start_server(handle, host, port)
