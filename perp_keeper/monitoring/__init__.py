"""
Monitoring and observability package.

This package contains metrics, probes and the status board.
"""

from perp_keeper.monitoring.metrics import HealthChecker, HealthStatus, KeeperMetrics, start_metrics_server
from perp_keeper.monitoring.status import StatusBoard

__all__ = [
    "HealthChecker",
    "HealthStatus",
    "KeeperMetrics",
    "StatusBoard",
    "start_metrics_server",
]
