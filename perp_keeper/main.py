"""
Entry point: load settings, start the metrics server and run the keeper loops.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from perp_keeper.app import build_keeper, run_all
from perp_keeper.config.config import Settings
from perp_keeper.config.config_validator import validate_and_log
from perp_keeper.core.errors import ConfigError
from perp_keeper.infra.logging_cfg import build_logger, log_event
from perp_keeper.monitoring.metrics import HealthChecker, KeeperMetrics, start_metrics_server
from perp_keeper.monitoring.status import StatusBoard

# handlers are attached in configure_logging once the destination is known
log = logging.getLogger("keeper")


def configure_logging(cfg: Settings, name: str = "keeper") -> logging.Logger:
    return build_logger(name, level=cfg.log_level, file_path=cfg.log_file)


async def main() -> None:
    try:
        cfg = Settings.load()
    except ConfigError as exc:
        build_logger("keeper", file_path=None)
        log_event(log, "config_invalid", logging.ERROR, err=str(exc))
        sys.exit(1)
    configure_logging(cfg)
    cfg.log_summary(log)

    if not validate_and_log(cfg, log):
        log_event(log, "config_validation_failed", logging.ERROR)
        sys.exit(1)

    health_checker = HealthChecker()
    health_checker.set_component_health("config", True, "Configuration validated")

    metrics = KeeperMetrics()
    status_board = StatusBoard.from_settings(cfg)
    keeper = await build_keeper(cfg, metrics=metrics, status_board=status_board, health_checker=health_checker)
    srv = await start_metrics_server(metrics, cfg.metrics_port, status_board, auth_token=cfg.metrics_token, health_checker=health_checker)

    log_event(log, "startup", settings=cfg.dump())

    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(run_all(keeper, health_checker))

    def stop_all() -> None:
        if not run_task.done():
            run_task.cancel()
        srv.close()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        await run_task
    except (asyncio.CancelledError, KeyboardInterrupt):
        log_event(log, "shutdown_signal")
        if not run_task.done():
            run_task.cancel()
            try:
                await run_task
            except asyncio.CancelledError:
                pass
    finally:
        srv.close()
        await srv.wait_closed()
        await keeper.close()
        log_event(log, "shutdown_complete", tracked=len(keeper.tracker))


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nKeeper stopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()
