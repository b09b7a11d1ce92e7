"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from perp_keeper.core.errors import ConfigError
from perp_keeper.infra.logging_cfg import log_event

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    exchange_address: str | None
    deploy_block: int
    indexer_url: str | None
    private_key: str | None
    account_address: str | None
    chain_id: int | None
    # loop cadences
    market_interval: float
    liquidation_interval: float
    vip_interval: float
    event_poll_interval: float
    # deadlines
    call_timeout: float
    receipt_timeout: float
    indexer_timeout: float
    vip_info_timeout: float
    vip_info_debounce_sec: float
    # order book reconstruction
    scan_limit: int
    max_chain_hops: int
    # ledger health
    ledger_error_threshold: int
    probe_cooldown_sec: float
    # event feed
    event_max_block_range: int
    event_stale_after: float
    # surfaces
    metrics_port: int
    metrics_token: str | None
    log_file: str | None
    log_level: str
    watchlist_path: str
    enable_market_view: bool
    enable_liquidator: bool
    enable_vip_keeper: bool

    def dump(self) -> dict:
        """Return a dict of settings for logging, with secrets masked."""
        data = self.__dict__.copy()
        if data.get("private_key"):
            data["private_key"] = "***"
        if data.get("metrics_token"):
            data["metrics_token"] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        chain_raw = os.getenv("KEEPER_CHAIN_ID")
        cfg = cls(
            rpc_url=os.getenv("KEEPER_RPC_URL", "http://127.0.0.1:8545"),
            exchange_address=os.getenv("KEEPER_EXCHANGE_ADDRESS") or None,
            deploy_block=_int_env("KEEPER_EXCHANGE_DEPLOY_BLOCK", 0),
            indexer_url=os.getenv("KEEPER_INDEXER_URL") or None,
            private_key=os.getenv("KEEPER_PRIVATE_KEY") or None,
            account_address=os.getenv("KEEPER_ACCOUNT_ADDRESS") or None,
            chain_id=int(chain_raw) if chain_raw else None,
            market_interval=_float_env("KEEPER_MARKET_INTERVAL_SEC", 2.0),
            liquidation_interval=_float_env("KEEPER_LIQUIDATION_INTERVAL_SEC", 5.0),
            vip_interval=_float_env("KEEPER_VIP_INTERVAL_SEC", 3600.0),
            event_poll_interval=_float_env("KEEPER_EVENT_POLL_SEC", 2.0),
            call_timeout=_float_env("KEEPER_CALL_TIMEOUT_SEC", 5.0),
            receipt_timeout=_float_env("KEEPER_RECEIPT_TIMEOUT_SEC", 120.0),
            indexer_timeout=_float_env("KEEPER_INDEXER_TIMEOUT_SEC", 5.0),
            vip_info_timeout=_float_env("KEEPER_VIP_INFO_TIMEOUT_SEC", 10.0),
            vip_info_debounce_sec=_float_env("KEEPER_VIP_INFO_DEBOUNCE_SEC", 5.0),
            scan_limit=_int_env("KEEPER_ORDER_SCAN_LIMIT", 20),
            max_chain_hops=_int_env("KEEPER_MAX_CHAIN_HOPS", 128),
            ledger_error_threshold=_int_env("KEEPER_LEDGER_ERROR_THRESHOLD", 3),
            probe_cooldown_sec=_float_env("KEEPER_PROBE_COOLDOWN_SEC", 30.0),
            event_max_block_range=_int_env("KEEPER_EVENT_MAX_BLOCK_RANGE", 2000),
            event_stale_after=_float_env("KEEPER_EVENT_STALE_AFTER_SEC", 30.0),
            metrics_port=_int_env("KEEPER_METRICS_PORT", 9096),
            metrics_token=os.getenv("KEEPER_METRICS_TOKEN") or None,
            log_file=os.getenv("KEEPER_LOG_FILE", "keeper.log") or None,
            log_level=os.getenv("KEEPER_LOG_LEVEL", "INFO").upper(),
            watchlist_path=os.getenv("KEEPER_WATCHLIST", "configs/watchlist.yaml"),
            enable_market_view=env_bool("KEEPER_ENABLE_MARKET_VIEW", True),
            enable_liquidator=env_bool("KEEPER_ENABLE_LIQUIDATOR", True),
            enable_vip_keeper=env_bool("KEEPER_ENABLE_VIP_KEEPER", True),
        )
        cfg._validate()
        return cfg

    @property
    def can_sign(self) -> bool:
        return bool(self.private_key)

    def resolve_account(self) -> str | None:
        if self.private_key:
            from eth_account import Account

            return Account.from_key(self.private_key).address
        return self.account_address

    def resolve_signer(self):
        from eth_account import Account

        if self.private_key:
            return Account.from_key(self.private_key)
        raise ConfigError("Missing credentials: set KEEPER_PRIVATE_KEY")

    def log_summary(self, logger: logging.Logger) -> None:
        """
        Log the settings that shape loop behaviour once at startup so overrides are obvious.
        """
        log_event(
            logger,
            "config_loaded",
            rpc_url=self.rpc_url,
            exchange=self.exchange_address,
            indexer=self.indexer_url,
            market_interval=self.market_interval,
            liquidation_interval=self.liquidation_interval,
            vip_interval=self.vip_interval,
            signer=self.can_sign,
            log_file=self.log_file,
        )

    def _validate(self) -> None:
        positive = {
            "KEEPER_MARKET_INTERVAL_SEC": self.market_interval,
            "KEEPER_LIQUIDATION_INTERVAL_SEC": self.liquidation_interval,
            "KEEPER_VIP_INTERVAL_SEC": self.vip_interval,
            "KEEPER_EVENT_POLL_SEC": self.event_poll_interval,
            "KEEPER_CALL_TIMEOUT_SEC": self.call_timeout,
            "KEEPER_RECEIPT_TIMEOUT_SEC": self.receipt_timeout,
            "KEEPER_INDEXER_TIMEOUT_SEC": self.indexer_timeout,
            "KEEPER_VIP_INFO_TIMEOUT_SEC": self.vip_info_timeout,
        }
        for key, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{key} must be > 0")
        if self.scan_limit < 0:
            raise ConfigError("KEEPER_ORDER_SCAN_LIMIT must be >= 0")
        if self.max_chain_hops <= 0:
            raise ConfigError("KEEPER_MAX_CHAIN_HOPS must be > 0")
        if self.ledger_error_threshold <= 0:
            raise ConfigError("KEEPER_LEDGER_ERROR_THRESHOLD must be > 0")
        if self.event_max_block_range <= 0:
            raise ConfigError("KEEPER_EVENT_MAX_BLOCK_RANGE must be > 0")
        if self.deploy_block < 0:
            raise ConfigError("KEEPER_EXCHANGE_DEPLOY_BLOCK must be >= 0")
        if self.exchange_address and not (
            self.exchange_address.startswith("0x") and len(self.exchange_address) == 42
        ):
            raise ConfigError("KEEPER_EXCHANGE_ADDRESS must be a 0x-prefixed 20-byte address")
