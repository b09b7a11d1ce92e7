"""
Async façade over the exchange contract.

web3's HTTP provider is blocking, so every contract call runs in a shared thread
pool and is bounded by asyncio.wait_for. Reads get one retry for transient
failures; writes are never retried here (the next scheduled cycle is the retry).
"""

from __future__ import annotations

import asyncio
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from web3 import Web3

from perp_keeper.core.errors import (
    LedgerError,
    LedgerInvalid,
    LedgerReverted,
    LedgerTimeout,
    TransactionFailed,
    classify_exception,
)
from perp_keeper.core.fixed_point import is_zero_address, normalize_address
from perp_keeper.core.models import LiveOrder, Position
from perp_keeper.infra.abi import EXCHANGE_ABI
from perp_keeper.ledger.decoding import DecodeError, decode_order, decode_position
from perp_keeper.infra.logging_cfg import log_event

log = logging.getLogger("keeper")

# liquidate(trader, 0) closes the whole position
LIQUIDATE_ALL = 0


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int = 0
    gas_used: int = 0


class LedgerClient:
    """
    Reads, event logs and signed writes against one exchange contract.

    Usage:
        ledger = LedgerClient.from_settings(cfg, signer=cfg.resolve_signer())
        head = await ledger.best_bid_id()
        order = await ledger.get_order(head)
        receipt = await ledger.liquidate(trader)
    """

    def __init__(
        self,
        w3: Web3,
        address: str,
        signer=None,
        call_timeout: float = 5.0,
        receipt_timeout: float = 120.0,
        read_retries: int = 1,
        chain_id: Optional[int] = None,
        max_workers: int = 8,
        metrics=None,
    ) -> None:
        self._w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=EXCHANGE_ABI)
        self._signer = signer
        self._call_timeout = call_timeout
        self._receipt_timeout = receipt_timeout
        self._read_retries = read_retries
        self._chain_id = chain_id
        self._tx_lock: Optional[asyncio.Lock] = None
        self.metrics = metrics
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger")

    @classmethod
    def from_settings(cls, cfg, signer=None, metrics=None) -> "LedgerClient":
        if not cfg.exchange_address:
            raise LedgerInvalid("KEEPER_EXCHANGE_ADDRESS is not set", where="config")
        w3 = Web3(Web3.HTTPProvider(cfg.rpc_url, request_kwargs={"timeout": cfg.call_timeout}))
        return cls(
            w3,
            cfg.exchange_address,
            signer=signer,
            call_timeout=cfg.call_timeout,
            receipt_timeout=cfg.receipt_timeout,
            chain_id=cfg.chain_id,
            metrics=metrics,
        )

    @property
    def signer_address(self) -> Optional[str]:
        if self._signer is None:
            return None
        return self._signer.address

    @property
    def can_sign(self) -> bool:
        return self._signer is not None

    def bind_tx_lock(self, lock: asyncio.Lock) -> None:
        """Serialize nonce allocation with other users of the same signer."""
        self._tx_lock = lock

    async def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    async def _run(self, fn: Callable[[], Any], timeout: float) -> Any:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(self._executor, fn), timeout=timeout)

    async def _call(self, fn: Callable[[], Any], where: str, retries: Optional[int] = None) -> Any:
        """Run a blocking read with timeout; retry transient failures only."""
        retries = self._read_retries if retries is None else retries
        backoff = 0.25
        for attempt in range(retries + 1):
            try:
                return await self._run(fn, self._call_timeout)
            except Exception as exc:
                err = classify_exception(exc, where)
                if isinstance(err, (LedgerInvalid, LedgerReverted)) or attempt >= retries:
                    if self.metrics is not None:
                        self.metrics.ledger_errors.labels(where=where, kind=type(err).__name__).inc()
                    raise err from exc
                log_event(log, "ledger_read_retry", logging.WARNING, where=where, err=str(exc), attempt=attempt)
                await asyncio.sleep(backoff + random.uniform(0, backoff * 0.5))
                backoff *= 2

    async def _read(self, name: str, *args: Any) -> Any:
        return await self._call(lambda: getattr(self.contract.functions, name)(*args).call(), where=name)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def has_code(self) -> bool:
        """Bytecode-presence probe for the exchange address."""
        code = await self._call(lambda: self._w3.eth.get_code(self.address), where="get_code", retries=0)
        return code is not None and len(code) > 0

    async def block_number(self) -> int:
        return int(await self._call(lambda: self._w3.eth.block_number, where="block_number"))

    async def mark_price(self) -> int:
        return int(await self._read("markPrice"))

    async def index_price(self) -> int:
        return int(await self._read("indexPrice"))

    async def best_bid_id(self) -> int:
        return int(await self._read("bestBuyId") or 0)

    async def best_ask_id(self) -> int:
        return int(await self._read("bestSellId") or 0)

    async def initial_margin_bps(self) -> int:
        return int(await self._read("initialMarginBps"))

    async def get_order(self, order_id: int) -> LiveOrder:
        raw = await self._read("orders", int(order_id))
        try:
            return decode_order(raw)
        except DecodeError as exc:
            raise LedgerInvalid(str(exc), where="orders", cause=exc) from exc

    async def margin(self, trader: str) -> int:
        return int(await self._read("margin", Web3.to_checksum_address(trader)))

    async def position(self, trader: str) -> Position:
        raw = await self._read("getPosition", Web3.to_checksum_address(trader))
        try:
            return decode_position(raw)
        except DecodeError as exc:
            raise LedgerInvalid(str(exc), where="getPosition", cause=exc) from exc

    async def can_liquidate(self, trader: str) -> bool:
        return bool(await self._read("canLiquidate", Web3.to_checksum_address(trader)))

    async def vip_level(self, trader: str) -> int:
        return int(await self._read("getVIPLevel", Web3.to_checksum_address(trader)))

    async def cumulative_volume(self, trader: str) -> int:
        return int(await self._read("getCumulativeVolume", Web3.to_checksum_address(trader)))

    async def volume_to_next_vip(self, trader: str) -> int:
        return int(await self._read("getVolumeToNextVIP", Web3.to_checksum_address(trader)))

    async def fee_rate_bps(self, trader: str, is_maker: bool = False) -> int:
        return int(await self._read("getActualFeeRate", Web3.to_checksum_address(trader), is_maker))

    async def referrer(self, trader: str) -> Optional[str]:
        """Registered referrer, or None for the zero-address sentinel."""
        addr = await self._read("getReferrer", Web3.to_checksum_address(trader))
        if is_zero_address(addr):
            return None
        return normalize_address(addr)

    async def get_logs(self, event_name: str, from_block: int, to_block: int | str = "latest") -> List[Any]:
        def _fetch() -> List[Any]:
            event = getattr(self.contract.events, event_name)
            return list(event().get_logs(from_block=from_block, to_block=to_block))

        return await self._call(_fetch, where=f"logs:{event_name}")

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def transact(self, name: str, *args: Any, value: int = 0) -> TxReceipt:
        """
        Submit, wait for inclusion, and raise TransactionFailed unless the
        receipt status is success. Never retried here.
        """
        try:
            receipt = await self._transact(name, *args, value=value)
        except TransactionFailed:
            if self.metrics is not None:
                self.metrics.transactions.labels(fn=name, outcome="failed").inc()
            raise
        if self.metrics is not None:
            self.metrics.transactions.labels(fn=name, outcome="confirmed").inc()
        return receipt

    async def _transact(self, name: str, *args: Any, value: int = 0) -> TxReceipt:
        if self._signer is None:
            raise TransactionFailed(f"{name}: no signer configured", where=name)
        sender = self._signer.address

        def _send() -> Any:
            fn = getattr(self.contract.functions, name)(*args)
            params: dict[str, Any] = {
                "from": sender,
                "nonce": self._w3.eth.get_transaction_count(sender, "pending"),
                "value": int(value),
            }
            if self._chain_id is not None:
                params["chainId"] = self._chain_id
            tx = fn.build_transaction(params)
            signed = self._signer.sign_transaction(tx)
            return self._w3.eth.send_raw_transaction(signed.raw_transaction)

        try:
            if self._tx_lock is not None:
                async with self._tx_lock:
                    tx_hash = await self._run(_send, self._call_timeout)
            else:
                tx_hash = await self._run(_send, self._call_timeout)
        except Exception as exc:
            err = classify_exception(exc, name)
            raise TransactionFailed(f"{name}: submission failed: {err}", where=name, cause=exc) from exc

        hash_hex = tx_hash.to_0x_hex() if hasattr(tx_hash, "to_0x_hex") else str(tx_hash)
        log_event(log, "tx_submitted", fn=name, tx=hash_hex)

        try:
            receipt = await self._run(
                lambda: self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout),
                self._receipt_timeout + self._call_timeout,
            )
        except Exception as exc:
            err = classify_exception(exc, name)
            reason = "confirmation timeout" if isinstance(err, LedgerTimeout) else str(err)
            raise TransactionFailed(f"{name}: {reason}", where=name, tx_hash=hash_hex, cause=exc) from exc

        status = int(receipt.get("status", 0))
        if status != 1:
            raise TransactionFailed(f"{name}: transaction failed", where=name, tx_hash=hash_hex, status=status)
        return TxReceipt(
            tx_hash=hash_hex,
            status=status,
            block_number=int(receipt.get("blockNumber", 0) or 0),
            gas_used=int(receipt.get("gasUsed", 0) or 0),
        )

    async def deposit(self, amount: int) -> TxReceipt:
        return await self.transact("deposit", value=amount)

    async def withdraw(self, amount: int) -> TxReceipt:
        return await self.transact("withdraw", int(amount))

    async def place_order(self, is_buy: bool, price: int, amount: int, hint_id: int = 0) -> TxReceipt:
        return await self.transact("placeOrder", bool(is_buy), int(price), int(amount), int(hint_id))

    async def cancel_order(self, order_id: int) -> TxReceipt:
        return await self.transact("cancelOrder", int(order_id))

    async def liquidate(self, trader: str, amount: int = LIQUIDATE_ALL) -> TxReceipt:
        return await self.transact("liquidate", Web3.to_checksum_address(trader), int(amount))

    async def check_vip_upgrade(self) -> TxReceipt:
        return await self.transact("checkVIPUpgrade")

    async def set_vip_level(self, trader: str, level: int) -> TxReceipt:
        return await self.transact("setVIPLevel", Web3.to_checksum_address(trader), int(level))

    async def register_referral(self, referrer: str) -> TxReceipt:
        return await self.transact("registerReferral", Web3.to_checksum_address(referrer))


__all__ = ["LIQUIDATE_ALL", "LedgerClient", "LedgerError", "TxReceipt"]
