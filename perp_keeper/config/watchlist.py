"""Load the optional trader watch-list from YAML.

Path via env `KEEPER_WATCHLIST`, default `configs/watchlist.yaml`. The file seeds the
active-trader set at startup so traders with positions opened before the keeper
started are still checked:

    traders:
      - "0xabc..."
      - "0xdef..."
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

import yaml

from perp_keeper.infra.logging_cfg import log_event


def load_watchlist(path: str | None = None) -> List[str]:
    if path is None:
        path = os.getenv("KEEPER_WATCHLIST", "configs/watchlist.yaml")
    p = Path(path)
    if not p.exists():
        return []
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        log_event(logging.getLogger("keeper"), "watchlist_load_error", logging.WARNING, path=str(p), err=str(exc))
        return []
    if isinstance(data, dict):
        data = data.get("traders", [])
    if not isinstance(data, list):
        return []
    return [str(t).strip().lower() for t in data if isinstance(t, str) and t.strip().startswith("0x")]
