# pocketledger/store.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Keys used by the ledger (one JSON file each)
TRANSACTIONS_KEY = "transactions"
FOUND_ITEMS_KEY = "aiFoundItems"
MATCHED_ITEMS_KEY = "aiMatchedItems"
SETTINGS_KEY = "appSettings"


def default_data_dir() -> Path:
    return Path(os.environ.get("DATA_DIR") or "data")


class JsonStore:
    """Key/value persistence: <base_dir>/<key>.json, written atomically."""

    def __init__(self, base_dir: Path | str | None = None):
        self.base_dir = Path(base_dir) if base_dir else default_data_dir()

    def path_for(self, key: str) -> Path:
        return self.base_dir / f"{key}.json"

    def load(self, key: str, fallback: Any = None) -> Any:
        p = self.path_for(key)
        if not p.exists():
            return fallback
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s, using defaults: %s", p, e)
            return fallback

    def save(self, key: str, value: Any) -> None:
        p = self.path_for(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".tmp")
        tmp.write_text(json.dumps(value, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(p)
