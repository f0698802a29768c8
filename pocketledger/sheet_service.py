# pocketledger/sheet_service.py
from __future__ import annotations

import argparse
import csv
import io
import json
import logging
import os
import re
import sys
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

from pocketledger.categories_config import (
    BULK_BATCH_SIZE,
    DEFAULT_GID,
    DEFAULT_SHEET_ID,
    SOURCE_SHORTCUT,
    get_transaction_type,
)
from pocketledger.dates import parse_sheet_date
from pocketledger.errors import LedgerError, SheetError
from pocketledger.models import Transaction

logger = logging.getLogger(__name__)

_SHEET_ID_RE = re.compile(r"/d/([a-zA-Z0-9-_]+)")
_GID_RE = re.compile(r"[#&?]gid=([0-9]+)")
_AMOUNTISH_RE = re.compile(r"[\d.$]")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")
_FLOAT_PREFIX_RE = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def _timeout() -> float:
    try:
        return float(os.environ.get("REQUEST_TIMEOUT", "30"))
    except ValueError:
        return 30.0


# --------------------
# Small helpers
# --------------------
def is_read_only(url: str) -> bool:
    """Published Google Sheets can be read but not written."""
    return not url or url == DEFAULT_SHEET_ID or "docs.google.com" in url


def build_fetch_url(sheet_url_or_id: str) -> tuple[str, bool]:
    """Return (url, is_csv). Sheet URLs and the default id go through the gviz CSV export."""
    if "docs.google.com" in sheet_url_or_id or sheet_url_or_id == DEFAULT_SHEET_ID:
        m = _SHEET_ID_RE.search(sheet_url_or_id)
        sheet_id = m.group(1) if m else (DEFAULT_SHEET_ID if sheet_url_or_id == DEFAULT_SHEET_ID else None)
        g = _GID_RE.search(sheet_url_or_id)
        gid = g.group(1) if g else DEFAULT_GID
        if sheet_id:
            return f"https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq?tqx=out:csv&gid={gid}", True
    return sheet_url_or_id, False


def _leading_float(s: str) -> float:
    m = _FLOAT_PREFIX_RE.match(s or "")
    return float(m.group(0)) if m else 0.0


def _find_header(headers: List[str], *needles: str) -> int:
    for i, h in enumerate(headers):
        if any(n in h for n in needles):
            return i
    return -1


def _cell(row: List[str], idx: int) -> str:
    return row[idx] if 0 <= idx < len(row) else ""


# --------------------
# CSV rows -> transactions
# --------------------
def parse_sheet_csv(text: str, income_categories, investment_categories) -> List[Transaction]:
    """
    Map a gviz CSV export to transactions. Columns are found by header name;
    without headers the Google Form layout is assumed (A timestamp, B date,
    C amount, D category, E note).
    """
    rows = [[c.strip() for c in r] for r in csv.reader(io.StringIO(text))]
    if len(rows) < 2:
        return []

    headers = [h.lower() for h in rows[0]]
    date_idx = _find_header(headers, "date")
    amount_idx = _find_header(headers, "amount", "cost", "price")
    cat_idx = _find_header(headers, "category", "type")
    note_idx = _find_header(headers, "note", "desc", "item")
    ts_idx = _find_header(headers, "timestamp")

    cat_col = cat_idx if cat_idx > -1 else 3
    note_col = note_idx if note_idx > -1 else 4

    out: List[Transaction] = []
    for idx, row in enumerate(rows[1:]):
        if len(row) < 2:
            continue

        # Amount: header column, else column C, else column B
        amount_str = ""
        if amount_idx > -1 and _cell(row, amount_idx):
            amount_str = _cell(row, amount_idx)
        elif _AMOUNTISH_RE.search(_cell(row, 2)):
            amount_str = _cell(row, 2)
        elif _AMOUNTISH_RE.search(_cell(row, 1)):
            amount_str = _cell(row, 1)
        amount_str = _NON_NUMERIC_RE.sub("", amount_str)

        # Date: header column, timestamp column, then column B, then column A
        date_str = ""
        if date_idx > -1 and _cell(row, date_idx):
            date_str = _cell(row, date_idx)
        if not date_str and ts_idx > -1 and _cell(row, ts_idx):
            date_str = _cell(row, ts_idx)
        if not date_str:
            date_str = _cell(row, 1) or _cell(row, 0)
        iso_date = parse_sheet_date(date_str)

        category = _cell(row, cat_col) or "Uncategorized"

        # Form timestamps in column A give ids that survive re-sorting the sheet
        stable_id = f"csv-{idx}-{iso_date}-{amount_str}"
        if len(_cell(row, 0)) > 10:
            stable_id = "form-" + _NON_ALNUM_RE.sub("", row[0])

        out.append(Transaction(
            id=stable_id,
            date=iso_date,
            amount=_leading_float(amount_str),
            category=category,
            note=_cell(row, note_col),
            type=get_transaction_type(category, income_categories, investment_categories),
            source=SOURCE_SHORTCUT,
        ))
    return out


def parse_sheet_json(data: Any, income_categories, investment_categories) -> List[Transaction]:
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = data.get("data") or []
    else:
        items = []

    out: List[Transaction] = []
    for d in items:
        if not isinstance(d, dict):
            continue
        tx = Transaction.from_dict({**d, "id": d.get("id") or uuid.uuid4().hex[:9]})
        tx.type = get_transaction_type(d.get("category"), income_categories, investment_categories)
        tx.source = d.get("source") or SOURCE_SHORTCUT
        out.append(tx)
    return out


# --------------------
# Remote I/O
# --------------------
def fetch_transactions(sheet_url_or_id: str, income_categories, investment_categories) -> List[Transaction]:
    fetch_url, is_csv = build_fetch_url(sheet_url_or_id)
    try:
        res = requests.get(fetch_url, timeout=_timeout())
    except requests.RequestException as e:
        logger.warning("Fetch error for %s: %s", fetch_url, e)
        raise SheetError(f"Network error: {e}") from e
    if not res.ok:
        logger.warning(
            "Fetch failed (%s %s). Ensure the Google Sheet is 'Anyone with the link' or 'Published to Web'.",
            res.status_code, res.reason,
        )
        raise SheetError(f"Failed to fetch: {res.status_code} {res.reason}")

    if is_csv:
        return parse_sheet_csv(res.text, income_categories, investment_categories)
    try:
        data = res.json()
    except ValueError as e:
        raise SheetError("Sheet endpoint did not return JSON") from e
    return parse_sheet_json(data, income_categories, investment_categories)


def check_connection(script_url: str) -> Dict[str, Any]:
    if "script.google.com" not in (script_url or ""):
        return {"success": False, "message": "Invalid URL. Must be a Google Apps Script URL."}
    try:
        res = requests.get(script_url, timeout=_timeout())
    except requests.RequestException as e:
        return {"success": False, "message": f"Network error: {e}"}
    try:
        body = json.loads(res.text)
    except ValueError:
        return {"success": False, "message": "Script returned HTML instead of JSON. Did you deploy as 'Web App'?"}
    if isinstance(body, dict) and body.get("status") == "success":
        return {"success": True, "message": "Connection successful!"}
    return {"success": False, "message": "Script reachable but returned unexpected status."}


def _post_action(url: str, action: str, data: Any) -> requests.Response:
    # Apps Script web apps reject CORS preflights, so the body goes as text/plain
    return requests.post(
        url,
        data=json.dumps({"action": action, "data": data}),
        headers={"Content-Type": "text/plain;charset=utf-8"},
        timeout=_timeout(),
    )


def save_transaction(sheet_db_url: str, tx: Transaction) -> bool:
    if is_read_only(sheet_db_url):
        logger.info("Mock write-back (read-only source configured): %s", tx.id)
        return True
    try:
        return _post_action(sheet_db_url, "add", tx.to_dict()).ok
    except requests.RequestException as e:
        logger.error("Sheet save error: %s", e)
        return False


@dataclass
class BulkSaveResult:
    success: bool
    count: int
    error: Optional[str] = None
    sheet_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "count": self.count}
        if self.error:
            out["error"] = self.error
        if self.sheet_name:
            out["sheetName"] = self.sheet_name
        return out


def save_bulk_transactions(sheet_db_url: str, transactions: List[Transaction]) -> BulkSaveResult:
    if is_read_only(sheet_db_url):
        logger.info("Mock bulk save (read-only source): %d rows", len(transactions))
        return BulkSaveResult(success=True, count=len(transactions))

    success_count = 0
    last_sheet = ""
    try:
        for start in range(0, len(transactions), BULK_BATCH_SIZE):
            batch = [t.to_dict() for t in transactions[start:start + BULK_BATCH_SIZE]]
            res = _post_action(sheet_db_url, "addBulk", batch)
            if not res.ok:
                return BulkSaveResult(False, success_count, f"HTTP Error {res.status_code}")
            try:
                body = json.loads(res.text)
            except ValueError:
                logger.error("Invalid JSON response: %s", res.text[:100])
                return BulkSaveResult(
                    False, success_count, "Invalid response. Check if 'New Deployment' was created."
                )
            if not isinstance(body, dict) or body.get("status") != "success":
                msg = body.get("message") if isinstance(body, dict) else None
                return BulkSaveResult(False, success_count, msg or "Script Error")
            success_count += body.get("count") or len(batch)
            if body.get("targetSheet"):
                last_sheet = body["targetSheet"]
    except requests.RequestException as e:
        logger.error("Sheet bulk save error: %s", e)
        return BulkSaveResult(False, 0, str(e) or "Network Error")

    return BulkSaveResult(success_count >= len(transactions), success_count, sheet_name=last_sheet or None)


# --------------------
# CLI
# --------------------
def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s")

    parser = argparse.ArgumentParser(description="Sync the ledger with its spreadsheet.")
    sub = parser.add_subparsers(dest="cmd", required=True)
    p_sync = sub.add_parser("sync", help="Pull new rows from the sheet into the local store")
    p_sync.add_argument("--data-dir", help="Ledger data directory (default: $DATA_DIR or ./data)")
    p_test = sub.add_parser("test", help="Check an Apps Script endpoint")
    p_test.add_argument("url")
    args = parser.parse_args(argv)

    if args.cmd == "test":
        result = check_connection(args.url)
        print(result["message"])
        return 0 if result["success"] else 1

    from pocketledger.ledger import Ledger
    from pocketledger.store import JsonStore

    ledger = Ledger(JsonStore(args.data_dir))
    try:
        added, message = ledger.sync_from_sheet()
    except LedgerError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    print(message)
    logger.info("%d new transactions synced into %s", added, ledger.store.base_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
