# pocketledger/dates.py
from __future__ import annotations

import os
import re
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

DEFAULT_TZ = "Asia/Hong_Kong"

_ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def ledger_tz() -> ZoneInfo:
    return ZoneInfo(os.environ.get("LEDGER_TZ") or DEFAULT_TZ)


def today_local() -> date:
    """Today's calendar date in the ledger time zone."""
    return datetime.now(ledger_tz()).date()


def to_local_date_string(dt: datetime | date) -> str:
    """YYYY-MM-DD in the ledger time zone; naive datetimes are taken as-is."""
    if isinstance(dt, datetime):
        if dt.tzinfo is not None:
            dt = dt.astimezone(ledger_tz())
        return dt.strftime("%Y-%m-%d")
    return dt.isoformat()


def parse_any_date(s) -> Optional[datetime]:
    if not s:
        return None
    s = str(s).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            pass
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        pass
    try:
        return date_parser.parse(s)
    except (ValueError, OverflowError):
        return None


def parse_sheet_date(s) -> str:
    """
    Normalise a sheet cell into YYYY-MM-DD without shifting the day.
    Google Sheets often emits 'yyyy-MM-dd HH:mm:ss'; the time part is dropped.
    Blank or unparseable cells fall back to today.
    """
    if not s:
        return to_local_date_string(today_local())
    raw = str(s).strip()
    clean = raw.split(" ")[0].split("T")[0]
    if _ISO_DAY_RE.match(clean):
        return clean
    dt = parse_any_date(raw)
    if dt:
        return to_local_date_string(dt)
    return to_local_date_string(today_local())


def iso_to_date(s) -> Optional[date]:
    dt = parse_any_date(s)
    return dt.date() if dt else None


def day_difference(a, b) -> Optional[int]:
    """Absolute whole days between two date strings; None when either is invalid."""
    da, db = iso_to_date(a), iso_to_date(b)
    if da is None or db is None:
        return None
    return abs((da - db).days)


def month_key(d: date | datetime) -> str:
    return d.strftime("%Y-%m")


def month_start(key: str) -> date:
    year, month = (int(p) for p in key.split("-")[:2])
    return date(year, month, 1)


def shift_month_key(key: str, months: int) -> str:
    return month_key(month_start(key) + relativedelta(months=months))


def previous_month_key(key: str) -> str:
    return shift_month_key(key, -1)


def month_label(key: str, fmt: str = "%B %Y") -> str:
    return month_start(key).strftime(fmt)
