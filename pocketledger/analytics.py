# pocketledger/analytics.py
"""
Figures behind the dashboard, statistics and budget screens.
All functions are pure: transactions in, JSON-ready dicts/lists out.
"""
from __future__ import annotations

import calendar
import csv
import io
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from pocketledger.categories_config import OTHERS_LABEL, TOP_N
from pocketledger.dates import iso_to_date, month_start, today_local
from pocketledger.models import Transaction

MONTH_ABBR = [calendar.month_abbr[m] for m in range(1, 13)]
TIMEFRAMES = ("monthly", "daily", "cumulative")
PERIODS = ("W", "M", "6M", "Y")


def _dated(transactions: Iterable[Transaction]) -> List[Tuple[date, Transaction]]:
    out = []
    for t in transactions:
        d = iso_to_date(t.date)
        if d is not None:
            out.append((d, t))
    out.sort(key=lambda p: p[0])
    return out


def top_five_with_others(pairs: Iterable[Tuple[str, float]], n: int = TOP_N) -> List[Dict[str, Any]]:
    """Positive values, largest first; everything past the top n is summed as 'Others'."""
    items = sorted(
        ({"name": name, "value": value} for name, value in pairs if value > 0),
        key=lambda d: d["value"],
        reverse=True,
    )
    top, rest = items[:n], items[n:]
    others = sum(d["value"] for d in rest)
    if others > 0:
        existing = next((d for d in top if d["name"] == OTHERS_LABEL), None)
        if existing:
            existing["value"] += others
        else:
            top.append({"name": OTHERS_LABEL, "value": others})
        top.sort(key=lambda d: d["value"], reverse=True)
    return top


# ------------------ dashboard ------------------
def dashboard_summary(
    transactions: Sequence[Transaction],
    budgets_for_month: Dict[str, float],
    income_categories: List[str],
    expense_categories: List[str],
    investment_categories: List[str],
    timeframe: str = "monthly",
    today: Optional[date] = None,
    cumulative_start_month: Optional[str] = None,
) -> Dict[str, Any]:
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"Unknown timeframe: {timeframe}")
    today = today or today_local()
    dated = _dated(transactions)

    if cumulative_start_month:
        first_day = month_start(cumulative_start_month)
    elif dated:
        first_day = dated[0][0]
    else:
        first_day = today

    if timeframe == "monthly":
        selected = [t for d, t in dated if (d.year, d.month) == (today.year, today.month)]
        multiplier = 1.0
    elif timeframe == "daily":
        selected = [t for d, t in dated if d == today]
        multiplier = 1.0 / calendar.monthrange(today.year, today.month)[1]
    else:
        selected = [t for d, t in dated if d >= first_day]
        months = (today.year - first_day.year) * 12 + (today.month - first_day.month)
        multiplier = float(max(1, months + 1))

    spending: Dict[str, float] = defaultdict(float)
    for t in selected:
        spending[t.category] += t.amount

    total_income = sum(abs(t.amount) for t in selected if t.type == "income")
    total_expenses = sum(abs(t.amount) for t in selected if t.type == "expense")

    def section(title: str, categories: List[str]) -> Dict[str, Any]:
        rows = []
        for cat in categories:
            tracked = spending.get(cat, 0.0)
            budget = (budgets_for_month.get(cat) or 0.0) * multiplier
            percent = abs(tracked) / budget * 100 if budget > 0 else 0.0
            rows.append({
                "category": cat,
                "tracked": round(tracked, 2),
                "budget": round(budget, 2),
                "percent": round(percent, 1),
                "over_budget": percent > 100,
            })
        return {
            "title": title,
            "rows": rows,
            "chart": top_five_with_others((cat, abs(spending.get(cat, 0.0))) for cat in categories),
            "total_tracked": round(sum(spending.get(cat, 0.0) for cat in categories), 2),
        }

    return {
        "timeframe": timeframe,
        "budget_multiplier": multiplier,
        "total_income": round(total_income, 2),
        "total_expenses": round(total_expenses, 2),
        "net_balance": round(total_income - total_expenses, 2),
        "sections": [
            section("Income", income_categories),
            section("Expenses", expense_categories),
            section("Savings", investment_categories),
        ],
    }


# ------------------ statistics ------------------
def net_asset_series(transactions: Sequence[Transaction], year: int) -> Dict[str, List[Dict[str, Any]]]:
    """Running balances per month: wealth (signed income + expenses) and investment (absolute)."""
    wealth = 0.0
    invested = 0.0
    monthly: Dict[int, List[float]] = defaultdict(lambda: [0.0, 0.0])
    for d, t in _dated(transactions):
        if d.year < year:
            if t.type in ("income", "expense"):
                wealth += t.amount
            elif t.type == "investment":
                invested += abs(t.amount)
        elif d.year == year:
            if t.type in ("income", "expense"):
                monthly[d.month][0] += t.amount
            elif t.type == "investment":
                monthly[d.month][1] += abs(t.amount)

    wealth_data, investment_data = [], []
    for m in range(1, 13):
        wealth += monthly[m][0]
        invested += monthly[m][1]
        wealth_data.append({"name": MONTH_ABBR[m - 1], "balance": round(wealth, 2)})
        investment_data.append({"name": MONTH_ABBR[m - 1], "balance": round(invested, 2)})
    return {"wealth": wealth_data, "investment": investment_data}


def _period_points(period: str, offset: int, today: date) -> Tuple[date, date, List[date], str]:
    if period == "W":
        base = today + timedelta(weeks=offset)
        start = base - timedelta(days=(base.weekday() + 1) % 7)  # Sunday-start week
        end = start + timedelta(days=6)
        points = [start + timedelta(days=i) for i in range(7)]
        return start, end, points, "%a"
    if period == "6M":
        base = today + relativedelta(months=6 * offset)
        start = date(base.year, base.month, 1) - relativedelta(months=5)
        end = date(base.year, base.month, calendar.monthrange(base.year, base.month)[1])
        points = [start + relativedelta(months=i) for i in range(6)]
        return start, end, points, "%b"
    if period == "Y":
        year = today.year + offset
        points = [date(year, m, 1) for m in range(1, 13)]
        return date(year, 1, 1), date(year, 12, 31), points, "%b"
    raise ValueError(f"Unknown period: {period}")


def spending_series(
    transactions: Sequence[Transaction],
    period: str = "M",
    offset: int = 0,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Expense totals per bucket, split by category. 'M' is served by calendar_month instead."""
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    if period == "M":
        return []
    today = today or today_local()
    start, end, points, fmt = _period_points(period, offset, today)

    buckets: Dict[str, Dict[str, Any]] = {}
    for p in points:
        label = p.strftime(fmt)
        buckets[label] = {"name": label}

    for d, t in _dated(transactions):
        if t.type != "expense" or not (start <= d <= end):
            continue
        entry = buckets.get(d.strftime(fmt))
        if entry is None:
            continue
        entry[t.category] = round(entry.get(t.category, 0.0) + abs(t.amount), 2)
        entry["total"] = round(entry.get("total", 0.0) + abs(t.amount), 2)
    return list(buckets.values())


def top_categories_for_point(point: Dict[str, Any], expense_categories: List[str], n: int = TOP_N) -> List[Dict[str, Any]]:
    items = [{"name": c, "value": point.get(c, 0)} for c in expense_categories]
    items = [i for i in items if i["value"] > 0]
    items.sort(key=lambda i: i["value"], reverse=True)
    return items[:n]


def flow_over_time(transactions: Sequence[Transaction], year: int) -> List[Dict[str, Any]]:
    rows = [{"name": MONTH_ABBR[m], "income": 0.0, "expense": 0.0, "investment": 0.0} for m in range(12)]
    for d, t in _dated(transactions):
        if d.year != year:
            continue
        row = rows[d.month - 1]
        if t.type == "income":
            row["income"] += t.amount
        elif t.type == "expense":
            row["expense"] += abs(t.amount)
        elif t.type == "investment":
            row["investment"] += abs(t.amount)
    for row in rows:
        for k in ("income", "expense", "investment"):
            row[k] = round(row[k], 2)
    return rows


def calendar_month(transactions: Sequence[Transaction], year: int, month: int) -> Dict[str, Any]:
    """Monday-first month grid with daily expense totals."""
    first_weekday, days_in_month = calendar.monthrange(year, month)
    totals: Dict[int, float] = defaultdict(float)
    for d, t in _dated(transactions):
        if (d.year, d.month) == (year, month) and t.type == "expense":
            totals[d.day] += abs(t.amount)
    return {
        "year": year,
        "month": month,
        "leading_blanks": first_weekday,
        "days": [
            {"day": day, "total": round(totals[day], 2) if day in totals else None}
            for day in range(1, days_in_month + 1)
        ],
    }


# ------------------ budgets ------------------
def budget_section(budgets_for_month: Dict[str, float], categories: List[str]) -> Dict[str, Any]:
    return {
        "rows": [{"category": c, "budget": budgets_for_month.get(c) or 0.0} for c in categories],
        "total": round(sum(budgets_for_month.get(c) or 0.0 for c in categories), 2),
        "chart": top_five_with_others((c, budgets_for_month.get(c) or 0.0) for c in categories),
    }


def yearly_budget(
    monthly_budgets: Dict[str, Dict[str, float]],
    expense_categories: List[str],
    year: int,
) -> Dict[str, Any]:
    months = []
    for m in range(1, 13):
        budgets = monthly_budgets.get(f"{year:04d}-{m:02d}") or {}
        months.append({
            "name": MONTH_ABBR[m - 1],
            "budget": round(sum(budgets.get(c) or 0.0 for c in expense_categories), 2),
        })
    return {"months": months, "total": round(sum(m["budget"] for m in months), 2)}


# ------------------ database view ------------------
def filter_by_type(transactions: Iterable[Transaction], type_filter: str = "all") -> List[Transaction]:
    if type_filter in (None, "", "all"):
        return list(transactions)
    return [t for t in transactions if t.type == type_filter]


def group_by_month(transactions: Iterable[Transaction], type_filter: str = "all") -> List[Dict[str, Any]]:
    groups: Dict[str, List[Transaction]] = defaultdict(list)
    for t in filter_by_type(transactions, type_filter):
        groups[(t.date or "")[:7]].append(t)
    return [
        {"month": key, "transactions": [t.to_dict() for t in groups[key]]}
        for key in sorted(groups, reverse=True)
    ]


def category_usage(transactions: Iterable[Transaction]) -> Dict[str, int]:
    usage: Dict[str, int] = defaultdict(int)
    for t in transactions:
        usage[t.category] += 1
    return dict(usage)


def export_csv(transactions: Iterable[Transaction], type_filter: str = "all") -> str:
    """Date,Amount,Category,Note,Type; the Note column carries the source when one is set."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Date", "Amount", "Category", "Note", "Type"])
    for t in filter_by_type(transactions, type_filter):
        writer.writerow([t.date, t.amount, t.category or "", t.source or t.note or "", t.type or ""])
    return buf.getvalue()
