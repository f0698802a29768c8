# pocketledger/reconcile.py
"""
Statement reconciliation.

Candidates extracted from a statement are compared with recorded transactions.
A candidate is a likely duplicate when some recorded transaction has the same
absolute amount (within AMOUNT_EPSILON) and a date at most MATCH_WINDOW_DAYS
away. Duplicates go to the "matched" section paired with the first such
transaction; everything else stays a suggestion until the user confirms or
deletes it.

Callers pass transactions newest first, so "first match" means the most recent
qualifying record.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pocketledger.categories_config import (
    AMOUNT_EPSILON,
    MATCH_WINDOW_DAYS,
    SOURCE_PDF,
    get_transaction_type,
)
from pocketledger.dates import day_difference, today_local
from pocketledger.models import FoundItem, MatchedItemPair, Transaction


def amounts_match(a: float, b: float, epsilon: float = AMOUNT_EPSILON) -> bool:
    return abs(abs(a) - abs(b)) < epsilon


def find_match(
    item: FoundItem,
    transactions: Sequence[Transaction],
    epsilon: float = AMOUNT_EPSILON,
    window_days: int = MATCH_WINDOW_DAYS,
) -> Optional[Transaction]:
    if not item.amount:
        return None
    for tx in transactions:
        if not amounts_match(item.amount, tx.amount, epsilon):
            continue
        days = day_difference(item.date, tx.date)
        if days is not None and days <= window_days:
            return tx
    return None


def partition_candidates(
    candidates: Iterable[FoundItem],
    transactions: Sequence[Transaction],
    epsilon: float = AMOUNT_EPSILON,
    window_days: int = MATCH_WINDOW_DAYS,
) -> Tuple[List[FoundItem], List[MatchedItemPair]]:
    """Split fresh candidates into (suggestions, matched pairs). Rows without an amount are dropped."""
    suggestions: List[FoundItem] = []
    matched: List[MatchedItemPair] = []
    for item in candidates:
        if not item.amount:
            continue
        hit = find_match(item, transactions, epsilon, window_days)
        if hit is None:
            suggestions.append(item)
        else:
            matched.append(MatchedItemPair(suggested=item, matched=hit))
    return suggestions, matched


def tag_extracted(rows: Iterable[Dict[str, Any]], filename: str, now_ms: int) -> List[FoundItem]:
    """Give model output rows stable ids: ai-<file>-<index>-<ms>."""
    out = []
    for i, row in enumerate(rows):
        out.append(FoundItem.from_dict({**row, "id": f"ai-{filename}-{i}-{now_ms}"}))
    return out


def reanalyze_suggestions(
    found: List[FoundItem],
    matched: List[MatchedItemPair],
    transactions: Sequence[Transaction],
) -> Tuple[List[FoundItem], List[MatchedItemPair], int]:
    """
    Re-run matching over the suggestion list (e.g. after a sheet sync).
    Confirmed items are dropped; new matches are prepended to the matched list.
    Returns (found, matched, moved_count).
    """
    keep: List[FoundItem] = []
    newly: List[MatchedItemPair] = []
    for item in found:
        if item.added:
            continue
        hit = find_match(item, transactions)
        if hit is None:
            keep.append(item)
        else:
            newly.append(MatchedItemPair(suggested=item, matched=hit))
    return keep, newly + list(matched), len(newly)


def reanalyze_matched(
    matched: List[MatchedItemPair],
    transactions: Sequence[Transaction],
) -> Tuple[List[MatchedItemPair], int]:
    """
    Re-run matching over the matched section. Items that still match get a
    refreshed pair and move to the top; items that no longer match keep their
    old pair; confirmed items are dropped. Returns (matched, refreshed_count).
    """
    refreshed: List[MatchedItemPair] = []
    stale: List[MatchedItemPair] = []
    for pair in matched:
        if pair.suggested.added:
            continue
        hit = find_match(pair.suggested, transactions)
        if hit is None:
            stale.append(pair)
        else:
            refreshed.append(MatchedItemPair(suggested=pair.suggested, matched=hit))
    return refreshed + stale, len(refreshed)


def default_confirmation(
    item: FoundItem,
    income_categories: List[str],
    expense_categories: List[str],
    investment_categories: List[str],
) -> Tuple[str, str]:
    """Initial (type, category) offered when the user confirms a candidate."""
    tx_type = get_transaction_type(item.category or "", income_categories, investment_categories)
    by_type = {
        "expense": expense_categories,
        "income": income_categories,
        "investment": investment_categories,
    }
    known = [*expense_categories, *income_categories, *investment_categories]
    if item.category and item.category in known:
        return tx_type, item.category
    options = by_type[tx_type]
    return tx_type, (options[0] if options else "")


def build_confirmed_transaction(
    item: FoundItem,
    tx_type: str,
    category: str,
    now: Optional[datetime] = None,
    today: Optional[date] = None,
) -> Transaction:
    now = now or datetime.now()
    absolute = abs(item.amount or 0.0)
    return Transaction(
        id=f"local-{int(now.timestamp() * 1000)}",
        date=item.date or (today or today_local()).isoformat(),
        amount=absolute if tx_type == "income" else -absolute,
        category=category,
        note=item.note or "Imported Statement Item",
        type=tx_type,
        source=SOURCE_PDF,
    )


def find_item(found: List[FoundItem], matched: List[MatchedItemPair], item_id: str) -> Optional[FoundItem]:
    for item in found:
        if item.id == item_id:
            return item
    for pair in matched:
        if pair.suggested.id == item_id:
            return pair.suggested
    return None


def mark_added(found: List[FoundItem], matched: List[MatchedItemPair], item_id: str) -> None:
    for item in found:
        if item.id == item_id:
            item.added = True
    for pair in matched:
        if pair.suggested.id == item_id:
            pair.suggested.added = True


def remove_items(
    found: List[FoundItem],
    matched: List[MatchedItemPair],
    ids: Set[str],
) -> Tuple[List[FoundItem], List[MatchedItemPair]]:
    return (
        [i for i in found if i.id not in ids],
        [p for p in matched if p.suggested.id not in ids],
    )
