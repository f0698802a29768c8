# pocketledger/ledger.py
from __future__ import annotations

import functools
import logging
import os
from datetime import datetime
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pocketledger import gemini_service, reconcile, sheet_service
from pocketledger.categories_config import (
    DEFAULT_SHEET_ID,
    SOURCE_APP,
    TRANSACTION_TYPES,
    categories_key,
    get_transaction_type,
)
from pocketledger.dates import iso_to_date, month_key, month_label, previous_month_key, today_local
from pocketledger.errors import LedgerError, SheetError, StatementAnalysisError, UploadTooLarge
from pocketledger.models import FoundItem, MatchedItemPair, Settings, Transaction
from pocketledger.store import (
    FOUND_ITEMS_KEY,
    MATCHED_ITEMS_KEY,
    SETTINGS_KEY,
    TRANSACTIONS_KEY,
    JsonStore,
)

logger = logging.getLogger(__name__)

# Held for every read-modify-write of the store; remote calls stay outside it
_state_lock = RLock()

EDITABLE_FIELDS = ("date", "amount", "category", "note", "type", "source")
CATEGORY_LIST_KEYS = ("incomeCategories", "expenseCategories", "investmentCategories")


def _locked(method):
    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        with _state_lock:
            return method(*args, **kwargs)
    return wrapper


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _check_settings_payload(payload: Dict[str, Any]) -> None:
    """Reject values whose type would corrupt the saved settings."""
    if "sheetDbUrl" in payload and not isinstance(payload["sheetDbUrl"], str):
        raise LedgerError("sheetDbUrl must be a string.")
    if "monthlyBudget" in payload and not _is_number(payload["monthlyBudget"]):
        raise LedgerError("monthlyBudget must be a number.")
    for key in CATEGORY_LIST_KEYS:
        if key not in payload:
            continue
        names = payload[key]
        if not isinstance(names, list) or not all(isinstance(n, str) and n.strip() for n in names):
            raise LedgerError(f"{key} must be a list of category names.")
        if len({n.strip() for n in names}) != len(names):
            raise LedgerError(f"{key} contains duplicate names.")
    if "monthlyCategoryBudgets" in payload:
        budgets = payload["monthlyCategoryBudgets"]
        if not isinstance(budgets, dict) or not all(
            isinstance(month, str) and isinstance(per_cat, dict) and all(_is_number(v) for v in per_cat.values())
            for month, per_cat in budgets.items()
        ):
            raise LedgerError("monthlyCategoryBudgets must map each month to {category: amount}.")


def _short(text: Optional[str], n: int = 20) -> Optional[str]:
    if text and len(text) > n:
        return text[:n] + "..."
    return text


def sort_newest_first(transactions: Iterable[Transaction]) -> List[Transaction]:
    return sorted(transactions, key=lambda t: t.date or "", reverse=True)


class Ledger:
    """
    Application state: transactions, settings and the AI import lists.
    Every mutating call reads the store, applies the change and writes it back.
    """

    def __init__(self, store: Optional[JsonStore] = None):
        self.store = store or JsonStore()

    # ------------------ state I/O ------------------
    def settings(self) -> Settings:
        raw = self.store.load(SETTINGS_KEY)
        if raw is None:
            return Settings(sheet_db_url=os.environ.get("SHEET_DB_URL") or DEFAULT_SHEET_ID)
        return Settings.from_dict(raw, current_month=month_key(today_local()))

    @_locked
    def save_settings(self, settings: Settings) -> str:
        self.store.save(SETTINGS_KEY, settings.to_dict())
        return "Settings Saved!"

    @_locked
    def update_settings(self, payload: Dict[str, Any]) -> Tuple[Settings, str]:
        if not isinstance(payload, dict):
            raise LedgerError("Settings must be a JSON object.")
        changes = {k: v for k, v in payload.items() if k in Settings.KEYS and v is not None}
        _check_settings_payload(changes)
        if "sheetDbUrl" in changes:
            changes["sheetDbUrl"] = changes["sheetDbUrl"].strip()
        for key in CATEGORY_LIST_KEYS:
            if key in changes:
                changes[key] = [n.strip() for n in changes[key]]
        current = self.settings().to_dict()
        current.update(changes)
        settings = Settings.from_dict(current)
        return settings, self.save_settings(settings)

    def transactions(self) -> List[Transaction]:
        raw = self.store.load(TRANSACTIONS_KEY, fallback=[]) or []
        return sort_newest_first(Transaction.from_dict(d) for d in raw if isinstance(d, dict) and d.get("id"))

    def _save_transactions(self, txs: Sequence[Transaction]) -> None:
        self.store.save(TRANSACTIONS_KEY, [t.to_dict() for t in txs])

    def found_items(self) -> List[FoundItem]:
        raw = self.store.load(FOUND_ITEMS_KEY, fallback=[]) or []
        return [FoundItem.from_dict(d) for d in raw if isinstance(d, dict) and d.get("id")]

    def matched_items(self) -> List[MatchedItemPair]:
        raw = self.store.load(MATCHED_ITEMS_KEY, fallback=[]) or []
        return [MatchedItemPair.from_dict(d) for d in raw if isinstance(d, dict)]

    def _save_ai_lists(self, found: Sequence[FoundItem], matched: Sequence[MatchedItemPair]) -> None:
        self.store.save(FOUND_ITEMS_KEY, [i.to_dict() for i in found])
        self.store.save(MATCHED_ITEMS_KEY, [p.to_dict() for p in matched])

    # ------------------ transactions ------------------
    @_locked
    def add_transaction(self, tx: Transaction) -> str:
        raw = self.store.load(TRANSACTIONS_KEY, fallback=[]) or []
        self.store.save(TRANSACTIONS_KEY, [tx.to_dict(), *raw])
        return f"Added: {_short(tx.note) or tx.category}"

    def add_manual(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> Tuple[Transaction, str]:
        """Entry form: amount is entered unsigned; the sign follows the type."""
        tx_type = (payload.get("type") or "expense").lower()
        if tx_type not in TRANSACTION_TYPES:
            raise LedgerError(f"Unknown transaction type: {tx_type}")
        try:
            amount = float(payload.get("amount") or 0)
        except (TypeError, ValueError):
            raise LedgerError("Amount must be a number.")
        if amount == 0:
            raise LedgerError("Amount is required.")

        settings = self.settings()
        options = getattr(settings, categories_key(tx_type))
        category = payload.get("category") or (options[0] if options else "")
        now = now or datetime.now()
        tx = Transaction(
            id=f"local-{int(now.timestamp() * 1000)}",
            date=payload.get("date") or today_local().isoformat(),
            amount=abs(amount) if tx_type == "income" else -abs(amount),
            category=category,
            note=payload.get("note") or None,
            type=tx_type,
            source=SOURCE_APP,
        )
        message = self.add_transaction(tx)
        self._write_back(settings.sheet_db_url, tx)
        return tx, message

    @_locked
    def update_transaction(self, tx_id: str, changes: Dict[str, Any]) -> Tuple[Transaction, str]:
        """Merge the given fields over the stored transaction, then validate the result."""
        if not isinstance(changes, dict):
            raise LedgerError("Transaction fields must be a JSON object.")
        txs = self.transactions()
        current = next((t for t in txs if t.id == tx_id), None)
        if current is None:
            raise LedgerError("Transaction not found.")

        merged = current.to_dict()
        merged.update({k: changes[k] for k in EDITABLE_FIELDS if k in changes})

        day = iso_to_date(merged.get("date"))
        if day is None:
            raise LedgerError("Date must be a valid date.")
        try:
            amount = float(merged.get("amount"))
        except (TypeError, ValueError):
            raise LedgerError("Amount must be a number.")
        if amount == 0:
            raise LedgerError("Amount is required.")
        category = merged.get("category")
        if not isinstance(category, str) or not category.strip():
            raise LedgerError("Category is required.")
        tx_type = merged.get("type")
        if tx_type is None:
            s = self.settings()
            tx_type = get_transaction_type(category.strip(), s.income_categories, s.investment_categories)
        elif tx_type not in TRANSACTION_TYPES:
            raise LedgerError(f"Unknown transaction type: {tx_type}")

        tx = Transaction(
            id=tx_id,
            date=day.isoformat(),
            amount=amount,
            category=category.strip(),
            note=merged.get("note") or None,
            type=tx_type,
            source=merged.get("source") or None,
        )
        self._save_transactions([tx if t.id == tx_id else t for t in txs])
        return tx, "Transaction updated!"

    @_locked
    def delete_transaction(self, tx_id: str) -> str:
        txs = self.transactions()
        remaining = [t for t in txs if t.id != tx_id]
        if len(remaining) == len(txs):
            raise LedgerError("Transaction not found.")
        self._save_transactions(remaining)
        return "Transaction deleted!"

    def _write_back(self, sheet_db_url: str, tx: Transaction) -> None:
        # best effort: the local copy is already saved
        if not sheet_service.save_transaction(sheet_db_url, tx):
            logger.error("Sync failed for transaction %s", tx.id)

    # ------------------ sheet sync ------------------
    def sync_from_sheet(self) -> Tuple[int, str]:
        settings = self.settings()
        url = settings.sheet_db_url or DEFAULT_SHEET_ID
        try:
            fetched = sheet_service.fetch_transactions(
                url, settings.income_categories, settings.investment_categories
            )
        except SheetError as e:
            logger.error("Failed to refresh transactions from source: %s", e)
            raise LedgerError("Failed to sync from sheet.") from e

        with _state_lock:
            raw = self.store.load(TRANSACTIONS_KEY, fallback=[]) or []
            existing = {d.get("id") for d in raw if isinstance(d, dict)}
            new_rows = []
            for tx in fetched:
                if tx.id and tx.id not in existing:
                    existing.add(tx.id)
                    new_rows.append(tx)
            if not new_rows:
                return 0, "No new transactions found."
            self.store.save(TRANSACTIONS_KEY, [*raw, *(t.to_dict() for t in new_rows)])
        return len(new_rows), f"{len(new_rows)} new transaction(s) synced."

    def push_all_to_sheet(self) -> sheet_service.BulkSaveResult:
        settings = self.settings()
        return sheet_service.save_bulk_transactions(settings.sheet_db_url, self.transactions())

    # ------------------ categories ------------------
    @_locked
    def add_category(self, tx_type: str, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise LedgerError("Category name is required.")
        settings = self.settings()
        key = categories_key(tx_type)
        current = getattr(settings, key)
        if name in current:
            raise LedgerError("Category already exists.")
        setattr(settings, key, [*current, name])
        self.save_settings(settings)
        return f"Added category: {name}"

    @_locked
    def delete_category(self, tx_type: str, name: str) -> str:
        if any(t.category == name for t in self.transactions()):
            raise LedgerError(f'Cannot delete "{name}" as it\'s in use.')
        settings = self.settings()
        key = categories_key(tx_type)
        setattr(settings, key, [c for c in getattr(settings, key) if c != name])
        self.save_settings(settings)
        return f"Deleted category: {name}"

    @_locked
    def rename_category(self, tx_type: str, old_name: str, new_name: str) -> str:
        """Rename everywhere: the category list, recorded transactions and every month's budgets."""
        new_name = (new_name or "").strip()
        if not new_name or old_name == new_name:
            raise LedgerError("Nothing to rename.")
        settings = self.settings()
        key = categories_key(tx_type)
        current = getattr(settings, key)
        if old_name not in current:
            raise LedgerError("Category not found.")
        if new_name in current:
            raise LedgerError("Category name already exists.")
        setattr(settings, key, [new_name if c == old_name else c for c in current])

        for budgets in settings.monthly_category_budgets.values():
            if budgets.get(old_name):
                budgets[new_name] = budgets.pop(old_name)
        self.save_settings(settings)

        txs = self.transactions()
        for t in txs:
            if t.category == old_name:
                t.category = new_name
        self._save_transactions(txs)
        return f'Renamed "{old_name}" to "{new_name}"'

    @_locked
    def reorder_categories(self, tx_type: str, ordered: List[str]) -> str:
        settings = self.settings()
        key = categories_key(tx_type)
        if sorted(ordered) != sorted(getattr(settings, key)):
            raise LedgerError("Reordered list must contain exactly the current categories.")
        setattr(settings, key, list(ordered))
        self.save_settings(settings)
        return "Categories reordered."

    # ------------------ budgets ------------------
    @_locked
    def update_category_budget(self, month: str, category: str, amount: float) -> None:
        settings = self.settings()
        budgets = dict(settings.monthly_category_budgets.get(month) or {})
        if amount > 0:
            budgets[category] = float(amount)
        else:
            budgets.pop(category, None)
        settings.monthly_category_budgets[month] = budgets
        self.save_settings(settings)

    @_locked
    def copy_budget_from_previous(self, month: str) -> str:
        settings = self.settings()
        prev = previous_month_key(month)
        prev_budgets = settings.monthly_category_budgets.get(prev) or {}
        if not prev_budgets:
            raise LedgerError("Previous month has no budget to copy.")
        target = dict(settings.monthly_category_budgets.get(month) or {})
        for category, amount in prev_budgets.items():
            if amount > 0:
                target[category] = amount
            else:
                target.pop(category, None)
        settings.monthly_category_budgets[month] = target
        self.save_settings(settings)
        return f"Copied budget from {month_label(prev)}."

    # ------------------ AI import ------------------
    def import_statements(self, files: Iterable[Tuple[str, bytes, str]], now: Optional[datetime] = None) -> Tuple[int, int, str]:
        """
        files: (filename, data, mime_type). Every file is extracted before any
        state changes, so one bad file leaves the lists untouched.
        Returns (suggested_count, matched_count, message).
        """
        now = now or datetime.now()
        now_ms = int(now.timestamp() * 1000)
        candidates: List[FoundItem] = []
        for filename, data, mime_type in files:
            try:
                gemini_service.check_upload_size(data)
                rows = gemini_service.analyze_statement(data, mime_type)
            except (UploadTooLarge, StatementAnalysisError) as e:
                raise LedgerError(f"Error analyzing file(s): {e}") from e
            candidates.extend(reconcile.tag_extracted(rows, filename, now_ms))

        with _state_lock:
            suggestions, matched_pairs = reconcile.partition_candidates(candidates, self.transactions())
            found = self.found_items()
            matched = self.matched_items()
            self._save_ai_lists([*suggestions, *found], [*matched_pairs, *matched])

        if suggestions:
            message = f"{len(suggestions)} new suggested transaction(s) found."
        else:
            message = "No new transactions found. Your records seem up to date!"
        return len(suggestions), len(matched_pairs), message

    @_locked
    def reanalyze_suggestions(self) -> Tuple[int, str]:
        found, matched, moved = reconcile.reanalyze_suggestions(
            self.found_items(), self.matched_items(), self.transactions()
        )
        self._save_ai_lists(found, matched)
        if moved:
            return moved, f"Moved {moved} item(s) to the matched section."
        return 0, "No new matches found in suggested items."

    @_locked
    def reanalyze_matched(self) -> Tuple[int, Optional[str]]:
        matched, refreshed = reconcile.reanalyze_matched(self.matched_items(), self.transactions())
        self._save_ai_lists(self.found_items(), matched)
        if refreshed:
            return refreshed, None
        return 0, "No new matches found in this section."

    def confirmation_defaults(self, item_id: str) -> Dict[str, str]:
        item = reconcile.find_item(self.found_items(), self.matched_items(), item_id)
        if item is None:
            raise LedgerError("Suggested item not found.")
        s = self.settings()
        tx_type, category = reconcile.default_confirmation(
            item, s.income_categories, s.expense_categories, s.investment_categories
        )
        return {"type": tx_type, "category": category}

    def confirm_item(
        self,
        item_id: str,
        tx_type: Optional[str] = None,
        category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Transaction, str]:
        with _state_lock:
            found, matched = self.found_items(), self.matched_items()
            item = reconcile.find_item(found, matched, item_id)
            if item is None:
                raise LedgerError("Suggested item not found.")
            if item.added:
                raise LedgerError("Item was already added.")

            s = self.settings()
            default_type, default_category = reconcile.default_confirmation(
                item, s.income_categories, s.expense_categories, s.investment_categories
            )
            tx_type = tx_type or default_type
            if tx_type not in TRANSACTION_TYPES:
                raise LedgerError(f"Unknown transaction type: {tx_type}")
            category = category or (default_category if tx_type == default_type else "")
            if not category:
                options = getattr(s, categories_key(tx_type))
                category = options[0] if options else ""

            tx = reconcile.build_confirmed_transaction(item, tx_type, category, now=now)
            message = self.add_transaction(tx)
            reconcile.mark_added(found, matched, item_id)
            self._save_ai_lists(found, matched)

        self._write_back(s.sheet_db_url, tx)
        return tx, message

    @_locked
    def delete_items(self, ids: Iterable[str]) -> int:
        found, matched = self.found_items(), self.matched_items()
        before = len(found) + len(matched)
        found, matched = reconcile.remove_items(found, matched, set(ids))
        self._save_ai_lists(found, matched)
        return before - len(found) - len(matched)
