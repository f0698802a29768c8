# pocketledger/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pocketledger.categories_config import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    DEFAULT_INVESTMENT_CATEGORIES,
    DEFAULT_MONTHLY_BUDGET,
    DEFAULT_SHEET_ID,
)


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", "").replace("$", "").strip())
    except ValueError:
        return None


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass
class Transaction:
    id: str
    date: str
    amount: float
    category: str
    note: Optional[str] = None
    type: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Transaction":
        return cls(
            id=str(d["id"]),
            date=str(d.get("date") or ""),
            amount=_to_float(d.get("amount")) or 0.0,
            category=d.get("category") or "Uncategorized",
            note=d.get("note"),
            type=d.get("type"),
            source=d.get("source"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "date": self.date,
            "amount": self.amount,
            "category": self.category,
            "note": self.note,
            "type": self.type,
            "source": self.source,
        })


@dataclass
class FoundItem:
    """A candidate row extracted from a statement; every field but id may be missing."""
    id: str
    date: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    note: Optional[str] = None
    type: Optional[str] = None
    source: Optional[str] = None
    added: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FoundItem":
        return cls(
            id=str(d["id"]),
            date=d.get("date"),
            amount=_to_float(d.get("amount")),
            category=d.get("category"),
            note=d.get("note"),
            type=d.get("type"),
            source=d.get("source"),
            added=bool(d.get("added", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = _drop_none({
            "id": self.id,
            "date": self.date,
            "amount": self.amount,
            "category": self.category,
            "note": self.note,
            "type": self.type,
            "source": self.source,
        })
        if self.added:
            out["added"] = True
        return out


@dataclass
class MatchedItemPair:
    suggested: FoundItem
    matched: Transaction

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MatchedItemPair":
        return cls(
            suggested=FoundItem.from_dict(d["suggested"]),
            matched=Transaction.from_dict(d["matched"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"suggested": self.suggested.to_dict(), "matched": self.matched.to_dict()}


@dataclass
class Settings:
    sheet_db_url: str = DEFAULT_SHEET_ID
    monthly_budget: float = DEFAULT_MONTHLY_BUDGET
    # keyed by 'YYYY-MM', then category
    monthly_category_budgets: Dict[str, Dict[str, float]] = field(default_factory=dict)
    income_categories: List[str] = field(default_factory=lambda: list(DEFAULT_INCOME_CATEGORIES))
    expense_categories: List[str] = field(default_factory=lambda: list(DEFAULT_EXPENSE_CATEGORIES))
    investment_categories: List[str] = field(default_factory=lambda: list(DEFAULT_INVESTMENT_CATEGORIES))

    # JSON key <-> attribute (stored files keep the original camelCase keys)
    KEYS = {
        "sheetDbUrl": "sheet_db_url",
        "monthlyBudget": "monthly_budget",
        "monthlyCategoryBudgets": "monthly_category_budgets",
        "incomeCategories": "income_categories",
        "expenseCategories": "expense_categories",
        "investmentCategories": "investment_categories",
    }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]], current_month: Optional[str] = None) -> "Settings":
        """Merge saved values over defaults; migrate legacy 'categoryBudgets'."""
        data = dict(d or {})
        if data.get("categoryBudgets") and not data.get("monthlyCategoryBudgets") and current_month:
            data["monthlyCategoryBudgets"] = {current_month: data["categoryBudgets"]}
        data.pop("categoryBudgets", None)

        settings = cls()
        for key, attr in cls.KEYS.items():
            if key in data and data[key] is not None:
                setattr(settings, attr, data[key])
        settings.monthly_category_budgets = {
            month: {cat: float(v) for cat, v in (budgets or {}).items()}
            for month, budgets in (settings.monthly_category_budgets or {}).items()
        }
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in self.KEYS.items()}

    def all_categories(self) -> List[str]:
        return [*self.expense_categories, *self.income_categories, *self.investment_categories]
