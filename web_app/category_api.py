# web_app/category_api.py
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from pocketledger import analytics
from pocketledger.categories_config import TRANSACTION_TYPES, categories_key
from pocketledger.errors import LedgerError
from pocketledger.ledger import Ledger

category_api = Blueprint("category_api", __name__, url_prefix="/api")


def _ledger() -> Ledger:
    return current_app.config["LEDGER"]


def _check_type(tx_type: str) -> str:
    if tx_type not in TRANSACTION_TYPES:
        raise LedgerError(f"Unknown category type: {tx_type}")
    return tx_type


def _categories_payload() -> Dict[str, Any]:
    ledger = _ledger()
    settings = ledger.settings()
    usage = analytics.category_usage(ledger.transactions())
    return {
        t: [{"name": c, "in_use": usage.get(c, 0) > 0} for c in getattr(settings, categories_key(t))]
        for t in TRANSACTION_TYPES
    }


# ---------- categories ----------
@category_api.get("/categories")
def list_categories():
    return jsonify(ok=True, categories=_categories_payload())


@category_api.post("/categories/<tx_type>")
def add_category(tx_type: str):
    data = request.get_json(silent=True) or {}
    message = _ledger().add_category(_check_type(tx_type), data.get("name") or "")
    return jsonify(ok=True, message=message, categories=_categories_payload()), 201


@category_api.delete("/categories/<tx_type>/<path:name>")
def delete_category(tx_type: str, name: str):
    message = _ledger().delete_category(_check_type(tx_type), name)
    return jsonify(ok=True, message=message, categories=_categories_payload())


@category_api.put("/categories/<tx_type>/<path:name>")
def rename_category(tx_type: str, name: str):
    data = request.get_json(silent=True) or {}
    message = _ledger().rename_category(_check_type(tx_type), name, data.get("new_name") or "")
    return jsonify(ok=True, message=message, categories=_categories_payload())


@category_api.post("/categories/<tx_type>/reorder")
def reorder_categories(tx_type: str):
    data = request.get_json(silent=True) or {}
    ordered = data.get("categories")
    if not isinstance(ordered, list):
        raise LedgerError("Missing 'categories' list")
    message = _ledger().reorder_categories(_check_type(tx_type), ordered)
    return jsonify(ok=True, message=message, categories=_categories_payload())


# ---------- budgets ----------
def _budget_payload(month: str) -> Dict[str, Any]:
    settings = _ledger().settings()
    budgets = settings.monthly_category_budgets.get(month) or {}
    return {
        "month": month,
        "income": analytics.budget_section(budgets, settings.income_categories),
        "expense": analytics.budget_section(budgets, settings.expense_categories),
        "investment": analytics.budget_section(budgets, settings.investment_categories),
        "yearly": analytics.yearly_budget(
            settings.monthly_category_budgets, settings.expense_categories, int(month[:4])
        ),
    }


def _check_month(month: str) -> str:
    parts = month.split("-")
    if len(parts) != 2 or not all(p.isdigit() for p in parts) or not 1 <= int(parts[1]) <= 12:
        raise LedgerError("month must look like YYYY-MM")
    return f"{int(parts[0]):04d}-{int(parts[1]):02d}"


@category_api.get("/budgets/<month>")
def get_budget(month: str):
    return jsonify(ok=True, **_budget_payload(_check_month(month)))


@category_api.put("/budgets/<month>")
def set_budget(month: str):
    month = _check_month(month)
    data = request.get_json(silent=True) or {}
    category = (data.get("category") or "").strip()
    if not category:
        raise LedgerError("Missing 'category'")
    try:
        amount = float(data.get("amount") or 0)
    except (TypeError, ValueError):
        amount = 0.0
    _ledger().update_category_budget(month, category, amount)
    return jsonify(ok=True, **_budget_payload(month))


@category_api.post("/budgets/<month>/copy-previous")
def copy_budget(month: str):
    month = _check_month(month)
    message = _ledger().copy_budget_from_previous(month)
    return jsonify(ok=True, message=message, **_budget_payload(month))
