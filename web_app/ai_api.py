# web_app/ai_api.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from pocketledger import gemini_service
from pocketledger.errors import LedgerError
from pocketledger.ledger import Ledger

ai_api = Blueprint("ai_api", __name__, url_prefix="/api/ai")


def _ledger() -> Ledger:
    return current_app.config["LEDGER"]


def _lists_payload(ledger: Ledger) -> dict:
    return {
        "suggested": [i.to_dict() for i in ledger.found_items()],
        "matched": [p.to_dict() for p in ledger.matched_items()],
    }


@ai_api.get("/items")
def list_items():
    return jsonify(ok=True, **_lists_payload(_ledger()))


@ai_api.post("/analyze")
def analyze():
    uploads = request.files.getlist("files")
    if not uploads:
        raise LedgerError("No files uploaded.")
    files = [
        (secure_filename(f.filename or "statement") or "statement", f.read(), f.mimetype or "image/jpeg")
        for f in uploads
    ]
    ledger = _ledger()
    suggested, matched, message = ledger.import_statements(files)
    current_app.logger.info("statement import: %d suggested, %d matched", suggested, matched)
    return jsonify(ok=True, message=message, new_suggested=suggested, new_matched=matched, **_lists_payload(ledger))


@ai_api.post("/reanalyze")
def reanalyze():
    data = request.get_json(silent=True) or {}
    section = (data.get("section") or "suggested").lower()
    ledger = _ledger()
    if section == "suggested":
        moved, message = ledger.reanalyze_suggestions()
    elif section == "matched":
        moved, message = ledger.reanalyze_matched()
    else:
        raise LedgerError("section must be 'suggested' or 'matched'")
    return jsonify(ok=True, moved=moved, message=message, **_lists_payload(ledger))


@ai_api.get("/items/<path:item_id>/defaults")
def confirmation_defaults(item_id: str):
    return jsonify(ok=True, **_ledger().confirmation_defaults(item_id))


@ai_api.post("/items/<path:item_id>/confirm")
def confirm(item_id: str):
    data = request.get_json(silent=True) or {}
    ledger = _ledger()
    tx, message = ledger.confirm_item(item_id, data.get("type"), data.get("category"))
    return jsonify(ok=True, transaction=tx.to_dict(), message=message, **_lists_payload(ledger)), 201


@ai_api.post("/items/delete")
def delete_items():
    data = request.get_json(silent=True) or {}
    ids = data.get("ids") or []
    if not isinstance(ids, list) or not ids:
        raise LedgerError("Missing 'ids'")
    ledger = _ledger()
    removed = ledger.delete_items(str(i) for i in ids)
    return jsonify(ok=True, removed=removed, **_lists_payload(ledger))


@ai_api.get("/habits")
def habits():
    expenses = [t for t in _ledger().transactions() if t.type == "expense"]
    return jsonify(ok=True, summary=gemini_service.generate_habit_summary(expenses))


@ai_api.post("/reconcile-investment")
def reconcile_investment():
    data = request.get_json(silent=True) or {}
    try:
        net = float(data["net_cash_flow"])
        change = float(data["actual_change"])
    except (KeyError, TypeError, ValueError):
        raise LedgerError("net_cash_flow and actual_change must be numbers")
    return jsonify(ok=True, analysis=gemini_service.reconcile_investment(net, change))
