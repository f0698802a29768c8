# web_app/app.py
from __future__ import annotations

import os
from datetime import date

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import InternalServerError

from pocketledger import analytics, gemini_service, sheet_service
from pocketledger.dates import iso_to_date, month_key, today_local
from pocketledger.errors import LedgerError
from pocketledger.ledger import Ledger
from pocketledger.store import JsonStore

load_dotenv()

# ---- Flask app ----
app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev")
app.config["LEDGER"] = Ledger(JsonStore(os.environ.get("DATA_DIR")))

# --- Auth exemptions (must be defined before password_gate) ---
EXEMPT_PATHS = {"/healthz"}
EXEMPT_PREFIXES = ("/static/",)


def _ledger() -> Ledger:
    return app.config["LEDGER"]


@app.before_request
def password_gate():
    required = os.environ.get("APP_PASSWORD")
    if not required:
        return  # gate disabled when no password configured
    p = request.path
    if request.method == "HEAD" or p in EXEMPT_PATHS or p.startswith(EXEMPT_PREFIXES):
        return
    auth = request.authorization
    expected_user = os.environ.get("APP_USER")  # optional
    if auth and ((expected_user is None or auth.username == expected_user) and auth.password == required):
        return
    return Response(
        "Authentication required", 401, {"WWW-Authenticate": 'Basic realm="PocketLedger"'}
    )


app.logger.info("[Config] Using DATA_DIR=%s", _ledger().store.base_dir)

# ---- Blueprints (categories/budgets + AI import) ----
from web_app.category_api import category_api  # noqa: E402
from web_app.ai_api import ai_api  # noqa: E402

app.register_blueprint(category_api)
app.register_blueprint(ai_api)


# ------------------ MIDDLEWARE ------------------
@app.after_request
def add_no_cache_headers(resp):
    resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


@app.errorhandler(ValueError)
def bad_request(e):
    # LedgerError messages are user-facing notifications
    return jsonify(ok=False, error=str(e)), 400


@app.errorhandler(InternalServerError)
def server_error(e):
    app.logger.error("Unhandled error on %s: %s", request.path, getattr(e, "original_exception", None) or e)
    return jsonify(ok=False, error="Internal server error"), 500


# ------------------ helpers ------------------
def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _today() -> date:
    # ?today=YYYY-MM-DD pins the reference day (handy for reviewing past periods)
    return iso_to_date(request.args.get("today")) or today_local()


# ------------------ ROUTES ------------------
@app.get("/healthz")
def healthz():
    return jsonify(ok=True, ai_model=gemini_service.model_name())


@app.get("/api/transactions")
def api_transactions():
    txs = analytics.filter_by_type(_ledger().transactions(), request.args.get("type", "all"))
    return jsonify(ok=True, transactions=[t.to_dict() for t in txs])


@app.get("/api/transactions/by-month")
def api_transactions_by_month():
    groups = analytics.group_by_month(_ledger().transactions(), request.args.get("type", "all"))
    return jsonify(ok=True, months=groups)


@app.get("/api/transactions/export.csv")
def api_transactions_export():
    body = analytics.export_csv(_ledger().transactions(), request.args.get("type", "all"))
    filename = f"transactions_{today_local().isoformat()}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/transactions")
def api_transactions_add():
    data = request.get_json(silent=True) or {}
    tx, message = _ledger().add_manual(data)
    return jsonify(ok=True, transaction=tx.to_dict(), message=message), 201


@app.put("/api/transactions/<tx_id>")
def api_transactions_update(tx_id: str):
    data = request.get_json(silent=True)
    if data is None:
        raise LedgerError("Request body must be JSON.")
    tx, message = _ledger().update_transaction(tx_id, data)
    return jsonify(ok=True, transaction=tx.to_dict(), message=message)


@app.delete("/api/transactions/<tx_id>")
def api_transactions_delete(tx_id: str):
    return jsonify(ok=True, message=_ledger().delete_transaction(tx_id))


@app.post("/api/sync")
def api_sync():
    added, message = _ledger().sync_from_sheet()
    return jsonify(ok=True, added=added, message=message)


@app.post("/api/sync/push")
def api_sync_push():
    result = _ledger().push_all_to_sheet()
    if not result.success:
        app.logger.error("bulk save failed: %s", result.error)
    return jsonify(ok=result.success, **result.to_dict()), (200 if result.success else 502)


@app.post("/api/sheet/test")
def api_sheet_test():
    data = request.get_json(silent=True) or {}
    url = (data.get("url") or _ledger().settings().sheet_db_url or "").strip()
    result = sheet_service.check_connection(url)
    return jsonify(ok=result["success"], message=result["message"])


@app.get("/api/settings")
def api_settings_get():
    return jsonify(ok=True, settings=_ledger().settings().to_dict())


@app.post("/api/settings")
def api_settings_set():
    settings, message = _ledger().update_settings(request.get_json(silent=True) or {})
    return jsonify(ok=True, settings=settings.to_dict(), message=message)


@app.get("/api/dashboard")
def api_dashboard():
    ledger = _ledger()
    settings = ledger.settings()
    today = _today()
    summary = analytics.dashboard_summary(
        ledger.transactions(),
        settings.monthly_category_budgets.get(month_key(today)) or {},
        settings.income_categories,
        settings.expense_categories,
        settings.investment_categories,
        timeframe=request.args.get("timeframe", "monthly"),
        today=today,
        cumulative_start_month=request.args.get("start_month") or None,
    )
    return jsonify(ok=True, **summary)


@app.get("/api/statistics/net-assets")
def api_net_assets():
    year = _int_arg("year", _today().year)
    return jsonify(ok=True, year=year, **analytics.net_asset_series(_ledger().transactions(), year))


@app.get("/api/statistics/spending")
def api_spending():
    ledger = _ledger()
    points = analytics.spending_series(
        ledger.transactions(),
        period=request.args.get("period", "M"),
        offset=_int_arg("offset", 0),
        today=_today(),
    )
    expense_categories = ledger.settings().expense_categories
    for p in points:
        p["top"] = analytics.top_categories_for_point(p, expense_categories)
    return jsonify(ok=True, points=points)


@app.get("/api/statistics/flow")
def api_flow():
    year = _int_arg("year", _today().year)
    return jsonify(ok=True, year=year, months=analytics.flow_over_time(_ledger().transactions(), year))


@app.get("/api/statistics/calendar")
def api_calendar():
    today = _today()
    raw = request.args.get("month") or month_key(today)
    try:
        year, month = (int(p) for p in raw.split("-")[:2])
    except ValueError:
        raise LedgerError("month must look like YYYY-MM")
    return jsonify(ok=True, **analytics.calendar_month(_ledger().transactions(), year, month))


if __name__ == "__main__":
    app.run(debug=True)
