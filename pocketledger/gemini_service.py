# pocketledger/gemini_service.py
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

import google.genai as genai
from google.genai import types as genai_types

from pocketledger.categories_config import GEMINI_MODEL, MAX_UPLOAD_BYTES
from pocketledger.errors import StatementAnalysisError, UploadTooLarge
from pocketledger.models import Transaction

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    "Analyze this bank statement (image or PDF). Extract all transactions visible. "
    "Return a JSON array where each object has: date (YYYY-MM-DD), amount (number, positive for expense), "
    "category (guess based on description), note (the description on the statement). "
    "Ignore headers or balances."
)

STATEMENT_SCHEMA = genai_types.Schema(
    type=genai_types.Type.ARRAY,
    items=genai_types.Schema(
        type=genai_types.Type.OBJECT,
        properties={
            "date": genai_types.Schema(type=genai_types.Type.STRING),
            "amount": genai_types.Schema(type=genai_types.Type.NUMBER),
            "category": genai_types.Schema(type=genai_types.Type.STRING),
            "note": genai_types.Schema(type=genai_types.Type.STRING),
        },
        required=["date", "amount"],
    ),
)

_client_cache: Dict[str, Any] = {}


def _api_key() -> str:
    return os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY") or ""


def _client():
    key = _api_key()
    if key not in _client_cache:
        _client_cache[key] = genai.Client(api_key=key)
    return _client_cache[key]


def check_upload_size(data: bytes) -> None:
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadTooLarge("File is too large (>4MB). Please compress it or use a smaller file.")


def analyze_statement(data: bytes, mime_type: str = "image/jpeg") -> List[Dict[str, Any]]:
    """Extract candidate rows from one statement image/PDF. Rows are plain dicts, not yet tagged."""
    try:
        response = _client().models.generate_content(
            model=GEMINI_MODEL,
            contents=[
                genai_types.Part.from_bytes(data=data, mime_type=mime_type or "image/jpeg"),
                EXTRACTION_PROMPT,
            ],
            config=genai_types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=STATEMENT_SCHEMA,
            ),
        )
        text = response.text
        if not text:
            return []
        rows = json.loads(text)
    except Exception as e:
        logger.error("Gemini analysis error: %s", e)
        raise StatementAnalysisError("Failed to analyze file. It might be too large or unclear.") from e

    if not isinstance(rows, list):
        raise StatementAnalysisError("Failed to analyze file. It might be too large or unclear.")
    return [r for r in rows if isinstance(r, dict)]


def generate_habit_summary(transactions: List[Transaction]) -> str:
    if not transactions:
        return "No data available to analyze."

    lines = "\n".join(f"{t.date}: {t.category} ${t.amount:g}" for t in transactions[:50])
    prompt = (
        f"Here are my recent expenses:\n{lines}\n\n"
        "Analyze my spending habits. Identify one key trend and suggest one actionable improvement "
        "for next month. Keep it short, friendly, and under 50 words."
    )
    try:
        response = _client().models.generate_content(model=GEMINI_MODEL, contents=prompt)
    except Exception as e:
        logger.error("Gemini text error: %s", e)
        return "AI service is currently unavailable."
    return response.text or "Could not generate summary."


def reconcile_investment(net_cash_flow: float, actual_investment_change: float) -> str:
    diff = actual_investment_change - net_cash_flow
    prompt = (
        f"My calculated Net Cash Flow (Income - Expenses) is ${net_cash_flow:g}. "
        f"My Investment Portfolio changed by ${actual_investment_change:g}. The difference is ${diff:g}. "
        "Suggest 3 brief reasons why this discrepancy might exist "
        "(e.g., hidden fees, market gains, timing differences). Format as a bulleted list."
    )
    try:
        response = _client().models.generate_content(model=GEMINI_MODEL, contents=prompt)
    except Exception as e:
        logger.error("Gemini reconciliation error: %s", e)
        return "AI service unavailable for reconciliation."
    return response.text or "Could not reconcile data."


def model_name() -> Optional[str]:
    return GEMINI_MODEL if _api_key() else None
