"""aiohttp handlers for the SplitLedger HTTP API.

Routes:

- ``POST /api/splits/resolve`` — resolve a free-form split request.
- ``POST /api/expenses`` — save a confirmed split.
- ``GET /api/balances`` — netted balances for one user.
- ``POST /api/ai/categorize`` — pick a category for a description.

Every response carries CORS headers and every route answers an
``OPTIONS`` preflight.  Handlers get their database session from
``request["session"]`` (see :mod:`splitledger.web.middleware`).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from splitledger import engine
from splitledger.engine.models import SplitResolution, SplitResult
from splitledger.exceptions import AmbiguousOrUnmatchedName, ReconciliationMismatch
from splitledger.ledger import repository
from splitledger.ledger.balance import get_balances

logger = logging.getLogger(__name__)


def cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


def _json(payload: dict[str, Any], status: int = 200) -> web.Response:
    return web.json_response(payload, status=status, headers=cors_headers())


def _error(message: str, status: int) -> web.Response:
    return _json({"ok": False, "error": message}, status=status)


async def _read_body(request: web.Request) -> dict[str, Any] | None:
    """Return the JSON object body, or ``None`` if it is not one."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _resolution_payload(resolution: SplitResolution) -> dict[str, Any]:
    return {
        "ok": True,
        "expenseSplit": resolution.result.model_dump(mode="json", by_alias=True),
        "source": resolution.source.value,
        "unmatched": [
            {
                "namePhrase": u.name_phrase,
                "suggestions": [
                    p.model_dump(mode="json", by_alias=True) for p in u.suggestions
                ],
            }
            for u in resolution.unmatched
        ],
        "warnings": resolution.warnings,
    }


async def handle_options(request: web.Request) -> web.Response:
    """OPTIONS on any API route — CORS preflight."""
    return web.Response(status=204, headers=cors_headers())


# ── Split resolution ──────────────────────────────────────────────────────────


async def handle_resolve_split(request: web.Request) -> web.Response:
    """POST /api/splits/resolve — turn a request into a proposed split.

    A request naming someone who is not a participant answers 409 with the
    proposed split and the suggestions, so the user can correct the names.
    """
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON", 400)

    description = str(body.get("description") or "").strip()
    user_id = str(body.get("userId") or "").strip()
    if not description or not user_id:
        return _error("Missing description or userId", 400)

    friend_ids = body.get("friendIds") or []
    if not isinstance(friend_ids, list):
        return _error("friendIds must be a list", 400)

    try:
        participants = await repository.get_participants(
            request["session"], user_id, [str(f) for f in friend_ids],
        )
    except ValueError:
        return _error("Invalid user ID", 400)

    if not participants:
        return _error("User not found", 404)
    if len(participants) < 2:
        return _error("No friends to split with", 400)

    resolution = await engine.resolve_split(
        description,
        participants,
        participants[0],
        total_amount=body.get("totalAmount"),
        category=body.get("category"),
    )
    logger.info(
        "Resolved split for user %s via %s (%d unmatched name(s))",
        user_id, resolution.source.value, len(resolution.unmatched),
    )

    payload = _resolution_payload(resolution)
    try:
        resolution.raise_for_unmatched()
    except AmbiguousOrUnmatchedName as exc:
        payload.update(ok=False, error=str(exc))
        return _json(payload, status=409)
    return _json(payload)


# ── Expenses ──────────────────────────────────────────────────────────────────


async def handle_save_expense(request: web.Request) -> web.Response:
    """POST /api/expenses — persist a confirmed split paid by ``userId``."""
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON", 400)

    user_id = str(body.get("userId") or "").strip()
    split_data = body.get("expenseSplit")
    if not user_id or not isinstance(split_data, dict):
        return _error("Missing userId or expenseSplit", 400)

    try:
        result = SplitResult.model_validate(split_data)
    except ValidationError as exc:
        logger.warning("Rejected malformed expense split: %s", exc)
        return _error("Invalid expenseSplit", 400)

    try:
        expense = await repository.save_split_result(
            request["session"], payer_id=user_id, result=result,
        )
    except ReconciliationMismatch as exc:
        return _json({"ok": False, "error": str(exc), "errors": exc.errors}, status=422)
    except ValueError:
        return _error("Invalid user ID", 400)

    return _json({"ok": True, "expenseId": str(expense.id)}, status=201)


# ── Balances ──────────────────────────────────────────────────────────────────


async def handle_balances(request: web.Request) -> web.Response:
    """GET /api/balances?userId= — the user's netted balances."""
    user_id = request.query.get("userId", "").strip()
    if not user_id:
        return _error("Missing userId", 400)

    try:
        report = await get_balances(request["session"], user_id)
    except ValueError:
        return _error("Invalid user ID", 400)

    payload = report.model_dump(mode="json", by_alias=True)
    return _json({"ok": True, **payload})


# ── Categorization ────────────────────────────────────────────────────────────


async def handle_categorize(request: web.Request) -> web.Response:
    """POST /api/ai/categorize — categorize an expense description."""
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON", 400)

    description = str(body.get("description") or "").strip()
    if not description:
        return _error("Missing description", 400)

    category = await engine.categorize_expense(description)
    return _json({"ok": True, "category": category})


ROUTES: list[tuple[str, str, Any]] = [
    ("POST", "/api/splits/resolve", handle_resolve_split),
    ("POST", "/api/expenses", handle_save_expense),
    ("GET", "/api/balances", handle_balances),
    ("POST", "/api/ai/categorize", handle_categorize),
]
