"""Tests for web middleware (error translation and DB session injection) and app wiring."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp import web

from splitledger.web import create_app
from splitledger.web.middleware import db_session_middleware, error_middleware

# ── Helpers ───────────────────────────────────────────────────────────────────


def _request(method: str = "POST") -> MagicMock:
    request = MagicMock()
    request.method = method
    request.path = "/api/expenses"
    return request


def _fake_get_session(session):
    @asynccontextmanager
    async def fake():
        yield session

    return fake


# ── error_middleware tests ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_error_middleware_passes_responses_through() -> None:
    handler = AsyncMock(return_value="ok")
    assert await error_middleware(_request(), handler) == "ok"


@pytest.mark.asyncio
async def test_error_middleware_turns_exceptions_into_500() -> None:
    handler = AsyncMock(side_effect=RuntimeError("db exploded"))

    response = await error_middleware(_request(), handler)

    assert response.status == 500
    assert json.loads(response.text) == {"ok": False, "error": "Internal server error"}
    assert response.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_error_middleware_reraises_http_exceptions() -> None:
    handler = AsyncMock(side_effect=web.HTTPNotFound())

    with pytest.raises(web.HTTPNotFound):
        await error_middleware(_request(), handler)


# ── db_session_middleware tests ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_session_injected_into_request() -> None:
    session = AsyncMock()
    request = _request()
    handler = AsyncMock(return_value="ok")

    with patch("splitledger.web.middleware.get_session", _fake_get_session(session)):
        result = await db_session_middleware(request, handler)

    assert result == "ok"
    request.__setitem__.assert_called_once_with("session", session)
    handler.assert_awaited_once_with(request)


@pytest.mark.asyncio
async def test_preflight_skips_session() -> None:
    request = _request("OPTIONS")
    handler = AsyncMock(return_value="ok")

    with patch("splitledger.web.middleware.get_session") as mock_get_session:
        result = await db_session_middleware(request, handler)

    assert result == "ok"
    mock_get_session.assert_not_called()


# ── create_app tests ──────────────────────────────────────────────────────────


def test_create_app_registers_routes_with_preflight() -> None:
    app = create_app()

    registered = {
        (route.method, route.resource.canonical)
        for route in app.router.routes()
    }
    for path in ("/api/splits/resolve", "/api/expenses", "/api/ai/categorize"):
        assert ("POST", path) in registered
        assert ("OPTIONS", path) in registered
    assert ("GET", "/api/balances") in registered
    assert ("OPTIONS", "/api/balances") in registered
    assert error_middleware in app.middlewares
    assert db_session_middleware in app.middlewares
