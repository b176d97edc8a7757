"""aiohttp middleware for error translation and database session injection.

Middleware runs on every request *before* it reaches a handler.

- :func:`error_middleware` — turns unexpected exceptions into a logged
  500 JSON response with CORS headers.
- :func:`db_session_middleware` — opens an async DB session per request
  and stores it under ``request["session"]`` so handlers don't manage
  sessions directly.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from splitledger.db.session import get_session
from splitledger.web.api import cors_headers

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer unexpected handler failures with ``{"ok": false}`` and 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(
            {"ok": False, "error": "Internal server error"},
            status=500,
            headers=cors_headers(),
        )


@web.middleware
async def db_session_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Provide ``request["session"]`` for the duration of the request.

    The session is committed when the handler returns and rolled back if it
    raises (managed by :func:`splitledger.db.session.get_session`).
    Preflight requests never touch the database.
    """
    if request.method == "OPTIONS":
        return await handler(request)

    async with get_session() as session:
        request["session"] = session
        return await handler(request)
