"""HTTP application factory and entry point.

Creates the aiohttp :class:`~aiohttp.web.Application`, registers routes and
middleware, and exposes :func:`run_server` to serve it until interrupted.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from splitledger.config import settings
from splitledger.db.session import engine
from splitledger.web.api import ROUTES, handle_options
from splitledger.web.middleware import db_session_middleware, error_middleware

logger = logging.getLogger(__name__)


async def _dispose_engine(app: web.Application) -> None:
    logger.info("SplitLedger shutting down, disposing DB engine")
    await engine.dispose()


def create_app() -> web.Application:
    """Build the aiohttp application.

    Middleware order:
    1. Error translation (outermost, wraps session commit failures)
    2. DB session injection (provides ``request["session"]`` to handlers)
    """
    app = web.Application(middlewares=[error_middleware, db_session_middleware])

    for method, path, handler in ROUTES:
        app.router.add_route(method, path, handler)
        app.router.add_options(path, handle_options)

    app.on_cleanup.append(_dispose_engine)
    return app


async def run_server() -> None:
    """Serve the HTTP API until cancelled.

    This is the main coroutine invoked from ``__main__.py``.  It sets up
    logging, starts the server on ``settings.api_host``/``api_port`` and
    waits forever.
    """
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    runner = web.AppRunner(create_app())
    await runner.setup()
    site = web.TCPSite(runner, settings.api_host, settings.api_port)
    await site.start()
    logger.info(
        "SplitLedger API running on http://%s:%d", settings.api_host, settings.api_port,
    )

    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
