"""Operator HTTP surface for the memory store.

Runs in the same asyncio event loop as the rest of the service, using
aiohttp's AppRunner/TCPSite for non-blocking start/stop.

Routes:
- ``GET /health`` — liveness plus which storage tier is serving
- ``GET /admin``  — aggregate view across every conversation
"""

from __future__ import annotations

import logging

from aiohttp import web

from src.config import settings
from src.memory.errors import BackendError
from src.memory.store import MemoryStore

logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("store", MemoryStore)


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    store = request.app[STORE_KEY]
    return web.json_response({"status": "ok", "storage": store.status()})


async def _admin(request: web.Request) -> web.Response:
    """GET /admin — totals plus prompt and recent messages per conversation."""
    store = request.app[STORE_KEY]
    try:
        snapshot = await store.admin_snapshot()
    except BackendError:
        logger.exception("Admin snapshot failed")
        return web.json_response({"error": "Failed to retrieve admin stats"}, status=500)
    return web.json_response(snapshot.model_dump(mode="json", by_alias=True))


def _create_web_app(store: MemoryStore) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[STORE_KEY] = store
    app.router.add_get("/health", _health)
    app.router.add_get("/admin", _admin)
    return app


class AdminServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, store: MemoryStore, host: str | None = None, port: int | None = None) -> None:
        self.store = store
        self.host = host or settings.admin_host
        self.port = settings.admin_port if port is None else port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening."""
        app = _create_web_app(self.store)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Admin server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Admin server stopped")
