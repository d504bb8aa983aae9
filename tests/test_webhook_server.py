"""Tests for the operator HTTP server."""

from unittest.mock import AsyncMock, patch

from aiohttp.test_utils import TestClient, TestServer

from src.memory.errors import BackendCorrupt
from src.memory.store import MemoryStore
from src.webhooks.server import AdminServer, _create_web_app

# -- Helpers -----------------------------------------------------------------


async def _make_client(store: MemoryStore) -> TestClient:
    """Create a TestClient for the admin app."""
    server = TestServer(_create_web_app(store))
    client = TestClient(server)
    await client.start_server()
    return client


def _store(make_flaky) -> MemoryStore:
    return MemoryStore(durable=[make_flaky("keyed"), make_flaky("relational")])


# -- Health check -----------------------------------------------------------


async def test_health_check(make_flaky) -> None:
    client = await _make_client(_store(make_flaky))
    try:
        resp = await client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["storage"]["active_tier"] == "keyed"
    finally:
        await client.close()


async def test_health_reports_degraded_tier(make_flaky) -> None:
    store = _store(make_flaky)
    store.selector.demote(store.selector.active)
    client = await _make_client(store)
    try:
        data = await (await client.get("/health")).json()
        assert data["storage"]["state"] == "prefer_secondary"
    finally:
        await client.close()


# -- Admin ------------------------------------------------------------------


async def test_admin_returns_snapshot(make_flaky) -> None:
    store = _store(make_flaky)
    await store.record_interaction(42, 7, "ada", "hi", "hello")
    await store.set_prompt(42, "be brief")

    client = await _make_client(store)
    try:
        resp = await client.get("/admin")
        assert resp.status == 200
        data = await resp.json()
    finally:
        await client.close()

    assert data["totalMessages"] == 1
    assert data["totalUsers"] == 1
    assert data["totalChats"] == 1
    chat = data["chats"]["42"]
    assert chat["prompt"] == "be brief"
    assert chat["totalMessages"] == 1
    assert chat["recentMessages"][0]["userId"] == 7
    assert chat["recentMessages"][0]["username"] == "ada"
    assert chat["recentMessages"][0]["text"] == "hi"
    assert chat["recentMessages"][0]["response"] == "hello"


async def test_admin_backend_error_returns_500(make_flaky) -> None:
    store = _store(make_flaky)
    client = await _make_client(store)
    try:
        with patch.object(
            store, "admin_snapshot", AsyncMock(side_effect=BackendCorrupt("keyed", "bad"))
        ):
            resp = await client.get("/admin")
        assert resp.status == 500
        assert (await resp.json())["error"] == "Failed to retrieve admin stats"
    finally:
        await client.close()


async def test_unknown_route_404(make_flaky) -> None:
    client = await _make_client(_store(make_flaky))
    try:
        resp = await client.get("/nope")
        assert resp.status == 404
    finally:
        await client.close()


# -- Lifecycle --------------------------------------------------------------


async def test_server_start_stop(make_flaky) -> None:
    server = AdminServer(_store(make_flaky), host="127.0.0.1", port=0)
    await server.start()
    assert server._runner is not None
    await server.stop()
    assert server._runner is None


async def test_stop_without_start_is_noop(make_flaky) -> None:
    server = AdminServer(_store(make_flaky), host="127.0.0.1", port=0)
    await server.stop()
