from __future__ import annotations

import pytest
from aiohttp import test_utils

from gateway.app.orchestrator import ConnectionOrchestrator
from gateway.app.server import API_PREFIX, GatewayHTTPServer

BOARD = {
    "_id": "b1",
    "boardType": 1,
    "boardConnect": 1,
    "boardInfo": {"port": "COM3"},
    "project": "p1",
    "boardCode": "varG.level = 3",
}


def _client(catalog_context) -> test_utils.TestClient:
    orch = ConnectionOrchestrator(catalog_context.transport_factory, handshake_timeout_s=1.0)
    server = GatewayHTTPServer(orch)
    return test_utils.TestClient(test_utils.TestServer(server.get_app()))


@pytest.mark.asyncio
async def test_status_local(catalog_context):
    async with _client(catalog_context) as client:
        resp = await client.get(f"{API_PREFIX}/statusLocal")
        assert resp.status == 200
        assert (await resp.json())["online"] is True


@pytest.mark.asyncio
async def test_connect_status_variables_and_close(catalog_context):
    async with _client(catalog_context) as client:
        resp = await client.post(f"{API_PREFIX}/boards", json=BOARD)
        assert resp.status == 200
        body = await resp.json()
        assert body["board"]["state"] == "ready"

        resp = await client.get(f"{API_PREFIX}/boardStatus/b1")
        assert await resp.json() == {"active": True}

        resp = await client.get(f"{API_PREFIX}/variables/p1")
        assert (await resp.json())["variables"] == {"level": 3}

        resp = await client.get(f"{API_PREFIX}/boards")
        assert "b1" in (await resp.json())["boards"]

        resp = await client.post(f"{API_PREFIX}/boards", json={**BOARD, "closing": True})
        assert (await resp.json())["active"] is False

        resp = await client.get(f"{API_PREFIX}/boardStatus/b1")
        assert await resp.json() == {"active": False}


@pytest.mark.asyncio
async def test_code_update_paths(catalog_context):
    async with _client(catalog_context) as client:
        resp = await client.post(f"{API_PREFIX}/codes", json={"_id": "b1", "boardCode": "x = 1"})
        assert resp.status == 404
        assert (await resp.json())["code"] == "board_not_connected"

        await client.post(f"{API_PREFIX}/boards", json=BOARD)

        resp = await client.post(f"{API_PREFIX}/codes", json={"_id": "b1", "project": "p1", "boardCode": "varG.level = 4"})
        assert resp.status == 200
        assert (await resp.json())["run"]["project_id"] == "p1"

        resp = await client.post(f"{API_PREFIX}/codes", json={"_id": "b1", "project": "p1", "boardCode": "import os"})
        assert resp.status == 422
        body = await resp.json()
        assert body["code"] == "script_syntax_error"
        assert body["details"]["line"] == 1


@pytest.mark.asyncio
async def test_bad_requests_map_to_400(catalog_context):
    async with _client(catalog_context) as client:
        resp = await client.post(f"{API_PREFIX}/boards", data="not json", headers={"Content-Type": "application/json"})
        assert resp.status == 400

        resp = await client.post(f"{API_PREFIX}/boards", json=[1, 2])
        assert resp.status == 400

        resp = await client.post(f"{API_PREFIX}/boards", json={"_id": "b1", "boardType": 99})
        assert resp.status == 400
        assert (await resp.json())["details"]["field"] == "boardType"

        resp = await client.post(f"{API_PREFIX}/codes", json={"boardCode": "x = 1"})
        assert resp.status == 400
