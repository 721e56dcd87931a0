# gateway/app/server.py
"""HTTP API of the local gateway (dashboard-facing)."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from aiohttp import web

from gateway.app.orchestrator import ConnectionOrchestrator
from gateway.core.errors import GatewayError, RequestValidationError

API_PREFIX = "/api/polling"


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map GatewayError to a JSON body with its code and HTTP status."""
    try:
        return await handler(request)
    except GatewayError as e:
        logging.getLogger(__name__).warning(
            "HTTP_REQUEST_FAILED method=%s path=%s code=%s err=%s",
            request.method, request.path, e.code, e,
        )
        return web.json_response(e.as_dict(), status=e.status)


class GatewayHTTPServer:
    """
    Serves:
    - GET  /api/polling/statusLocal          liveness check used by the dashboard
    - GET  /api/polling/boardStatus/{id}     {"active": bool}
    - POST /api/polling/boards               connect / close / acknowledge a board
    - POST /api/polling/codes                redeploy a board script
    - GET  /api/polling/variables/{project}  live variable snapshot
    - GET  /api/polling/boards               per-board descriptions
    """

    def __init__(self, orchestrator: ConnectionOrchestrator, *, logger: Optional[logging.Logger] = None):
        self.orchestrator = orchestrator
        self._log = logger or logging.getLogger(__name__)
        self._runner: Optional[web.AppRunner] = None

        self.app = web.Application(middlewares=[error_middleware])
        self._setup_routes()

    def _setup_routes(self) -> None:
        r = self.app.router
        r.add_get(f"{API_PREFIX}/statusLocal", self._handle_status_local)
        r.add_get(f"{API_PREFIX}/boardStatus/{{boardId}}", self._handle_board_status)
        r.add_post(f"{API_PREFIX}/boards", self._handle_boards)
        r.add_get(f"{API_PREFIX}/boards", self._handle_list_boards)
        r.add_post(f"{API_PREFIX}/codes", self._handle_codes)
        r.add_get(f"{API_PREFIX}/variables/{{projectId}}", self._handle_variables)

    # ---------------- handlers ----------------

    async def _handle_status_local(self, request: web.Request) -> web.Response:
        return web.json_response({"message": "localhost is online", "online": True})

    async def _handle_board_status(self, request: web.Request) -> web.Response:
        board_id = request.match_info["boardId"]
        return web.json_response({"active": self.orchestrator.board_status(board_id)})

    async def _handle_boards(self, request: web.Request) -> web.Response:
        payload = await _json_body(request)
        result = await self.orchestrator.handle_request(payload)
        return web.json_response(result)

    async def _handle_list_boards(self, request: web.Request) -> web.Response:
        return web.json_response({"boards": self.orchestrator.describe()})

    async def _handle_codes(self, request: web.Request) -> web.Response:
        payload = await _json_body(request)
        board_id = payload.get("_id", payload.get("id"))
        if not board_id:
            raise RequestValidationError("Code payload is missing the board id.", hint="Send '_id'.")

        run = await self.orchestrator.update_script(
            str(board_id),
            str(payload.get("project") or ""),
            str(payload.get("boardCode") or ""),
        )
        return web.json_response({"message": f"Code updated for board {board_id}", "run": run.as_dict()})

    async def _handle_variables(self, request: web.Request) -> web.Response:
        project_id = request.match_info["projectId"]
        snapshot = self.orchestrator.variables.snapshot(project_id)
        return web.json_response({"projectId": project_id, "variables": snapshot}, dumps=_dumps)

    # ---------------- lifecycle ----------------

    async def start(self, host: str = "127.0.0.1", port: int = 4000) -> None:
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        self._runner = runner
        self._log.info("HTTP_SERVER_STARTED url=http://%s:%s%s", host, port, API_PREFIX)

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
            self._log.info("HTTP_SERVER_STOPPED")

    def get_app(self) -> web.Application:
        """The aiohttp application (for testing)."""
        return self.app


async def _json_body(request: web.Request) -> dict:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RequestValidationError("Request body must be JSON.") from None
    if not isinstance(data, dict):
        raise RequestValidationError("Request body must be a JSON object.")
    return data


def _dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)
