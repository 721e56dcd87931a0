# gateway/app/sockets.py
"""
Socket.IO bridge between the dashboard server and this gateway.

The gateway connects as a client (`type=server`, keyed by serverAPIKey) and
answers the dashboard's relayed requests: variable snapshots and edits,
board/code polling requests and liveness checks. Handlers never raise into
the socket library; failures are sent back as {"success": false, ...}.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode

import socketio

from gateway.app.orchestrator import ConnectionOrchestrator
from gateway.common.logging_config import LOG_FORMAT
from gateway.core.errors import GatewayError


class BridgeState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SocketLogHandler(logging.Handler):
    """
    Forwards formatted log lines to the dashboard console as
    `response-server-log-b-b` while the bridge is connected.

    Records may come from executor threads; the emit is always scheduled on
    the bridge's event loop.
    """

    SKIP_LOGGERS = ("socketio", "engineio")

    def __init__(self, bridge: "SocketBridge", loop: asyncio.AbstractEventLoop, level: int = logging.INFO):
        super().__init__(level)
        self._bridge = bridge
        self._loop = loop
        self._pending: set = set()
        self.setFormatter(logging.Formatter(LOG_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.split(".", 1)[0] in self.SKIP_LOGGERS or getattr(record, "no_forward", False):
            return
        try:
            line = self.format(record)
            self._loop.call_soon_threadsafe(self._send, line)
        except Exception:
            self.handleError(record)

    def _send(self, line: str) -> None:
        task = self._loop.create_task(self._bridge._emit("response-server-log-b-b", line))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


class SocketBridge:
    def __init__(
        self,
        orchestrator: ConnectionOrchestrator,
        url: str,
        server_api_key: str,
        *,
        client_factory: Optional[Callable[..., Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.orchestrator = orchestrator
        self.url = url
        self.server_api_key = server_api_key
        self._client_factory = client_factory or socketio.AsyncClient
        self._log = logger or logging.getLogger(__name__)

        self.state = BridgeState.DISCONNECTED
        self._sio: Any = None
        self._log_handler: Optional[SocketLogHandler] = None
        self._handlers: Dict[str, Callable[..., Awaitable[None]]] = {
            "request-gVar-update-b-b": self.on_variables_request,
            "request-gVariable-delete-b-b": self.on_variable_delete,
            "request-gVariable-delete-f-b": self.on_variable_delete,
            "request-gVariable-change-b-b": self.on_variable_change,
            "request-gVarriable-initialize-b-b": self.on_variable_initialize,
            "request-polling-boards-b-b": self.on_polling_boards,
            "request-polling-codes-b-b": self.on_polling_codes,
            "request-status-local-b-b": self.on_status_local,
        }

    @property
    def events(self) -> list[str]:
        return sorted(self._handlers)

    @property
    def connect_url(self) -> str:
        query = urlencode({"type": "server", "serverAPIKey": self.server_api_key})
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}{query}"

    async def connect(self) -> None:
        self.state = BridgeState.CONNECTING
        self._sio = self._client_factory(
            reconnection=True,
            reconnection_delay=1,
            reconnection_delay_max=30,
            logger=False,
        )

        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        for event, handler in self._handlers.items():
            self._sio.on(event, handler)

        try:
            await self._sio.connect(self.connect_url, transports=["websocket"])
        except Exception as e:
            self.state = BridgeState.DISCONNECTED
            self._log.error("SOCKET_CONNECT_FAILED url=%s err=%s", self.url, e)
            raise

    async def disconnect(self) -> None:
        self._remove_log_handler()
        if self._sio is not None:
            await self._sio.disconnect()
        self.state = BridgeState.DISCONNECTED

    async def _on_connect(self) -> None:
        self.state = BridgeState.CONNECTED
        self._install_log_handler()
        self._log.info("SOCKET_CONNECTED url=%s", self.url)

    async def _on_disconnect(self, *args: Any) -> None:
        self.state = BridgeState.DISCONNECTED
        self._remove_log_handler()
        self._log.warning("SOCKET_DISCONNECTED url=%s", self.url)

    def _install_log_handler(self) -> None:
        if self._log_handler is not None:
            return
        self._log_handler = SocketLogHandler(self, asyncio.get_running_loop())
        logging.getLogger().addHandler(self._log_handler)

    def _remove_log_handler(self) -> None:
        if self._log_handler is None:
            return
        logging.getLogger().removeHandler(self._log_handler)
        self._log_handler = None

    async def _emit(self, event: str, *args: Any) -> None:
        if self._sio is None:
            return
        try:
            await self._sio.emit(event, tuple(args))
        except Exception as e:
            self._log.error("SOCKET_EMIT_FAILED event=%s err=%s", event, e, extra={"no_forward": True})

    # ---------------- variables ----------------

    async def on_variables_request(self, project_id: Any = None, *_: Any) -> None:
        if not project_id:
            return
        try:
            snapshot = self.orchestrator.variables.snapshot(str(project_id))
        except Exception:
            self._log.exception("SOCKET_REQUEST_ERROR op=variables project=%s", project_id)
            return
        await self._emit("response-gVar-update-b-b", snapshot, project_id)

    async def on_variable_delete(self, project_id: Any = None, key: Any = None, *_: Any) -> None:
        if not project_id or not key:
            return
        value = self.orchestrator.variables.reset_to_default(str(project_id), str(key))
        self._log.info("VARIABLE_RESET project=%s name=%s value=%r", project_id, key, value)

    async def on_variable_change(self, name: Any = None, value: Any = None, project_id: Any = None, *_: Any) -> None:
        if not project_id or not name:
            return
        try:
            self.orchestrator.variables.write(str(project_id), str(name), value)
        except TypeError as e:
            self._log.warning("VARIABLE_REJECTED project=%s name=%s err=%s", project_id, name, e)
            return
        self._log.info("VARIABLE_CHANGED project=%s name=%s", project_id, name)

    async def on_variable_initialize(self, project_id: Any = None, name: Any = None, initial: Any = None, *_: Any) -> None:
        if not project_id or not name:
            return
        try:
            created = self.orchestrator.variables.initialize(str(project_id), str(name), initial)
        except TypeError as e:
            self._log.warning("VARIABLE_REJECTED project=%s name=%s err=%s", project_id, name, e)
            return
        self._log.info("VARIABLE_INITIALIZE project=%s name=%s created=%s", project_id, name, created)

    # ---------------- polling relays ----------------

    async def on_polling_boards(self, payload: Any = None, request_id: Any = None, *_: Any) -> None:
        result = await self._guard("boards", self.orchestrator.handle_request(payload or {}))
        await self._emit("response-polling-boards-b-b", result, request_id)

    async def on_polling_codes(self, payload: Any = None, request_id: Any = None, *_: Any) -> None:
        payload = payload if isinstance(payload, dict) else {}
        coro = self.orchestrator.update_script(
            str(payload.get("_id", payload.get("id")) or ""),
            str(payload.get("project") or ""),
            str(payload.get("boardCode") or ""),
        )
        result = await self._guard("codes", coro)
        await self._emit("response-polling-codes-b-b", result, request_id)

    async def on_status_local(self, request_id: Any = None, *_: Any) -> None:
        await self._emit("response-status-local-b-b", {"online": True}, request_id)

    async def _guard(self, op: str, coro: Awaitable[Any]) -> dict:
        try:
            result = await coro
        except GatewayError as e:
            self._log.warning("SOCKET_REQUEST_FAILED op=%s code=%s err=%s", op, e.code, e)
            return {"success": False, **e.as_dict()}
        except Exception as e:
            # the socket library must never see handler exceptions
            self._log.exception("SOCKET_REQUEST_ERROR op=%s", op)
            return {"success": False, "error": str(e), "code": "internal_error"}

        if hasattr(result, "as_dict"):
            result = result.as_dict()
        if isinstance(result, dict):
            return {"success": True, **result}
        return {"success": True, "result": result}
