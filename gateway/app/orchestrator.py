# gateway/app/orchestrator.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Union

from gateway.core.errors import (
    BoardConnectError,
    BoardNotConnectedError,
    GatewayError,
    ScriptError,
)
from gateway.core.timers import TimerLedger
from gateway.core.variables import GlobalVariableStore
from gateway.model.board import BoardConnection, BoardRequest, BoardState
from gateway.runtime.board import BoardRuntime
from gateway.script.engine import ScriptEngine, ScriptRun
from gateway.transport.base import AdapterContext, Transport
from gateway.transport.connections import ConnectionRegistry
from gateway.transport.errors import TransportError
from gateway.transport.factory import TransportFactory


class ConnectionOrchestrator:
    """
    Owns every managed board: connect, redeploy, close and disconnect handling.

    Requests for one board id are serialized by a per-id asyncio.Lock (FIFO in
    arrival order); different ids proceed independently. A reconnect is always
    close-then-open, so connect->connect leaves the same state as
    connect->close->connect.

    Script errors do not tear the link down: the board stays ready, the error
    is recorded in last_error and raised to the caller.
    """

    def __init__(
        self,
        factory: TransportFactory,
        *,
        ledger: Optional[TimerLedger] = None,
        variables: Optional[GlobalVariableStore] = None,
        engine: Optional[ScriptEngine] = None,
        connections: Optional[ConnectionRegistry] = None,
        handshake_timeout_s: float = 5.0,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self._log = logger or logging.getLogger(__name__)
        self.factory = factory
        self.ledger = ledger or TimerLedger(logger=self._log)
        self.variables = variables or GlobalVariableStore(logger=self._log)
        self.engine = engine or ScriptEngine(self.ledger, self.variables, logger=self._log)
        self.connections = connections or ConnectionRegistry(logger=self._log)
        self.handshake_timeout_s = float(handshake_timeout_s)
        self._clock = clock

        self._boards: Dict[str, BoardConnection] = {}
        self._runtimes: Dict[str, BoardRuntime] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ---------------- request boundary ----------------

    async def handle_request(self, request: Union[BoardRequest, Mapping[str, Any]]) -> dict:
        """Dispatch one board payload: closing -> close, active -> connect, else acknowledge."""
        req = request if isinstance(request, BoardRequest) else BoardRequest.from_payload(request)

        if req.closing:
            await self.close(req.board_id)
            return {"message": f"Board {req.board_id} disconnected", "board_id": req.board_id, "active": False}

        if req.active:
            conn = await self.connect(req)
            return {"message": f"Board {req.board_id} connected", "board": conn.as_dict()}

        self._log.info("BOARD_ACK id=%s (inactive, not closing)", req.board_id)
        return {"message": f"Board {req.board_id} acknowledged", "board_id": req.board_id, "active": False}

    # ---------------- lifecycle ----------------

    async def connect(self, req: BoardRequest) -> BoardConnection:
        async with self._lock(req.board_id):
            return await self._connect_locked(req)

    async def update_script(self, board_id: str, project_id: str, source: str) -> ScriptRun:
        """Redeploy a script on an already connected board (transport kept)."""
        board_id = str(board_id)
        async with self._lock(board_id):
            conn = self._boards.get(board_id)
            if conn is None or not conn.ready:
                raise BoardNotConnectedError(
                    f"Board {board_id} is not connected.",
                    hint="Connect the board before sending code.",
                    details={"board_id": board_id},
                )

            # the old script's timers must not fire while listeners are being cleared
            self.ledger.revoke_all(board_id)
            link = self.connections.get(board_id)
            if link is not None and link.medium == "mqtt":
                await link.clear_listeners()

            conn.project_id = str(project_id or conn.project_id)
            conn.script_source = source or ""
            return self._run_script(conn, link)

    async def close(self, board_id: str, reason: str = "closed") -> bool:
        """Tear down everything held for `board_id`; safe for ids never opened."""
        board_id = str(board_id)
        async with self._lock(board_id):
            return await self._close_locked(board_id, reason)

    async def shutdown(self) -> None:
        ids = sorted(set(self._boards) | set(self.connections.board_ids()))
        for board_id in ids:
            await self.close(board_id, reason="shutdown")
        self.ledger.revoke_everything()
        self._log.info("ORCHESTRATOR_SHUTDOWN boards=%d", len(ids))

    # ---------------- queries ----------------

    def board_status(self, board_id: str) -> bool:
        conn = self._boards.get(str(board_id))
        return conn is not None and conn.ready

    def board(self, board_id: str) -> Optional[BoardConnection]:
        return self._boards.get(str(board_id))

    def describe(self, board_id: Optional[str] = None) -> dict:
        if board_id is not None:
            return self._describe_one(str(board_id))
        return {bid: self._describe_one(bid) for bid in sorted(self._boards)}

    def _describe_one(self, board_id: str) -> dict:
        conn = self._boards.get(board_id)
        out: Dict[str, Any] = conn.as_dict() if conn else {"id": board_id, "state": BoardState.IDLE.value, "ready": False}
        out["timers"] = self.ledger.active_count(board_id)
        link = self.connections.get(board_id)
        out["link"] = link.status() if link is not None else None
        runtime = self._runtimes.get(board_id)
        if runtime is not None:
            out["runtime"] = runtime.status()
        return out

    # ---------------- internals ----------------

    def _lock(self, board_id: str) -> asyncio.Lock:
        lock = self._locks.get(board_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[board_id] = lock
        return lock

    async def _connect_locked(self, req: BoardRequest) -> BoardConnection:
        board_id = req.board_id
        if board_id in self._boards or self.connections.has(board_id):
            await self._close_locked(board_id, reason="reconnect")

        conn = BoardConnection.from_request(req)
        conn.state = BoardState.CONNECTING
        self._boards[board_id] = conn
        self._log.info(
            "BOARD_CONNECT id=%s type=%s method=%s project=%s",
            board_id, req.board_type, req.connect_method, req.project_id,
        )

        try:
            link = await self._open_link(conn)
        except (GatewayError, TransportError) as e:
            await self._cleanup_failed(conn, e)
            if isinstance(e, GatewayError):
                raise
            raise BoardConnectError(
                f"Board {board_id} failed during connect via {e.medium} at {e.address}: {e}",
                details={"board_id": board_id, "medium": e.medium, "address": e.address},
            ) from e

        conn.state = BoardState.READY
        conn.connected_at = self._clock()
        conn.last_error = None
        self._log.info("BOARD_CONNECTED id=%s driver=%s address=%s", board_id, conn.driver or "-", conn.address or "-")

        self._run_script(conn, link)
        return conn

    async def _open_link(self, conn: BoardConnection) -> Optional[Transport]:
        spec = self.factory.driver_for(conn.board_type, conn.connect_method)
        if spec is None:
            self.variables.ensure_project(conn.project_id)
            return None

        meta = self.factory.board_type(conn.board_type)
        context = AdapterContext(board_id=conn.board_id, project_id=conn.project_id, variables=self.variables)
        dt = self.factory.create(conn.board_type, conn.connect_method, conn.connection_info, context=context)
        transport = dt.transport
        conn.driver = spec.driver
        conn.address = dt.address

        try:
            await transport.open()
        except TransportError as e:
            raise BoardConnectError(
                f"Failed to connect board {conn.board_id} via {transport.medium} at {transport.address}: {e}",
                hint=f"Check boardInfo for driver '{spec.driver}'.",
                details={"board_id": conn.board_id, "medium": transport.medium, "address": transport.address},
            ) from e

        self.connections.register(conn.board_id, transport)
        transport.on_closed(lambda reason, t=transport: self._on_link_closed(conn.board_id, t, reason))

        if spec.stream:
            runtime = BoardRuntime(
                conn.board_id,
                transport,
                ledger=self.ledger,
                handshake=meta.handshake,
                handshake_timeout_s=self.handshake_timeout_s,
                logger=self._log,
            )
            self._runtimes[conn.board_id] = runtime
            await runtime.start()

        return transport

    def _run_script(self, conn: BoardConnection, link: Optional[Transport]) -> ScriptRun:
        runtime = self._runtimes.get(conn.board_id)
        device = link if link is not None and runtime is None else None
        try:
            return self.engine.run(
                conn.board_id,
                conn.project_id,
                conn.script_source,
                board=runtime,
                device=device,
            )
        except ScriptError as e:
            conn.last_error = str(e)
            raise

    async def _close_locked(self, board_id: str, reason: str) -> bool:
        conn = self._boards.get(board_id)
        if conn is not None:
            conn.state = BoardState.CLOSING

        revoked = self.ledger.revoke_all(board_id)
        runtime = self._runtimes.pop(board_id, None)
        if runtime is not None:
            runtime.close(reason)
        closed = await self.connections.close(board_id)

        if conn is not None:
            conn.state = BoardState.IDLE
            conn.connected_at = None

        known = conn is not None or closed
        if known:
            self._log.info(
                "BOARD_DISCONNECT id=%s reason=%s link_closed=%s timers=%d",
                board_id, reason, closed, revoked,
            )
        return known

    async def _cleanup_failed(self, conn: BoardConnection, err: BaseException) -> None:
        self.ledger.revoke_all(conn.board_id)
        runtime = self._runtimes.pop(conn.board_id, None)
        if runtime is not None:
            runtime.close("connect failed")
        await self.connections.close(conn.board_id)

        conn.state = BoardState.IDLE
        conn.last_error = str(err)
        self._log.error("BOARD_CONNECT_FAILED id=%s driver=%s address=%s err=%s",
                        conn.board_id, conn.driver or "-", conn.address or "-", err)

    def _on_link_closed(self, board_id: str, transport: Transport, reason: Optional[str]) -> None:
        # links we closed ourselves are already deregistered
        if self.connections.get(board_id) is not transport:
            return

        self.connections.deregister(board_id, transport=transport)
        self.ledger.revoke_all(board_id)

        runtime = self._runtimes.get(board_id)
        if runtime is not None and runtime.transport is transport:
            self._runtimes.pop(board_id, None)
            runtime.close(reason or "link closed")

        conn = self._boards.get(board_id)
        if conn is not None:
            conn.state = BoardState.IDLE
            conn.connected_at = None
            conn.last_error = reason or "link closed"

        self._log.warning(
            "BOARD_LINK_LOST id=%s medium=%s address=%s reason=%s",
            board_id, transport.medium, transport.address, reason,
        )
