# gateway/app/runner.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from socketio.exceptions import ConnectionError as SocketConnectionError

from gateway.app.config import GatewayConfig
from gateway.app.orchestrator import ConnectionOrchestrator
from gateway.app.server import GatewayHTTPServer
from gateway.app.sockets import SocketBridge
from gateway.core.context import Context
from gateway.core.timers import TimerLedger
from gateway.core.variables import GlobalVariableStore
from gateway.script.engine import ScriptEngine


@dataclass(frozen=True)
class AppRun:
    config: GatewayConfig
    context: Context
    orchestrator: ConnectionOrchestrator
    server: GatewayHTTPServer
    bridge: Optional[SocketBridge]


def build_app(
    cfg: GatewayConfig,
    *,
    context: Optional[Context] = None,
    sockets: bool = True,
    logger: Optional[logging.Logger] = None,
) -> AppRun:
    """Wire catalog, ledger, store, engine, orchestrator and the outer surfaces (nothing started)."""
    log = logger or logging.getLogger(__name__)
    context = context or Context.load(cfg.metadata_dir, driver_options=cfg.driver_options())

    ledger = TimerLedger(min_interval_s=cfg.script.min_interval_ms / 1000.0)
    variables = GlobalVariableStore()
    engine = ScriptEngine(ledger, variables, max_steps=cfg.script.max_steps)
    orchestrator = ConnectionOrchestrator(
        context.transport_factory,
        ledger=ledger,
        variables=variables,
        engine=engine,
        handshake_timeout_s=cfg.board.handshake_timeout_s,
    )

    bridge = None
    if sockets and cfg.sockets_enabled:
        bridge = SocketBridge(orchestrator, str(cfg.socket_server_url), str(cfg.server_api_key))
    elif sockets:
        log.info("SOCKET_BRIDGE_DISABLED (SOCKETSERVER_URL / SERVERAPI_KEY not set)")

    return AppRun(
        config=cfg,
        context=context,
        orchestrator=orchestrator,
        server=GatewayHTTPServer(orchestrator),
        bridge=bridge,
    )


async def serve(run: AppRun, *, stop: Optional[asyncio.Event] = None) -> None:
    """Start HTTP (+ socket bridge), wait for `stop`, then close every board."""
    log = logging.getLogger(__name__)
    stop = stop or asyncio.Event()

    await run.server.start(run.config.host, run.config.port)
    try:
        if run.bridge is not None:
            try:
                await run.bridge.connect()
            except SocketConnectionError as e:
                # the HTTP API stays usable without the dashboard relay
                log.error("SOCKET_BRIDGE_UNAVAILABLE err=%s", e)
        await stop.wait()
    finally:
        if run.bridge is not None:
            await run.bridge.disconnect()
        await run.orchestrator.shutdown()
        await run.server.stop()
