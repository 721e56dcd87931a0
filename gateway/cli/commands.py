# gateway/cli/commands.py
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from typing import Any, Mapping

from gateway.app.board_type_index import BoardTypeIndex
from gateway.app.config import GatewayConfig, load_config
from gateway.app.runner import build_app, serve
from gateway.cli.args import is_effectively_required
from gateway.common.logging_config import configure_logging
from gateway.core.errors import ConfigError
from gateway.core.timers import TimerLedger
from gateway.core.variables import GlobalVariableStore
from gateway.script.engine import ScriptEngine


def _config_for(args: argparse.Namespace) -> GatewayConfig:
    cfg = load_config(args.config)
    overrides: dict[str, Any] = {}
    if getattr(args, "metadata_dir", None):
        overrides["metadata_dir"] = args.metadata_dir
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if getattr(args, "log_level", None):
        overrides["log_level"] = args.log_level
    if getattr(args, "log_file", None):
        overrides["log_file"] = args.log_file
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


# ---------------- Commands ----------------

def cmd_serve(args: argparse.Namespace) -> int:
    cfg = _config_for(args)
    configure_logging(cfg.log_level, cfg.log_file)
    run = build_app(cfg, sockets=not args.no_sockets)

    async def _main() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows: KeyboardInterrupt still ends asyncio.run
                pass
        await serve(run, stop=stop)

    print(f"Gateway listening on http://{cfg.host}:{cfg.port}/api/polling (Ctrl+C to stop)")
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass
    return 0


def cmd_board_types(args: argparse.Namespace) -> int:
    cfg = _config_for(args)
    index = BoardTypeIndex.load(metadata_dir=cfg.metadata_dir)

    print("Available board types:\n")
    for meta in index.list():
        if meta.script_only:
            print(f"{meta.label} (boardType={meta.type_id}) script-only, no transport\n")
            continue

        print(f"{meta.label} (boardType={meta.type_id})")
        for method, spec in index.routes_for_type_id(meta.type_id).items():
            print(f"  {method}: {spec.label} (driver={spec.driver})")
            params: Mapping[str, Mapping[str, Any]] = spec.params or {}
            opts = []
            for name, p in params.items():
                if "default" in p:
                    opts.append(f"{name}={p['default']!r}")
                elif is_effectively_required(p):
                    opts.append(f"{name}=<required>")
                else:
                    opts.append(f"{name}=<optional>")
            if opts:
                print("    boardInfo: " + ", ".join(opts))
        print()
    return 0


def cmd_check_script(args: argparse.Namespace) -> int:
    if args.file == "-":
        source = sys.stdin.read()
    else:
        try:
            with open(args.file, "r", encoding="utf-8") as f:
                source = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read script file '{args.file}'.", hint=str(e)) from None

    engine = ScriptEngine(TimerLedger(), GlobalVariableStore(), logger=logging.getLogger("gateway.cli"))
    tree = engine.check(source)
    resets = engine.array_resets(tree)

    print(f"OK: {args.file}")
    if resets:
        print("Array variables reset on deploy: " + ", ".join(resets))
    return 0
