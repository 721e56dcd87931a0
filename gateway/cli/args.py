# gateway/cli/args.py
from __future__ import annotations

import argparse
from typing import Any, Mapping, Optional


def is_effectively_required(spec: Mapping[str, Any]) -> bool:
    if "default" in spec:
        return False
    return bool(spec.get("required", False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="board-gateway")
    sub = parser.add_subparsers(dest="cmd", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="YAML config file (env vars override it).")
    common.add_argument("--metadata-dir", default=None, help="Directory holding board_types.yml.")

    ps = sub.add_parser("serve", parents=[common], help="Run the HTTP API and socket bridge.")
    ps.add_argument("--host", default=None)
    ps.add_argument("--port", type=int, default=None)
    ps.add_argument("--no-sockets", action="store_true", help="Do not connect to the dashboard socket server.")
    ps.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    ps.add_argument("--log-file", default=None)

    sub.add_parser("board-types", parents=[common], help="List board types and their drivers.")

    pc = sub.add_parser("check-script", parents=[common], help="Validate a board script without running it.")
    pc.add_argument("file", help="Script file ('-' for stdin).")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)
