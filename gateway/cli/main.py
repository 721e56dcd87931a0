# gateway/cli/main.py
from __future__ import annotations

from typing import Optional

from gateway.core.errors import GatewayError

from gateway.cli.args import parse_args
from gateway.cli.commands import (
    cmd_board_types,
    cmd_check_script,
    cmd_serve,
)


def main(argv: Optional[list[str]] = None) -> int:
    try:
        args = parse_args(argv)

        if args.cmd == "serve":
            return cmd_serve(args)
        if args.cmd == "board-types":
            return cmd_board_types(args)
        if args.cmd == "check-script":
            return cmd_check_script(args)

        return 2
    except GatewayError as e:
        print(f"ERROR: {e.message}")
        if e.hint:
            print(f"Hint: {e.hint}")
        line = e.details.get("line") if e.details else None
        if line is not None:
            print(f"Line: {line}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
