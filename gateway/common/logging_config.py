# gateway/common/logging_config.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_file: Optional[str | Path] = None) -> None:
    """
    Console handler on the root logger plus an optional file handler.

    Both are added at most once, so calling this again (tests, re-entrant
    CLI entry) only adjusts the level.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not any(getattr(h, "_gateway_console", False) for h in root.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        ch._gateway_console = True  # type: ignore[attr-defined]
        root.addHandler(ch)

    if log_file:
        configure_file_logging(Path(log_file))


def configure_file_logging(app_log_path: Path) -> None:
    """Add a file handler to the root logger (idempotent)."""
    root = logging.getLogger()
    app_log_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(app_log_path.resolve())

    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target:
            return

    fh = logging.FileHandler(app_log_path, encoding="utf-8", delay=True)
    fh.setLevel(logging.INFO)
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(fh)
