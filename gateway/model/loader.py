# gateway/model/loader.py
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict, Optional

import yaml

from .board_type import BoardType, DriverSpec

CATALOG_FILE = "board_types.yml"


def sha256_file(path: Path) -> str:
    """SHA256 of a metadata file, lowercase hex (streamed)."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            block = f.read(64 * 1024)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


class MetadataLoader:
    """
    Loads the board-type catalog from YAML into model classes.

    After calling load_all(), exposes:
        self.drivers     : dict[str, DriverSpec]
        self.board_types : dict[int, BoardType]
        self.file_hashes : dict[str, str]  (filename -> sha256)
    """

    def __init__(self, config_dir: str | Path, *, filename: str = CATALOG_FILE):
        self.config_dir = Path(config_dir)
        self.filename = filename
        self.drivers: Dict[str, DriverSpec] = {}
        self.board_types: Dict[int, BoardType] = {}
        self.file_hashes: Dict[str, str] = {}

    def _load_yaml(self) -> dict:
        full_path = self.config_dir / self.filename
        if not full_path.exists():
            raise FileNotFoundError(f"Missing metadata file: {full_path}")

        with open(full_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.filename} root must be a mapping")
        return data

    def load_all(self) -> None:
        self.drivers.clear()
        self.board_types.clear()
        self.file_hashes.clear()

        self.file_hashes[self.filename] = sha256_file(self.config_dir / self.filename)

        data = self._load_yaml()
        self._load_drivers(data)
        self._load_board_types(data)

    # ---------------------------------------------------------------------
    # Drivers
    # ---------------------------------------------------------------------
    def _load_drivers(self, data: dict) -> None:
        drivers = data.get("drivers")
        if not isinstance(drivers, dict):
            raise ValueError(f"{self.filename} is missing 'drivers' root node")

        for key, info in drivers.items():
            key = str(key).lower()
            if not isinstance(info, dict):
                raise ValueError(f"Driver '{key}' entry must be a mapping")

            key_param = info.get("key_param")
            if not key_param:
                raise ValueError(f"Driver '{key}' is missing 'key_param'")

            params = info.get("params") or {}
            if not isinstance(params, dict):
                raise ValueError(f"Driver '{key}' 'params' must be a mapping")
            if key_param not in params:
                raise ValueError(f"Driver '{key}' key_param '{key_param}' not defined in params")
            for pname, pspec in params.items():
                if not isinstance(pspec, dict):
                    raise ValueError(f"Driver '{key}' param '{pname}' must be a mapping")

            self.drivers[key] = DriverSpec(
                driver=key,
                label=str(info.get("label", key)),
                params=params,
                medium=str(info.get("medium", key)),
                key_param=str(key_param),
                stream=bool(info.get("stream", False)),
            )

    # ---------------------------------------------------------------------
    # Board types
    # ---------------------------------------------------------------------
    def _load_board_types(self, data: dict) -> None:
        types = data.get("board_types")
        if not isinstance(types, dict):
            raise ValueError(f"{self.filename} is missing 'board_types' root node")

        for tid_raw, tinfo in types.items():
            tid = int(tid_raw)
            if not isinstance(tinfo, dict):
                raise ValueError(f"Board type {tid} entry must be a mapping")

            name = tinfo.get("name")
            if not name:
                raise ValueError(f"Board type {tid} is missing 'name'")

            routes = tinfo.get("connect") or {}
            if not isinstance(routes, dict):
                raise ValueError(f"Board type {tid} 'connect' must be a mapping")

            script_only = bool(tinfo.get("script_only", False))
            default_driver = tinfo.get("default_driver")

            if not script_only and not routes and not default_driver:
                raise ValueError(f"Board type {tid} declares no driver (set 'connect' or 'default_driver')")

            for driver in list(routes.values()) + ([default_driver] if default_driver else []):
                if str(driver).lower() not in self.drivers:
                    raise ValueError(f"Board type {tid} references unknown driver '{driver}'")

            self.board_types[tid] = BoardType(
                type_id=tid,
                name=str(name),
                label=str(tinfo.get("label", "")),
                routes=routes,
                default_driver=str(default_driver).lower() if default_driver else None,
                script_only=script_only,
                handshake=bool(tinfo.get("handshake", True)),
            )

    # ---------------------------------------------------------------------
    # Accessors
    # ---------------------------------------------------------------------
    def get_board_type(self, tid: int) -> Optional[BoardType]:
        return self.board_types.get(int(tid))

    def get_driver(self, key: str) -> Optional[DriverSpec]:
        return self.drivers.get(str(key).lower())
