# gateway/model/board_type.py
from __future__ import annotations

from typing import Any, Dict, Optional


class DriverSpec:
    """
    Static model of a transport driver (catalog entry).

    Attributes:
        driver: Stable driver key used by the runtime registry (e.g. "serial", "mqtt").
        label: Human-readable label for display/logging.
        medium: Medium name reported in errors/status ("serial", "tcp", "http", ...).
        params: Parameter schema: param_name -> {type, default, required, ...}
        key_param: Param that identifies the attempted address (e.g. "port", "ip").
        stream: True when the driver yields a byte stream the Board Runtime speaks over.
    """

    def __init__(
        self,
        driver: str,
        label: str,
        params: Optional[Dict[str, Dict[str, Any]]] = None,
        *,
        medium: str = "",
        key_param: str = "port",
        stream: bool = False,
    ):
        self.driver: str = str(driver)
        self.label: str = str(label)
        self.medium: str = str(medium or driver)
        self.params: Dict[str, Dict[str, Any]] = params or {}
        self.key_param: str = str(key_param)
        self.stream: bool = bool(stream)

    def as_dict(self) -> dict:
        return {
            "driver": self.driver,
            "label": self.label,
            "medium": self.medium,
            "params": self.params,
            "key_param": self.key_param,
            "stream": self.stream,
        }

    def __repr__(self) -> str:
        return f"DriverSpec(driver='{self.driver}', medium='{self.medium}')"


class BoardType:
    """
    Static model of a board type: which driver serves each connect method.

    `routes` maps a connect method name ("usb", "wifi", "ethernet") to a driver
    key; `default_driver` is used when the method is not listed. Script-only
    types have neither and never open a transport.
    """

    def __init__(
        self,
        type_id: int,
        name: str,
        label: str = "",
        *,
        routes: Optional[Dict[str, str]] = None,
        default_driver: Optional[str] = None,
        script_only: bool = False,
        handshake: bool = True,
    ):
        self.type_id: int = int(type_id)
        self.name: str = str(name)
        self.label: str = str(label or name)
        self.routes: Dict[str, str] = {str(k).lower(): str(v) for k, v in (routes or {}).items()}
        self.default_driver: Optional[str] = default_driver
        self.script_only: bool = bool(script_only)
        self.handshake: bool = bool(handshake)

    def driver_for(self, method: str) -> Optional[str]:
        if self.script_only:
            return None
        return self.routes.get(str(method).lower(), self.default_driver)

    def as_dict(self) -> dict:
        return {
            "type_id": self.type_id,
            "name": self.name,
            "label": self.label,
            "routes": dict(self.routes),
            "default_driver": self.default_driver,
            "script_only": self.script_only,
            "handshake": self.handshake,
        }

    def __repr__(self) -> str:
        return f"BoardType(type_id={self.type_id}, name='{self.name}')"
