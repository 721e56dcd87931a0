# gateway/model/board.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional

from gateway.core.errors import RequestValidationError


class BoardKind(IntEnum):
    ARDUINO = 1
    XELORIUM = 2
    ESP32 = 3
    ESP32_HTTP = 4
    MQTT = 5
    FACTORYIO = 6


class ConnectMethod(IntEnum):
    USB = 1
    WIFI = 2
    ETHERNET = 3

    @property
    def key(self) -> str:
        return self.name.lower()


class BoardState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSING = "closing"


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class BoardRequest:
    """One inbound connect / reconfigure / close request for a board id."""
    board_id: str
    board_type: int
    connect_method: int
    connection_info: Dict[str, Any] = field(default_factory=dict)
    project_id: str = ""
    script_source: str = ""
    name: str = ""
    active: bool = True
    closing: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BoardRequest":
        if not isinstance(payload, Mapping):
            raise RequestValidationError("Board payload must be a JSON object.")

        board_id = payload.get("_id", payload.get("id"))
        if board_id in (None, ""):
            raise RequestValidationError(
                "Board payload is missing its id.",
                hint="Send the board record with '_id'.",
            )

        board_type = _enum_value(BoardKind, payload.get("boardType"), "boardType")
        connect_raw = payload.get("boardConnect", ConnectMethod.USB)
        connect_method = _enum_value(ConnectMethod, connect_raw, "boardConnect")

        info = payload.get("boardInfo") or {}
        if not isinstance(info, Mapping):
            raise RequestValidationError(
                "boardInfo must be an object.",
                details={"board_id": str(board_id)},
            )

        return cls(
            board_id=str(board_id),
            board_type=board_type,
            connect_method=connect_method,
            connection_info=dict(info),
            project_id=str(payload.get("project") or ""),
            script_source=str(payload.get("boardCode") or ""),
            name=str(payload.get("boardName") or ""),
            active=_as_bool(payload.get("active"), True),
            closing=_as_bool(payload.get("closing"), False),
        )


def _enum_value(enum_cls, raw: Any, field_name: str) -> int:
    try:
        return int(enum_cls(int(raw)))
    except (TypeError, ValueError):
        valid = ", ".join(f"{m.value}={m.name}" for m in enum_cls)
        raise RequestValidationError(
            f"Invalid {field_name} '{raw}'.",
            hint=f"Valid values: {valid}",
            details={"field": field_name, "value": raw},
        ) from None


@dataclass
class BoardConnection:
    """
    Live record of one managed board (owned by the orchestrator).

    The transport object is replaced on every reconnect, never merged.
    """
    board_id: str
    board_type: int
    connect_method: int
    connection_info: Dict[str, Any]
    project_id: str
    script_source: str = ""
    name: str = ""
    state: BoardState = BoardState.IDLE
    driver: Optional[str] = None
    address: Optional[str] = None
    last_error: Optional[str] = None
    connected_at: Optional[float] = None

    @property
    def ready(self) -> bool:
        return self.state is BoardState.READY

    @classmethod
    def from_request(cls, req: BoardRequest) -> "BoardConnection":
        return cls(
            board_id=req.board_id,
            board_type=req.board_type,
            connect_method=req.connect_method,
            connection_info=dict(req.connection_info),
            project_id=req.project_id,
            script_source=req.script_source,
            name=req.name,
        )

    def as_dict(self) -> dict:
        return {
            "id": self.board_id,
            "name": self.name,
            "board_type": self.board_type,
            "connect_method": self.connect_method,
            "project": self.project_id,
            "state": self.state.value,
            "ready": self.ready,
            "driver": self.driver,
            "address": self.address,
            "last_error": self.last_error,
            "connected_at": self.connected_at,
        }
