# gateway/app/board_type_index.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from gateway.core.context import Context
from gateway.core.errors import GatewayError
from gateway.model.board_type import BoardType, DriverSpec


@dataclass(frozen=True, slots=True)
class BoardTypeIndex:
    """
    App-facing board-type index (metadata-driven, read-only view).

    Notes:
      - Use `from_context()` in the server to avoid loading metadata twice.
      - `load()` is a convenience for cli/tests.
    """
    _board_types: Mapping[int, BoardType]
    _drivers: Mapping[str, DriverSpec]

    @classmethod
    def from_context(cls, context: Context) -> "BoardTypeIndex":
        factory = context.transport_factory
        return cls(_board_types=factory.board_types(), _drivers=factory.drivers())

    @classmethod
    def load(cls, *, metadata_dir: str | Path | None = None) -> "BoardTypeIndex":
        return cls.from_context(Context.load(metadata_dir))

    def list(self) -> list[BoardType]:
        """Board types ordered by type_id."""
        return [self._board_types[k] for k in sorted(self._board_types)]

    def meta_for_type_id(self, type_id: int) -> BoardType:
        meta = self._board_types.get(int(type_id))
        if meta is None:
            raise GatewayError(
                f"Unknown board type id '{type_id}'.",
                hint="Run: board-gateway board-types",
            )
        return meta

    def resolve_type_id_by_name(self, name: str) -> int:
        want = name.strip().lower()
        for tid, meta in self._board_types.items():
            if want in (meta.name.lower(), meta.label.lower()):
                return int(tid)

        known = ", ".join(sorted(m.name for m in self._board_types.values()))
        raise GatewayError(
            f"Unknown board type '{name}'.",
            hint=f"Run: board-gateway board-types (known: {known})",
        )

    def routes_for_type_id(self, type_id: int) -> dict[str, DriverSpec]:
        """Connect method name -> driver serving it (empty for script-only types)."""
        meta = self.meta_for_type_id(type_id)
        if meta.script_only:
            return {}

        out: dict[str, DriverSpec] = {}
        for method in ("usb", "wifi", "ethernet"):
            key = meta.driver_for(method)
            if key is not None and key in self._drivers:
                out[method] = self._drivers[key]
        return out

    def schema_for_driver(self, driver: str) -> Mapping[str, Mapping[str, Any]]:
        spec = self._drivers.get(driver.lower())
        if spec is None:
            raise GatewayError(f"Unknown driver '{driver}'.", hint="Run: board-gateway board-types")
        return spec.params
