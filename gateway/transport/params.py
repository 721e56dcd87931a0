# gateway/transport/params.py
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from gateway.core.errors import TransportConfigError
from gateway.model.board_type import DriverSpec


class TransportParamResolver:
    """
    Resolve concrete transport kwargs from a DriverSpec param schema + the
    board's connection info.

    Connection info arrives from dashboards as JSON, so numeric strings are
    accepted for int/float params. Keys the schema does not declare raise in
    strict mode and are dropped (with a log line) otherwise.
    """

    def __init__(
        self,
        drivers: Mapping[str, DriverSpec],
        *,
        strict: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self._drivers = drivers
        self._strict = strict
        self._log = logger or logging.getLogger(__name__)

    def resolve(self, driver: str, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        meta = self._drivers.get(str(driver).lower())
        if not meta:
            raise TransportConfigError(
                f"No driver metadata for '{driver}'.",
                hint="Check board_types.yml 'drivers'.",
                details={"driver": driver},
            ) from None

        return self._resolve_from_meta(meta, dict(overrides or {}))

    def _resolve_from_meta(self, meta: DriverSpec, overrides: Dict[str, Any]) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}

        unknown = sorted(k for k in overrides if k not in meta.params)
        if unknown and self._strict:
            raise TransportConfigError(
                f"Unknown connection param '{unknown[0]}' for '{meta.label}'.",
                hint=f"Valid params: {sorted(meta.params.keys())}",
                details={"driver": meta.driver, "param": unknown[0]},
            ) from None
        if unknown:
            self._log.debug("PARAMS_IGNORED driver=%s keys=%s", meta.driver, unknown)

        for name, spec in meta.params.items():
            if name in overrides and overrides[name] not in (None, ""):
                value = overrides[name]
            elif "default" in spec:
                value = spec["default"]
            elif spec.get("required", False):
                raise TransportConfigError(
                    f"Missing required connection param '{name}' for '{meta.label}'.",
                    hint="Add it to the board's boardInfo.",
                    details={"driver": meta.driver, "param": name},
                ) from None
            else:
                continue

            try:
                resolved[name] = self._cast_param(value, spec.get("type"))
            except (TypeError, ValueError) as e:
                raise TransportConfigError(
                    f"Invalid value for '{meta.label}' param '{name}'.",
                    hint=str(e),
                    details={
                        "driver": meta.driver,
                        "param": name,
                        "value": value,
                        "expected_type": spec.get("type"),
                    },
                ) from None

        return resolved

    @staticmethod
    def _cast_param(value: Any, type_name: Any) -> Any:
        if value is None:
            return None

        if type_name == "str":
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                raise TypeError(f"Expected str, got {type(value).__name__}")
            return str(value)

        if type_name == "int":
            if isinstance(value, bool):
                raise TypeError("Expected int, got bool")
            if isinstance(value, int):
                return value
            if isinstance(value, str) and value.strip().lstrip("-").isdigit():
                return int(value.strip())
            raise TypeError(f"Expected int, got {type(value).__name__}")

        if type_name == "float":
            if isinstance(value, bool):
                raise TypeError("Expected float, got bool")
            if isinstance(value, (int, float)):
                return float(value)
            if isinstance(value, str):
                return float(value)
            raise TypeError(f"Expected float, got {type(value).__name__}")

        if type_name == "bool":
            if isinstance(value, bool):
                return value
            # accept 0/1 int
            if isinstance(value, int) and value in (0, 1):
                return bool(value)
            raise TypeError(f"Expected bool (or 0/1), got {type(value).__name__}")

        raise TypeError(f"Unknown schema type '{type_name}'")
