# gateway/transport/factory.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from gateway.core.errors import TransportConfigError
from gateway.model.board import ConnectMethod
from gateway.model.board_type import BoardType, DriverSpec
from gateway.transport.base import AdapterContext, Transport
from gateway.transport.errors import TransportError
from gateway.transport.params import TransportParamResolver
from gateway.transport.registry import TransportDriverRegistry


@dataclass(frozen=True)
class DeviceTransport:
    transport: Transport
    params: Dict[str, Any]
    driver: DriverSpec
    board_type: BoardType

    @property
    def address(self) -> str:
        return self.transport.address


class TransportFactory:
    """
    Constructs a transport for (board type, connect method) from the catalog
    and the board's connection info.
    Note: does NOT open the transport.
    """

    def __init__(
        self,
        board_types: Mapping[int, BoardType],
        drivers_meta: Mapping[str, DriverSpec],
        drivers: TransportDriverRegistry,
        *,
        driver_options: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self._board_types = board_types
        self._drivers_meta = drivers_meta
        self._drivers = drivers
        self._options = {k.lower(): dict(v) for k, v in (driver_options or {}).items()}
        self._params = TransportParamResolver(drivers_meta)

    def board_types(self) -> Mapping[int, BoardType]:
        return dict(self._board_types)

    def drivers(self) -> Mapping[str, DriverSpec]:
        return dict(self._drivers_meta)

    def board_type(self, type_id: int) -> BoardType:
        meta = self._board_types.get(int(type_id))
        if meta is None:
            raise TransportConfigError(
                f"No board type metadata id={type_id}.",
                hint="Check boardType against board_types.yml.",
                details={"board_type": int(type_id)},
            ) from None
        return meta

    def driver_for(self, type_id: int, connect_method: int) -> Optional[DriverSpec]:
        """DriverSpec serving the pairing, or None for script-only board types."""
        meta = self.board_type(type_id)
        if meta.script_only:
            return None

        method = ConnectMethod(int(connect_method)).key
        key = meta.driver_for(method)
        if key is None or key not in self._drivers_meta:
            raise TransportConfigError(
                f"Board type '{meta.name}' cannot connect via {method}.",
                hint=f"Supported: {sorted(meta.routes) or [meta.default_driver]}",
                details={"board_type": meta.type_id, "connect_method": method},
            ) from None
        return self._drivers_meta[key]

    def create(
        self,
        type_id: int,
        connect_method: int,
        connection_info: Optional[Mapping[str, Any]] = None,
        *,
        context: Optional[AdapterContext] = None,
    ) -> DeviceTransport:
        meta = self.board_type(type_id)
        spec = self.driver_for(type_id, connect_method)
        if spec is None:
            raise TransportConfigError(
                f"Board type '{meta.name}' is script-only and has no transport.",
                details={"board_type": meta.type_id},
            ) from None

        params = self._params.resolve(spec.driver, connection_info or {})
        try:
            hw = self._drivers.create(
                spec.driver,
                **params,
                **self._options.get(spec.driver, {}),
                context=context,
            )
            return DeviceTransport(transport=hw, params=params, driver=spec, board_type=meta)

        except (TransportError, TypeError) as e:
            # unknown driver key or constructor mismatch
            raise TransportConfigError(
                f"Failed to construct transport '{spec.label}' (driver='{spec.driver}').",
                hint=str(e),
                details={
                    "board_type": meta.type_id,
                    "driver": spec.driver,
                    "params": dict(params),
                },
            ) from None
