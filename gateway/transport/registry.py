# gateway/transport/registry.py
from __future__ import annotations

from typing import Dict, Type

from .base import Transport
from .errors import TransportError
from .http_device import HttpDeviceTransport
from .mqtt_client import MqttTransport
from .serial_port import SerialTransport
from .tcp_server import TcpServerTransport
from .virtual_serial import VirtualSerialTransport


class TransportDriverRegistry:
    """
    Adapter-only registry that maps driver keys -> concrete transport classes.

    - NO metadata loading
    - NO YAML
    - NO model imports
    """

    def __init__(self, drivers: Dict[str, Type[Transport]]):
        # driver keys are case-insensitive
        self._drivers: Dict[str, Type[Transport]] = {k.lower(): v for k, v in drivers.items()}

    @classmethod
    def default(cls) -> "TransportDriverRegistry":
        return cls(
            drivers={
                "serial": SerialTransport,
                "virtual_serial": VirtualSerialTransport,
                "tcp_server": TcpServerTransport,
                "http": HttpDeviceTransport,
                "mqtt": MqttTransport,
            }
        )

    def keys(self) -> list[str]:
        return sorted(self._drivers)

    def has(self, driver: str) -> bool:
        return driver.lower() in self._drivers

    def get_class(self, driver: str) -> Type[Transport]:
        key = driver.lower()
        if key not in self._drivers:
            raise TransportError(f"Transport driver '{driver}' not registered")
        return self._drivers[key]

    def create(self, driver: str, **params) -> Transport:
        """Instantiate a transport by driver key (does not open it)."""
        transport_cls = self.get_class(driver)
        return transport_cls(**params)
