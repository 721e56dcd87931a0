from __future__ import annotations

import pytest

from gateway.transport.base import Transport
from gateway.transport.errors import TransportError
from gateway.transport.http_device import HttpDeviceTransport
from gateway.transport.mqtt_client import MqttTransport
from gateway.transport.registry import TransportDriverRegistry
from gateway.transport.serial_port import SerialTransport
from gateway.transport.tcp_server import TcpServerTransport
from gateway.transport.virtual_serial import VirtualSerialTransport


class DummyTransport(Transport):
    def __init__(self, *, x: int = 0, context=None):
        super().__init__(context=context)
        self.x = x

    @property
    def address(self) -> str:
        return "dummy"

    @property
    def is_open(self) -> bool:
        return False

    async def open(self) -> None: ...
    async def close(self) -> None: ...


def test_registry_has_and_get_class_case_insensitive():
    reg = TransportDriverRegistry({"DUMMY": DummyTransport})

    assert reg.has("dummy") is True
    assert reg.has("DUMMY") is True
    assert reg.has("DuMmY") is True

    cls = reg.get_class("dummy")
    assert cls is DummyTransport


def test_registry_get_class_unknown_raises():
    reg = TransportDriverRegistry({})
    with pytest.raises(TransportError):
        reg.get_class("uart")


def test_registry_create_instantiates_with_params():
    reg = TransportDriverRegistry({"dummy": DummyTransport})

    t = reg.create("DUMMY", x=42)
    assert isinstance(t, DummyTransport)
    assert t.x == 42


def test_default_registry_maps_every_medium():
    reg = TransportDriverRegistry.default()

    assert reg.keys() == ["http", "mqtt", "serial", "tcp_server", "virtual_serial"]
    assert reg.get_class("serial") is SerialTransport
    assert reg.get_class("virtual_serial") is VirtualSerialTransport
    assert reg.get_class("tcp_server") is TcpServerTransport
    assert reg.get_class("http") is HttpDeviceTransport
    assert reg.get_class("mqtt") is MqttTransport
