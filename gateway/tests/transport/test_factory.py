from __future__ import annotations

import pytest

from gateway.core.context import Context
from gateway.core.errors import TransportConfigError
from gateway.transport.base import AdapterContext
from gateway.transport.http_device import HttpDeviceTransport
from gateway.transport.serial_port import SerialTransport
from gateway.transport.tcp_server import TcpServerTransport
from gateway.transport.virtual_serial import VirtualSerialTransport


@pytest.fixture
def factory():
    return Context.load(driver_options={"http": {"throttle_s": 0.0}}).transport_factory


@pytest.mark.parametrize(
    "board_type, method, driver",
    [(1, 1, "serial"), (2, 2, "virtual_serial"), (3, 3, "tcp_server"), (4, 1, "http"), (5, 3, "mqtt")],
)
def test_driver_for_pairings(factory, board_type, method, driver):
    assert factory.driver_for(board_type, method).driver == driver


def test_script_only_type_has_no_driver(factory):
    assert factory.driver_for(6, 1) is None
    with pytest.raises(TransportConfigError):
        factory.create(6, 1, {})


def test_unknown_board_type_raises(factory):
    with pytest.raises(TransportConfigError) as ei:
        factory.board_type(42)
    assert ei.value.details == {"board_type": 42}


def test_create_serial_does_not_open(factory):
    ctx = AdapterContext(board_id="b1", project_id="p1")
    dt = factory.create(1, 1, {"port": "/dev/ttyUSB0"}, context=ctx)

    assert isinstance(dt.transport, SerialTransport)
    assert dt.transport.is_open is False
    assert dt.transport.context is ctx
    assert dt.params == {"port": "/dev/ttyUSB0", "baudrate": 57600}
    assert dt.address == "/dev/ttyUSB0"
    assert dt.driver.stream is True


def test_create_wifi_and_ethernet(factory):
    wifi = factory.create(1, 2, {"host": "192.168.1.50", "bridge_port": "COM7"})
    assert isinstance(wifi.transport, VirtualSerialTransport)
    assert wifi.address == "192.168.1.50:3030"
    assert wifi.transport.bridge_port == "COM7"

    eth = factory.create(3, 3, {"port": "5050"})
    assert isinstance(eth.transport, TcpServerTransport)
    assert eth.transport.port == 5050


def test_driver_options_reach_constructor(factory):
    dt = factory.create(4, 2, {"ip": "10.0.0.9", "serverAPIKey": "k"})
    assert isinstance(dt.transport, HttpDeviceTransport)
    assert dt.transport._throttle.min_interval_s == 0.0
    assert dt.address == "10.0.0.9:80"


def test_missing_connection_param_raises(factory):
    with pytest.raises(TransportConfigError) as ei:
        factory.create(4, 2, {"ip": "10.0.0.9"})
    assert ei.value.details["param"] == "serverAPIKey"
