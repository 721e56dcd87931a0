from __future__ import annotations

import pytest

from gateway.core.errors import TransportConfigError
from gateway.model.board_type import DriverSpec
from gateway.transport.params import TransportParamResolver


def _drivers():
    return {
        "tcp_server": DriverSpec(
            "tcp_server",
            "Ethernet TCP server",
            {
                "port": {"type": "int", "required": True},
                "host": {"type": "str", "default": "0.0.0.0"},
                "accept_timeout_s": {"type": "float", "default": 30.0},
                "tls": {"type": "bool"},
            },
            key_param="port",
            stream=True,
        )
    }


def test_resolve_applies_defaults_and_casts_numeric_strings():
    r = TransportParamResolver(_drivers())
    out = r.resolve("TCP_SERVER", {"port": "5000", "accept_timeout_s": "2.5"})

    assert out == {"port": 5000, "host": "0.0.0.0", "accept_timeout_s": 2.5}


def test_empty_string_falls_back_to_default():
    r = TransportParamResolver(_drivers())
    assert r.resolve("tcp_server", {"port": 1, "host": ""})["host"] == "0.0.0.0"


def test_missing_required_param_raises():
    r = TransportParamResolver(_drivers())
    with pytest.raises(TransportConfigError) as ei:
        r.resolve("tcp_server", {})
    assert ei.value.details == {"driver": "tcp_server", "param": "port"}


@pytest.mark.parametrize(
    "info",
    [{"port": True}, {"port": "eighty"}, {"port": 1, "tls": "yes"}, {"port": 1, "host": ["a"]}],
)
def test_bad_types_raise(info):
    r = TransportParamResolver(_drivers())
    with pytest.raises(TransportConfigError):
        r.resolve("tcp_server", info)


def test_bool_accepts_zero_one():
    r = TransportParamResolver(_drivers())
    assert r.resolve("tcp_server", {"port": 1, "tls": 1})["tls"] is True


def test_unknown_keys_ignored_unless_strict():
    drivers = _drivers()
    assert "extra" not in TransportParamResolver(drivers).resolve("tcp_server", {"port": 1, "extra": "x"})

    with pytest.raises(TransportConfigError) as ei:
        TransportParamResolver(drivers, strict=True).resolve("tcp_server", {"port": 1, "extra": "x"})
    assert ei.value.details["param"] == "extra"


def test_unknown_driver_raises():
    with pytest.raises(TransportConfigError):
        TransportParamResolver(_drivers()).resolve("usb", {})
