from __future__ import annotations

import pytest

from gateway.protocol import firmata as fm


def test_set_pin_mode():
    assert fm.set_pin_mode(13, fm.OUTPUT) == bytes([0xF4, 13, 0x01])
    with pytest.raises(ValueError):
        fm.set_pin_mode(13, 0x42)
    with pytest.raises(ValueError):
        fm.set_pin_mode(128, fm.OUTPUT)
    with pytest.raises(ValueError):
        fm.set_pin_mode(True, fm.OUTPUT)


def test_digital_port_write_splits_mask():
    # pins 0 and 7 of port 1 (pins 8 and 15)
    assert fm.digital_port_write(1, 0b1000_0001) == bytes([0x91, 0x01, 0x01])
    with pytest.raises(ValueError):
        fm.digital_port_write(16, 0)


def test_analog_write_standard_and_extended():
    assert fm.analog_write(3, 200) == bytes([0xE3, 200 & 0x7F, 200 >> 7])
    assert fm.analog_write(20, 90) == bytes([0xF0, 0x6F, 20, 90, 0, 0xF7])
    with pytest.raises(ValueError):
        fm.analog_write(3, -1)


def test_reporting_and_queries():
    assert fm.report_analog(2, True) == bytes([0xC2, 1])
    assert fm.report_digital(0, False) == bytes([0xD0, 0])
    assert fm.query_firmware() == bytes([0xF0, 0x79, 0xF7])
    assert fm.query_version() == bytes([0xF9])
    assert fm.system_reset() == bytes([0xFF])


def test_sampling_interval_bounds():
    assert fm.sampling_interval(100) == bytes([0xF0, 0x7A, 100, 0, 0xF7])
    with pytest.raises(ValueError):
        fm.sampling_interval(0)


def test_servo_config_encodes_pulses():
    out = fm.servo_config(9, 544, 2400)
    assert out[:3] == bytes([0xF0, 0x70, 9])
    assert fm.from_7bit(out[3:5]) == 544
    assert fm.from_7bit(out[5:7]) == 2400
    assert out[-1] == 0xF7


@pytest.mark.parametrize("value", [0, 1, 127, 128, 16383, 16384, 2**21 + 5])
def test_7bit_helpers(value):
    assert fm.from_7bit(fm.to_7bit(value)) == value
    assert all(b < 0x80 for b in fm.to_7bit(value))
