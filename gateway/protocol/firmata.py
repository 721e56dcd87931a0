# gateway/protocol/firmata.py
"""
Firmata message constants and encoders (host -> board direction).

Only the subset the board runtime needs: pin modes, digital/analog/servo
writes, reporting toggles, sampling interval, version/firmware queries.
"""
from __future__ import annotations

# ---------------- command bytes ----------------
DIGITAL_MESSAGE = 0x90
ANALOG_MESSAGE = 0xE0
REPORT_ANALOG = 0xC0
REPORT_DIGITAL = 0xD0
SET_PIN_MODE = 0xF4
SET_DIGITAL_PIN_VALUE = 0xF5
REPORT_VERSION = 0xF9
SYSTEM_RESET = 0xFF
START_SYSEX = 0xF0
END_SYSEX = 0xF7

# ---------------- sysex commands ----------------
EXTENDED_ANALOG = 0x6F
SERVO_CONFIG = 0x70
STRING_DATA = 0x71
REPORT_FIRMWARE = 0x79
SAMPLING_INTERVAL = 0x7A

# ---------------- pin modes ----------------
INPUT = 0x00
OUTPUT = 0x01
ANALOG = 0x02
PWM = 0x03
SERVO = 0x04
INPUT_PULLUP = 0x0B

MODES = {
    "INPUT": INPUT,
    "OUTPUT": OUTPUT,
    "ANALOG": ANALOG,
    "PWM": PWM,
    "SERVO": SERVO,
    "INPUT_PULLUP": INPUT_PULLUP,
}

LOW = 0
HIGH = 1

MAX_PIN = 127


def _check_pin(pin: int) -> int:
    if isinstance(pin, bool) or not isinstance(pin, int) or not 0 <= pin <= MAX_PIN:
        raise ValueError(f"Invalid pin {pin!r} (0..{MAX_PIN})")
    return pin


def to_7bit(value: int) -> bytes:
    """Split a non-negative int into LSB-first 7-bit groups (at least two)."""
    if value < 0:
        raise ValueError(f"Value must be >= 0, got {value}")
    out = bytearray([value & 0x7F, (value >> 7) & 0x7F])
    value >>= 14
    while value:
        out.append(value & 0x7F)
        value >>= 7
    return bytes(out)


def from_7bit(data: bytes) -> int:
    value = 0
    for i, b in enumerate(data):
        value |= (b & 0x7F) << (7 * i)
    return value


def sysex(command: int, payload: bytes = b"") -> bytes:
    return bytes([START_SYSEX, command & 0x7F]) + bytes(payload) + bytes([END_SYSEX])


def set_pin_mode(pin: int, mode: int) -> bytes:
    if mode not in MODES.values():
        raise ValueError(f"Unknown pin mode {mode!r}")
    return bytes([SET_PIN_MODE, _check_pin(pin), mode])


def set_digital_pin_value(pin: int, value: int) -> bytes:
    return bytes([SET_DIGITAL_PIN_VALUE, _check_pin(pin), 1 if value else 0])


def digital_port_write(port: int, mask: int) -> bytes:
    if not 0 <= port <= 15:
        raise ValueError(f"Invalid port {port}")
    mask &= 0xFF
    return bytes([DIGITAL_MESSAGE | port, mask & 0x7F, (mask >> 7) & 0x01])


def analog_write(pin: int, value: int) -> bytes:
    """PWM/servo value; pins above 15 need the extended analog sysex."""
    _check_pin(pin)
    if value < 0:
        raise ValueError(f"Analog value must be >= 0, got {value}")
    if pin <= 15 and value <= 0x3FFF:
        return bytes([ANALOG_MESSAGE | pin, value & 0x7F, (value >> 7) & 0x7F])
    return sysex(EXTENDED_ANALOG, bytes([pin]) + to_7bit(value))


def report_analog(channel: int, enabled: bool) -> bytes:
    if not 0 <= channel <= 15:
        raise ValueError(f"Invalid analog channel {channel}")
    return bytes([REPORT_ANALOG | channel, 1 if enabled else 0])


def report_digital(port: int, enabled: bool) -> bytes:
    if not 0 <= port <= 15:
        raise ValueError(f"Invalid port {port}")
    return bytes([REPORT_DIGITAL | port, 1 if enabled else 0])


def servo_config(pin: int, min_pulse: int = 544, max_pulse: int = 2400) -> bytes:
    payload = bytes([_check_pin(pin)]) + to_7bit(min_pulse)[:2] + to_7bit(max_pulse)[:2]
    return sysex(SERVO_CONFIG, payload)


def sampling_interval(ms: int) -> bytes:
    if not 1 <= ms <= 0x3FFF:
        raise ValueError(f"Sampling interval must be 1..16383 ms, got {ms}")
    return sysex(SAMPLING_INTERVAL, to_7bit(ms)[:2])


def query_firmware() -> bytes:
    return sysex(REPORT_FIRMWARE)


def query_version() -> bytes:
    return bytes([REPORT_VERSION])


def system_reset() -> bytes:
    return bytes([SYSTEM_RESET])
