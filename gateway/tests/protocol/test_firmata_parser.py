from __future__ import annotations

from gateway.protocol import (
    AnalogMessage,
    DigitalPortMessage,
    FirmataParser,
    FirmwareMessage,
    StringMessage,
    SysexMessage,
    VersionMessage,
)


def _text(s: str) -> bytes:
    out = bytearray()
    for ch in s.encode():
        out += bytes([ch & 0x7F, ch >> 7])
    return bytes(out)


def test_parses_version_digital_and_analog():
    p = FirmataParser()
    p.feed(bytes([0xF9, 2, 5, 0x90, 0x05, 0x00, 0xE1, 0x7F, 0x07]))

    assert list(p.messages()) == [
        VersionMessage(major=2, minor=5),
        DigitalPortMessage(port=0, mask=0x05),
        AnalogMessage(channel=1, value=0x3FF),
    ]
    assert p.buffer == bytearray()


def test_incremental_feed_waits_for_complete_message():
    p = FirmataParser()
    p.feed(bytes([0xE0, 0x10]))
    assert p.get_message() is None

    p.feed(bytes([0x01]))
    assert p.get_message() == AnalogMessage(channel=0, value=0x10 | (1 << 7))


def test_firmware_and_string_sysex():
    p = FirmataParser()
    p.feed(bytes([0xF0, 0x79, 2, 5]) + _text("Std") + bytes([0xF7]))
    p.feed(bytes([0xF0, 0x71]) + _text("hi") + bytes([0xF7]))

    assert p.get_message() == FirmwareMessage(major=2, minor=5, name="Std")
    assert p.get_message() == StringMessage(text="hi")


def test_unknown_sysex_passes_through():
    p = FirmataParser()
    p.feed(bytes([0xF0, 0x6A, 1, 2, 0xF7]))
    assert p.get_message() == SysexMessage(command=0x6A, data=bytes([1, 2]))


def test_resyncs_after_noise_and_truncated_command():
    p = FirmataParser()
    # stray data bytes, an analog message cut short by a new command byte
    p.feed(bytes([0x01, 0x02, 0xE0, 0x10, 0x90, 0x01, 0x00]))

    assert list(p.messages()) == [DigitalPortMessage(port=0, mask=1)]


def test_unhandled_command_bytes_are_skipped():
    p = FirmataParser()
    p.feed(bytes([0xFF, 0xF9, 2, 6]))
    assert p.get_message() == VersionMessage(major=2, minor=6)


def test_digital_port_pin_value():
    msg = DigitalPortMessage(port=1, mask=0b0000_0100)
    assert msg.pin_value(10) == 1
    assert msg.pin_value(9) == 0
