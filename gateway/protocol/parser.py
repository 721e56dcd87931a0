# gateway/protocol/parser.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from . import firmata as fm

MAX_SYSEX = 1024


@dataclass(frozen=True)
class DigitalPortMessage:
    port: int
    mask: int

    def pin_value(self, pin: int) -> int:
        return (self.mask >> (pin - self.port * 8)) & 0x01


@dataclass(frozen=True)
class AnalogMessage:
    channel: int
    value: int


@dataclass(frozen=True)
class VersionMessage:
    major: int
    minor: int


@dataclass(frozen=True)
class FirmwareMessage:
    major: int
    minor: int
    name: str


@dataclass(frozen=True)
class StringMessage:
    text: str


@dataclass(frozen=True)
class SysexMessage:
    command: int
    data: bytes


Message = Union[DigitalPortMessage, AnalogMessage, VersionMessage, FirmwareMessage, StringMessage, SysexMessage]


def _decode_7bit_text(data: bytes) -> str:
    chars = bytearray()
    for i in range(0, len(data) - 1, 2):
        chars.append((data[i] & 0x7F) | ((data[i + 1] & 0x01) << 7))
    return chars.decode("utf-8", errors="replace")


class FirmataParser:
    """
    Incremental board -> host Firmata decoder.

    feed() appends raw bytes; get_message() returns the next complete message
    or None when more bytes are needed. Stray data bytes and truncated
    commands are dropped so the stream resynchronizes on the next command byte.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.buffer = bytearray()
        self._log = logger or logging.getLogger(__name__)

    def feed(self, data: bytes) -> None:
        self.buffer.extend(data)

    def messages(self):
        while True:
            msg = self.get_message()
            if msg is None:
                return
            yield msg

    def get_message(self) -> Optional[Message]:
        while self.buffer:
            cmd = self.buffer[0]

            if cmd < 0x80:
                # data byte outside a command
                del self.buffer[:1]
                continue

            if cmd == fm.START_SYSEX:
                end = self.buffer.find(bytes([fm.END_SYSEX]))
                if end < 0:
                    if len(self.buffer) > MAX_SYSEX:
                        self._log.warning("FIRMATA_SYSEX_OVERFLOW len=%d, dropping", len(self.buffer))
                        del self.buffer[:1]
                        continue
                    return None
                body = bytes(self.buffer[1:end])
                del self.buffer[: end + 1]
                if not body:
                    continue
                return self._sysex(body[0], body[1:])

            high = cmd & 0xF0
            if high in (fm.DIGITAL_MESSAGE, fm.ANALOG_MESSAGE) or cmd == fm.REPORT_VERSION:
                if len(self.buffer) < 3:
                    return None
                b1, b2 = self.buffer[1], self.buffer[2]
                if b1 >= 0x80 or b2 >= 0x80:
                    # truncated command, resync on the next command byte
                    del self.buffer[:1]
                    continue
                del self.buffer[:3]
                value = b1 | (b2 << 7)
                if cmd == fm.REPORT_VERSION:
                    return VersionMessage(major=b1, minor=b2)
                if high == fm.DIGITAL_MESSAGE:
                    return DigitalPortMessage(port=cmd & 0x0F, mask=value)
                return AnalogMessage(channel=cmd & 0x0F, value=value)

            self._log.debug("FIRMATA_UNHANDLED_COMMAND cmd=0x%02X", cmd)
            del self.buffer[:1]

        return None

    @staticmethod
    def _sysex(command: int, data: bytes) -> Message:
        if command == fm.REPORT_FIRMWARE and len(data) >= 2:
            return FirmwareMessage(major=data[0], minor=data[1], name=_decode_7bit_text(data[2:]))
        if command == fm.STRING_DATA:
            return StringMessage(text=_decode_7bit_text(data))
        return SysexMessage(command=command, data=data)
