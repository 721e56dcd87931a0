from .parser import (
    AnalogMessage,
    DigitalPortMessage,
    FirmataParser,
    FirmwareMessage,
    StringMessage,
    SysexMessage,
    VersionMessage,
)

__all__ = [
    "AnalogMessage",
    "DigitalPortMessage",
    "FirmataParser",
    "FirmwareMessage",
    "StringMessage",
    "SysexMessage",
    "VersionMessage",
]
