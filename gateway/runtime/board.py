# gateway/runtime/board.py
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from gateway.core.errors import BoardConnectError, BoardNotReadyError
from gateway.core.timers import TimerLedger
from gateway.protocol import firmata as fm
from gateway.protocol.parser import (
    AnalogMessage,
    DigitalPortMessage,
    FirmataParser,
    FirmwareMessage,
    StringMessage,
    VersionMessage,
)
from gateway.transport.base import StreamTransport


class RuntimeState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class BoardRuntime:
    """
    Firmata controller over an opened byte-stream transport.

    State machine: connecting -> ready -> closed (or connecting -> closed
    when the handshake fails). Leaving `ready` revokes every timer the owning
    board holds in the ledger, then fires the on_close callbacks once.

    Reads are report-driven: the first digital_read/analog_read of a pin turns
    on reporting for it and returns the last value the board sent (0 until the
    first report arrives).
    """

    HIGH = fm.HIGH
    LOW = fm.LOW
    INPUT = fm.INPUT
    OUTPUT = fm.OUTPUT
    ANALOG = fm.ANALOG
    PWM = fm.PWM
    SERVO = fm.SERVO
    INPUT_PULLUP = fm.INPUT_PULLUP
    MODES = dict(fm.MODES)

    #: members a control script may touch
    SCRIPT_EXPORTS = frozenset(
        {
            "HIGH", "LOW", "INPUT", "OUTPUT", "ANALOG", "PWM", "SERVO", "INPUT_PULLUP", "MODES",
            "ready", "board_id", "firmware",
            "pin_mode", "digital_write", "digital_read", "analog_write", "pwm_write",
            "analog_read", "servo_write", "servo_config", "report_analog", "report_digital",
            "set_sampling_interval",
            "pinMode", "digitalWrite", "digitalRead", "analogWrite", "pwmWrite", "analogRead", "servoWrite",
        }
    )

    def __init__(
        self,
        board_id: str,
        transport: StreamTransport,
        *,
        ledger: Optional[TimerLedger] = None,
        handshake: bool = True,
        handshake_timeout_s: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.board_id = str(board_id)
        self.transport = transport
        self.ledger = ledger
        self.handshake = handshake
        self.handshake_timeout_s = float(handshake_timeout_s)
        self._log = logger or logging.getLogger(__name__)

        self.state = RuntimeState.CONNECTING
        self.firmware: Dict[str, Any] = {}
        self.close_reason: Optional[str] = None

        self._parser = FirmataParser(logger=self._log)
        self._handshake_done: Optional[asyncio.Future] = None
        self._close_cbs: List[Callable[[Optional[str]], None]] = []
        self._unsubs: List[Callable[[], None]] = []

        self._modes: Dict[int, int] = {}
        self._port_out: Dict[int, int] = {}
        self._digital_in: Dict[int, int] = {}
        self._analog_in: Dict[int, int] = {}
        self._reporting_ports: set[int] = set()
        self._reporting_analog: set[int] = set()

    # ---------------- lifecycle ----------------

    @property
    def ready(self) -> bool:
        return self.state is RuntimeState.READY

    async def start(self) -> None:
        """Attach to the transport and run the firmware handshake."""
        if self.state is not RuntimeState.CONNECTING:
            return

        loop = asyncio.get_running_loop()
        self._handshake_done = loop.create_future()
        self._unsubs.append(self.transport.on_data(self._on_data))
        self._unsubs.append(self.transport.on_closed(self._on_transport_closed))

        self._send(fm.query_version())
        self._send(fm.query_firmware())

        if self.handshake:
            try:
                await asyncio.wait_for(asyncio.shield(self._handshake_done), timeout=self.handshake_timeout_s)
            except asyncio.TimeoutError:
                self._transition_closed("handshake timeout")
                raise BoardConnectError(
                    f"Board {self.board_id} did not answer the Firmata handshake "
                    f"via {self.transport.medium} at {self.transport.address}.",
                    hint=f"Check the board runs StandardFirmata (waited {self.handshake_timeout_s}s).",
                    details={"medium": self.transport.medium, "address": self.transport.address},
                ) from None

        if self.state is RuntimeState.CLOSED:
            raise BoardConnectError(
                f"Link to board {self.board_id} closed during handshake: {self.close_reason}.",
                details={"medium": self.transport.medium, "address": self.transport.address},
            )

        self.state = RuntimeState.READY
        self._log.info(
            "BOARD_READY id=%s medium=%s address=%s firmware=%s",
            self.board_id, self.transport.medium, self.transport.address, self.firmware.get("name", "-"),
        )

    def on_close(self, callback: Callable[[Optional[str]], None]) -> None:
        self._close_cbs.append(callback)

    def close(self, reason: str = "closed") -> None:
        """Detach from the transport (the transport itself is owned by the registry)."""
        self._transition_closed(reason)

    def _on_transport_closed(self, reason: Optional[str]) -> None:
        self._transition_closed(reason or "link closed")

    def _transition_closed(self, reason: str) -> None:
        if self.state is RuntimeState.CLOSED:
            return

        was_ready = self.state is RuntimeState.READY
        self.state = RuntimeState.CLOSED
        self.close_reason = reason

        for unsub in self._unsubs:
            unsub()
        self._unsubs.clear()

        if self._handshake_done is not None and not self._handshake_done.done():
            self._handshake_done.set_result(False)

        if was_ready and self.ledger is not None:
            self.ledger.revoke_all(self.board_id)

        self._log.info("BOARD_CLOSED id=%s reason=%s", self.board_id, reason)

        callbacks, self._close_cbs = self._close_cbs, []
        for cb in callbacks:
            try:
                cb(reason)
            except Exception:
                self._log.exception("BOARD_CLOSE_CALLBACK_ERROR id=%s", self.board_id)

    # ---------------- inbound ----------------

    def _on_data(self, data: bytes) -> None:
        self._parser.feed(data)
        for msg in self._parser.messages():
            self._handle(msg)

    def _handle(self, msg: Any) -> None:
        if isinstance(msg, DigitalPortMessage):
            base = msg.port * 8
            for bit in range(8):
                self._digital_in[base + bit] = (msg.mask >> bit) & 0x01
        elif isinstance(msg, AnalogMessage):
            self._analog_in[msg.channel] = msg.value
        elif isinstance(msg, FirmwareMessage):
            self.firmware = {"name": msg.name, "version": f"{msg.major}.{msg.minor}"}
            self._resolve_handshake()
        elif isinstance(msg, VersionMessage):
            self.firmware.setdefault("protocol", f"{msg.major}.{msg.minor}")
            self._resolve_handshake()
        elif isinstance(msg, StringMessage):
            self._log.info("BOARD_STRING id=%s text=%s", self.board_id, msg.text)

    def _resolve_handshake(self) -> None:
        fut = self._handshake_done
        if fut is not None and not fut.done():
            fut.set_result(True)

    # ---------------- primitives ----------------

    def _send(self, data: bytes) -> None:
        self.transport.write(data)

    def _require_ready(self) -> None:
        if not self.ready:
            raise BoardNotReadyError(
                f"Board {self.board_id} is not ready (state={self.state.value}).",
                details={"board_id": self.board_id, "state": self.state.value},
            )

    def _mode_value(self, mode: Union[int, str]) -> int:
        if isinstance(mode, str):
            key = mode.upper()
            if key not in self.MODES:
                raise ValueError(f"Unknown pin mode '{mode}'")
            return self.MODES[key]
        return int(mode)

    def pin_mode(self, pin: int, mode: Union[int, str]) -> None:
        self._require_ready()
        value = self._mode_value(mode)
        self._send(fm.set_pin_mode(pin, value))
        self._modes[pin] = value

    def digital_write(self, pin: int, value: Any) -> None:
        self._require_ready()
        port, bit = divmod(int(pin), 8)
        mask = self._port_out.get(port, 0)
        mask = mask | (1 << bit) if value else mask & ~(1 << bit)
        self._port_out[port] = mask
        self._send(fm.digital_port_write(port, mask))

    def digital_read(self, pin: int) -> int:
        self._require_ready()
        port = int(pin) // 8
        if port not in self._reporting_ports:
            self._send(fm.report_digital(port, True))
            self._reporting_ports.add(port)
        return self._digital_in.get(int(pin), 0)

    def analog_write(self, pin: int, value: Any) -> None:
        self._require_ready()
        self._send(fm.analog_write(pin, max(0, int(value))))

    pwm_write = analog_write

    def analog_read(self, channel: int) -> int:
        self._require_ready()
        channel = int(channel)
        if channel not in self._reporting_analog:
            self._send(fm.report_analog(channel, True))
            self._reporting_analog.add(channel)
        return self._analog_in.get(channel, 0)

    def servo_config(self, pin: int, min_pulse: int = 544, max_pulse: int = 2400) -> None:
        self._require_ready()
        self._send(fm.servo_config(pin, min_pulse, max_pulse))

    def servo_write(self, pin: int, angle: Any) -> None:
        self._require_ready()
        if self._modes.get(pin) != fm.SERVO:
            self.pin_mode(pin, fm.SERVO)
        self._send(fm.analog_write(pin, max(0, min(180, int(angle)))))

    def report_analog(self, channel: int, enabled: bool = True) -> None:
        self._require_ready()
        self._send(fm.report_analog(int(channel), enabled))
        (self._reporting_analog.add if enabled else self._reporting_analog.discard)(int(channel))

    def report_digital(self, port: int, enabled: bool = True) -> None:
        self._require_ready()
        self._send(fm.report_digital(int(port), enabled))
        (self._reporting_ports.add if enabled else self._reporting_ports.discard)(int(port))

    def set_sampling_interval(self, ms: int) -> None:
        self._require_ready()
        self._send(fm.sampling_interval(int(ms)))

    # camelCase aliases for scripts written against the JS board API
    pinMode = pin_mode
    digitalWrite = digital_write
    digitalRead = digital_read
    analogWrite = analog_write
    pwmWrite = analog_write
    analogRead = analog_read
    servoWrite = servo_write

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "firmware": dict(self.firmware),
            "modes": dict(self._modes),
            "close_reason": self.close_reason,
        }
