# gateway/transport/serial_port.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import serial
from serial import SerialException

from ._reader import SerialReader
from .base import AdapterContext, StreamTransport
from .errors import TransportClosedError, TransportIOError, TransportTimeoutError


class SerialTransport(StreamTransport):
    """
    USB serial transport implemented via pyserial.

    A daemon reader thread blocks on the port and hands bytes to the event
    loop with call_soon_threadsafe; a read failure (cable pulled) closes the
    port and fires on_closed once.
    """

    medium = "serial"

    def __init__(
        self,
        port: str,
        baudrate: int = 57600,
        timeout: float = 0.05,
        *,
        open_timeout_s: float = 5.0,
        context: Optional[AdapterContext] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(context=context, logger=logger)
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.open_timeout_s = open_timeout_s
        self.ser: Optional[serial.Serial] = None
        self._reader: Optional[SerialReader] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def address(self) -> str:
        return str(self.port)

    @property
    def is_open(self) -> bool:
        return self.ser is not None and bool(getattr(self.ser, "is_open", True))

    def _create_serial(self) -> serial.Serial:
        return serial.Serial(
            self.port,
            baudrate=self.baudrate,
            timeout=self.timeout,
            write_timeout=self.timeout,
        )

    async def open(self) -> None:
        if self.is_open:
            return

        self._loop = asyncio.get_running_loop()
        self._reset_closed_state()

        fut = self._loop.run_in_executor(None, self._create_serial)
        done, _ = await asyncio.wait({fut}, timeout=self.open_timeout_s)
        if not done:
            # the executor thread may still finish opening; release it when it does
            fut.add_done_callback(self._close_late_handle)
            raise self._open_error(f"no answer within {self.open_timeout_s}s", cls=TransportTimeoutError)

        try:
            ser = fut.result()
        except (SerialException, OSError, ValueError) as e:
            self.ser = None
            raise self._open_error(e) from e

        try:
            ser.reset_input_buffer()
            ser.reset_output_buffer()
        except (SerialException, OSError) as e:
            ser.close()
            raise self._open_error(e) from e

        self.ser = ser
        self._start_reader(ser)
        self._log.info("SERIAL_OPEN medium=%s address=%s baudrate=%s", self.medium, self.address, self.baudrate)

    def _start_reader(self, ser: serial.Serial) -> None:
        loop = self._loop
        assert loop is not None

        def _read() -> bytes:
            waiting = getattr(ser, "in_waiting", 0) or 1
            return ser.read(waiting)

        self._reader = SerialReader(
            _read,
            on_chunk=lambda chunk: loop.call_soon_threadsafe(self._dispatch_data, chunk),
            on_error=lambda err: loop.call_soon_threadsafe(self._on_link_lost, err),
            name=f"serial-reader-{self.address}",
            logger=self._log,
        )
        self._reader.start()

    def _on_link_lost(self, err: Exception) -> None:
        if self.ser is None:
            return
        self._release()
        self._notify_closed(f"read failed: {err}")

    def _release(self) -> None:
        reader, self._reader = self._reader, None
        ser, self.ser = self.ser, None

        if reader is not None:
            reader.stop()
        if ser is not None:
            try:
                ser.close()
            except (SerialException, OSError):
                self._log.warning("SERIAL_CLOSE_FAILED address=%s", self.address)
        if reader is not None and reader.is_alive():
            reader.join(timeout=1.0)

    def _close_late_handle(self, fut: "asyncio.Future") -> None:
        if fut.cancelled() or fut.exception() is not None:
            return
        try:
            fut.result().close()
        except (SerialException, OSError):
            self._log.warning("SERIAL_LATE_CLOSE_FAILED medium=%s address=%s", self.medium, self.address)

    async def close(self) -> None:
        if self.ser is None and self._reader is None:
            return
        self._release()
        self._notify_closed("closed")

    def write(self, data: bytes) -> int:
        if self.ser is None:
            raise TransportClosedError(
                f"write on closed {self.medium} link {self.address}",
                medium=self.medium,
                address=self.address,
            )
        try:
            return self.ser.write(data)
        except SerialException as e:
            raise TransportIOError(
                f"{self.medium} write failed at {self.address}: {e}",
                medium=self.medium,
                address=self.address,
            ) from e