# gateway/transport/virtual_serial.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import serial
from serial import SerialException

from .base import AdapterContext
from .serial_port import SerialTransport


class VirtualSerialTransport(SerialTransport):
    """
    WiFi-bridged board seen as a local virtual serial endpoint.

    The endpoint is pyserial's `socket://host:port` URL handler, so the board
    runtime speaks to it exactly like a USB port. When `bridge_port` is set the
    physical USB port of the bridge adapter is held open for the lifetime of
    the link and is closed together with the virtual endpoint.
    """

    medium = "wifi"

    def __init__(
        self,
        host: str,
        port: int = 3030,
        bridge_port: Optional[str] = None,
        baudrate: int = 57600,
        connect_timeout_s: float = 5.0,
        *,
        context: Optional[AdapterContext] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(
            port=f"socket://{host}:{int(port)}",
            baudrate=baudrate,
            open_timeout_s=connect_timeout_s,
            context=context,
            logger=logger,
        )
        self.host = host
        self.tcp_port = int(port)
        self.bridge_port = bridge_port
        self.bridge: Optional[serial.Serial] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.tcp_port}"

    def _create_serial(self) -> serial.Serial:
        if self.bridge_port:
            self.bridge = serial.Serial(self.bridge_port, baudrate=self.baudrate, timeout=self.timeout)

        try:
            return serial.serial_for_url(self.port, baudrate=self.baudrate, timeout=self.timeout)
        except (SerialException, OSError, ValueError):
            self._close_bridge()
            raise

    async def open(self) -> None:
        try:
            await super().open()
        except Exception:
            self._close_bridge()
            raise

    def _close_late_handle(self, fut: "asyncio.Future") -> None:
        super()._close_late_handle(fut)
        # the bridge may have been opened after open() already gave up
        if not self.is_open:
            self._close_bridge()

    def _release(self) -> None:
        try:
            super()._release()
        finally:
            self._close_bridge()

    def _close_bridge(self) -> None:
        bridge, self.bridge = self.bridge, None
        if bridge is None:
            return
        try:
            bridge.close()
        except (SerialException, OSError):
            self._log.warning("BRIDGE_CLOSE_FAILED bridge_port=%s", self.bridge_port)

    def status(self) -> dict:
        out = super().status()
        out["bridge_port"] = self.bridge_port
        return out
