# gateway/transport/tcp_server.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .base import AdapterContext, StreamTransport
from .errors import TransportClosedError, TransportIOError, TransportTimeoutError

READ_CHUNK = 4096


class TcpServerTransport(StreamTransport):
    """
    Ethernet board link: a listening server on the board's declared port.

    The first inbound connection becomes the board's byte stream; later
    connections are refused while it is alive. When the peer closes, the
    listener is torn down and the socket released before on_closed fires.
    """

    medium = "ethernet"

    def __init__(
        self,
        port: int,
        host: str = "0.0.0.0",
        accept_timeout_s: float = 30.0,
        *,
        context: Optional[AdapterContext] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(context=context, logger=logger)
        self.host = host
        self.port = int(port)
        self.accept_timeout_s = float(accept_timeout_s)
        self._server: Optional[asyncio.AbstractServer] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._accepted: Optional[asyncio.Future] = None
        self._peer: Optional[str] = None
        self._tearing_down = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def peer(self) -> Optional[str]:
        return self._peer

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def listening(self) -> bool:
        return self._server is not None

    async def open(self) -> None:
        if self.is_open:
            return

        self._reset_closed_state()
        self._tearing_down = False
        loop = asyncio.get_running_loop()
        self._accepted = loop.create_future()

        try:
            self._server = await asyncio.start_server(self._on_client, self.host, self.port)
        except OSError as e:
            self._server = None
            raise self._open_error(e) from e

        self._log.info("TCP_LISTENING address=%s accept_timeout_s=%.1f", self.address, self.accept_timeout_s)

        try:
            await asyncio.wait_for(asyncio.shield(self._accepted), timeout=self.accept_timeout_s)
        except asyncio.TimeoutError:
            await self._teardown(None)
            raise self._open_error(
                f"no board connected within {self.accept_timeout_s}s",
                cls=TransportTimeoutError,
            ) from None
        except asyncio.CancelledError:
            await self._teardown(None)
            raise

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        if self._writer is not None or self._accepted is None or self._accepted.done():
            self._log.warning("TCP_EXTRA_CONNECTION_REFUSED address=%s peer=%s", self.address, peer)
            writer.close()
            return

        self._reader, self._writer = reader, writer
        self._peer = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) else str(peer)
        self._accepted.set_result(True)
        self._log.info("TCP_BOARD_CONNECTED address=%s peer=%s", self.address, self._peer)

        reason = "peer closed"
        try:
            while True:
                data = await reader.read(READ_CHUNK)
                if not data:
                    break
                self._dispatch_data(data)
        except (ConnectionError, OSError) as e:
            reason = f"socket error: {e}"
        finally:
            if not self._tearing_down:
                await self._teardown(reason)

    async def _teardown(self, reason: Optional[str]) -> None:
        if self._tearing_down:
            return
        self._tearing_down = True

        writer, self._writer = self._writer, None
        self._reader = None
        server, self._server = self._server, None

        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

        if server is not None:
            server.close()
            await server.wait_closed()

        if self._accepted is not None and not self._accepted.done():
            self._accepted.cancel()

        if reason is not None:
            self._notify_closed(reason)

    async def close(self) -> None:
        if self._server is None and self._writer is None:
            return
        await self._teardown("closed")

    def write(self, data: bytes) -> int:
        writer = self._writer
        if writer is None or writer.is_closing():
            raise TransportClosedError(
                f"write on closed {self.medium} link {self.address}",
                medium=self.medium,
                address=self.address,
            )
        try:
            writer.write(data)
        except (ConnectionError, OSError) as e:
            raise TransportIOError(
                f"{self.medium} write failed at {self.address}: {e}",
                medium=self.medium,
                address=self.address,
            ) from e
        return len(data)

    def status(self) -> dict:
        out = super().status()
        out["peer"] = self._peer
        out["listening"] = self.listening
        return out
