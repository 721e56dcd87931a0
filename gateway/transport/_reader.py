# gateway/transport/_reader.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional


class SerialReader(threading.Thread):
    """
    Daemon thread that blocks on a pyserial handle and hands every chunk to
    `on_chunk`; a read failure is reported once through `on_error` and ends
    the thread.
    """

    def __init__(
        self,
        read: Callable[[], bytes],
        on_chunk: Callable[[bytes], None],
        on_error: Callable[[Exception], None],
        *,
        name: str = "serial-reader",
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(daemon=True, name=name)
        self._read = read
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._stop_event = threading.Event()
        self._log = logger or logging.getLogger(__name__)

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                chunk = self._read()
            except Exception as e:
                if not self._stop_event.is_set():
                    self._log.warning("SERIAL_READER_ERROR thread=%s err=%s", self.name, e)
                    self._on_error(e)
                return

            if chunk:
                self._on_chunk(chunk)

    def stop(self) -> None:
        self._stop_event.set()
