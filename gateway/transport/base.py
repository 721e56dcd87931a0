# gateway/transport/base.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from .errors import TransportOpenError

ClosedCallback = Callable[[Optional[str]], None]
DataCallback = Callable[[bytes], None]


@dataclass(frozen=True)
class AdapterContext:
    """
    Board-side facts an adapter may need beyond its connection params:
    who owns it and which variable partition ingested values land in.
    """
    board_id: str
    project_id: str = ""
    variables: Any = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def ingest(self, values: Mapping[str, Any]) -> None:
        if self.variables is not None and self.project_id:
            self.variables.update(self.project_id, values)

    def ingest_one(self, name: str, value: Any) -> None:
        if self.variables is not None and self.project_id:
            self.variables.write(self.project_id, name, value)


class Transport(ABC):
    """
    Abstract async transport (serial, virtual serial, TCP, HTTP, MQTT).

    Contract:
      - open() completes once the medium handshake completes; on failure it
        raises TransportOpenError naming the medium + address and leaves no
        OS resource behind.
      - close() is idempotent and releases OS resources before returning.
      - on_closed(cb) callbacks run exactly once, when the medium reports a
        disconnect or when close() tears the link down, whichever is first.
    """

    medium: str = "unknown"

    def __init__(self, *, context: Optional[AdapterContext] = None, logger: Optional[logging.Logger] = None):
        self.context = context
        self._log = logger or logging.getLogger(self.__class__.__module__)
        self._closed_cbs: List[ClosedCallback] = []
        self._closed_notified = False

    @property
    @abstractmethod
    def address(self) -> str: ...

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    def on_closed(self, callback: ClosedCallback) -> Callable[[], None]:
        self._closed_cbs.append(callback)

        def _unsubscribe() -> None:
            try:
                self._closed_cbs.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def status(self) -> dict:
        return {"medium": self.medium, "address": self.address, "open": self.is_open}

    # ---------------- helpers for adapters ----------------

    def _notify_closed(self, reason: Optional[str] = None) -> None:
        if self._closed_notified:
            return
        self._closed_notified = True
        self._log.info("TRANSPORT_CLOSED medium=%s address=%s reason=%s", self.medium, self.address, reason)

        for cb in list(self._closed_cbs):
            try:
                cb(reason)
            except Exception:
                self._log.exception("TRANSPORT_CLOSED_CALLBACK_ERROR medium=%s", self.medium)
        self._closed_cbs.clear()

    def _reset_closed_state(self) -> None:
        self._closed_notified = False

    def _open_error(self, cause: Any, *, cls: type[TransportOpenError] = TransportOpenError) -> TransportOpenError:
        return cls(
            f"{self.medium} open failed at {self.address}: {cause}",
            medium=self.medium,
            address=self.address,
        )

    async def __aenter__(self) -> "Transport":
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.close()


class StreamTransport(Transport):
    """
    Byte-stream transport (the medium a Firmata board runtime speaks over).

    Incoming bytes are delivered on the event loop thread to on_data() callbacks.
    """

    def __init__(self, *, context: Optional[AdapterContext] = None, logger: Optional[logging.Logger] = None):
        super().__init__(context=context, logger=logger)
        self._data_cbs: List[DataCallback] = []

    @abstractmethod
    def write(self, data: bytes) -> int: ...

    def on_data(self, callback: DataCallback) -> Callable[[], None]:
        self._data_cbs.append(callback)

        def _unsubscribe() -> None:
            try:
                self._data_cbs.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def _dispatch_data(self, data: bytes) -> None:
        for cb in list(self._data_cbs):
            try:
                cb(data)
            except Exception:
                self._log.exception("TRANSPORT_DATA_CALLBACK_ERROR medium=%s", self.medium)
