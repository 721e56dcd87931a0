# gateway/script/context.py
"""
Capability objects injected into a board script.

Everything a script can reach from the outside world goes through one of
these: the variable proxy (varG), the ledger-backed timer primitives and the
HTTP/MQTT device facades. Timers and device I/O tasks are registered in the
TimerLedger under the board id, so revoke_all(board_id) cancels all of them.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from gateway.core.timers import TimerHandle, TimerLedger
from gateway.core.variables import ProjectVariables


class VariableProxy:
    """
    `varG` in scripts: attribute and item access onto one project partition.

    Reading an unknown name gives None.
    """

    __slots__ = ("_partition",)

    def __init__(self, partition: ProjectVariables):
        object.__setattr__(self, "_partition", partition)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._partition.read(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            raise AttributeError(f"Variable names cannot start with '_': {name}")
        self._partition.write(name, value)

    def __getitem__(self, name: str) -> Any:
        return self._partition.read(str(name))

    def __setitem__(self, name: str, value: Any) -> None:
        self.__setattr__(str(name), value)

    def __contains__(self, name: str) -> bool:
        return name in self._partition

    def __repr__(self) -> str:
        return f"<varG project={self._partition.project_id}>"


class ScriptTimers:
    """set_timeout / set_interval / clear_timer bound to one owner id. Delays in ms."""

    def __init__(self, owner_id: str, ledger: TimerLedger):
        self.owner_id = str(owner_id)
        self.ledger = ledger

    @staticmethod
    def _seconds(ms: Any) -> float:
        if isinstance(ms, bool) or not isinstance(ms, (int, float)):
            raise ValueError(f"Timer delay must be a number of milliseconds, got {type(ms).__name__}")
        return float(ms) / 1000.0

    def set_timeout(self, fn: Callable[..., Any], ms: Any = 0, *args: Any) -> TimerHandle:
        return self.ledger.set_timeout(self.owner_id, self._seconds(ms), fn, *args)

    def set_interval(self, fn: Callable[..., Any], ms: Any, *args: Any) -> TimerHandle:
        return self.ledger.set_interval(self.owner_id, self._seconds(ms), fn, *args)

    def clear_timer(self, handle: Any) -> bool:
        if not isinstance(handle, TimerHandle):
            return False
        return self.ledger.cancel(self.owner_id, handle)

    def names(self) -> Dict[str, Callable[..., Any]]:
        return {
            "set_timeout": self.set_timeout,
            "set_interval": self.set_interval,
            "clear_timer": self.clear_timer,
            "clear_timeout": self.clear_timer,
            "clear_interval": self.clear_timer,
            "setTimeout": self.set_timeout,
            "setInterval": self.set_interval,
            "clearTimeout": self.clear_timer,
            "clearInterval": self.clear_timer,
        }


class _DeviceFacade:
    """Shared plumbing: fire-and-forget I/O tasks owned by the board in the ledger."""

    SCRIPT_EXPORTS: frozenset = frozenset()

    def __init__(self, owner_id: str, transport: Any, ledger: TimerLedger, *, logger: Optional[logging.Logger] = None):
        self._owner_id = str(owner_id)
        self._transport = transport
        self._ledger = ledger
        self._log = logger or logging.getLogger(__name__)

    def _spawn(self, op: str, coro: Awaitable[Any], callback: Optional[Callable[[Any], Any]] = None) -> asyncio.Task:
        task = self._ledger.spawn(self._owner_id, coro)

        def _done(t: asyncio.Task) -> None:
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._log.warning("SCRIPT_DEVICE_OP_FAILED owner=%s op=%s err=%s", self._owner_id, op, exc)
                return
            if callback is None:
                return
            try:
                callback(t.result())
            except Exception:
                self._log.exception("SCRIPT_DEVICE_CALLBACK_ERROR owner=%s op=%s", self._owner_id, op)

        task.add_done_callback(_done)
        return task

    @property
    def address(self) -> str:
        return self._transport.address


class HttpDeviceFacade(_DeviceFacade):
    """
    `device` for HTTP-polled boards.

    Calls return immediately; results are written into varG by the adapter and,
    when given, passed to `callback` once the request completes.
    """

    SCRIPT_EXPORTS = frozenset(
        {
            "address", "refresh", "get", "set_variable", "available_variables", "ping",
            "getVariables", "setVariable", "getAvailableVariables",
        }
    )

    def refresh(self, callback: Optional[Callable[[Any], Any]] = None, force: bool = False) -> None:
        self._spawn("get_variables", self._transport.get_variables(force=force), callback)

    def get(self, name: str, default: Any = None) -> Any:
        ctx = self._transport.context
        if ctx is None or ctx.variables is None:
            return default
        return ctx.variables.read(ctx.project_id, name, default)

    def set_variable(self, name: str, value: Any, callback: Optional[Callable[[Any], Any]] = None) -> None:
        self._spawn("set_variable", self._transport.set_variable(str(name), value), callback)

    def available_variables(self, callback: Optional[Callable[[Any], Any]] = None) -> None:
        self._spawn("get_available_variables", self._transport.get_available_variables(), callback)

    def ping(self, callback: Optional[Callable[[Any], Any]] = None) -> None:
        self._spawn("ping", self._transport.ping(), callback)

    getVariables = refresh
    setVariable = set_variable
    getAvailableVariables = available_variables


class MqttDeviceFacade(_DeviceFacade):
    """
    `device` for MQTT boards.

    subscribe(topic, listener): listener is a varG name (payload stored there)
    or a function called as listener(topic, value).
    """

    SCRIPT_EXPORTS = frozenset({"address", "subscribe", "publish", "clear_listeners", "topics"})

    def subscribe(self, topic: str, listener: Any) -> None:
        if not isinstance(listener, str) and not callable(listener):
            raise TypeError("MQTT listener must be a variable name or a function")
        self._spawn(f"subscribe:{topic}", self._transport.subscribe(str(topic), listener))

    def publish(self, topic: str, payload: Any, qos: int = 0, retain: bool = False) -> None:
        self._spawn(f"publish:{topic}", self._transport.publish(str(topic), payload, qos=qos, retain=retain))

    def clear_listeners(self) -> None:
        self._spawn("clear_listeners", self._transport.clear_listeners())

    @property
    def topics(self) -> list:
        return list(self._transport.topics)


_START = time.monotonic()


def timestamp() -> float:
    """Wall-clock seconds since the epoch."""
    return time.time()


def millis() -> int:
    """Milliseconds since the gateway process started (Arduino-style)."""
    return int((time.monotonic() - _START) * 1000)
