# gateway/core/timers.py
from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

TIMEOUT = "timeout"
INTERVAL = "interval"

_ids = itertools.count(1)


@dataclass(eq=False)
class TimerHandle:
    """
    One scheduled callback owned by a board id.

    Handles compare by identity; the ledger keeps them in per-owner sets.
    """
    owner_id: str
    kind: str
    delay_s: float
    callback: Callable[..., Any]
    args: tuple = ()
    id: int = field(default_factory=lambda: next(_ids))
    fired: int = 0
    cancelled: bool = False
    _loop_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return not self.cancelled and self._loop_handle is not None

    def _cancel(self) -> None:
        self.cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
            self._loop_handle = None


class TimerLedger:
    """
    Owner-keyed registry of every timer and background task created on behalf
    of a board script.

    The ledger is the only component that schedules or cancels script timers:
      - schedule() / set_timeout() / set_interval() register under an owner id
      - revoke_all(owner) cancels everything the owner holds and drops the entry
      - a one-shot timeout leaves the ledger as soon as it fires
      - spawn(owner, coro) tracks script-initiated I/O tasks the same way

    Callback errors are logged and never propagate into the event loop;
    an interval keeps running after a failing tick.
    """

    def __init__(
        self,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        min_interval_s: float = 0.01,
        logger: Optional[logging.Logger] = None,
    ):
        self._loop = loop
        self._min_interval_s = float(min_interval_s)
        self._timers: Dict[str, Set[TimerHandle]] = {}
        self._tasks: Dict[str, Set[asyncio.Task]] = {}
        self._log = logger or logging.getLogger(__name__)

    # ---------------- scheduling ----------------

    def schedule(
        self,
        owner_id: str,
        kind: str,
        delay_s: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> TimerHandle:
        if kind not in (TIMEOUT, INTERVAL):
            raise ValueError(f"Unknown timer kind '{kind}'")
        if not callable(callback):
            raise TypeError("Timer callback must be callable")
        if isinstance(delay_s, bool) or not isinstance(delay_s, (int, float)):
            raise ValueError(f"Timer delay must be a number, got {type(delay_s).__name__}")
        if delay_s < 0:
            raise ValueError(f"Timer delay must be >= 0, got {delay_s}")

        delay = float(delay_s)
        if kind == INTERVAL:
            delay = max(delay, self._min_interval_s)

        handle = TimerHandle(owner_id=str(owner_id), kind=kind, delay_s=delay, callback=callback, args=args)
        self._timers.setdefault(handle.owner_id, set()).add(handle)
        self._arm(handle)

        self._log.debug(
            "TIMER_SCHEDULED owner=%s kind=%s delay_s=%.3f id=%s",
            handle.owner_id, kind, delay, handle.id,
        )
        return handle

    def set_timeout(self, owner_id: str, delay_s: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.schedule(owner_id, TIMEOUT, delay_s, callback, *args)

    def set_interval(self, owner_id: str, delay_s: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.schedule(owner_id, INTERVAL, delay_s, callback, *args)

    def spawn(self, owner_id: str, coro: Awaitable[Any]) -> asyncio.Task:
        """Run `coro` as a task attributed to `owner_id` (cancelled by revoke_all)."""
        owner_id = str(owner_id)
        task = self._get_loop().create_task(coro)
        self._tasks.setdefault(owner_id, set()).add(task)
        task.add_done_callback(lambda t: self._task_done(owner_id, t))
        return task

    # ---------------- cancellation ----------------

    def cancel(self, owner_id: str, handle: TimerHandle) -> bool:
        """Cancel one handle, only if it belongs to `owner_id`."""
        owner_id = str(owner_id)
        entry = self._timers.get(owner_id)
        if not entry or handle not in entry:
            return False

        handle._cancel()
        entry.discard(handle)
        self._drop_if_empty(owner_id)
        return True

    def revoke_all(self, owner_id: str) -> int:
        """
        Cancel and forget every timer and task held by `owner_id`.

        Idempotent; returns the number of cancelled items (0 for unknown owners).
        """
        owner_id = str(owner_id)
        timers = self._timers.pop(owner_id, set())
        tasks = self._tasks.pop(owner_id, set())

        for h in timers:
            h._cancel()
        for t in tasks:
            t.cancel()

        count = len(timers) + len(tasks)
        if count:
            self._log.info("TIMERS_REVOKED owner=%s timers=%d tasks=%d", owner_id, len(timers), len(tasks))
        return count

    def revoke_everything(self) -> int:
        total = 0
        for owner_id in self.owners():
            total += self.revoke_all(owner_id)
        return total

    # ---------------- introspection ----------------

    def has_entry(self, owner_id: str) -> bool:
        owner_id = str(owner_id)
        return owner_id in self._timers or owner_id in self._tasks

    def owners(self) -> list[str]:
        return sorted(set(self._timers) | set(self._tasks))

    def active_count(self, owner_id: str) -> Dict[str, int]:
        timers = self._timers.get(str(owner_id), set())
        return {
            "timeouts": sum(1 for h in timers if h.kind == TIMEOUT),
            "intervals": sum(1 for h in timers if h.kind == INTERVAL),
            "tasks": len(self._tasks.get(str(owner_id), set())),
        }

    def handles(self, owner_id: str) -> list[TimerHandle]:
        return sorted(self._timers.get(str(owner_id), set()), key=lambda h: h.id)

    # ---------------- internals ----------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _arm(self, handle: TimerHandle) -> None:
        handle._loop_handle = self._get_loop().call_later(handle.delay_s, self._fire, handle)

    def _fire(self, handle: TimerHandle) -> None:
        if handle.cancelled:
            return

        handle._loop_handle = None
        handle.fired += 1

        if handle.kind == TIMEOUT:
            entry = self._timers.get(handle.owner_id)
            if entry is not None:
                entry.discard(handle)
                self._drop_if_empty(handle.owner_id)

        try:
            result = handle.callback(*handle.args)
            if inspect.isawaitable(result):
                self.spawn(handle.owner_id, result)
        except Exception:
            self._log.exception(
                "TIMER_CALLBACK_ERROR owner=%s kind=%s id=%s",
                handle.owner_id, handle.kind, handle.id,
            )

        # the callback may have cleared its own interval or revoked the owner
        if handle.kind == INTERVAL and not handle.cancelled and handle in self._timers.get(handle.owner_id, ()):
            self._arm(handle)

    def _task_done(self, owner_id: str, task: asyncio.Task) -> None:
        entry = self._tasks.get(owner_id)
        if entry is not None:
            entry.discard(task)
            if not entry:
                self._tasks.pop(owner_id, None)

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("TIMER_TASK_ERROR owner=%s err=%r", owner_id, exc)

    def _drop_if_empty(self, owner_id: str) -> None:
        if not self._timers.get(owner_id):
            self._timers.pop(owner_id, None)
