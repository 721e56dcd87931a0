# gateway/transport/http_device.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp

from .base import AdapterContext, Transport
from .errors import TransportClosedError, TransportIOError
from .retry import RetryPolicy, Throttle

SessionFactory = Callable[[], aiohttp.ClientSession]


class HttpDeviceTransport(Transport):
    """
    Polled HTTP link to an ESP32 running the API server sketch.

    There is no persistent connection: open() validates parameters, primes
    the project's variable partition and creates the client session. Every
    request on the link goes through one Throttle (minimum spacing) and the
    RetryPolicy (bounded exponential backoff + jitter).

    Wire format:
        GET  /values?serverAPIKey=K     -> {"values": {name: value, ...}}
        GET  /variables?serverAPIKey=K  -> {"variables": [{...}, ...]}
        POST /set {serverAPIKey, variable, value} -> {"success": true}
        GET  /status?serverAPIKey=K     -> any 200 answer

    Reads are cached for `cache_ttl_s`; concurrent reads share one in-flight
    request. Exhausted reads fall back to the last cached values (or the
    partition snapshot); exhausted writes return False. Cancelled requests
    are never retried and never touch the cache.
    """

    medium = "http"

    def __init__(
        self,
        ip: str,
        serverAPIKey: str,
        port: int = 80,
        *,
        request_timeout_s: float = 3.0,
        throttle_s: float = 0.2,
        cache_ttl_s: float = 0.5,
        retry: Optional[RetryPolicy] = None,
        retry_attempts: int = 3,
        retry_base_delay_s: float = 0.2,
        retry_max_delay_s: float = 2.0,
        session_factory: Optional[SessionFactory] = None,
        clock: Callable[[], float] = time.monotonic,
        context: Optional[AdapterContext] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(context=context, logger=logger)
        self.ip = ip
        self.port = int(port)
        self.server_api_key = serverAPIKey
        self.request_timeout_s = float(request_timeout_s)
        self.cache_ttl_s = float(cache_ttl_s)
        self.retry = retry or RetryPolicy(
            attempts=retry_attempts,
            base_delay_s=retry_base_delay_s,
            max_delay_s=retry_max_delay_s,
        )
        self._throttle = Throttle(throttle_s, clock=clock)
        self._clock = clock
        self._session_factory = session_factory or self._default_session
        self._session: Optional[aiohttp.ClientSession] = None
        self._opened = False

        self._cache: Optional[Dict[str, Any]] = None
        self._cache_at: float = 0.0
        self._available: Optional[List[Any]] = None
        self._read_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self.requests_sent = 0

    # ---------------- Transport contract ----------------

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> None:
        if self._opened:
            return
        if not self.ip or not self.server_api_key:
            raise self._open_error("ip and serverAPIKey are required")

        self._reset_closed_state()
        if self.context is not None:
            self.context.ingest({})

        self._session = self._session_factory()
        self._opened = True
        self._log.info("HTTP_DEVICE_CONFIGURED address=%s", self.address)

    async def close(self) -> None:
        if not self._opened and self._session is None:
            return
        self._opened = False
        self.cancel_inflight()

        session, self._session = self._session, None
        if session is not None:
            await session.close()
        self._notify_closed("closed")

    def cancel_inflight(self) -> int:
        tasks = [t for t in self._inflight if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            self._log.info("HTTP_REQUESTS_CANCELLED address=%s count=%d", self.address, len(tasks))
        return len(tasks)

    def status(self) -> dict:
        out = super().status()
        out.update(
            {
                "requests_sent": self.requests_sent,
                "inflight": sum(1 for t in self._inflight if not t.done()),
                "cached": self._cache is not None,
            }
        )
        return out

    # ---------------- device operations ----------------

    async def get_variables(self, *, force: bool = False) -> Dict[str, Any]:
        """Current device values (cached for cache_ttl_s, best effort on failure)."""
        if not force and self._cache_fresh():
            return dict(self._cache or {})

        if self._read_task is None or self._read_task.done():
            self._read_task = self._track(self._fetch_values())

        try:
            values = await asyncio.shield(self._read_task)
        except TransportIOError as e:
            self._log.warning("HTTP_READ_FALLBACK address=%s err=%s", self.address, e)
            return self._fallback_values()
        return dict(values)

    async def set_variable(self, variable: str, value: Any) -> bool:
        if not variable:
            raise ValueError("Variable name is required")

        payload = {"serverAPIKey": self.server_api_key, "variable": variable, "value": value}
        try:
            data = await self._track(self._request("POST", "/set", json=payload))
        except TransportIOError as e:
            self._log.warning("HTTP_SET_FAILED address=%s variable=%s err=%s", self.address, variable, e)
            return False

        ok = isinstance(data, dict) and bool(data.get("success"))
        if not ok:
            message = data.get("message") if isinstance(data, dict) else None
            self._log.warning("HTTP_SET_REJECTED address=%s variable=%s message=%s", self.address, variable, message)
            return False

        if self._cache is not None:
            self._cache[variable] = value
        if self.context is not None:
            self.context.ingest_one(variable, value)
        return True

    async def get_available_variables(self) -> List[Any]:
        try:
            data = await self._track(
                self._request("GET", "/variables", params={"serverAPIKey": self.server_api_key})
            )
        except TransportIOError as e:
            self._log.warning("HTTP_VARIABLES_FALLBACK address=%s err=%s", self.address, e)
            return list(self._available or [])

        variables = data.get("variables") if isinstance(data, dict) else None
        if not isinstance(variables, list):
            return list(self._available or [])
        self._available = list(variables)
        return list(variables)

    async def ping(self) -> bool:
        try:
            await self._track(self._request("GET", "/status", params={"serverAPIKey": self.server_api_key}))
        except TransportIOError:
            return False
        return True

    # ---------------- internals ----------------

    def _default_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.request_timeout_s))

    def _cache_fresh(self) -> bool:
        return self._cache is not None and (self._clock() - self._cache_at) < self.cache_ttl_s

    def _fallback_values(self) -> Dict[str, Any]:
        if self._cache is not None:
            return dict(self._cache)
        ctx = self.context
        if ctx is not None and ctx.variables is not None and ctx.project_id:
            return ctx.variables.snapshot(ctx.project_id)
        return {}

    def _track(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _fetch_values(self) -> Dict[str, Any]:
        data = await self._request("GET", "/values", params={"serverAPIKey": self.server_api_key})
        values = data.get("values") if isinstance(data, dict) else None
        if not isinstance(values, dict):
            raise TransportIOError(
                f"{self.medium} device at {self.address} answered without 'values'",
                medium=self.medium,
                address=self.address,
            )

        self._cache = dict(values)
        self._cache_at = self._clock()
        if self.context is not None:
            self.context.ingest(values)
        return values

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.retry.attempts + 1):
            await self._throttle.wait()
            try:
                return await self._send(method, path, **kwargs)
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                self._log.warning(
                    "HTTP_REQUEST_FAILED address=%s %s %s attempt=%d/%d err=%r",
                    self.address, method, path, attempt, self.retry.attempts, e,
                )
                # a 4xx answer (wrong serverAPIKey, unknown route) will not change on retry
                if isinstance(e, aiohttp.ClientResponseError) and e.status < 500:
                    raise TransportIOError(
                        f"{self.medium} {method} {path} rejected by {self.address} with HTTP {e.status}: {e.message}",
                        medium=self.medium,
                        address=self.address,
                    ) from e
                if attempt < self.retry.attempts:
                    await asyncio.sleep(self.retry.delay(attempt))

        raise TransportIOError(
            f"{self.medium} {method} {path} failed at {self.address} after {self.retry.attempts} attempts: {last_error}",
            medium=self.medium,
            address=self.address,
        ) from last_error

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        session = self._session
        if session is None or not self._opened:
            raise TransportClosedError(
                f"{self.medium} link {self.address} is not open",
                medium=self.medium,
                address=self.address,
            )

        self.requests_sent += 1
        async with session.request(method, self.base_url + path, **kwargs) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)
