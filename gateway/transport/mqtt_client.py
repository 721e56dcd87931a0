# gateway/transport/mqtt_client.py
from __future__ import annotations

import asyncio
import json
import logging
import secrets
import ssl
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

import aiomqtt

from .base import AdapterContext, Transport
from .errors import TransportClosedError, TransportIOError, TransportTimeoutError

# a listener is either a variable name (payload lands in the project partition)
# or a callable(topic, payload)
Listener = Union[str, Callable[[str, Any], Any]]
ClientFactory = Callable[..., aiomqtt.Client]


def decode_payload(payload: Any) -> Any:
    """MQTT payload -> JSON value when it parses, else text."""
    if isinstance(payload, (bytes, bytearray)):
        text = bytes(payload).decode("utf-8", errors="replace")
    elif payload is None:
        return None
    else:
        text = str(payload)
    try:
        return json.loads(text)
    except ValueError:
        return text


def encode_payload(value: Any) -> Union[str, bytes]:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value
    return json.dumps(value)


class MqttTransport(Transport):
    """
    MQTT session for one board, built on aiomqtt.

    open() connects with a randomized client id (`xel_<board>_<hex>`) under a
    hard timeout of its own; a broker that never answers leaves no client
    behind. A listener task dispatches incoming messages to per-topic
    listeners. clear_listeners() drops every subscription but keeps the
    session connected for the next script deployment.
    """

    medium = "mqtt"

    def __init__(
        self,
        brokerUrl: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        *,
        connect_timeout_s: float = 10.0,
        client_factory: Optional[ClientFactory] = None,
        context: Optional[AdapterContext] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(context=context, logger=logger)
        self.broker_url = brokerUrl
        parsed = urlparse(brokerUrl if "://" in brokerUrl else f"mqtt://{brokerUrl}")
        self.hostname = parsed.hostname or brokerUrl
        self.port = int(parsed.port or port)
        self.tls = parsed.scheme in ("mqtts", "ssl", "tls")
        self.username = username
        self.password = password
        self.keepalive = int(keepalive)
        self.connect_timeout_s = float(connect_timeout_s)
        self._client_factory = client_factory or aiomqtt.Client

        self.identifier: Optional[str] = None
        self._client: Optional[aiomqtt.Client] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._listeners: Dict[str, List[Listener]] = {}
        self._closing = False

    @property
    def address(self) -> str:
        return f"{self.hostname}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def topics(self) -> List[str]:
        return sorted(self._listeners)

    def _new_identifier(self) -> str:
        board_id = self.context.board_id if self.context is not None else "board"
        return f"xel_{board_id}_{secrets.token_hex(4)}"

    async def open(self) -> None:
        if self._client is not None:
            return

        self._reset_closed_state()
        self._closing = False
        if self.context is not None:
            self.context.ingest({})

        self.identifier = self._new_identifier()
        client = self._client_factory(
            hostname=self.hostname,
            port=self.port,
            identifier=self.identifier,
            username=self.username,
            password=self.password,
            keepalive=self.keepalive,
            tls_context=ssl.create_default_context() if self.tls else None,
        )

        self._log.info("MQTT_CONNECTING address=%s identifier=%s", self.address, self.identifier)
        try:
            await asyncio.wait_for(client.__aenter__(), timeout=self.connect_timeout_s)
        except asyncio.TimeoutError:
            await self._discard(client)
            raise self._open_error(
                f"connect timed out after {self.connect_timeout_s}s",
                cls=TransportTimeoutError,
            ) from None
        except (aiomqtt.MqttError, OSError) as e:
            await self._discard(client)
            raise self._open_error(e) from e

        self._client = client
        self._listener_task = asyncio.create_task(self._listen(client))
        self._log.info("MQTT_CONNECTED address=%s identifier=%s", self.address, self.identifier)

    async def _discard(self, client: aiomqtt.Client) -> None:
        try:
            await client.__aexit__(None, None, None)
        except Exception as e:
            self._log.debug("MQTT_DISCARD address=%s err=%r", self.address, e)

    async def close(self) -> None:
        client = self._client
        if client is None:
            return

        self._closing = True
        self._client = None
        self._listeners.clear()

        task, self._listener_task = self._listener_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._discard(client)
        self._notify_closed("closed")

    # ---------------- pub/sub ----------------

    async def subscribe(self, topic: str, listener: Listener, *, qos: int = 0) -> None:
        client = self._require_client()
        first = topic not in self._listeners
        self._listeners.setdefault(topic, []).append(listener)
        if not first:
            return
        try:
            await client.subscribe(topic, qos=qos)
        except aiomqtt.MqttError as e:
            self._listeners.pop(topic, None)
            raise TransportIOError(
                f"{self.medium} subscribe '{topic}' failed at {self.address}: {e}",
                medium=self.medium,
                address=self.address,
            ) from e
        self._log.info("MQTT_SUBSCRIBED address=%s topic=%s", self.address, topic)

    async def publish(self, topic: str, payload: Any, *, qos: int = 0, retain: bool = False) -> None:
        client = self._require_client()
        try:
            await client.publish(topic, payload=encode_payload(payload), qos=qos, retain=retain)
        except aiomqtt.MqttError as e:
            raise TransportIOError(
                f"{self.medium} publish '{topic}' failed at {self.address}: {e}",
                medium=self.medium,
                address=self.address,
            ) from e

    async def clear_listeners(self) -> bool:
        """Unsubscribe every topic and drop its listeners; the session stays up."""
        client = self._client
        if client is None:
            return False

        topics = list(self._listeners)
        self._listeners.clear()
        for topic in topics:
            try:
                await client.unsubscribe(topic)
            except aiomqtt.MqttError as e:
                self._log.warning("MQTT_UNSUBSCRIBE_FAILED address=%s topic=%s err=%s", self.address, topic, e)

        self._log.info("MQTT_LISTENERS_CLEARED address=%s topics=%d", self.address, len(topics))
        return True

    def status(self) -> dict:
        out = super().status()
        out.update(
            {
                "brokerUrl": self.broker_url,
                "identifier": self.identifier,
                "topics": self.topics,
            }
        )
        return out

    # ---------------- internals ----------------

    def _require_client(self) -> aiomqtt.Client:
        if self._client is None:
            raise TransportClosedError(
                f"{self.medium} session {self.address} is not connected",
                medium=self.medium,
                address=self.address,
            )
        return self._client

    async def _listen(self, client: aiomqtt.Client) -> None:
        reason = "broker closed the session"
        try:
            async for message in client.messages:
                self._dispatch(message)
        except aiomqtt.MqttError as e:
            reason = f"broker lost: {e}"

        if self._closing or self._client is not client:
            return
        self._client = None
        self._listener_task = None
        self._listeners.clear()
        self._notify_closed(reason)

    def _dispatch(self, message: Any) -> None:
        topic = message.topic
        topic_str = getattr(topic, "value", str(topic))
        value = decode_payload(message.payload)

        for pattern, listeners in list(self._listeners.items()):
            if not topic.matches(pattern):
                continue
            for listener in list(listeners):
                try:
                    if isinstance(listener, str):
                        if self.context is not None:
                            self.context.ingest_one(listener, value)
                    else:
                        listener(topic_str, value)
                except Exception:
                    self._log.exception("MQTT_LISTENER_ERROR address=%s topic=%s", self.address, topic_str)
