# gateway/transport/connections.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .base import Transport
from .errors import TransportError


class ConnectionRegistry:
    """
    The single board-id keyed table of live transports, for every medium.

    close() is the uniform teardown path used by the orchestrator.
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None):
        self._links: Dict[str, Transport] = {}
        self._log = logger or logging.getLogger(__name__)

    def register(self, board_id: str, transport: Transport) -> Optional[Transport]:
        """Register `transport`; returns the transport it replaced, if any."""
        key = str(board_id)
        previous = self._links.get(key)
        self._links[key] = transport
        if previous is not None and previous is not transport:
            self._log.warning("CONNECTION_REPLACED board=%s medium=%s", board_id, previous.medium)
        return previous

    def get(self, board_id: str) -> Optional[Transport]:
        return self._links.get(str(board_id))

    def has(self, board_id: str) -> bool:
        return str(board_id) in self._links

    def board_ids(self) -> List[str]:
        return sorted(self._links)

    def deregister(self, board_id: str, *, transport: Optional[Transport] = None) -> bool:
        """
        Forget the board's link.

        With `transport`, the link is dropped only if it is still that exact
        object, so a late disconnect cannot evict a newer link.
        """
        key = str(board_id)
        current = self._links.get(key)
        if current is None or (transport is not None and current is not transport):
            return False
        del self._links[key]
        return True

    async def close(self, board_id: str) -> bool:
        """Deregister and close the board's link; False when it had none."""
        transport = self._links.pop(str(board_id), None)
        if transport is None:
            return False
        try:
            await transport.close()
        except (TransportError, OSError) as e:
            self._log.error(
                "CONNECTION_CLOSE_FAILED board=%s medium=%s address=%s err=%s",
                board_id, transport.medium, transport.address, e,
            )
        return True

    def describe(self) -> Dict[str, dict]:
        return {board_id: t.status() for board_id, t in sorted(self._links.items())}
