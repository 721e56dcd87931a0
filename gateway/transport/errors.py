# gateway/transport/errors.py
from __future__ import annotations

from typing import Optional


class TransportError(Exception):
    """Base class for transport-layer failures."""

    def __init__(self, message: str, *, medium: Optional[str] = None, address: Optional[str] = None):
        super().__init__(message)
        self.medium = medium
        self.address = address


class TransportOpenError(TransportError):
    """open() failed; message names the medium and the attempted address."""


class TransportTimeoutError(TransportOpenError):
    pass


class TransportIOError(TransportError):
    pass


class TransportClosedError(TransportIOError):
    pass
