"""
Socket transport used by the connection manager.

Frames are JSON objects of the form {"event": ..., "data": {...}}. The
credential travels once, in the handshake URL.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from notesync.client.errors import AuthError, NetworkError

logger = logging.getLogger(__name__)


class TransportClosed(NetworkError):
    """The socket went away; `by_peer` is False when we closed it ourselves."""

    def __init__(self, reason: str = "", by_peer: bool = True):
        super().__init__(reason or "transport closed")
        self.by_peer = by_peer


class Transport(Protocol):
    async def send(self, frame: dict[str, Any]) -> None: ...

    async def receive(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


# (url, credential) -> open transport
TransportFactory = Callable[[str, str], Awaitable[Transport]]


def _handshake_status(exc: InvalidHandshake) -> Optional[int]:
    response = getattr(exc, "response", None)
    if response is not None:
        return getattr(response, "status_code", None)
    return getattr(exc, "status_code", None)


class WebsocketTransport:
    def __init__(self, ws):
        self._ws = ws
        self._closing = False

    @classmethod
    async def open(cls, url: str, credential: str) -> "WebsocketTransport":
        target = f"{url}?{urlencode({'token': credential})}"
        try:
            # the manager applies its own connect timeout
            ws = await websockets.connect(target, open_timeout=None)
        except InvalidHandshake as exc:
            if _handshake_status(exc) in (401, 403):
                raise AuthError("Socket handshake rejected the credential") from exc
            raise NetworkError(f"Socket handshake failed: {exc}") from exc
        except OSError as exc:
            raise NetworkError(f"Cannot reach {url}: {exc}") from exc
        return cls(ws)

    async def send(self, frame: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc), by_peer=not self._closing) from exc

    async def receive(self) -> dict[str, Any]:
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc), by_peer=not self._closing) from exc
        return json.loads(raw)

    async def close(self) -> None:
        self._closing = True
        await self._ws.close()
