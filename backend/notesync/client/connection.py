"""
Connection manager - owns the single socket of a client process.

One instance per client, created explicitly and passed to the components
that need it (rooms, outbound, inbound). It connects with a bounded retry
loop, reconnects after the peer drops the socket, and publishes every state
transition to registered listeners so dependents can resynchronize.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from notesync.client.errors import AuthError, ConnectionFailed, NetworkError
from notesync.client.settings import ClientSettings
from notesync.client.transport import Transport, TransportClosed, TransportFactory, WebsocketTransport

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "connection_failed"


StateListener = Callable[[ConnectionState], None]
EventHandler = Callable[[Dict[str, Any]], None]


class ConnectionManager:
    """
    Lifecycle: create -> connect(credential) -> ... -> dispose().

    Only one connection attempt runs at a time; connect() while an attempt
    is in flight waits for that attempt instead of starting another.
    """

    def __init__(
        self,
        url: str,
        transport_factory: Optional[TransportFactory] = None,
        settings: Optional[ClientSettings] = None,
    ):
        self.url = url
        self.settings = settings or ClientSettings()
        self._factory: TransportFactory = transport_factory or WebsocketTransport.open
        self._state = ConnectionState.DISCONNECTED
        self._credential: Optional[str] = None
        self._transport: Optional[Transport] = None
        self._attempts = 0
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, EventHandler] = {}
        self._listeners: List[StateListener] = []
        self._disposed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def failed_attempts(self) -> int:
        return self._attempts

    # observers

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def on(self, event: str, handler: EventHandler) -> None:
        """Register the handler for `event`, replacing any previous one."""
        self._handlers[event] = handler

    def off(self, event: str) -> None:
        self._handlers.pop(event, None)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.info("connection: %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("connection state listener failed")

    # connecting

    async def connect(self, credential: str) -> Transport:
        if self._disposed:
            raise RuntimeError("ConnectionManager has been disposed")

        if self._connect_task is not None and not self._connect_task.done():
            return await asyncio.shield(self._connect_task)

        if self.is_connected and credential == self._credential:
            return self._transport

        if self._transport is not None:
            await self._drop_transport()

        self._credential = credential
        # an explicit connect always gets a fresh retry budget
        self._attempts = 0
        self._connect_task = self._start_attempts(initial_delay=0)
        return await asyncio.shield(self._connect_task)

    def _start_attempts(self, initial_delay: float) -> asyncio.Task:
        task = asyncio.create_task(self._run_attempts(initial_delay))
        task.add_done_callback(self._attempts_finished)
        return task

    def _attempts_finished(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("connection: giving up: %s", exc)

    async def _run_attempts(self, initial_delay: float) -> Transport:
        if initial_delay:
            await asyncio.sleep(initial_delay)

        max_attempts = self.settings.max_reconnect_attempts
        while True:
            self._set_state(ConnectionState.CONNECTING)
            try:
                transport = await asyncio.wait_for(
                    self._factory(self.url, self._credential),
                    timeout=self.settings.connect_timeout,
                )
            except AuthError:
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except (NetworkError, OSError, asyncio.TimeoutError) as exc:
                self._attempts += 1
                logger.warning("connection: attempt %d/%d failed: %r", self._attempts, max_attempts, exc)
                if self._attempts >= max_attempts:
                    self._set_state(ConnectionState.FAILED)
                    raise ConnectionFailed(f"Failed to connect after {max_attempts} attempts") from exc
                self._set_state(ConnectionState.DISCONNECTED)
                await asyncio.sleep(self.settings.reconnect_delay)
                continue

            self._attempts = 0
            self._transport = transport
            self._reader_task = asyncio.create_task(self._read_loop(transport))
            self._set_state(ConnectionState.CONNECTED)
            return transport

    # receiving

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                try:
                    frame = await transport.receive()
                except ValueError:
                    logger.warning("connection: dropping undecodable frame")
                    continue
                self._dispatch(frame)
        except NetworkError as exc:
            self._transport_lost(transport, exc)

    def _dispatch(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            logger.warning("connection: ignoring non-object frame")
            return
        event = frame.get("event")
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("connection: no handler for %r", event)
            return
        try:
            handler(frame.get("data") or {})
        except Exception:
            logger.exception("connection: handler for %r failed", event)

    def _transport_lost(self, transport: Transport, exc: Exception) -> None:
        if transport is not self._transport:
            return
        self._transport = None
        self._reader_task = None
        self._set_state(ConnectionState.DISCONNECTED)

        if getattr(exc, "by_peer", True) and not self._disposed:
            logger.warning(
                "connection: lost (%s), reconnecting in %.1fs", exc, self.settings.reconnect_delay
            )
            self._connect_task = self._start_attempts(initial_delay=self.settings.reconnect_delay)

    # sending

    async def emit(self, event: str, data: Dict[str, Any]) -> None:
        transport = self._transport
        if not self.is_connected or transport is None:
            raise NetworkError(f"Cannot emit {event}: not connected")
        try:
            await transport.send({"event": event, "data": data})
        except TransportClosed as exc:
            self._transport_lost(transport, exc)
            raise NetworkError(f"Cannot emit {event}: connection lost") from exc

    # teardown

    async def _drop_transport(self) -> None:
        transport, reader = self._transport, self._reader_task
        self._transport = None
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        if transport is not None:
            try:
                await transport.close()
            except (NetworkError, OSError) as exc:
                logger.debug("connection: error while closing: %s", exc)

    async def disconnect(self) -> None:
        """Caller-initiated close; never followed by an automatic reconnect."""
        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._drop_transport()
        self._attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)

    async def dispose(self) -> None:
        self._disposed = True
        await self.disconnect()
        self._handlers.clear()
        self._listeners.clear()
